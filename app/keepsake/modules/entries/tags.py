from __future__ import annotations


def entry_detail_tag(entry_id: int) -> str:
    return f"entry:{entry_id}"


def entry_list_tag(user_id: int) -> str:
    return f"entries:user:{user_id}"
