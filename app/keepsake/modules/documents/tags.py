from __future__ import annotations

PUBLIC_DOCUMENTS_TAG = "documents:public"


def document_tag(document_id: int) -> str:
    return f"document:{document_id}"


def document_comments_tag(document_id: int) -> str:
    return f"document:{document_id}:comments"


def document_invites_tag(document_id: int) -> str:
    return f"document:{document_id}:invites"


def document_list_tag(user_id: int) -> str:
    return f"documents:user:{user_id}"
