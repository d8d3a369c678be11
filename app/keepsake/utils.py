from __future__ import annotations

import re
from datetime import date
from typing import Any

from sqlalchemy.orm import Session

_NON_SLUG = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_HYPHENS = re.compile(r"-+")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def slugify(value: str) -> str:
    """
    "Nebula  Protocol!" -> "nebula-protocol".
    Only ASCII letters and digits survive; everything else is dropped, not transliterated.
    """
    out = (value or "").lower().strip()
    out = _NON_SLUG.sub("", out)
    out = _WHITESPACE.sub("-", out)
    return _HYPHENS.sub("-", out)


def unique_slug(s: Session, model: Any, text: str, *, fallback: str, skip: set[str] | None = None) -> str:
    """
    First free slug among base, base-2, base-3, ...

    Check-then-insert only: callers must still treat a unique violation on
    insert as a collision and call again with the losing slug in `skip`.
    """
    base = slugify(text) or fallback
    skip = skip or set()
    slug = base
    attempt = 1
    while slug in skip or s.query(model.id).filter(model.slug == slug).first() is not None:
        attempt += 1
        slug = f"{base}-{attempt}"
    return slug


def as_text(raw: Any) -> str:
    """Form or JSON scalar as stripped text. Missing values, objects and arrays read as ""."""
    if raw is None or isinstance(raw, (dict, list)):
        return ""
    return str(raw).strip()


def parse_date(raw: Any) -> date | None:
    """Parse YYYY-MM-DD (HTML <input type="date">)."""
    text = as_text(raw)
    if not text:
        return None
    return date.fromisoformat(text)


def parse_optional_int(raw: Any) -> int | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValueError("boolean is not an integer")
    if isinstance(raw, int):
        return raw
    text = str(raw).strip()
    if not text or text.lower() == "null":
        return None
    return int(text)


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL.match(email or ""))


def clean_optional(raw: Any) -> str | None:
    return as_text(raw) or None
