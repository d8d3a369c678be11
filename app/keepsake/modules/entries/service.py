from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app.keepsake.actions import ActionResult, Conflict, PermissionDenied, raise_first
from app.keepsake.audit import record_event
from app.keepsake.cache import revalidate_tag
from app.keepsake.constants import SLUG_MAX_ATTEMPTS, SUMMARY_MAX_LENGTH
from app.keepsake.modules.entries.models import Entry, UserUpload
from app.keepsake.modules.entries.tags import entry_detail_tag, entry_list_tag
from app.keepsake.utils import as_text, clean_optional, parse_date, unique_slug

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.keepsake.models import User

logger = logging.getLogger(__name__)


def validate_entry_payload(payload: dict) -> list[str]:
    """Validate entry creation payload. Returns list of errors."""
    errors = []
    if not as_text(payload.get("name")):
        errors.append("Name is required")

    try:
        birth = parse_date(payload.get("birth_date"))
        death = parse_date(payload.get("death_date"))
    except ValueError:
        errors.append("Dates must use the YYYY-MM-DD format")
        birth = death = None
    else:
        if birth is None:
            errors.append("Date of birth is required")
        if death is None:
            errors.append("Date of death is required")
    if birth and death and death < birth:
        errors.append("Date of death must be after the date of birth")

    for field, label in (("cause_of_death", "Cause of death"), ("location", "Location")):
        value = as_text(payload.get(field))
        if len(value) > SUMMARY_MAX_LENGTH:
            errors.append(f"{label} must be at most {SUMMARY_MAX_LENGTH} characters")

    url = as_text(payload.get("primary_image_url"))
    if not url or not (url.startswith(("http://", "https://")) or url.startswith("/")):
        errors.append("Profile image is required")
    if not as_text(payload.get("primary_image_key")):
        errors.append("Profile image upload failed")
    return errors


def create_entry(s: "Session", user: "User | None", payload: dict[str, Any]) -> ActionResult:
    """Insert the entry and its primary image row in one transaction."""
    raise_first(validate_entry_payload(payload))
    if user is None:
        raise PermissionDenied("You must be signed in to create an entry")

    name = as_text(payload["name"])
    taken: set[str] = set()
    entry: Entry | None = None
    for _ in range(SLUG_MAX_ATTEMPTS):
        slug = unique_slug(s, Entry, name, fallback="entry", skip=taken)
        now = datetime.utcnow()
        candidate = Entry(
            owner_id=user.id,
            name=name,
            slug=slug,
            birth_date=parse_date(payload.get("birth_date")),
            death_date=parse_date(payload.get("death_date")),
            cause_of_death=clean_optional(payload.get("cause_of_death")),
            location=clean_optional(payload.get("location")),
            primary_image_url=as_text(payload["primary_image_url"]),
            created_at=now,
            updated_at=now,
        )
        s.add(candidate)
        try:
            s.flush()
        except IntegrityError:
            s.rollback()
            taken.add(slug)
            logger.info("Entry slug collision on insert (slug=%s); retrying", slug)
            continue
        entry = candidate
        break

    if entry is None:
        raise Conflict("Something went wrong while creating the entry")

    upload = UserUpload(
        user_id=user.id,
        entry_id=entry.id,
        url=entry.primary_image_url,
        key=as_text(payload["primary_image_key"]),
        is_primary=True,
        created_at=entry.created_at,
        updated_at=entry.created_at,
    )
    s.add(upload)
    s.flush()

    record_event(
        s,
        actor=user,
        action="entry.create",
        entity_type="Entry",
        entity_id=str(entry.id),
        metadata={"slug": entry.slug, "primary_upload_id": upload.id},
    )
    s.commit()

    revalidate_tag(entry_list_tag(user.id))
    revalidate_tag(entry_detail_tag(entry.id))
    return ActionResult.success("Entry created", entry_id=entry.id, slug=entry.slug)


def get_owned_entry(s: "Session", entry_id: int, user_id: int) -> Entry | None:
    return (
        s.query(Entry)
        .filter(Entry.id == entry_id)
        .filter(Entry.owner_id == user_id)
        .one_or_none()
    )


def count_uploads_for_entry(s: "Session", entry_id: int) -> int:
    return int(s.query(func.count(UserUpload.id)).filter(UserUpload.entry_id == entry_id).scalar() or 0)
