"""
Audit trail for user-visible changes.

Events are written in the caller's transaction, so a rolled back action leaves
no trace and a committed one always has its event.
"""
import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.keepsake.models import AuditEvent, User


def client_ip() -> str | None:
    if not has_request_context():
        return None
    # First hop only; the platform router appends its own address.
    forwarded = (request.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    return forwarded or request.remote_addr


def _encode(metadata: dict[str, Any] | None) -> str | None:
    if not metadata:
        return None
    return json.dumps(metadata, sort_keys=True, default=str)


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditEvent:
    event = AuditEvent(
        request_id=g.get("request_id") if has_request_context() else None,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=_encode(metadata),
        client_ip=client_ip(),
    )
    s.add(event)
    return event
