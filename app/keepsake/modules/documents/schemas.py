"""
Typed inputs for document mutations.

Each input is built from a form/JSON payload with from_payload() and checked
with errors(); the action reports only the first message.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from app.keepsake.actions import ValidationError
from app.keepsake.constants import SUMMARY_MAX_LENGTH, TITLE_MIN_LENGTH
from app.keepsake.modules.documents.models import COMMENT_KINDS, COMMENT_STATUSES, VISIBILITIES
from app.keepsake.utils import as_text, clean_optional, is_valid_email, parse_optional_int

logger = logging.getLogger(__name__)

DECISIONS = ("approve", "reject")


def _text(payload: Mapping[str, Any], key: str) -> str:
    return as_text(payload.get(key))


def _verbatim(payload: Mapping[str, Any], key: str, label: str) -> str | None:
    """Unstripped text; numbers are accepted as their decimal form."""
    raw = payload.get(key)
    if raw is None or isinstance(raw, str):
        return raw
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return str(raw)
    raise ValidationError(f"{label} must be text")


def _title_errors(title: str) -> list[str]:
    if len(title) < TITLE_MIN_LENGTH:
        return [f"Title must be at least {TITLE_MIN_LENGTH} characters"]
    return []


def _summary_errors(summary: str | None) -> list[str]:
    if summary and len(summary) > SUMMARY_MAX_LENGTH:
        return [f"Summary must be at most {SUMMARY_MAX_LENGTH} characters"]
    return []


@dataclass(frozen=True)
class CreateDocumentInput:
    title: str
    summary: str | None
    visibility: str
    content: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CreateDocumentInput":
        return cls(
            title=_text(payload, "title"),
            summary=clean_optional(payload.get("summary")),
            visibility=_text(payload, "visibility") or "private",
            content=_verbatim(payload, "content", "Content") or "",
        )

    def errors(self) -> list[str]:
        errors = _title_errors(self.title) + _summary_errors(self.summary)
        if self.visibility not in VISIBILITIES:
            errors.append("Visibility must be private or public")
        return errors


@dataclass(frozen=True)
class UpdateContentInput:
    content: str
    # None leaves the summary untouched; "" clears it
    summary: str | None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "UpdateContentInput":
        content = _verbatim(payload, "content", "Content")
        if content is None:
            raise ValidationError("Content is required")
        summary = payload.get("summary")
        return cls(content=content, summary=None if summary is None else as_text(summary))

    def errors(self) -> list[str]:
        return _summary_errors(self.summary)


@dataclass(frozen=True)
class UpdateMetadataInput:
    title: str
    summary: str | None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "UpdateMetadataInput":
        return cls(title=_text(payload, "title"), summary=clean_optional(payload.get("summary")))

    def errors(self) -> list[str]:
        return _title_errors(self.title) + _summary_errors(self.summary)


@dataclass(frozen=True)
class VisibilityInput:
    visibility: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "VisibilityInput":
        return cls(visibility=_text(payload, "visibility"))

    def errors(self) -> list[str]:
        if self.visibility not in VISIBILITIES:
            return ["Visibility must be private or public"]
        return []


@dataclass(frozen=True)
class InviteInput:
    email: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "InviteInput":
        return cls(email=_text(payload, "email").lower())

    def errors(self) -> list[str]:
        if not is_valid_email(self.email):
            return ["Enter a valid email address"]
        return []


@dataclass(frozen=True)
class CommentInput:
    body: str
    kind: str
    parent_id: int | None
    anchor_start: int | None
    anchor_end: int | None
    anchor_text: str | None
    anchor_meta: Any | None
    suggested_text: str | None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CommentInput":
        try:
            parent_id = parse_optional_int(payload.get("parent_id"))
            anchor_start = parse_optional_int(payload.get("anchor_start"))
            anchor_end = parse_optional_int(payload.get("anchor_end"))
        except ValueError as e:
            raise ValidationError("Anchors must be whole numbers") from e

        # Replacement text is taken verbatim: whitespace may be the point of the suggestion.
        suggested_text = _verbatim(payload, "suggested_text", "Suggested text")
        anchor_text = _verbatim(payload, "anchor_text", "Selected text")
        return cls(
            body=_text(payload, "body"),
            kind=_text(payload, "kind") or "annotation",
            parent_id=parent_id,
            anchor_start=anchor_start,
            anchor_end=anchor_end,
            anchor_text=anchor_text if anchor_text else None,
            anchor_meta=_parse_anchor_meta(payload.get("anchor_meta")),
            suggested_text=suggested_text if suggested_text else None,
        )

    def errors(self) -> list[str]:
        errors: list[str] = []
        if not self.body:
            errors.append("Comment cannot be empty")
        if self.kind not in COMMENT_KINDS:
            errors.append("Unknown comment kind")
        for value in (self.anchor_start, self.anchor_end):
            if value is not None and value < 0:
                errors.append("Anchors cannot be negative")
                break
        if (
            self.anchor_start is not None
            and self.anchor_end is not None
            and self.anchor_start > self.anchor_end
        ):
            errors.append("Selection start must not be after its end")
        if self.kind == "suggestion":
            if not self.suggested_text:
                errors.append("Suggestions must include replacement text")
            if self.anchor_start is None or self.anchor_end is None:
                errors.append("Suggestions require a selection anchor")
        return errors


@dataclass(frozen=True)
class CommentStatusInput:
    status: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CommentStatusInput":
        return cls(status=_text(payload, "status"))

    def errors(self) -> list[str]:
        if self.status not in COMMENT_STATUSES:
            return ["Status must be open or resolved"]
        return []


@dataclass(frozen=True)
class SuggestionDecisionInput:
    decision: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SuggestionDecisionInput":
        return cls(decision=_text(payload, "decision"))

    def errors(self) -> list[str]:
        if self.decision not in DECISIONS:
            return ["Decision must be approve or reject"]
        return []


def _parse_anchor_meta(raw: Any) -> Any | None:
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        # The editor's anchor hints are optional; a bad blob must not block the comment.
        logger.warning("Dropping unparseable anchor_meta: %s", e)
        return None
