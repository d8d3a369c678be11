"""
Mutation plumbing shared by the document and entry modules.

Service functions raise ActionError subclasses for expected failures and
return an ActionResult on success. Routes call them through perform(), which
turns every outcome into an ActionResult so form handlers only ever deal
with a message string.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from flask import g, has_request_context
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class ActionError(Exception):
    """Expected failure; the message is safe to show to the user."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ActionError):
    pass


class NotFound(ActionError):
    pass


class PermissionDenied(ActionError):
    pass


class Conflict(ActionError):
    pass


@dataclass(frozen=True)
class ActionResult:
    ok: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, message: str, **data: Any) -> "ActionResult":
        return cls(ok=True, message=message, data=data)

    @classmethod
    def failure(cls, message: str) -> "ActionResult":
        return cls(ok=False, message=message)

    @property
    def flash_category(self) -> str:
        return "success" if self.ok else "danger"


def raise_first(errors: list[str]) -> None:
    """Surface only the first validation message, the way forms report them."""
    if errors:
        raise ValidationError(errors[0])


def perform(s: Session, fn: Callable[..., ActionResult], *args: Any, **kwargs: Any) -> ActionResult:
    try:
        return fn(*args, **kwargs)
    except ActionError as e:
        s.rollback()
        return ActionResult.failure(e.message)
    except SQLAlchemyError:
        s.rollback()
        logger.exception("Database error in %s (request_id=%s)", getattr(fn, "__name__", fn), _request_id())
        return ActionResult.failure("Unable to save changes. Please try again.")
    except Exception:
        s.rollback()
        logger.exception("Unexpected error in %s (request_id=%s)", getattr(fn, "__name__", fn), _request_id())
        return ActionResult.failure("Something went wrong. Please try again.")


def _request_id() -> str | None:
    if not has_request_context():
        return None
    return getattr(g, "request_id", None)
