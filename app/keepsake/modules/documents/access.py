from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.keepsake.actions import PermissionDenied
from app.keepsake.modules.documents.models import Document, DocumentCollaborator


@dataclass(frozen=True)
class DocumentAccess:
    document: Document
    is_owner: bool
    is_active_collaborator: bool

    @property
    def is_contributor(self) -> bool:
        return self.is_owner or self.is_active_collaborator


def resolve_access(s: Session, document_id: int, user_id: int | None) -> DocumentAccess | None:
    """
    None means "not found" to the caller, whether the document is missing or
    private to someone else; the two cases are deliberately indistinguishable.
    """
    document = s.get(Document, document_id)
    if document is None:
        return None

    if user_id is None:
        if document.visibility == "public":
            return DocumentAccess(document=document, is_owner=False, is_active_collaborator=False)
        return None

    is_owner = document.owner_id == user_id
    is_active_collaborator = (
        s.query(DocumentCollaborator.id)
        .filter(DocumentCollaborator.document_id == document_id)
        .filter(DocumentCollaborator.user_id == user_id)
        .filter(DocumentCollaborator.status == "active")
        .first()
        is not None
    )

    if not is_owner and not is_active_collaborator and document.visibility != "public":
        return None

    return DocumentAccess(document=document, is_owner=is_owner, is_active_collaborator=is_active_collaborator)


def assert_owner(s: Session, document_id: int, user_id: int | None) -> Document:
    if user_id is None:
        raise PermissionDenied("Unauthorized")
    access = resolve_access(s, document_id, user_id)
    if access is None or not access.is_owner:
        raise PermissionDenied("You do not have permission to modify this document")
    return access.document


def assert_contributor(s: Session, document_id: int, user_id: int | None) -> DocumentAccess:
    if user_id is None:
        raise PermissionDenied("Unauthorized")
    access = resolve_access(s, document_id, user_id)
    if access is None or not access.is_contributor:
        raise PermissionDenied("You do not have access to this document")
    return access
