"""
Read side of the documents module.

Cached readers return frozen snapshots tagged for revalidation by the
mutations in service.py; lookups that must always be fresh (slug and token
resolution) go straight to the database.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, case, distinct, func, or_

from app.keepsake.cache import cached
from app.keepsake.models import User
from app.keepsake.modules.documents.models import (
    Document,
    DocumentCollaborator,
    DocumentComment,
    DocumentInvitation,
)
from app.keepsake.modules.documents.tags import (
    PUBLIC_DOCUMENTS_TAG,
    document_comments_tag,
    document_invites_tag,
    document_list_tag,
    document_tag,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


@dataclass(frozen=True)
class PersonSummary:
    id: int
    name: str | None
    email: str
    image_url: str | None

    @property
    def display_name(self) -> str:
        return self.name or self.email

    @classmethod
    def from_user(cls, user: User | None) -> "PersonSummary | None":
        if user is None:
            return None
        return cls(id=user.id, name=user.name, email=user.email, image_url=user.image_url)


@dataclass(frozen=True)
class CollaboratorSummary:
    id: int
    status: str
    role: str


@dataclass(frozen=True)
class DocumentSummary:
    id: int
    title: str
    slug: str
    summary: str | None
    visibility: str
    updated_at: datetime
    owner: PersonSummary
    collaborator: CollaboratorSummary | None
    comment_count: int
    pending_suggestions: int


@dataclass(frozen=True)
class CollaboratorInfo:
    id: int
    status: str
    role: str
    accepted_at: datetime | None
    user: PersonSummary | None


@dataclass(frozen=True)
class InvitationInfo:
    id: int
    email: str
    token: str
    status: str
    created_at: datetime
    expires_at: datetime | None


@dataclass(frozen=True)
class DocumentDetail:
    id: int
    title: str
    slug: str
    summary: str | None
    content: str
    visibility: str
    created_at: datetime
    updated_at: datetime
    owner: PersonSummary
    collaborators: tuple[CollaboratorInfo, ...]
    invitations: tuple[InvitationInfo, ...]


@dataclass(frozen=True)
class CommentThread:
    id: int
    body: str
    kind: str
    status: str
    suggestion_status: str | None
    anchor_start: int | None
    anchor_end: int | None
    anchor_text: str | None
    suggested_text: str | None
    created_at: datetime
    author: PersonSummary | None
    replies: tuple["CommentThread", ...]

    @property
    def is_pending_suggestion(self) -> bool:
        return self.kind == "suggestion" and self.suggestion_status == "pending"


def _comment_count():
    return func.count(distinct(DocumentComment.id)).label("comment_count")


def _pending_suggestion_count():
    pending = and_(DocumentComment.kind == "suggestion", DocumentComment.suggestion_status == "pending")
    return func.coalesce(func.sum(case((pending, 1), else_=0)), 0).label("pending_suggestions")


def _summary_from_row(row: Any, *, with_collaborator: bool) -> DocumentSummary:
    collaborator = None
    if with_collaborator and row.collaborator_id is not None:
        collaborator = CollaboratorSummary(
            id=row.collaborator_id,
            status=row.collaborator_status or "active",
            role=row.collaborator_role or "commenter",
        )
    return DocumentSummary(
        id=row.id,
        title=row.title,
        slug=row.slug,
        summary=row.summary,
        visibility=row.visibility,
        updated_at=row.updated_at,
        owner=PersonSummary(id=row.owner_id, name=row.owner_name, email=row.owner_email, image_url=row.owner_image),
        collaborator=collaborator,
        comment_count=int(row.comment_count or 0),
        pending_suggestions=int(row.pending_suggestions or 0),
    )


_SUMMARY_COLUMNS = (
    Document.id,
    Document.title,
    Document.slug,
    Document.summary,
    Document.visibility,
    Document.updated_at,
    User.id.label("owner_id"),
    User.name.label("owner_name"),
    User.email.label("owner_email"),
    User.image_url.label("owner_image"),
)


def get_documents_for_user(s: "Session", user_id: int) -> list[DocumentSummary]:
    """Owned documents plus those the user collaborates on, most recently updated first."""

    def load() -> list[DocumentSummary]:
        rows = (
            s.query(
                *_SUMMARY_COLUMNS,
                DocumentCollaborator.id.label("collaborator_id"),
                DocumentCollaborator.status.label("collaborator_status"),
                DocumentCollaborator.role.label("collaborator_role"),
                _comment_count(),
                _pending_suggestion_count(),
            )
            .select_from(Document)
            .join(User, User.id == Document.owner_id)
            .outerjoin(
                DocumentCollaborator,
                and_(
                    DocumentCollaborator.document_id == Document.id,
                    DocumentCollaborator.user_id == user_id,
                ),
            )
            .outerjoin(DocumentComment, DocumentComment.document_id == Document.id)
            .filter(
                or_(
                    Document.owner_id == user_id,
                    and_(DocumentCollaborator.user_id == user_id, DocumentCollaborator.status != "revoked"),
                )
            )
            .group_by(Document.id, User.id, DocumentCollaborator.id)
            .order_by(Document.updated_at.desc(), Document.id.desc())
            .all()
        )
        return [_summary_from_row(r, with_collaborator=True) for r in rows]

    return cached(("documents-for-user", user_id), load, tags=[document_list_tag(user_id)])


def get_public_documents(s: "Session") -> list[DocumentSummary]:
    def load() -> list[DocumentSummary]:
        rows = (
            s.query(*_SUMMARY_COLUMNS, _comment_count(), _pending_suggestion_count())
            .select_from(Document)
            .join(User, User.id == Document.owner_id)
            .outerjoin(DocumentComment, DocumentComment.document_id == Document.id)
            .filter(Document.visibility == "public")
            .filter(Document.is_archived.is_(False))
            .group_by(Document.id, User.id)
            .order_by(Document.updated_at.desc(), Document.id.desc())
            .all()
        )
        return [_summary_from_row(r, with_collaborator=False) for r in rows]

    return cached(("documents-public",), load, tags=[PUBLIC_DOCUMENTS_TAG])


def _invitation_info(inv: DocumentInvitation) -> InvitationInfo:
    return InvitationInfo(
        id=inv.id,
        email=inv.email,
        token=inv.token,
        status=inv.status,
        created_at=inv.created_at,
        expires_at=inv.expires_at,
    )


def get_document_detail(s: "Session", document_id: int) -> DocumentDetail | None:
    def load() -> DocumentDetail | None:
        document = s.get(Document, document_id)
        if document is None:
            return None
        collaborators = (
            s.query(DocumentCollaborator)
            .filter(DocumentCollaborator.document_id == document_id)
            .filter(DocumentCollaborator.status != "revoked")
            .order_by(DocumentCollaborator.created_at.asc(), DocumentCollaborator.id.asc())
            .all()
        )
        invitations = (
            s.query(DocumentInvitation)
            .filter(DocumentInvitation.document_id == document_id)
            .filter(DocumentInvitation.status != "revoked")
            .order_by(DocumentInvitation.created_at.desc(), DocumentInvitation.id.desc())
            .all()
        )
        return DocumentDetail(
            id=document.id,
            title=document.title,
            slug=document.slug,
            summary=document.summary,
            content=document.content or "",
            visibility=document.visibility,
            created_at=document.created_at,
            updated_at=document.updated_at,
            owner=PersonSummary.from_user(document.owner),  # type: ignore[arg-type]
            collaborators=tuple(
                CollaboratorInfo(
                    id=c.id,
                    status=c.status,
                    role=c.role,
                    accepted_at=c.accepted_at,
                    user=PersonSummary.from_user(c.user),
                )
                for c in collaborators
            ),
            invitations=tuple(_invitation_info(inv) for inv in invitations),
        )

    return cached(
        ("document-detail", document_id),
        load,
        tags=[document_tag(document_id), document_invites_tag(document_id)],
    )


def build_comment_threads(comments: list[DocumentComment]) -> list[CommentThread]:
    """Nest a flat, oldest-first comment list under their parents."""
    children: dict[int | None, list[DocumentComment]] = defaultdict(list)
    known = {c.id for c in comments}
    for c in comments:
        # Orphans (parent deleted or on another document) surface at top level.
        parent = c.parent_id if c.parent_id in known else None
        children[parent].append(c)

    def build(c: DocumentComment) -> CommentThread:
        return CommentThread(
            id=c.id,
            body=c.body,
            kind=c.kind,
            status=c.status,
            suggestion_status=c.suggestion_status,
            anchor_start=c.anchor_start,
            anchor_end=c.anchor_end,
            anchor_text=c.anchor_text,
            suggested_text=c.suggested_text,
            created_at=c.created_at,
            author=PersonSummary.from_user(c.author),
            replies=tuple(build(r) for r in children.get(c.id, [])),
        )

    return [build(c) for c in children.get(None, [])]


def get_document_comments(s: "Session", document_id: int) -> list[CommentThread]:
    def load() -> list[CommentThread]:
        comments = (
            s.query(DocumentComment)
            .filter(DocumentComment.document_id == document_id)
            .order_by(DocumentComment.created_at.asc(), DocumentComment.id.asc())
            .all()
        )
        return build_comment_threads(comments)

    return cached(("document-comments", document_id), load, tags=[document_comments_tag(document_id)])


def get_document_invitations(s: "Session", document_id: int) -> list[InvitationInfo]:
    def load() -> list[InvitationInfo]:
        invitations = (
            s.query(DocumentInvitation)
            .filter(DocumentInvitation.document_id == document_id)
            .order_by(DocumentInvitation.created_at.desc(), DocumentInvitation.id.desc())
            .all()
        )
        return [_invitation_info(inv) for inv in invitations]

    return cached(("document-invitations", document_id), load, tags=[document_invites_tag(document_id)])


def get_document_by_slug(s: "Session", slug: str) -> Document | None:
    return s.query(Document).filter(Document.slug == slug).one_or_none()


def get_invitation_by_token(s: "Session", token: str) -> DocumentInvitation | None:
    return s.query(DocumentInvitation).filter(DocumentInvitation.token == token).one_or_none()
