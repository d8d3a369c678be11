from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.keepsake.models import Base

if TYPE_CHECKING:
    from app.keepsake.models import User


VISIBILITIES = ("private", "public")
COLLABORATOR_ROLES = ("commenter", "viewer")
COLLABORATOR_STATUSES = ("pending", "active", "revoked")
INVITATION_STATUSES = ("pending", "accepted", "expired", "revoked")
COMMENT_KINDS = ("annotation", "suggestion")
COMMENT_STATUSES = ("open", "resolved")
SUGGESTION_STATUSES = ("pending", "approved", "rejected")


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("idx_documents_owner", "owner_id"),
        Index("idx_documents_visibility", "visibility"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    # Markdown body; suggestions splice into this by character offset
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    summary: Mapped[str | None] = mapped_column(String(240), nullable=True)
    visibility: Mapped[str] = mapped_column(String(16), nullable=False, default="private")
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    owner: Mapped["User"] = relationship("User", lazy="selectin")
    collaborators: Mapped[list["DocumentCollaborator"]] = relationship(
        "DocumentCollaborator",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    invitations: Mapped[list["DocumentInvitation"]] = relationship(
        "DocumentInvitation",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )
    comments: Mapped[list["DocumentComment"]] = relationship(
        "DocumentComment",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    @property
    def is_public(self) -> bool:
        return self.visibility == "public"


class DocumentCollaborator(Base):
    __tablename__ = "document_collaborators"
    __table_args__ = (
        UniqueConstraint("document_id", "user_id", name="uq_document_collaborator_document_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    role: Mapped[str] = mapped_column(String(16), nullable=False, default="commenter")
    # pending -> active -> revoked
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    invited_by_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    document: Mapped[Document] = relationship("Document", back_populates="collaborators")
    user: Mapped["User"] = relationship("User", foreign_keys=[user_id], lazy="selectin")


class DocumentInvitation(Base):
    __tablename__ = "document_invitations"
    __table_args__ = (
        UniqueConstraint("document_id", "email", name="uq_document_invitation_document_email"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    inviter_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # pending -> accepted | expired | revoked
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    accepted_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    document: Mapped[Document] = relationship("Document", back_populates="invitations", lazy="selectin")
    inviter: Mapped["User"] = relationship("User", foreign_keys=[inviter_id], lazy="selectin")


class DocumentComment(Base):
    __tablename__ = "document_comments"
    __table_args__ = (
        Index("idx_document_comments_document", "document_id"),
        Index("idx_document_comments_parent", "parent_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("document_comments.id", ondelete="CASCADE"),
        nullable=True,
    )

    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="annotation")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    # Only set for kind == "suggestion"
    suggestion_status: Mapped[str | None] = mapped_column(String(16), nullable=True)

    body: Mapped[str] = mapped_column(Text, nullable=False)
    suggested_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    # [anchor_start, anchor_end) into Document.content as it was when the comment was written
    anchor_start: Mapped[int | None] = mapped_column(Integer, nullable=True)
    anchor_end: Mapped[int | None] = mapped_column(Integer, nullable=True)
    anchor_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    anchor_meta: Mapped[Any | None] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    document: Mapped[Document] = relationship("Document", back_populates="comments")
    author: Mapped["User"] = relationship("User", lazy="selectin")

    @property
    def is_suggestion(self) -> bool:
        return self.kind == "suggestion"
