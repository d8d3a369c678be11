from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from app.keepsake.actions import (
    ActionError,
    ActionResult,
    Conflict,
    NotFound,
    PermissionDenied,
    ValidationError,
    raise_first,
)
from app.keepsake.audit import record_event
from app.keepsake.cache import revalidate_tag
from app.keepsake.constants import INVITATION_TTL_DAYS, SLUG_MAX_ATTEMPTS
from app.keepsake.models import User
from app.keepsake.modules.documents.access import assert_contributor, assert_owner
from app.keepsake.modules.documents.models import (
    Document,
    DocumentCollaborator,
    DocumentComment,
    DocumentInvitation,
)
from app.keepsake.modules.documents.schemas import (
    CommentInput,
    CommentStatusInput,
    CreateDocumentInput,
    InviteInput,
    SuggestionDecisionInput,
    UpdateContentInput,
    UpdateMetadataInput,
    VisibilityInput,
)
from app.keepsake.modules.documents.tags import (
    PUBLIC_DOCUMENTS_TAG,
    document_comments_tag,
    document_invites_tag,
    document_list_tag,
    document_tag,
)
from app.keepsake.security import new_token
from app.keepsake.utils import unique_slug

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

Payload = Mapping[str, Any]


def _user_id(user: "User | None") -> int | None:
    return user.id if user is not None else None


def _require_user(user: "User | None", message: str) -> "User":
    if user is None:
        raise PermissionDenied(message)
    return user


def active_collaborator_ids(s: "Session", document_id: int) -> list[int]:
    rows = (
        s.query(DocumentCollaborator.user_id)
        .filter(DocumentCollaborator.document_id == document_id)
        .filter(DocumentCollaborator.status == "active")
        .all()
    )
    return [row[0] for row in rows]


def _revalidate_collaborators(s: "Session", document_id: int) -> None:
    for user_id in active_collaborator_ids(s, document_id):
        revalidate_tag(document_list_tag(user_id))


def _revalidate_document(
    s: "Session",
    document: Document,
    *,
    comments: bool = False,
    invites: bool = False,
    owner_list: bool = True,
    public: bool | None = None,
) -> None:
    """Invalidate every cached read that embeds this document. Call after commit."""
    revalidate_tag(document_tag(document.id))
    if comments:
        revalidate_tag(document_comments_tag(document.id))
    if invites:
        revalidate_tag(document_invites_tag(document.id))
    if owner_list:
        revalidate_tag(document_list_tag(document.owner_id))
    _revalidate_collaborators(s, document.id)
    if public is None:
        public = document.is_public
    if public:
        revalidate_tag(PUBLIC_DOCUMENTS_TAG)


# ---------- Suggestion splice ----------
def apply_suggestion(
    content: str,
    anchor_start: int,
    anchor_end: int,
    replacement: str,
    *,
    anchor_text: str | None = None,
) -> str:
    """
    Replace content[anchor_start:anchor_end] with `replacement`.

    Offsets are plain positional indices into the string. When the anchored
    text was snapshotted at comment time it must still be what sits under the
    anchor; otherwise the document moved on and the splice would land on
    unrelated text.
    """
    if anchor_start < 0 or anchor_end < anchor_start or anchor_end > len(content):
        raise ValidationError("Suggestion selection is out of bounds")
    if anchor_text is not None and content[anchor_start:anchor_end] != anchor_text:
        raise Conflict("Suggestion no longer matches the document text")
    return content[:anchor_start] + replacement + content[anchor_end:]


# ---------- Documents ----------
def create_document(s: "Session", user: "User | None", payload: Payload) -> ActionResult:
    inp = CreateDocumentInput.from_payload(payload)
    raise_first(inp.errors())
    user = _require_user(user, "You must be signed in to create a document")

    # Sequential check first; the unique index settles races between concurrent creators.
    taken: set[str] = set()
    document: Document | None = None
    for _ in range(SLUG_MAX_ATTEMPTS):
        slug = unique_slug(s, Document, inp.title, fallback="untitled", skip=taken)
        now = datetime.utcnow()
        candidate = Document(
            owner_id=user.id,
            title=inp.title,
            slug=slug,
            summary=inp.summary,
            visibility=inp.visibility,
            content=inp.content,
            created_at=now,
            updated_at=now,
        )
        s.add(candidate)
        try:
            s.flush()
        except IntegrityError:
            s.rollback()
            taken.add(slug)
            logger.info("Slug collision on insert (slug=%s); retrying", slug)
            continue
        document = candidate
        break

    if document is None:
        raise Conflict("Unable to create document. Please try again.")

    record_event(
        s,
        actor=user,
        action="document.create",
        entity_type="Document",
        entity_id=str(document.id),
        metadata={"slug": document.slug, "visibility": document.visibility},
    )
    s.commit()

    revalidate_tag(document_list_tag(user.id))
    revalidate_tag(document_tag(document.id))
    if document.is_public:
        revalidate_tag(PUBLIC_DOCUMENTS_TAG)

    return ActionResult.success("Document created", document_id=document.id, slug=document.slug)


def update_document_content(s: "Session", user: "User | None", document_id: int, payload: Payload) -> ActionResult:
    inp = UpdateContentInput.from_payload(payload)
    raise_first(inp.errors())
    document = assert_owner(s, document_id, _user_id(user))

    document.content = inp.content
    if inp.summary is not None:
        document.summary = inp.summary or None
    document.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="document.update_content",
        entity_type="Document",
        entity_id=str(document.id),
        metadata={"length": len(inp.content)},
    )
    s.commit()
    _revalidate_document(s, document, comments=True)
    return ActionResult.success("Document updated")


def update_document_metadata(s: "Session", user: "User | None", document_id: int, payload: Payload) -> ActionResult:
    inp = UpdateMetadataInput.from_payload(payload)
    raise_first(inp.errors())
    document = assert_owner(s, document_id, _user_id(user))

    changes = {}
    if inp.title != document.title:
        changes["title"] = {"old": document.title, "new": inp.title}
    if inp.summary != document.summary:
        changes["summary"] = {"old": document.summary, "new": inp.summary}
    document.title = inp.title
    document.summary = inp.summary
    document.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="document.update_metadata",
        entity_type="Document",
        entity_id=str(document.id),
        metadata={"changes": changes},
    )
    s.commit()
    _revalidate_document(s, document)
    return ActionResult.success("Document details updated")


def set_document_visibility(s: "Session", user: "User | None", document_id: int, payload: Payload) -> ActionResult:
    inp = VisibilityInput.from_payload(payload)
    raise_first(inp.errors())
    document = assert_owner(s, document_id, _user_id(user))

    old = document.visibility
    document.visibility = inp.visibility
    document.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="document.visibility",
        entity_type="Document",
        entity_id=str(document.id),
        metadata={"old": old, "new": inp.visibility},
    )
    s.commit()
    # Public listing changes both when a document joins and when it leaves.
    _revalidate_document(s, document, public=True)
    return ActionResult.success("Visibility updated")


def delete_document(s: "Session", user: "User | None", document_id: int) -> ActionResult:
    document = assert_owner(s, document_id, _user_id(user))

    collaborator_ids = active_collaborator_ids(s, document.id)
    doc_id, owner_id, was_public, title = document.id, document.owner_id, document.is_public, document.title

    s.delete(document)
    record_event(
        s,
        actor=user,
        action="document.delete",
        entity_type="Document",
        entity_id=str(doc_id),
        metadata={"title": title},
    )
    s.commit()

    revalidate_tag(document_tag(doc_id))
    revalidate_tag(document_comments_tag(doc_id))
    revalidate_tag(document_invites_tag(doc_id))
    revalidate_tag(document_list_tag(owner_id))
    for collaborator_id in collaborator_ids:
        revalidate_tag(document_list_tag(collaborator_id))
    if was_public:
        revalidate_tag(PUBLIC_DOCUMENTS_TAG)
    return ActionResult.success("Document deleted")


# ---------- Invitations & collaborators ----------
def invite_collaborator(
    s: "Session",
    user: "User | None",
    document_id: int,
    payload: Payload,
    *,
    base_url: str = "",
) -> ActionResult:
    inp = InviteInput.from_payload(payload)
    raise_first(inp.errors())
    document = assert_owner(s, document_id, _user_id(user))
    if user is not None and inp.email == (user.email or "").lower():
        raise ValidationError("You already own this document")

    now = datetime.utcnow()
    token = new_token()
    expires_at = now + timedelta(days=INVITATION_TTL_DAYS)

    invitation = (
        s.query(DocumentInvitation)
        .filter(DocumentInvitation.document_id == document.id)
        .filter(DocumentInvitation.email == inp.email)
        .one_or_none()
    )
    if invitation is None:
        invitation = DocumentInvitation(
            document_id=document.id,
            email=inp.email,
            token=token,
            inviter_id=document.owner_id,
            status="pending",
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        s.add(invitation)
    else:
        # Re-invite: fresh token and clock, previous link stops working.
        invitation.token = token
        invitation.status = "pending"
        invitation.expires_at = expires_at
        invitation.updated_at = now
    s.flush()

    # Someone who already has an account joins straight away; the link still works for them.
    existing_user_id = s.query(User.id).filter(User.email == inp.email).scalar()
    if existing_user_id is not None:
        _activate_collaborator(s, invitation, existing_user_id, now)
        s.flush()

    record_event(
        s,
        actor=user,
        action="invitation.create",
        entity_type="DocumentInvitation",
        entity_id=str(invitation.id),
        metadata={"document_id": document.id, "email": inp.email, "existing_user_id": existing_user_id},
    )
    s.commit()

    revalidate_tag(document_invites_tag(document.id))
    revalidate_tag(document_tag(document.id))
    if existing_user_id is not None:
        revalidate_tag(document_list_tag(existing_user_id))

    return ActionResult.success(
        "Invitation sent",
        invitation_id=invitation.id,
        token=token,
        invite_url=f"{base_url.rstrip('/')}/invite/{token}",
    )


def _activate_collaborator(s: "Session", invitation: DocumentInvitation, user_id: int, now: datetime) -> DocumentCollaborator:
    collaborator = (
        s.query(DocumentCollaborator)
        .filter(DocumentCollaborator.document_id == invitation.document_id)
        .filter(DocumentCollaborator.user_id == user_id)
        .one_or_none()
    )
    if collaborator is None:
        collaborator = DocumentCollaborator(
            document_id=invitation.document_id,
            user_id=user_id,
            invited_by_id=invitation.inviter_id,
            role="commenter",
            status="active",
            accepted_at=now,
            created_at=now,
            updated_at=now,
        )
        s.add(collaborator)
    else:
        collaborator.status = "active"
        collaborator.accepted_at = now
        collaborator.updated_at = now
    return collaborator


def accept_invitation(s: "Session", user: "User | None", token: str) -> ActionResult:
    token = (token or "").strip()
    if not token:
        raise ValidationError("Invitation token is required")
    user = _require_user(user, "You must be signed in to accept an invitation")

    invitation = s.query(DocumentInvitation).filter(DocumentInvitation.token == token).one_or_none()
    if invitation is None:
        raise NotFound("Invitation not found")
    if invitation.status != "pending":
        raise Conflict("This invitation is no longer active")

    now = datetime.utcnow()
    if invitation.expires_at is not None and invitation.expires_at < now:
        invitation.status = "expired"
        invitation.updated_at = now
        record_event(
            s,
            actor=user,
            action="invitation.expire",
            entity_type="DocumentInvitation",
            entity_id=str(invitation.id),
        )
        # The transition sticks even though the acceptance fails.
        s.commit()
        revalidate_tag(document_invites_tag(invitation.document_id))
        raise Conflict("This invitation has expired")

    invitation.status = "accepted"
    invitation.accepted_by_id = user.id
    invitation.updated_at = now
    collaborator = _activate_collaborator(s, invitation, user.id, now)
    s.flush()

    record_event(
        s,
        actor=user,
        action="invitation.accept",
        entity_type="DocumentInvitation",
        entity_id=str(invitation.id),
        metadata={"document_id": invitation.document_id, "collaborator_id": collaborator.id},
    )
    s.commit()

    revalidate_tag(document_tag(invitation.document_id))
    revalidate_tag(document_invites_tag(invitation.document_id))
    revalidate_tag(document_list_tag(invitation.inviter_id))
    revalidate_tag(document_list_tag(user.id))
    _revalidate_collaborators(s, invitation.document_id)

    return ActionResult.success("Invitation accepted", document_id=invitation.document_id)


def revoke_invitation(s: "Session", user: "User | None", document_id: int, invitation_id: int) -> ActionResult:
    assert_owner(s, document_id, _user_id(user))

    invitation = (
        s.query(DocumentInvitation)
        .filter(DocumentInvitation.id == invitation_id)
        .filter(DocumentInvitation.document_id == document_id)
        .one_or_none()
    )
    if invitation is None:
        raise NotFound("Invitation not found")
    if invitation.status != "pending":
        return ActionResult.success("Invitation revoked")

    invitation.status = "revoked"
    invitation.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="invitation.revoke",
        entity_type="DocumentInvitation",
        entity_id=str(invitation.id),
        metadata={"document_id": document_id, "email": invitation.email},
    )
    s.commit()

    revalidate_tag(document_invites_tag(document_id))
    revalidate_tag(document_tag(document_id))
    return ActionResult.success("Invitation revoked")


def remove_collaborator(s: "Session", user: "User | None", document_id: int, collaborator_id: int) -> ActionResult:
    assert_owner(s, document_id, _user_id(user))

    collaborator = (
        s.query(DocumentCollaborator)
        .filter(DocumentCollaborator.id == collaborator_id)
        .filter(DocumentCollaborator.document_id == document_id)
        .one_or_none()
    )
    if collaborator is None:
        raise NotFound("Collaborator not found")

    removed_user_id = collaborator.user_id
    s.delete(collaborator)
    record_event(
        s,
        actor=user,
        action="collaborator.remove",
        entity_type="DocumentCollaborator",
        entity_id=str(collaborator_id),
        metadata={"document_id": document_id, "user_id": removed_user_id},
    )
    s.commit()

    revalidate_tag(document_tag(document_id))
    revalidate_tag(document_invites_tag(document_id))
    revalidate_tag(document_list_tag(removed_user_id))
    _revalidate_collaborators(s, document_id)
    return ActionResult.success("Collaborator removed")


# ---------- Comments & suggestions ----------
def create_comment(s: "Session", user: "User | None", document_id: int, payload: Payload) -> ActionResult:
    inp = CommentInput.from_payload(payload)
    raise_first(inp.errors())
    author = _require_user(user, "Unauthorized")
    access = assert_contributor(s, document_id, author.id)

    if inp.parent_id is not None:
        parent = (
            s.query(DocumentComment.id)
            .filter(DocumentComment.id == inp.parent_id)
            .filter(DocumentComment.document_id == document_id)
            .first()
        )
        if parent is None:
            raise NotFound("Parent comment not found")

    is_suggestion = inp.kind == "suggestion"
    now = datetime.utcnow()
    comment = DocumentComment(
        document_id=document_id,
        author_id=author.id,
        parent_id=inp.parent_id,
        kind=inp.kind,
        status="open",
        suggestion_status="pending" if is_suggestion else None,
        body=inp.body,
        suggested_text=inp.suggested_text if is_suggestion else None,
        anchor_start=inp.anchor_start,
        anchor_end=inp.anchor_end,
        anchor_text=inp.anchor_text,
        anchor_meta=inp.anchor_meta,
        created_at=now,
        updated_at=now,
    )
    s.add(comment)
    s.flush()

    record_event(
        s,
        actor=user,
        action="suggestion.create" if is_suggestion else "comment.create",
        entity_type="DocumentComment",
        entity_id=str(comment.id),
        metadata={"document_id": document_id, "parent_id": inp.parent_id},
    )
    s.commit()

    _revalidate_document(s, access.document, comments=True)
    return ActionResult.success("Comment added", comment_id=comment.id)


def update_comment_status(
    s: "Session",
    user: "User | None",
    document_id: int,
    comment_id: int,
    payload: Payload,
) -> ActionResult:
    inp = CommentStatusInput.from_payload(payload)
    raise_first(inp.errors())
    access = assert_contributor(s, document_id, _user_id(user))

    comment = (
        s.query(DocumentComment)
        .filter(DocumentComment.id == comment_id)
        .filter(DocumentComment.document_id == document_id)
        .one_or_none()
    )
    if comment is None:
        raise NotFound("Comment not found")
    if comment.is_suggestion:
        # Suggestions resolve only together with approve/reject.
        raise ActionError("Use approve or reject to resolve a suggestion")

    comment.status = inp.status
    comment.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="comment.status",
        entity_type="DocumentComment",
        entity_id=str(comment.id),
        metadata={"status": inp.status},
    )
    s.commit()

    _revalidate_document(s, access.document, comments=True, owner_list=False)
    return ActionResult.success("Comment updated")


def _close_suggestion(s: "Session", comment: DocumentComment, outcome: str, now: datetime) -> None:
    # Conditional on still being pending: a concurrent decision on the same suggestion updates 0 rows.
    result = s.execute(
        update(DocumentComment)
        .where(DocumentComment.id == comment.id)
        .where(DocumentComment.suggestion_status == "pending")
        .values(suggestion_status=outcome, status="resolved", updated_at=now)
    )
    if result.rowcount != 1:
        raise Conflict("This suggestion has already been processed")


def respond_to_suggestion(
    s: "Session",
    user: "User | None",
    document_id: int,
    comment_id: int,
    payload: Payload,
) -> ActionResult:
    inp = SuggestionDecisionInput.from_payload(payload)
    raise_first(inp.errors())
    document = assert_owner(s, document_id, _user_id(user))

    comment = (
        s.query(DocumentComment)
        .filter(DocumentComment.id == comment_id)
        .filter(DocumentComment.document_id == document_id)
        .one_or_none()
    )
    if comment is None:
        raise NotFound("Suggestion not found")
    if not comment.is_suggestion:
        raise ActionError("Only suggestions can be approved or rejected")
    if comment.suggestion_status != "pending":
        raise Conflict("This suggestion has already been processed")

    now = datetime.utcnow()
    if inp.decision == "reject":
        _close_suggestion(s, comment, "rejected", now)
        record_event(
            s,
            actor=user,
            action="suggestion.reject",
            entity_type="DocumentComment",
            entity_id=str(comment.id),
            metadata={"document_id": document_id},
        )
        s.commit()
        _revalidate_document(s, document, comments=True)
        return ActionResult.success("Suggestion rejected")

    if comment.anchor_start is None or comment.anchor_end is None:
        raise ValidationError("Cannot apply suggestion without a selection anchor")

    new_content = apply_suggestion(
        document.content or "",
        comment.anchor_start,
        comment.anchor_end,
        comment.suggested_text or "",
        anchor_text=comment.anchor_text,
    )

    # Status flip and content splice commit together or not at all.
    _close_suggestion(s, comment, "approved", now)
    document.content = new_content
    document.updated_at = now
    record_event(
        s,
        actor=user,
        action="suggestion.approve",
        entity_type="DocumentComment",
        entity_id=str(comment.id),
        metadata={
            "document_id": document_id,
            "anchor_start": comment.anchor_start,
            "anchor_end": comment.anchor_end,
        },
    )
    s.commit()

    _revalidate_document(s, document, comments=True)
    return ActionResult.success("Suggestion approved")
