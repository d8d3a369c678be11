"""Tests for suggestion approval and rejection."""
from datetime import datetime

import pytest

from app.keepsake import create_app
from app.keepsake.actions import Conflict, ValidationError, perform
from app.keepsake.auth import create_user
from app.keepsake.db import session_scope
from app.keepsake.models import AuditEvent, Base, User
from app.keepsake.modules.documents import service
from app.keepsake.modules.documents.models import Document, DocumentCollaborator, DocumentComment


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with app.app_context():
        yield app


@pytest.fixture()
def ids(app):
    """Owner's document "The quick fox" with one active collaborator."""
    with session_scope(app) as s:
        owner = create_user(s, name="Owner", email="owner@example.com", password="password-1")
        editor = create_user(s, name="Editor", email="editor@example.com", password="password-2")
        s.commit()
        result = service.create_document(s, owner, {"title": "Fox Story", "content": "The quick fox"})
        doc_id = result.data["document_id"]
        s.add(
            DocumentCollaborator(
                document_id=doc_id,
                user_id=editor.id,
                invited_by_id=owner.id,
                status="active",
            )
        )
        return {"owner": owner.id, "editor": editor.id, "document": doc_id}


def _suggest(app, ids, **overrides):
    payload = {
        "body": "Slower reads better",
        "kind": "suggestion",
        "anchor_start": "4",
        "anchor_end": "9",
        "anchor_text": "quick",
        "suggested_text": "slow",
    }
    payload.update(overrides)
    with session_scope(app) as s:
        editor = s.get(User, ids["editor"])
        result = service.create_comment(s, editor, ids["document"], payload)
        assert result.ok, result.message
        return result.data["comment_id"]


def _decide(app, ids, comment_id, decision, *, user_key="owner"):
    with session_scope(app) as s:
        user = s.get(User, ids[user_key])
        return perform(s, service.respond_to_suggestion, s, user, ids["document"], comment_id, {"decision": decision})


def _content(app, ids):
    with session_scope(app) as s:
        return s.get(Document, ids["document"]).content


def _comment(app, comment_id):
    with session_scope(app) as s:
        return s.get(DocumentComment, comment_id)


class TestApplySuggestion:
    def test_replaces_selection(self):
        assert service.apply_suggestion("The quick fox", 4, 9, "slow") == "The slow fox"

    def test_empty_selection_inserts(self):
        assert service.apply_suggestion("The fox", 4, 4, "red ") == "The red fox"

    def test_selection_may_end_at_content_end(self):
        assert service.apply_suggestion("The quick fox", 10, 13, "hound") == "The quick hound"

    def test_out_of_bounds(self):
        with pytest.raises(ValidationError):
            service.apply_suggestion("short", 2, 50, "x")
        with pytest.raises(ValidationError):
            service.apply_suggestion("short", 4, 2, "x")

    def test_anchor_text_mismatch(self):
        with pytest.raises(Conflict):
            service.apply_suggestion("The quick fox", 4, 9, "slow", anchor_text="quack")


def test_approve_applies_replacement(app, ids):
    comment_id = _suggest(app, ids)

    result = _decide(app, ids, comment_id, "approve")
    assert result.ok
    assert result.message == "Suggestion approved"
    assert _content(app, ids) == "The slow fox"

    comment = _comment(app, comment_id)
    assert comment.suggestion_status == "approved"
    assert comment.status == "resolved"

    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "suggestion.approve").count() == 1


def test_second_approval_is_refused(app, ids):
    comment_id = _suggest(app, ids)
    assert _decide(app, ids, comment_id, "approve").ok

    result = _decide(app, ids, comment_id, "approve")
    assert not result.ok
    assert result.message == "This suggestion has already been processed"
    assert _content(app, ids) == "The slow fox"


def test_reject_leaves_content(app, ids):
    comment_id = _suggest(app, ids)

    result = _decide(app, ids, comment_id, "reject")
    assert result.ok
    assert result.message == "Suggestion rejected"
    assert _content(app, ids) == "The quick fox"

    comment = _comment(app, comment_id)
    assert comment.suggestion_status == "rejected"
    assert comment.status == "resolved"

    # Rejected suggestions cannot be approved afterwards.
    result = _decide(app, ids, comment_id, "approve")
    assert not result.ok
    assert _content(app, ids) == "The quick fox"


def test_collaborator_cannot_decide(app, ids):
    comment_id = _suggest(app, ids)

    result = _decide(app, ids, comment_id, "approve", user_key="editor")
    assert not result.ok
    assert result.message == "You do not have permission to modify this document"
    assert _comment(app, comment_id).suggestion_status == "pending"


def test_out_of_bounds_anchor_fails_and_stays_pending(app, ids):
    comment_id = _suggest(app, ids, anchor_start="4", anchor_end="50", anchor_text="")

    result = _decide(app, ids, comment_id, "approve")
    assert not result.ok
    assert result.message == "Suggestion selection is out of bounds"
    assert _content(app, ids) == "The quick fox"
    assert _comment(app, comment_id).suggestion_status == "pending"


def test_stale_anchor_is_refused(app, ids):
    comment_id = _suggest(app, ids)
    with session_scope(app) as s:
        owner = s.get(User, ids["owner"])
        service.update_document_content(s, owner, ids["document"], {"content": "A very quick fox"})

    result = _decide(app, ids, comment_id, "approve")
    assert not result.ok
    assert result.message == "Suggestion no longer matches the document text"
    assert _content(app, ids) == "A very quick fox"
    assert _comment(app, comment_id).suggestion_status == "pending"


def test_plain_comment_cannot_be_approved(app, ids):
    with session_scope(app) as s:
        editor = s.get(User, ids["editor"])
        comment_id = service.create_comment(s, editor, ids["document"], {"body": "Nice"}).data["comment_id"]

    result = _decide(app, ids, comment_id, "approve")
    assert not result.ok
    assert result.message == "Only suggestions can be approved or rejected"


def test_unknown_decision(app, ids):
    comment_id = _suggest(app, ids)
    result = _decide(app, ids, comment_id, "maybe")
    assert not result.ok
    assert result.message == "Decision must be approve or reject"


def test_concurrent_decision_loses(app, ids):
    comment_id = _suggest(app, ids)

    with session_scope(app) as first:
        comment = first.get(DocumentComment, comment_id)
        assert comment.suggestion_status == "pending"

        # Another request settles the suggestion after this one loaded it.
        with session_scope(app) as second:
            second.get(DocumentComment, comment_id).suggestion_status = "rejected"

        with pytest.raises(Conflict):
            service._close_suggestion(first, comment, "approved", datetime.utcnow())
        first.rollback()


@pytest.mark.parametrize(
    "first, settled_content",
    [("approve", "The slow fox"), ("reject", "The quick fox")],
)
def test_reject_after_decision_is_refused(app, ids, first, settled_content):
    comment_id = _suggest(app, ids)
    assert _decide(app, ids, comment_id, first).ok
    settled = _comment(app, comment_id).suggestion_status

    result = _decide(app, ids, comment_id, "reject")
    assert not result.ok
    assert result.message == "This suggestion has already been processed"
    assert _content(app, ids) == settled_content
    assert _comment(app, comment_id).suggestion_status == settled
    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "suggestion.reject").count() == (
            1 if first == "reject" else 0
        )
