"""Tests for document comments and threads."""
import pytest

from app.keepsake import create_app
from app.keepsake.actions import perform
from app.keepsake.auth import create_user
from app.keepsake.db import session_scope
from app.keepsake.models import Base, User
from app.keepsake.modules.documents import queries, service
from app.keepsake.modules.documents.models import DocumentCollaborator, DocumentComment


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
    with session_scope(app) as s:
        owner = create_user(s, name="Owner", email="owner@example.com", password="password-1")
        member = create_user(s, name="Member", email="member@example.com", password="password-2")
        reader = create_user(s, name="Reader", email="reader@example.com", password="password-3")
        s.commit()
        doc_id = service.create_document(
            s, owner, {"title": "Field Notes", "content": "Rain at dawn.", "visibility": "public"}
        ).data["document_id"]
        other_id = service.create_document(s, owner, {"title": "Other Notes"}).data["document_id"]
        s.add(DocumentCollaborator(document_id=doc_id, user_id=member.id, invited_by_id=owner.id, status="active"))
        return {
            "owner": owner.id,
            "member": member.id,
            "reader": reader.id,
            "document": doc_id,
            "other": other_id,
        }


def _comment(app, ids, payload, *, user_key="member", document_key="document"):
    with session_scope(app) as s:
        user = s.get(User, ids[user_key])
        return perform(s, service.create_comment, s, user, ids[document_key], payload)


def test_member_can_comment(app, ids):
    result = _comment(app, ids, {"body": "Lovely opening"})
    assert result.ok
    with session_scope(app) as s:
        comment = s.get(DocumentComment, result.data["comment_id"])
        assert comment.kind == "annotation"
        assert comment.status == "open"
        assert comment.suggestion_status is None
        assert comment.author_id == ids["member"]


def test_owner_can_comment(app, ids):
    assert _comment(app, ids, {"body": "Note to self"}, user_key="owner").ok


def test_public_reader_cannot_comment(app, ids):
    result = _comment(app, ids, {"body": "Drive-by"}, user_key="reader")
    assert not result.ok
    assert result.message == "You do not have access to this document"


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"body": "   "}, "Comment cannot be empty"),
        ({"body": "x", "kind": "shout"}, "Unknown comment kind"),
        ({"body": "x", "anchor_start": "-1", "anchor_end": "2"}, "Anchors cannot be negative"),
        ({"body": "x", "anchor_start": "5", "anchor_end": "2"}, "Selection start must not be after its end"),
        ({"body": "x", "anchor_start": "two"}, "Anchors must be whole numbers"),
        (
            {"body": "x", "kind": "suggestion", "anchor_start": "0", "anchor_end": "4"},
            "Suggestions must include replacement text",
        ),
        ({"body": "x", "kind": "suggestion", "suggested_text": "Snow"}, "Suggestions require a selection anchor"),
    ],
)
def test_comment_validation(app, ids, payload, message):
    result = _comment(app, ids, payload)
    assert not result.ok
    assert result.message == message


def test_suggestion_starts_pending(app, ids):
    result = _comment(
        app,
        ids,
        {"body": "Snow?", "kind": "suggestion", "anchor_start": 0, "anchor_end": 4, "suggested_text": "Snow"},
    )
    assert result.ok
    with session_scope(app) as s:
        comment = s.get(DocumentComment, result.data["comment_id"])
        assert comment.suggestion_status == "pending"
        assert comment.suggested_text == "Snow"


def test_anchor_meta_is_parsed_or_dropped(app, ids):
    good = _comment(app, ids, {"body": "a", "anchor_meta": '{"paragraph": 1}'})
    bad = _comment(app, ids, {"body": "b", "anchor_meta": "{not json"})
    assert good.ok and bad.ok
    with session_scope(app) as s:
        assert s.get(DocumentComment, good.data["comment_id"]).anchor_meta == {"paragraph": 1}
        assert s.get(DocumentComment, bad.data["comment_id"]).anchor_meta is None


def test_reply_must_stay_on_same_document(app, ids):
    foreign = _comment(app, ids, {"body": "Elsewhere"}, user_key="owner", document_key="other")
    assert foreign.ok

    result = _comment(app, ids, {"body": "Reply", "parent_id": foreign.data["comment_id"]})
    assert not result.ok
    assert result.message == "Parent comment not found"


def test_threads_nest_replies(app, ids):
    root = _comment(app, ids, {"body": "Root"}).data["comment_id"]
    reply = _comment(app, ids, {"body": "Reply", "parent_id": str(root)}, user_key="owner").data["comment_id"]
    _comment(app, ids, {"body": "Second root"})

    with session_scope(app) as s:
        threads = queries.get_document_comments(s, ids["document"])

    assert [t.body for t in threads] == ["Root", "Second root"]
    assert [r.id for r in threads[0].replies] == [reply]
    assert threads[0].replies[0].author.display_name == "Owner"


def test_new_comment_invalidates_cached_threads(app, ids):
    _comment(app, ids, {"body": "First"})
    with session_scope(app) as s:
        assert len(queries.get_document_comments(s, ids["document"])) == 1

    _comment(app, ids, {"body": "Second"})
    with session_scope(app) as s:
        assert len(queries.get_document_comments(s, ids["document"])) == 2


def test_resolve_and_reopen(app, ids):
    comment_id = _comment(app, ids, {"body": "Fix the date"}).data["comment_id"]

    with session_scope(app) as s:
        member = s.get(User, ids["member"])
        result = perform(s, service.update_comment_status, s, member, ids["document"], comment_id, {"status": "resolved"})
        assert result.ok
    with session_scope(app) as s:
        assert s.get(DocumentComment, comment_id).status == "resolved"

    with session_scope(app) as s:
        owner = s.get(User, ids["owner"])
        assert perform(s, service.update_comment_status, s, owner, ids["document"], comment_id, {"status": "open"}).ok
        bad = perform(s, service.update_comment_status, s, owner, ids["document"], comment_id, {"status": "closed"})
        assert bad.message == "Status must be open or resolved"


def test_status_of_suggestion_goes_through_decision(app, ids):
    comment_id = _comment(
        app,
        ids,
        {"body": "Snow?", "kind": "suggestion", "anchor_start": 0, "anchor_end": 4, "suggested_text": "Snow"},
    ).data["comment_id"]

    with session_scope(app) as s:
        owner = s.get(User, ids["owner"])
        result = perform(s, service.update_comment_status, s, owner, ids["document"], comment_id, {"status": "resolved"})
    assert not result.ok
    assert result.message == "Use approve or reject to resolve a suggestion"


def test_status_update_checks_document(app, ids):
    comment_id = _comment(app, ids, {"body": "Here"}).data["comment_id"]
    with session_scope(app) as s:
        owner = s.get(User, ids["owner"])
        result = perform(s, service.update_comment_status, s, owner, ids["other"], comment_id, {"status": "resolved"})
    assert result.message == "Comment not found"


def test_deleting_document_removes_comments(app, ids):
    _comment(app, ids, {"body": "Soon gone"})
    with session_scope(app) as s:
        owner = s.get(User, ids["owner"])
        assert perform(s, service.delete_document, s, owner, ids["document"]).ok
    with session_scope(app) as s:
        assert s.query(DocumentComment).filter(DocumentComment.document_id == ids["document"]).count() == 0
        assert s.query(DocumentCollaborator).filter(DocumentCollaborator.document_id == ids["document"]).count() == 0
