"""End-to-end document flows through the HTTP routes."""
import pytest

from app.keepsake import create_app
from app.keepsake.db import session_scope
from app.keepsake.models import Base
from app.keepsake.modules.documents.models import Document, DocumentCollaborator, DocumentComment, DocumentInvitation


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("BASE_URL", "https://keepsake.example.com")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


def _signup(app, name, email):
    client = app.test_client()
    r = client.post("/auth/signup", data={"name": name, "email": email, "password": "password-123"})
    assert r.status_code == 302
    return client


def _create(client, title="Family Recipes", **extra):
    return client.post("/dashboard/documents/new", data={"title": title, **extra})


def _document_id(app):
    with session_scope(app) as s:
        return s.query(Document.id).scalar()


def test_create_document_opens_workspace(app):
    owner = _signup(app, "Owner", "owner@example.com")
    r = _create(owner, summary="Grandma's cards", content="Two cups of flour")
    assert r.status_code == 302
    document_id = _document_id(app)
    assert r.headers["Location"].endswith(f"/dashboard/documents/{document_id}")

    r = owner.get(r.headers["Location"])
    assert r.status_code == 200
    assert b"Family Recipes" in r.data
    assert b"Two cups of flour" in r.data

    r = owner.get("/dashboard")
    assert b"Family Recipes" in r.data

    with session_scope(app) as s:
        document = s.get(Document, document_id)
        assert document.slug == "family-recipes"
        assert document.visibility == "private"


def test_create_document_validation(app):
    owner = _signup(app, "Owner", "owner@example.com")
    r = _create(owner, title="ab")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/dashboard")
    r = owner.get("/dashboard")
    assert b"Title must be at least 3 characters" in r.data
    assert _document_id(app) is None


def test_publish_lists_document_publicly(app):
    owner = _signup(app, "Owner", "owner@example.com")
    _create(owner)
    document_id = _document_id(app)

    anonymous = app.test_client()
    assert b"Family Recipes" not in anonymous.get("/documents/public").data
    assert anonymous.get("/d/family-recipes").status_code == 404

    r = owner.post(f"/dashboard/documents/{document_id}/visibility", data={"visibility": "public"})
    assert r.status_code == 302

    assert b"Family Recipes" in anonymous.get("/documents/public").data
    assert anonymous.get("/d/family-recipes").status_code == 200

    owner.post(f"/dashboard/documents/{document_id}/visibility", data={"visibility": "private"})
    assert b"Family Recipes" not in anonymous.get("/documents/public").data


def test_json_content_update(app):
    owner = _signup(app, "Owner", "owner@example.com")
    _create(owner)
    document_id = _document_id(app)

    r = owner.post(f"/dashboard/documents/{document_id}/content", json={"content": "Three cups of flour"})
    assert r.status_code == 200
    assert r.json == {"success": "Document updated"}

    r = owner.post(f"/dashboard/documents/{document_id}/content", json={})
    assert r.status_code == 400
    assert r.json == {"error": "Content is required"}

    with session_scope(app) as s:
        assert s.get(Document, document_id).content == "Three cups of flour"


def test_json_values_of_the_wrong_type(app):
    owner = _signup(app, "Owner", "owner@example.com")
    _create(owner)
    document_id = _document_id(app)
    base = f"/dashboard/documents/{document_id}"

    r = owner.post(f"{base}/content", json={"content": ["Three", "cups"]})
    assert r.status_code == 400
    assert r.json == {"error": "Content must be text"}

    r = owner.post(f"{base}/metadata", json={"title": {"text": "Recipes"}})
    assert r.status_code == 400
    assert r.json == {"error": "Title must be at least 3 characters"}

    r = owner.post(f"{base}/visibility", json={"visibility": True})
    assert r.json == {"error": "Visibility must be private or public"}

    r = owner.post(f"{base}/invitations", json={"email": 42})
    assert r.json == {"error": "Enter a valid email address"}

    r = owner.post(f"{base}/comments", json={"body": ["Add salt?"]})
    assert r.json == {"error": "Comment cannot be empty"}

    # Numbers are read as their text.
    r = owner.post(f"{base}/comments", json={"body": 1234})
    assert r.json["success"] == "Comment added"
    comment_id = r.json["comment_id"]

    r = owner.post(f"{base}/comments/{comment_id}/status", json={"status": 1})
    assert r.json == {"error": "Status must be open or resolved"}

    with session_scope(app) as s:
        document = s.get(Document, document_id)
        assert document.title == "Family Recipes"
        assert document.visibility == "private"
        assert s.query(DocumentInvitation).count() == 0


def test_invite_and_accept_through_routes(app):
    owner = _signup(app, "Owner", "owner@example.com")
    _create(owner)
    document_id = _document_id(app)

    r = owner.post(
        f"/dashboard/documents/{document_id}/invitations",
        data={"email": "guest@example.com"},
        follow_redirects=True,
    )
    assert b"Invitation sent. Share this link: https://keepsake.example.com/invite/" in r.data

    with session_scope(app) as s:
        token = s.query(DocumentInvitation.token).scalar()

    guest = _signup(app, "Guest", "guest@example.com")
    assert guest.get(f"/dashboard/documents/{document_id}").status_code == 404
    assert guest.get(f"/invite/{token}").status_code == 200

    r = guest.post(f"/invite/{token}/accept")
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/dashboard/documents/{document_id}")

    assert guest.get(f"/dashboard/documents/{document_id}").status_code == 200
    assert b"Family Recipes" in guest.get("/dashboard").data

    with session_scope(app) as s:
        assert s.query(DocumentCollaborator).one().status == "active"

    # Collaborators comment but cannot edit.
    r = guest.post(f"/dashboard/documents/{document_id}/comments", json={"body": "Add salt?"})
    assert r.status_code == 200
    assert r.json["success"] == "Comment added"
    r = guest.post(f"/dashboard/documents/{document_id}/content", json={"content": "Mine now"})
    assert r.status_code == 400
    assert r.json["error"] == "You do not have permission to modify this document"


def test_unknown_invitation_page(app):
    assert app.test_client().get("/invite/no-such-token").status_code == 404


def test_delete_returns_to_dashboard(app):
    owner = _signup(app, "Owner", "owner@example.com")
    _create(owner)
    document_id = _document_id(app)

    r = owner.post(f"/dashboard/documents/{document_id}/delete", follow_redirects=True)
    assert r.status_code == 200
    assert b"Document deleted" in r.data
    assert b"No documents yet." in r.data
    assert owner.get(f"/dashboard/documents/{document_id}").status_code == 404


def test_stranger_cannot_open_workspace(app):
    owner = _signup(app, "Owner", "owner@example.com")
    _create(owner)
    document_id = _document_id(app)

    stranger = _signup(app, "Stranger", "stranger@example.com")
    assert stranger.get(f"/dashboard/documents/{document_id}").status_code == 404
    r = stranger.post(f"/dashboard/documents/{document_id}/delete")
    assert r.status_code == 302
    assert _document_id(app) == document_id


def test_suggestion_decision_routes(app):
    owner = _signup(app, "Owner", "owner@example.com")
    _create(owner, content="The quick fox")
    document_id = _document_id(app)
    base = f"/dashboard/documents/{document_id}"

    r = owner.post(
        f"{base}/comments",
        json={
            "body": "Slower reads better",
            "kind": "suggestion",
            "anchor_start": 4,
            "anchor_end": 9,
            "anchor_text": "quick",
            "suggested_text": "slow",
        },
    )
    assert r.status_code == 200
    comment_id = r.json["comment_id"]

    # The workspace script locates the anchor from these attributes.
    page = owner.get(base).data
    assert b'id="document-content"' in page
    assert b'data-anchor-start="4"' in page
    assert b'data-anchor-end="9"' in page
    assert b'data-anchor-text="quick"' in page
    assert b'meta name="csrf-token"' in page

    r = owner.post(f"{base}/comments/{comment_id}/suggestion", json={"decision": "later"})
    assert r.status_code == 400
    assert r.json == {"error": "Decision must be approve or reject"}

    # Plain forms get a flash and land back on the workspace.
    r = owner.post(f"{base}/comments/{comment_id}/suggestion", data={"decision": "approve"})
    assert r.status_code == 302
    assert r.headers["Location"].endswith(base)
    r = owner.get(base)
    assert b"Suggestion approved" in r.data
    assert b"The slow fox" in r.data

    r = owner.post(f"{base}/comments/{comment_id}/suggestion", data={"decision": "reject"})
    assert r.status_code == 302
    assert b"This suggestion has already been processed" in owner.get(base).data

    r = owner.post(f"{base}/comments/{comment_id}/suggestion", json={"decision": "reject"})
    assert r.status_code == 400
    assert r.json == {"error": "This suggestion has already been processed"}

    with session_scope(app) as s:
        assert s.get(Document, document_id).content == "The slow fox"
        comment = s.get(DocumentComment, comment_id)
        assert comment.suggestion_status == "approved"
        assert comment.status == "resolved"
