"""Tests for slug generation and collision handling."""
import pytest

from app.keepsake import create_app
from app.keepsake.auth import create_user
from app.keepsake.db import session_scope
from app.keepsake.models import Base, User
from app.keepsake.modules.documents import service
from app.keepsake.modules.documents.models import Document
from app.keepsake.utils import slugify, unique_slug


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
        with session_scope(app) as s:
            create_user(s, name="Writer", email="writer@example.com", password="password-1")
        yield app


def _writer(s):
    return s.query(User).filter(User.email == "writer@example.com").one()


class TestSlugify:
    def test_basic(self):
        assert slugify("Nebula Protocol") == "nebula-protocol"

    def test_strips_punctuation_and_trims(self):
        assert slugify("  Hello, World!  ") == "hello-world"

    def test_collapses_whitespace_and_hyphens(self):
        assert slugify("a  -  b") == "a-b"
        assert slugify("one\ttwo\nthree") == "one-two-three"

    def test_non_ascii_is_dropped(self):
        assert slugify("Café Müller") == "caf-mller"

    def test_empty(self):
        assert slugify("") == ""
        assert slugify("!!!") == ""


def test_same_title_gets_numbered_suffix(app):
    with session_scope(app) as s:
        writer = _writer(s)
        first = service.create_document(s, writer, {"title": "Nebula Protocol"})
        second = service.create_document(s, writer, {"title": "Nebula Protocol"})
        third = service.create_document(s, writer, {"title": "nebula protocol!"})

    assert first.data["slug"] == "nebula-protocol"
    assert second.data["slug"] == "nebula-protocol-2"
    assert third.data["slug"] == "nebula-protocol-3"


def test_title_without_slug_characters_falls_back(app):
    with session_scope(app) as s:
        writer = _writer(s)
        result = service.create_document(s, writer, {"title": "???"})
        assert result.data["slug"] == "untitled"


def test_unique_slug_honours_skip(app):
    with session_scope(app) as s:
        assert unique_slug(s, Document, "Nebula", fallback="untitled") == "nebula"
        assert unique_slug(s, Document, "Nebula", fallback="untitled", skip={"nebula", "nebula-2"}) == "nebula-3"


def test_insert_collision_retries_with_next_suffix(app, monkeypatch):
    with session_scope(app) as s:
        service.create_document(s, _writer(s), {"title": "Nebula Protocol"})

    real_unique_slug = service.unique_slug
    calls = []

    def racing_unique_slug(s, model, text, *, fallback, skip=None):
        # First answer is stale: another writer took the slug between check and insert.
        calls.append(set(skip or ()))
        if len(calls) == 1:
            return "nebula-protocol"
        return real_unique_slug(s, model, text, fallback=fallback, skip=skip)

    monkeypatch.setattr(service, "unique_slug", racing_unique_slug)

    with session_scope(app) as s:
        result = service.create_document(s, _writer(s), {"title": "Nebula Protocol"})

    assert result.ok
    assert result.data["slug"] == "nebula-protocol-2"
    assert calls[1] == {"nebula-protocol"}
    with session_scope(app) as s:
        assert s.query(Document).count() == 2
