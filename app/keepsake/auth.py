from __future__ import annotations

import uuid
from collections import defaultdict, deque
from collections.abc import Callable
from datetime import datetime, timedelta
from functools import wraps
from typing import Any

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from app.keepsake.audit import client_ip, record_event
from app.keepsake.db import db_session
from app.keepsake.models import User, UserSettings
from app.keepsake.utils import is_valid_email

bp = Blueprint("auth", __name__)

MIN_PASSWORD_LENGTH = 8


class LoginThrottle:
    """Per-IP sliding window over login attempts. Process-local, like the read cache."""

    def __init__(self, limit: int = 5, window: timedelta = timedelta(minutes=5)) -> None:
        self.limit = limit
        self.window = window
        self._attempts: dict[str, deque[datetime]] = defaultdict(deque)

    def blocked(self, ip: str) -> bool:
        attempts = self._attempts.get(ip)
        if not attempts:
            return False
        cutoff = datetime.utcnow() - self.window
        while attempts and attempts[0] <= cutoff:
            attempts.popleft()
        if not attempts:
            del self._attempts[ip]
            return False
        return len(attempts) >= self.limit

    def hit(self, ip: str) -> None:
        self._attempts[ip].append(datetime.utcnow())

    def reset(self, ip: str) -> None:
        self._attempts.pop(ip, None)


login_throttle = LoginThrottle()


def _safe_next(nxt: str) -> str | None:
    # Local paths only; "//host" would leave the site.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


def _after_sign_in(nxt: str):
    return redirect(_safe_next(nxt) or url_for("documents.dashboard"))


def current_user() -> User | None:
    return g.get("current_user")


def load_current_user() -> None:
    """Resolve g.current_user from the session cookie and tag the request with an id for logs."""
    if not g.get("request_id"):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    user_id = session.get("user_id")
    if not user_id:
        return
    try:
        user = db_session().get(User, int(user_id))
    except SQLAlchemyError as e:
        current_app.logger.error("Could not load session user %s, signing out: %s", user_id, e)
        user = None
    if user is None or not user.is_active:
        session.pop("user_id", None)
        return
    g.current_user = user


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user = current_user()
        if user is None or not user.is_active:
            # full_path carries a bare "?" when there is no query string
            return redirect(url_for("auth.login_get", next=request.full_path.rstrip("?")))
        return fn(*args, **kwargs)

    return wrapped


def ensure_user_settings(s: Session, user: User) -> UserSettings:
    """Create the settings row on first sight of a user; existing rows are left alone."""
    settings = s.get(UserSettings, user.id)
    if settings is None:
        now = datetime.utcnow()
        settings = UserSettings(user_id=user.id, created_at=now, updated_at=now)
        s.add(settings)
    return settings


def create_user(s: Session, *, name: str, email: str, password: str) -> User:
    now = datetime.utcnow()
    user = User(
        name=name,
        email=email.strip().lower(),
        password_hash=generate_password_hash(password),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()
    ensure_user_settings(s, user)
    return user


def _credentials() -> tuple[str, str, str]:
    form = request.form
    return (
        (form.get("email") or "").strip().lower(),
        form.get("password") or "",
        (form.get("next") or "").strip(),
    )


@bp.get("/login")
def login_get():
    return render_template("auth/login.html", next=(request.args.get("next") or "").strip())


@bp.post("/login")
def login_post():
    email, password, nxt = _credentials()
    ip = client_ip() or "unknown"
    if login_throttle.blocked(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))
    login_throttle.hit(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if user is None or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
        )
        s.commit()
        flash("Invalid credentials.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    login_throttle.reset(ip)
    ensure_user_settings(s, user)
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    session["user_id"] = user.id
    return _after_sign_in(nxt)


@bp.get("/signup")
def signup_get():
    return render_template("auth/signup.html", next=(request.args.get("next") or "").strip())


@bp.post("/signup")
def signup_post():
    email, password, nxt = _credentials()
    name = (request.form.get("name") or "").strip()

    if not name:
        problem = "Name is required."
    elif not is_valid_email(email):
        problem = "Enter a valid email address."
    elif len(password) < MIN_PASSWORD_LENGTH:
        problem = f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
    else:
        problem = None
    s = db_session()
    if problem is None and s.query(User.id).filter(User.email == email).first() is not None:
        problem = "An account with that email already exists."
    if problem:
        flash(problem, "danger")
        return redirect(url_for("auth.signup_get", next=nxt or None))

    user = create_user(s, name=name, email=email, password=password)
    record_event(s, actor=user, action="auth.signup", entity_type="User", entity_id=str(user.id))
    s.commit()
    session["user_id"] = user.id
    flash("Welcome to Keepsake.", "success")
    return _after_sign_in(nxt)


@bp.get("/logout")
def logout():
    user = current_user()
    if user is not None:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return redirect(url_for("routes.index"))
