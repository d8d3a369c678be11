from datetime import datetime

from flask import Blueprint, flash, redirect, render_template, request, url_for

from app.keepsake.audit import record_event
from app.keepsake.auth import current_user, ensure_user_settings, require_login
from app.keepsake.db import db_session

bp = Blueprint("routes", __name__)

THEMES = ("system", "light", "dark")


@bp.get("/")
def index():
    return render_template("public/index.html", viewer=current_user())


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast liveness check. No DB access.
    """
    return "ok", 200


@bp.get("/account/settings")
@require_login
def account_settings():
    s = db_session()
    u = current_user()
    settings = ensure_user_settings(s, u)
    s.commit()
    return render_template("account/settings.html", settings=settings, themes=THEMES, viewer=u)


@bp.post("/account/settings")
@require_login
def account_settings_post():
    s = db_session()
    u = current_user()
    settings = ensure_user_settings(s, u)

    theme = (request.form.get("theme") or "system").strip().lower()
    if theme not in THEMES:
        flash("Choose a valid theme.", "danger")
        return redirect(url_for("routes.account_settings"))

    settings.theme = theme
    # Unchecked checkboxes are simply absent from the form.
    settings.notifications = request.form.get("notifications") == "on"
    settings.cookies = request.form.get("cookies") == "on"
    settings.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=u,
        action="user_settings.update",
        entity_type="UserSettings",
        entity_id=str(u.id),
        metadata={"theme": theme, "notifications": settings.notifications, "cookies": settings.cookies},
    )
    s.commit()
    flash("Settings saved.", "success")
    return redirect(url_for("routes.account_settings"))
