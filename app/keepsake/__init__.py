import logging
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, flash, g, redirect, render_template, request, session, url_for

from app.keepsake.auth import bp as auth_bp, load_current_user
from app.keepsake.cache import init_cache
from app.keepsake.config import load_config
from app.keepsake.db import init_db, teardown_db_session
from app.keepsake.modules.documents.admin import bp as documents_bp
from app.keepsake.modules.entries.admin import bp as entries_bp
from app.keepsake.modules.uploads.admin import bp as uploads_bp
from app.keepsake.routes import bp as routes_bp
from app.keepsake.security import ensure_csrf_token, needs_csrf_check, validate_csrf

logger = logging.getLogger(__name__)

_UNTRACKED_PREFIXES = ("/static/", "/health", "/healthz")


def _check_production_settings(config: dict) -> None:
    env = (config.get("ENV") or "").strip().lower()
    if env not in ("prod", "production"):
        return
    database_url = str(config.get("DATABASE_URL") or "").strip()
    if not database_url:
        raise RuntimeError("DATABASE_URL is required in production.")
    if database_url.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
    if str(config.get("SECRET_KEY") or "") in ("", "change-me"):
        raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")


def _check_storage(app: Flask) -> None:
    if app.config.get("STORAGE_BACKEND") != "s3":
        return
    required = ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
    missing = [k for k in required if not app.config.get(k)]
    if missing:
        app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing))
        return

    from botocore.exceptions import BotoCoreError, ClientError

    from app.keepsake.storage import S3Storage

    storage = S3Storage.from_config(app.config)
    try:
        storage.check_bucket()
    except (BotoCoreError, ClientError) as e:
        # Uploads fail until this is fixed; documents keep working.
        app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket '%s': %s", storage.bucket, e)
    else:
        app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)


def _register_templating(app: Flask) -> None:
    @app.context_processor
    def _inject_globals() -> dict:
        return {"csrf_token": ensure_csrf_token(), "viewer": g.get("current_user")}

    @app.template_filter("dateformat")
    def _dateformat(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        return value.strftime(format) if hasattr(value, "strftime") else str(value)


def _register_csrf(app: Flask) -> None:
    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNTRACKED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if not app.config.get("CSRF_ENABLED", True) or not needs_csrf_check(request):
            return None
        if not validate_csrf(request):
            if request.is_json:
                return {"error": "CSRF token missing or invalid."}, 400
            return render_template("errors/400.html", message="CSRF token missing or invalid."), 400
        return None


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(403)
    def _forbidden(e):
        return render_template("errors/403.html"), 403

    @app.errorhandler(404)
    def _not_found(e):
        return render_template("errors/404.html"), 404

    @app.errorhandler(413)
    def _too_large(e):
        # The create-entry form uploads its portrait with fetch and reads JSON back.
        if request.path.startswith("/uploads/entry-profile-image"):
            return {"error": "Image must be 4MB or smaller"}, 413
        flash("File too large. Images must be 4MB or smaller.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer)
        return redirect(url_for("routes.index"))

    @app.errorhandler(500)
    def _server_error(e):
        app.logger.exception("Unhandled 500 (request_id=%s)", g.get("request_id"))
        return render_template("errors/500.html"), 500


def create_app() -> Flask:
    load_dotenv()
    config = load_config()
    _check_production_settings(config)

    app = Flask(__name__, template_folder="templates")
    app.config.from_mapping(config)
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=14)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    level = app.config.get("LOG_LEVEL") or "INFO"
    app.logger.setLevel(level)
    logging.getLogger("app.keepsake").setLevel(level)

    init_db(app)
    init_cache(app)
    _check_storage(app)

    _register_templating(app)
    _register_csrf(app)
    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(documents_bp)
    app.register_blueprint(entries_bp)
    app.register_blueprint(uploads_bp, url_prefix="/uploads")

    _register_error_handlers(app)

    logger.info("create_app() complete; env=%s storage=%s", app.config.get("ENV"), app.config.get("STORAGE_BACKEND"))
    return app
