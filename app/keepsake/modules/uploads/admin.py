from __future__ import annotations

import mimetypes

from flask import Blueprint, abort, current_app, flash, jsonify, redirect, request, send_file, url_for

from app.keepsake.actions import ActionError, perform
from app.keepsake.auth import current_user, require_login
from app.keepsake.db import db_session
from app.keepsake.modules.uploads import service
from app.keepsake.storage import StorageError, storage_from_config

bp = Blueprint("uploads", __name__)


@bp.post("/entry-profile-image")
def entry_profile_image():
    u = current_user()
    if u is None:
        return jsonify({"error": "Unauthorized"}), 401
    storage = storage_from_config(current_app.config)
    try:
        stored = service.store_profile_image(storage, current_app.config, u, request.files.get("file"))
    except ActionError as e:
        return jsonify({"error": e.message}), 400
    return jsonify(stored.as_json())


@bp.post("/entries/<int:entry_id>/gallery")
@require_login
def gallery_upload(entry_id: int):
    s = db_session()
    storage = storage_from_config(current_app.config)
    result = perform(
        s,
        service.upload_gallery_image,
        s,
        storage,
        current_app.config,
        current_user(),
        entry_id,
        request.files.get("file"),
    )
    flash(result.message, result.flash_category)
    return redirect(url_for("entries.entry_detail", entry_id=entry_id))


@bp.get("/files/<path:key>")
def serve_file(key: str):
    storage = storage_from_config(current_app.config)
    try:
        if not storage.exists(key):
            abort(404)
        fobj = storage.open(key)
    except StorageError:
        abort(404)
    mimetype = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return send_file(fobj, mimetype=mimetype, max_age=3600)
