from __future__ import annotations

from typing import Any

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, url_for

from app.keepsake.actions import ActionResult, perform
from app.keepsake.auth import current_user, require_login
from app.keepsake.constants import MAX_GALLERY_IMAGES
from app.keepsake.db import db_session
from app.keepsake.modules.entries import queries, service
from app.keepsake.modules.uploads.service import store_profile_image
from app.keepsake.storage import storage_from_config

bp = Blueprint("entries", __name__)


def _create_entry_from_form(s, user, payload: dict[str, Any], file) -> ActionResult:
    # A portrait posted with the form is stored first, under the same rules as the upload endpoint.
    if file is not None and file.filename:
        storage = storage_from_config(current_app.config)
        stored = store_profile_image(storage, current_app.config, user, file)
        payload = {**payload, "primary_image_url": stored.url, "primary_image_key": stored.key}
    return service.create_entry(s, user, payload)


@bp.get("/dashboard/entries")
@require_login
def entries_list():
    s = db_session()
    u = current_user()
    entries = queries.get_entries_for_user(s, u.id)
    return render_template("entries/list.html", entries=entries, viewer=u)


@bp.post("/dashboard/entries")
@require_login
def create_entry_post():
    s = db_session()
    result = perform(
        s,
        _create_entry_from_form,
        s,
        current_user(),
        request.form.to_dict(),
        request.files.get("primary_image"),
    )
    flash(result.message, result.flash_category)
    if result.ok:
        return redirect(url_for("entries.entry_detail", entry_id=result.data["entry_id"]))
    return redirect(url_for("entries.entries_list"))


@bp.get("/dashboard/entries/<int:entry_id>")
@require_login
def entry_detail(entry_id: int):
    s = db_session()
    u = current_user()
    detail = queries.get_entry_detail(s, entry_id)
    # Entries are private to their owner.
    if detail is None or detail.owner.id != u.id:
        abort(404)
    return render_template(
        "entries/detail.html",
        entry=detail,
        gallery_full=len(detail.uploads) >= MAX_GALLERY_IMAGES,
        max_images=MAX_GALLERY_IMAGES,
    )
