from __future__ import annotations

from typing import Any

from flask import Blueprint, abort, current_app, flash, jsonify, redirect, render_template, request, url_for

from app.keepsake.actions import ActionResult, perform
from app.keepsake.auth import current_user, require_login
from app.keepsake.db import db_session
from app.keepsake.modules.documents import queries, service
from app.keepsake.modules.documents.access import resolve_access

bp = Blueprint("documents", __name__)


def _payload() -> dict[str, Any]:
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form.to_dict()


def _respond(result: ActionResult, fallback_url: str):
    """JSON for fetch calls (the workspace content save), flash + redirect for plain forms."""
    if request.is_json:
        if result.ok:
            return jsonify({"success": result.message, **result.data})
        return jsonify({"error": result.message}), 400
    flash(result.message, result.flash_category)
    return redirect(fallback_url)


def _workspace_url(document_id: int) -> str:
    return url_for("documents.workspace", document_id=document_id)


# ---------- Dashboard ----------
@bp.get("/dashboard")
@require_login
def dashboard():
    s = db_session()
    u = current_user()
    documents = queries.get_documents_for_user(s, u.id)
    return render_template("documents/dashboard.html", documents=documents, viewer=u)


@bp.post("/dashboard/documents/new")
@require_login
def create_document_post():
    s = db_session()
    result = perform(s, service.create_document, s, current_user(), _payload())
    if result.ok:
        return _respond(result, _workspace_url(result.data["document_id"]))
    return _respond(result, url_for("documents.dashboard"))


@bp.get("/documents/public")
def public_documents():
    s = db_session()
    documents = queries.get_public_documents(s)
    return render_template("documents/public_list.html", documents=documents)


@bp.get("/d/<slug>")
def read_document(slug: str):
    s = db_session()
    u = current_user()
    document = queries.get_document_by_slug(s, slug)
    if document is None:
        abort(404)
    access = resolve_access(s, document.id, u.id if u else None)
    if access is None:
        abort(404)
    detail = queries.get_document_detail(s, document.id)
    if detail is None:
        abort(404)
    comments = queries.get_document_comments(s, document.id)
    return render_template("documents/read.html", document=detail, comments=comments, access=access)


# ---------- Workspace ----------
@bp.get("/dashboard/documents/<int:document_id>")
@require_login
def workspace(document_id: int):
    s = db_session()
    u = current_user()
    access = resolve_access(s, document_id, u.id)
    if access is None:
        abort(404)
    detail = queries.get_document_detail(s, document_id)
    if detail is None:
        abort(404)
    comments = queries.get_document_comments(s, document_id)
    return render_template(
        "documents/workspace.html",
        document=detail,
        comments=comments,
        access=access,
        invitations=queries.get_document_invitations(s, document_id) if access.is_owner else [],
        viewer=u,
        base_url=current_app.config.get("BASE_URL", ""),
    )


@bp.post("/dashboard/documents/<int:document_id>/content")
@require_login
def update_content_post(document_id: int):
    s = db_session()
    result = perform(s, service.update_document_content, s, current_user(), document_id, _payload())
    return _respond(result, _workspace_url(document_id))


@bp.post("/dashboard/documents/<int:document_id>/metadata")
@require_login
def update_metadata_post(document_id: int):
    s = db_session()
    result = perform(s, service.update_document_metadata, s, current_user(), document_id, _payload())
    return _respond(result, _workspace_url(document_id))


@bp.post("/dashboard/documents/<int:document_id>/visibility")
@require_login
def visibility_post(document_id: int):
    s = db_session()
    result = perform(s, service.set_document_visibility, s, current_user(), document_id, _payload())
    return _respond(result, _workspace_url(document_id))


@bp.post("/dashboard/documents/<int:document_id>/delete")
@require_login
def delete_post(document_id: int):
    s = db_session()
    result = perform(s, service.delete_document, s, current_user(), document_id)
    if result.ok:
        return _respond(result, url_for("documents.dashboard"))
    return _respond(result, _workspace_url(document_id))


# ---------- Collaboration ----------
@bp.post("/dashboard/documents/<int:document_id>/invitations")
@require_login
def invite_post(document_id: int):
    s = db_session()
    result = perform(
        s,
        service.invite_collaborator,
        s,
        current_user(),
        document_id,
        _payload(),
        base_url=current_app.config.get("BASE_URL", ""),
    )
    if result.ok and not request.is_json:
        flash(f"Invitation sent. Share this link: {result.data['invite_url']}", "success")
        return redirect(_workspace_url(document_id))
    return _respond(result, _workspace_url(document_id))


@bp.post("/dashboard/documents/<int:document_id>/invitations/<int:invitation_id>/revoke")
@require_login
def revoke_invitation_post(document_id: int, invitation_id: int):
    s = db_session()
    result = perform(s, service.revoke_invitation, s, current_user(), document_id, invitation_id)
    return _respond(result, _workspace_url(document_id))


@bp.post("/dashboard/documents/<int:document_id>/collaborators/<int:collaborator_id>/remove")
@require_login
def remove_collaborator_post(document_id: int, collaborator_id: int):
    s = db_session()
    result = perform(s, service.remove_collaborator, s, current_user(), document_id, collaborator_id)
    return _respond(result, _workspace_url(document_id))


@bp.get("/invite/<token>")
def invitation_page(token: str):
    s = db_session()
    invitation = queries.get_invitation_by_token(s, token)
    if invitation is None:
        abort(404)
    return render_template("documents/invite.html", invitation=invitation, token=token, viewer=current_user())


@bp.post("/invite/<token>/accept")
@require_login
def accept_invitation_post(token: str):
    s = db_session()
    result = perform(s, service.accept_invitation, s, current_user(), token)
    if result.ok:
        return _respond(result, _workspace_url(result.data["document_id"]))
    return _respond(result, url_for("documents.invitation_page", token=token))


# ---------- Comments ----------
@bp.post("/dashboard/documents/<int:document_id>/comments")
@require_login
def create_comment_post(document_id: int):
    s = db_session()
    result = perform(s, service.create_comment, s, current_user(), document_id, _payload())
    return _respond(result, _workspace_url(document_id))


@bp.post("/dashboard/documents/<int:document_id>/comments/<int:comment_id>/status")
@require_login
def comment_status_post(document_id: int, comment_id: int):
    s = db_session()
    result = perform(s, service.update_comment_status, s, current_user(), document_id, comment_id, _payload())
    return _respond(result, _workspace_url(document_id))


@bp.post("/dashboard/documents/<int:document_id>/comments/<int:comment_id>/suggestion")
@require_login
def suggestion_decision_post(document_id: int, comment_id: int):
    s = db_session()
    result = perform(s, service.respond_to_suggestion, s, current_user(), document_id, comment_id, _payload())
    return _respond(result, _workspace_url(document_id))
