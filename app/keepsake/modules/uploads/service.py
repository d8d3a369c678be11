"""
Image uploads for entries.

The configured Storage backend plays the role of the file host: bytes are
validated and stored here, and the gallery completion callback records the
upload against its entry.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Mapping

from werkzeug.utils import secure_filename

from app.keepsake.actions import ActionResult, Conflict, NotFound, PermissionDenied, ValidationError
from app.keepsake.audit import record_event
from app.keepsake.cache import revalidate_tag
from app.keepsake.constants import ALLOWED_IMAGE_EXTENSIONS, MAX_GALLERY_IMAGES, MAX_IMAGE_BYTES
from app.keepsake.modules.entries.models import UserUpload
from app.keepsake.modules.entries.service import count_uploads_for_entry, get_owned_entry
from app.keepsake.modules.entries.tags import entry_detail_tag, entry_list_tag
from app.keepsake.storage import Storage

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from werkzeug.datastructures import FileStorage
    from app.keepsake.models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredImage:
    key: str
    url: str
    uploaded_by: int

    def as_json(self) -> dict[str, Any]:
        return {"uploadedBy": self.uploaded_by, "url": self.url, "key": self.key}


def read_image(file: "FileStorage | None") -> tuple[bytes, str, str]:
    """
    Validate an uploaded image and return (data, safe filename, content type).
    Raises ValidationError with a user-facing message.
    """
    if file is None or not file.filename:
        raise ValidationError("Choose an image to upload")
    content_type = (file.mimetype or "").lower()
    if not content_type.startswith("image/"):
        raise ValidationError("Only image uploads are allowed")
    filename = secure_filename(file.filename) or "image"
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if ext not in ALLOWED_IMAGE_EXTENSIONS:
        raise ValidationError("Unsupported image type")
    data = file.read(MAX_IMAGE_BYTES + 1)
    if not data:
        raise ValidationError("Uploaded image is empty")
    if len(data) > MAX_IMAGE_BYTES:
        raise ValidationError("Image must be 4MB or smaller")
    return data, filename, content_type


def build_storage_key(prefix: str, user_id: int, filename: str) -> str:
    return f"{prefix}/{user_id}/{uuid.uuid4().hex}-{filename}"


def public_url(config: Mapping[str, Any], key: str) -> str:
    base = (config.get("UPLOAD_PUBLIC_BASE_URL") or "").rstrip("/")
    if base:
        return f"{base}/{key}"
    return f"/uploads/files/{key}"


def store_image(
    storage: Storage,
    config: Mapping[str, Any],
    user: "User",
    file: "FileStorage | None",
    *,
    prefix: str,
) -> StoredImage:
    data, filename, content_type = read_image(file)
    key = build_storage_key(prefix, user.id, filename)
    storage.put_bytes(key, data, content_type=content_type)
    logger.info("Stored image key=%s bytes=%s user_id=%s", key, len(data), user.id)
    return StoredImage(key=key, url=public_url(config, key), uploaded_by=user.id)


def store_profile_image(storage: Storage, config: Mapping[str, Any], user: "User | None", file) -> StoredImage:
    if user is None:
        raise PermissionDenied("Unauthorized")
    return store_image(storage, config, user, file, prefix="entries/profile")


def check_gallery_capacity(s: "Session", user: "User | None", entry_id: int) -> "User":
    """Gate run before any bytes are stored for a gallery upload."""
    if user is None:
        raise PermissionDenied("Unauthorized")
    if get_owned_entry(s, entry_id, user.id) is None:
        raise NotFound("Entry not found")
    if count_uploads_for_entry(s, entry_id) >= MAX_GALLERY_IMAGES:
        raise Conflict("Image limit reached for this entry")
    return user


def on_gallery_upload_complete(s: "Session", user: "User", entry_id: int, stored: StoredImage) -> ActionResult:
    entry = get_owned_entry(s, entry_id, user.id)
    if entry is None:
        raise NotFound("Entry not found")

    now = datetime.utcnow()
    upload = UserUpload(
        user_id=user.id,
        entry_id=entry.id,
        url=stored.url,
        key=stored.key,
        is_primary=False,
        created_at=now,
        updated_at=now,
    )
    s.add(upload)
    entry.updated_at = now
    s.flush()

    record_event(
        s,
        actor=user,
        action="entry.gallery_upload",
        entity_type="Entry",
        entity_id=str(entry.id),
        metadata={"upload_id": upload.id, "key": stored.key},
    )
    s.commit()

    revalidate_tag(entry_detail_tag(entry.id))
    revalidate_tag(entry_list_tag(user.id))
    return ActionResult.success("Image added to the gallery", upload_id=upload.id, url=stored.url, key=stored.key)


def upload_gallery_image(
    s: "Session",
    storage: Storage,
    config: Mapping[str, Any],
    user: "User | None",
    entry_id: int,
    file,
) -> ActionResult:
    owner = check_gallery_capacity(s, user, entry_id)
    stored = store_image(storage, config, owner, file, prefix=f"entries/{entry_id}/gallery")
    return on_gallery_upload_complete(s, owner, entry_id, stored)
