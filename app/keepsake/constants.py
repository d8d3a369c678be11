"""
Central constants for the Keepsake application.
"""
from __future__ import annotations

# Invitations
INVITATION_TTL_DAYS = 7

# Entry images
MAX_IMAGE_BYTES = 4 * 1024 * 1024  # 4MB, profile and gallery alike
MAX_GALLERY_IMAGES = 8
ALLOWED_IMAGE_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "gif", "webp", "avif"})

# Free-text limits
SUMMARY_MAX_LENGTH = 240
TITLE_MIN_LENGTH = 3

# Slugs
SLUG_MAX_ATTEMPTS = 5
