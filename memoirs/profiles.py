"""
Profile setup, avatar upload and family member verification.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import replace
from typing import Iterable, Optional

from memoirs.context import ViewerContext
from memoirs.db import DbClient, ProfileRecord
from memoirs.errors import NotFound, PermissionDenied, ValidationFailed
from memoirs.storage import StorageClient
from memoirs.stories import MediaUpload
from memoirs.visibility import Relationship

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def save_profile(
    db: DbClient,
    viewer: ViewerContext,
    *,
    display_name: str,
    email: str,
    relationship: str,
    bio: Optional[str] = None,
    avatar_url: Optional[str] = None,
    founder_user_ids: Iterable[str] = (),
) -> ProfileRecord:
    """Create or update the viewer's own profile."""
    display_name = (display_name or "").strip()
    email = (email or "").strip()
    if not display_name or not email or not relationship:
        raise ValidationFailed("Please fill in all required fields")
    if not EMAIL_PATTERN.match(email):
        raise ValidationFailed("Please enter a valid email address")
    try:
        relationship = Relationship(relationship).value
    except ValueError:
        raise ValidationFailed(f"Unknown relationship: {relationship}") from None

    is_founder = viewer.user_id in set(founder_user_ids)
    existing = viewer.profile or db.get_profile(viewer.user_id)
    if existing:
        verified = existing.is_verified
        # Verification covers one relationship only.
        if relationship != existing.relationship:
            verified = is_founder
            if existing.is_verified and not verified:
                logger.info("%s changed relationship; verification reset", viewer.user_id)
        profile = replace(
            existing,
            is_verified=verified,
            display_name=display_name,
            email=email,
            relationship=relationship,
            bio=bio if bio is not None else existing.bio,
            avatar_url=avatar_url if avatar_url is not None else existing.avatar_url,
        )
    else:
        profile = ProfileRecord(
            id=viewer.user_id,
            display_name=display_name,
            email=email,
            relationship=relationship,
            bio=bio,
            avatar_url=avatar_url,
            is_verified=is_founder,
        )
        logger.info("Profile created for %s (verified=%s)", viewer.user_id, profile.is_verified)
    return db.upsert_profile(profile)


def upload_avatar(
    db: DbClient,
    storage: StorageClient,
    viewer: ViewerContext,
    upload: MediaUpload,
    max_bytes: int,
) -> str:
    """Store an avatar image and attach its public URL to the profile, if any."""
    if not (upload.content_type or "").startswith("image/"):
        raise ValidationFailed("Please upload an image file")
    if not upload.data:
        raise ValidationFailed("Image is empty")
    if len(upload.data) > max_bytes:
        raise ValidationFailed(f"Image size should be less than {max_bytes // (1024 * 1024)}MB")
    path = f"avatars/{viewer.user_id}-{uuid.uuid4().hex}.{upload.extension}"
    storage.upload_bytes(path, upload.data, upload.content_type)
    url = storage.public_url(path)
    profile = db.get_profile(viewer.user_id)
    if profile:
        db.upsert_profile(replace(profile, avatar_url=url))
    return url


def verify_member(db: DbClient, viewer: ViewerContext, user_id: str) -> ProfileRecord:
    """A verified family member vouches for another profile."""
    viewer.require_member()
    target = db.get_profile(user_id)
    if target is None:
        raise NotFound("Profile not found")
    if target.id == viewer.user_id:
        raise PermissionDenied("You cannot verify yourself")
    db.set_profile_verified(user_id, True)
    logger.info("%s verified by %s", user_id, viewer.user_id)
    return db.get_profile(user_id)
