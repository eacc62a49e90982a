"""Profile editing, avatar uploads and upload validation helpers."""
from __future__ import annotations

import pytest

from uniconnect.errors import UploadFailedError, UploadValidationError, ValidationError
from uniconnect.services.uploads import (
    MediaFile,
    owner_media_path,
    post_media_path,
    upload_timestamp,
    validate_avatar,
    validate_media,
)


def test_media_validation_limits_type_and_size():
    validate_media(MediaFile("a.png", "image/png", b"x"), max_bytes=10)
    validate_media(MediaFile("a.mp4", "video/mp4", b"x"), max_bytes=10)

    with pytest.raises(UploadValidationError):
        validate_media(MediaFile("a.pdf", "application/pdf", b"x"), max_bytes=10)
    with pytest.raises(UploadValidationError, match="larger than"):
        validate_media(MediaFile("a.png", "image/png", b"x" * 11), max_bytes=10)
    with pytest.raises(UploadValidationError, match="empty"):
        validate_media(MediaFile("a.png", "image/png", b""), max_bytes=10)


def test_avatar_accepts_only_common_image_types():
    validate_avatar(MediaFile("me.webp", "image/webp", b"x"), max_bytes=10)

    with pytest.raises(UploadValidationError):
        validate_avatar(MediaFile("me.gif", "image/gif", b"x"), max_bytes=10)


def test_object_paths_are_unique_and_keep_the_extension():
    file = MediaFile("Holiday Photo.JPEG", "image/jpeg", b"x")

    first, second = owner_media_path("u1", file), owner_media_path("u1", file)

    assert first != second
    assert first.startswith("u1/") and first.endswith(".jpeg")
    assert post_media_path("u1", "p1", MediaFile("noext", "image/jpeg", b"x")).endswith(".jpg")
    assert upload_timestamp() < upload_timestamp()


async def test_update_profile_validates_fields(sign_up):
    ada = await sign_up("ada")

    profile = await ada.update_profile(bio="Analytical engines", year_of_study=3)

    assert profile.bio == "Analytical engines"
    assert ada.profile.year_of_study == 3
    with pytest.raises(ValidationError):
        await ada.update_profile(year_of_study=42)
    with pytest.raises(ValidationError):
        await ada.update_profile(is_verified=True)


async def test_upload_avatar_stores_file_and_updates_profile(sign_up, objects):
    ada = await sign_up("ada")

    url = await ada.upload_avatar(MediaFile("me.png", "image/png", b"\x89PNG"))

    assert url.startswith(f"https://cdn.test/avatars/{ada.user_id}/")
    assert ada.profile.avatar_url == url
    assert len(objects.objects) == 1


async def test_failed_avatar_upload_leaves_profile_untouched(sign_up, objects):
    ada = await sign_up("ada")
    objects.fail = True

    with pytest.raises(UploadFailedError):
        await ada.upload_avatar(MediaFile("me.png", "image/png", b"\x89PNG"))
    assert ada.profile.avatar_url is None
