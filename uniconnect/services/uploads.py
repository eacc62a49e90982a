"""Client-side validation and object paths for uploaded media."""
from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Literal

from ..errors import UploadValidationError

AVATAR_CONTENT_TYPES: Final[frozenset[str]] = frozenset({"image/jpeg", "image/png", "image/webp"})
MEDIA_CONTENT_PREFIXES: Final[tuple[str, ...]] = ("image/", "video/")

_EXTENSION_PATTERN = re.compile(r"^[a-z0-9]{1,10}$")
_CONTENT_TYPE_EXTENSIONS: Final[dict[str, str]] = {
    "image/jpeg": "jpg",
    "image/svg+xml": "svg",
    "video/quicktime": "mov",
}


@dataclass(frozen=True)
class MediaFile:
    """An in-memory file selected for upload."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        suffix = Path(self.filename or "").suffix.lstrip(".").lower()
        if _EXTENSION_PATTERN.match(suffix):
            return suffix
        content_type = (self.content_type or "").lower()
        if content_type in _CONTENT_TYPE_EXTENSIONS:
            return _CONTENT_TYPE_EXTENSIONS[content_type]
        subtype = re.sub(r"[^a-z0-9]", "", content_type.partition("/")[2])
        return subtype[:10] or "bin"


def media_type_for(file: MediaFile) -> Literal["image", "video"]:
    return "video" if (file.content_type or "").lower().startswith("video/") else "image"


def _check_size(file: MediaFile, max_bytes: int) -> None:
    if file.size == 0:
        raise UploadValidationError(f"{file.filename or 'File'} is empty")
    if file.size > max_bytes:
        limit_mb = max_bytes / (1024 * 1024)
        raise UploadValidationError(f"{file.filename or 'File'} is larger than {limit_mb:g}MB")


def validate_media(file: MediaFile, *, max_bytes: int) -> None:
    """Accept images and videos up to ``max_bytes``."""

    if not (file.content_type or "").lower().startswith(MEDIA_CONTENT_PREFIXES):
        raise UploadValidationError("Only image and video files are allowed")
    _check_size(file, max_bytes)


def validate_avatar(file: MediaFile, *, max_bytes: int) -> None:
    if (file.content_type or "").lower() not in AVATAR_CONTENT_TYPES:
        raise UploadValidationError("Avatar must be a JPEG, PNG or WebP image")
    _check_size(file, max_bytes)


_timestamp_lock = threading.Lock()
_last_timestamp = 0


def upload_timestamp() -> int:
    """Milliseconds since the epoch, strictly increasing within this process."""

    global _last_timestamp
    with _timestamp_lock:
        now = int(time.time() * 1000)
        _last_timestamp = now if now > _last_timestamp else _last_timestamp + 1
        return _last_timestamp


def post_media_path(owner_id: object, post_id: object, file: MediaFile) -> str:
    return f"{owner_id}/{post_id}/{upload_timestamp()}.{file.extension}"


def owner_media_path(owner_id: object, file: MediaFile) -> str:
    return f"{owner_id}/{upload_timestamp()}.{file.extension}"


__all__ = [
    "AVATAR_CONTENT_TYPES",
    "MediaFile",
    "media_type_for",
    "owner_media_path",
    "post_media_path",
    "upload_timestamp",
    "validate_avatar",
    "validate_media",
]
