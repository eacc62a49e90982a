"""Object storage backends for uploaded media: local filesystem and DigitalOcean Spaces."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse

from boto3.session import Session
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from ..config import Settings, is_placeholder

logger = logging.getLogger(__name__)

POST_MEDIA_BUCKET = "post-media"
AVATAR_BUCKET = "avatars"

_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


@dataclass(frozen=True)
class UploadResult:
    """Outcome of one upload: the stored path, or an error message."""

    path: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.path is not None


class StorageConfigurationError(RuntimeError):
    """Raised when the configured storage backend cannot be constructed."""


class ObjectStore(Protocol):
    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> UploadResult:
        ...

    def get_public_url(self, bucket: str, path: str) -> str:
        ...


def _normalize_key(bucket: str, path: str) -> str | None:
    segments = [bucket, *path.replace("\\", "/").split("/")]
    if any(segment in {"", ".", ".."} or not _SEGMENT_PATTERN.match(segment) for segment in segments):
        return None
    return "/".join(segments)


class LocalObjectStore:
    """Stores objects under ``<root>/<bucket>/<path>`` and serves them from ``base_url``."""

    def __init__(self, root: Path, base_url: str) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> UploadResult:
        key = _normalize_key(bucket, path)
        if key is None:
            return UploadResult(error=f"Invalid object path: {bucket}/{path}")
        target = self.root / key

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await run_in_threadpool(_write)
        except OSError as exc:
            logger.exception("Writing %s to local media storage failed", key)
            return UploadResult(error=str(exc))
        return UploadResult(path=path)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/{bucket}/{path.lstrip('/')}"


class SpacesObjectStore:
    """DigitalOcean Spaces backend; logical buckets become key prefixes in one Spaces bucket."""

    def __init__(self, client: BaseClient, bucket: str, public_endpoint: str) -> None:
        self._client = client
        self.bucket = bucket
        self.public_endpoint = public_endpoint.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SpacesObjectStore":
        required = {
            "DO_SPACES_KEY": settings.spaces_key,
            "DO_SPACES_SECRET": settings.spaces_secret,
            "DO_SPACES_REGION": settings.spaces_region,
            "DO_SPACES_NAME": settings.spaces_bucket,
            "DO_SPACES_ENDPOINT": settings.spaces_endpoint,
        }
        missing = [name for name, value in required.items() if is_placeholder(value)]
        if missing:
            raise StorageConfigurationError(
                "Missing required DigitalOcean Spaces configuration: " + ", ".join(sorted(missing))
            )

        region = (settings.spaces_region or "").strip()
        bucket = (settings.spaces_bucket or "").strip()
        public_endpoint = (settings.spaces_endpoint or "").strip().rstrip("/")
        parsed = urlparse(public_endpoint)
        if not parsed.scheme:
            public_endpoint = f"https://{public_endpoint.lstrip(':/')}"
            parsed = urlparse(public_endpoint)
        host = parsed.netloc or parsed.path
        if not host.endswith(".digitaloceanspaces.com"):
            raise StorageConfigurationError("DO_SPACES_ENDPOINT must point to a *.digitaloceanspaces.com hostname.")

        client = Session().client(
            "s3",
            region_name=region,
            endpoint_url=f"https://{region}.digitaloceanspaces.com",
            aws_access_key_id=settings.spaces_key,
            aws_secret_access_key=settings.spaces_secret,
        )
        return cls(client, bucket, parsed.geturl())

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> UploadResult:
        key = _normalize_key(bucket, path)
        if key is None:
            return UploadResult(error=f"Invalid object path: {bucket}/{path}")

        def _put() -> None:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ACL="public-read",
                ContentType=content_type or "application/octet-stream",
            )

        try:
            await run_in_threadpool(_put)
        except (ClientError, BotoCoreError) as exc:  # pragma: no cover - network bound
            logger.exception("Upload to DigitalOcean Spaces failed for %s", key)
            return UploadResult(error=str(exc))
        return UploadResult(path=path)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_endpoint}/{bucket}/{path.lstrip('/')}"


def build_object_store(settings: Settings) -> ObjectStore:
    if settings.storage_backend == "spaces":
        return SpacesObjectStore.from_settings(settings)
    return LocalObjectStore(settings.media_root, settings.media_public_base_url)


__all__ = [
    "AVATAR_BUCKET",
    "POST_MEDIA_BUCKET",
    "LocalObjectStore",
    "ObjectStore",
    "SpacesObjectStore",
    "StorageConfigurationError",
    "UploadResult",
    "build_object_store",
]
