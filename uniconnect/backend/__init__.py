"""Adapters for the hosted backend: relational store, realtime bus, object store and identity."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.orm import Session

from .. import models  # noqa: F401  registers every table on the metadata
from ..config import Settings, get_settings
from ..database import SessionLocal
from .identity import AuthSession, IdentityProvider
from .realtime import ChangeEvent, RealtimeBus, RealtimeChannel
from .storage import AVATAR_BUCKET, POST_MEDIA_BUCKET, ObjectStore, UploadResult, build_object_store
from .store import Store, StoreError, StoreResponse, TableQuery


@dataclass
class Backend:
    """Shared backend services; each client gets its own :class:`IdentityProvider`."""

    store: Store
    bus: RealtimeBus
    objects: ObjectStore
    settings: Settings = field(default_factory=get_settings)

    def new_identity(self) -> IdentityProvider:
        return IdentityProvider(self.store, self.settings)


def create_backend(
    settings: Settings | None = None,
    *,
    bus: RealtimeBus | None = None,
    objects: ObjectStore | None = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> Backend:
    settings = settings or get_settings()
    bus = bus or RealtimeBus()
    return Backend(
        store=Store(bus, session_factory=session_factory),
        bus=bus,
        objects=objects or build_object_store(settings),
        settings=settings,
    )


__all__ = [
    "AVATAR_BUCKET",
    "POST_MEDIA_BUCKET",
    "AuthSession",
    "Backend",
    "ChangeEvent",
    "IdentityProvider",
    "ObjectStore",
    "RealtimeBus",
    "RealtimeChannel",
    "Store",
    "StoreError",
    "StoreResponse",
    "TableQuery",
    "UploadResult",
    "create_backend",
]
