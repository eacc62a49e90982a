"""Explicit application context: the signed-in session, its profile and role.

View-models receive an :class:`AppContext` instead of reading global state.
``initialize`` resolves the session, then loads the profile, then the role;
only after all three does :attr:`AppContext.ready` become true.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from .backend import AVATAR_BUCKET, Backend, IdentityProvider, Store
from .backend.identity import AuthEvent, AuthSession
from .backend.policies import ROLE_PRECEDENCE
from .errors import NotAuthenticatedError, NotReadyError, UploadFailedError, ValidationError
from .schemas.profiles import ProfileRead, ProfileUpdate
from .services.uploads import MediaFile, owner_media_path, validate_avatar

logger = logging.getLogger(__name__)


class AppContext:
    def __init__(self, backend: Backend, *, identity: IdentityProvider | None = None) -> None:
        self.backend = backend
        self.settings = backend.settings
        self.bus = backend.bus
        self.objects = backend.objects
        self.identity = identity or backend.new_identity()
        self.session: AuthSession | None = None
        self.profile: ProfileRead | None = None
        self.role: str | None = None
        self.ready = False
        self._lock = asyncio.Lock()
        self._listeners: list[Callable[[], None]] = []
        self._unsubscribe = self.identity.on_auth_state_change(self._on_auth_state_change)

    async def _on_auth_state_change(self, event: AuthEvent, session: AuthSession | None) -> None:
        logger.debug("Auth state changed: %s", event)
        await self.initialize()

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener()

    async def initialize(self) -> "AppContext":
        async with self._lock:
            self.ready = False
            self.session = self.identity.get_session()
            self.profile = None
            self.role = None
            if self.session is not None:
                store = self.backend.store.as_actor(self.session.user_id)
                await self._load_profile(store)
                roles = (
                    await store.table("user_roles").select("role").eq("user_id", self.session.user_id).execute()
                ).unwrap()
                names = {row["role"] for row in roles}
                self.role = next((role for role in ROLE_PRECEDENCE if role in names), "student")
            self.ready = True
        self._changed()
        return self

    async def _load_profile(self, store: Store) -> None:
        row = (
            await store.table("profiles").select("*").eq("user_id", self.session.user_id).maybe_single().execute()
        ).unwrap()
        self.profile = ProfileRead.model_validate(row) if row else None

    def close(self) -> None:
        self._unsubscribe()

    def _require_ready(self) -> None:
        if not self.ready:
            raise NotReadyError("Application context is not initialised")

    @property
    def user_id(self) -> uuid.UUID | None:
        return self.session.user_id if self.session is not None else None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_moderator(self) -> bool:
        return self.role in {"admin", "moderator"}

    @property
    def store(self) -> Store:
        self._require_ready()
        return self.backend.store.as_actor(self.user_id)

    def require_user(self) -> uuid.UUID:
        self._require_ready()
        if self.user_id is None:
            raise NotAuthenticatedError()
        return self.user_id

    @property
    def display_name(self) -> str:
        return self.profile.name if self.profile is not None else "Someone"

    async def refresh_profile(self) -> ProfileRead | None:
        self.require_user()
        await self._load_profile(self.store)
        self._changed()
        return self.profile

    async def update_profile(self, **fields: Any) -> ProfileRead:
        user_id = self.require_user()
        try:
            update = ProfileUpdate.model_validate(fields)
        except PydanticValidationError as exc:
            raise ValidationError(str(exc)) from exc
        values = update.model_dump(exclude_unset=True)
        unknown = set(fields) - set(ProfileUpdate.model_fields)
        if unknown:
            raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
        if not values:
            return self.profile

        row = (await self.store.table("profiles").update(values).eq("user_id", user_id).single().execute()).unwrap()
        self.profile = ProfileRead.model_validate(row)
        self._changed()
        return self.profile

    async def upload_avatar(self, file: MediaFile) -> str:
        user_id = self.require_user()
        validate_avatar(file, max_bytes=self.settings.max_avatar_bytes)

        path = owner_media_path(user_id, file)
        result = await self.objects.upload(AVATAR_BUCKET, path, file.data, file.content_type)
        if not result.ok:
            raise UploadFailedError(result.error or "Avatar upload failed")
        url = self.objects.get_public_url(AVATAR_BUCKET, path)

        row = (
            await self.store.table("profiles").update({"avatar_url": url}).eq("user_id", user_id).single().execute()
        ).unwrap()
        self.profile = ProfileRead.model_validate(row)
        self._changed()
        return url


__all__ = ["AppContext"]
