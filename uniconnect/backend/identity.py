"""Session/identity provider: sign-up, sign-in, sign-out and auth state notifications."""
from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Literal, Mapping

from jose import JWTError, jwt
from passlib.context import CryptContext

from ..config import Settings
from ..errors import AccountSuspendedError, AuthenticationError
from .store import Store

logger = logging.getLogger(__name__)

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

AuthEvent = Literal["SIGNED_IN", "SIGNED_OUT"]
AuthListener = Callable[[AuthEvent, "AuthSession | None"], Awaitable[None] | None]

DUPLICATE_ACCOUNT_MESSAGE = "Username or email already exists"
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    user_id: uuid.UUID
    email: str
    expires_at: datetime

    @property
    def expired(self) -> bool:
        return self.expires_at <= datetime.now(timezone.utc)


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed_password)
    except ValueError:
        return False


class IdentityProvider:
    """Holds one client's session against the shared store."""

    def __init__(self, store: Store, settings: Settings) -> None:
        self._store = store.service()
        self._settings = settings
        self._session: AuthSession | None = None
        self._listeners: list[AuthListener] = []

    def _issue(self, user_id: uuid.UUID, email: str) -> AuthSession:
        issued_at = datetime.now(timezone.utc)
        expires_at = issued_at + timedelta(minutes=self._settings.jwt_expires_minutes)
        payload = {"sub": str(user_id), "email": email, "iat": issued_at, "exp": expires_at}
        token = jwt.encode(payload, self._settings.require_jwt_secret(), algorithm=self._settings.jwt_algorithm)
        return AuthSession(access_token=token, user_id=user_id, email=email, expires_at=expires_at)

    async def _emit(self, event: AuthEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event, self._session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Auth state listener failed for %s", event)

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def get_session(self) -> AuthSession | None:
        if self._session is not None and self._session.expired:
            self._session = None
        return self._session

    async def sign_up(self, email: str, password: str, metadata: Mapping[str, Any]) -> AuthSession:
        email = (email or "").strip().lower()
        username = str(metadata.get("username") or "").strip()
        name = str(metadata.get("name") or username).strip()
        if not email or "@" not in email:
            raise AuthenticationError("A valid email address is required")
        if len(password or "") < self._settings.min_password_length:
            raise AuthenticationError(
                f"Password must be at least {self._settings.min_password_length} characters"
            )
        if not username:
            raise AuthenticationError("Username is required")

        existing_user = await self._store.table("auth_users").select("id").eq("email", email).execute()
        existing_profile = await self._store.table("profiles").select("id").eq("username", username).execute()
        if existing_user.unwrap() or existing_profile.unwrap():
            raise AuthenticationError(DUPLICATE_ACCOUNT_MESSAGE)

        hashed = await asyncio.to_thread(hash_password, password)
        created = await self._store.table("auth_users").insert({"email": email, "hashed_password": hashed}).single().execute()
        if created.error is not None:
            if created.error.code == "23505":
                raise AuthenticationError(DUPLICATE_ACCOUNT_MESSAGE)
            created.unwrap()
        user_id = created.data["id"]

        profile = await self._store.table("profiles").insert(
            {
                "user_id": user_id,
                "username": username,
                "name": name,
                "university": metadata.get("university"),
                "course": metadata.get("course"),
                "year_of_study": metadata.get("year_of_study"),
            }
        ).execute()
        if profile.error is not None:
            await self._store.table("auth_users").delete().eq("id", user_id).execute()
            if profile.error.code == "23505":
                raise AuthenticationError(DUPLICATE_ACCOUNT_MESSAGE)
            profile.unwrap()
        (await self._store.table("user_roles").insert({"user_id": user_id, "role": "student"}).execute()).unwrap()

        logger.info("Registered user %s (%s)", username, user_id)
        return await self.sign_in(email, password)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        email = (email or "").strip().lower()
        response = await self._store.table("auth_users").select("*").eq("email", email).maybe_single().execute()
        user = response.unwrap()
        if user is None or not await asyncio.to_thread(verify_password, password or "", user["hashed_password"]):
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)

        profile = (
            await self._store.table("profiles").select("is_suspended").eq("user_id", user["id"]).maybe_single().execute()
        ).unwrap()
        if profile is not None and profile["is_suspended"]:
            logger.info("Refused sign-in for suspended user %s", user["id"])
            raise AccountSuspendedError()

        (await self._store.table("profiles").update({"is_online": True}).eq("user_id", user["id"]).execute()).unwrap()
        (
            await self._store.table("auth_users")
            .update({"last_sign_in_at": datetime.now(timezone.utc)})
            .eq("id", user["id"])
            .execute()
        ).unwrap()

        self._session = self._issue(user["id"], user["email"])
        logger.info("User %s signed in", user["id"])
        await self._emit("SIGNED_IN")
        return self._session

    async def restore_session(self, token: str) -> AuthSession:
        try:
            payload = jwt.decode(token, self._settings.require_jwt_secret(), algorithms=[self._settings.jwt_algorithm])
            user_id = uuid.UUID(str(payload.get("sub")))
        except (JWTError, ValueError) as exc:
            raise AuthenticationError("Session is invalid or expired") from exc

        user = (await self._store.table("auth_users").select("id, email").eq("id", user_id).maybe_single().execute()).unwrap()
        if user is None:
            raise AuthenticationError("Session is invalid or expired")
        profile = (
            await self._store.table("profiles").select("is_suspended").eq("user_id", user_id).maybe_single().execute()
        ).unwrap()
        if profile is not None and profile["is_suspended"]:
            raise AccountSuspendedError()

        expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        self._session = AuthSession(access_token=token, user_id=user_id, email=user["email"], expires_at=expires_at)
        await self._emit("SIGNED_IN")
        return self._session

    async def sign_out(self) -> None:
        session = self._session
        if session is None:
            return
        response = await self._store.table("profiles").update({"is_online": False}).eq("user_id", session.user_id).execute()
        if response.error is not None:
            logger.warning("Could not mark user %s offline: %s", session.user_id, response.error.message)
        self._session = None
        logger.info("User %s signed out", session.user_id)
        await self._emit("SIGNED_OUT")


__all__ = [
    "AuthEvent",
    "AuthSession",
    "IdentityProvider",
    "hash_password",
    "verify_password",
    "DUPLICATE_ACCOUNT_MESSAGE",
]
