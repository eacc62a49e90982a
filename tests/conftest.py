"""Shared fixtures: a throwaway SQLite database, a fresh backend per test and signed-in contexts."""
from __future__ import annotations

import os
from typing import AsyncIterator, Awaitable, Callable, Iterator

import pytest
from sqlalchemy import delete

# Ensure the database URL and JWT secret are available before importing application modules.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///./test_uniconnect.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("MEDIA_ROOT", "./test_media")

from uniconnect.backend import Backend, UploadResult, create_backend  # noqa: E402
from uniconnect.config import get_settings  # noqa: E402
from uniconnect.context import AppContext  # noqa: E402
from uniconnect.database import Base, SessionLocal, engine  # noqa: E402

PASSWORD = "correct-horse"


class FakeObjectStore:
    """In-memory object store that records uploads and can be told to fail."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.fail = False

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> UploadResult:
        if self.fail:
            return UploadResult(error="storage unavailable")
        self.objects[f"{bucket}/{path}"] = data
        return UploadResult(path=path)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"https://cdn.test/{bucket}/{path}"


@pytest.fixture(scope="session", autouse=True)
def _create_schema() -> Iterator[None]:
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_database() -> Iterator[None]:
    with SessionLocal() as session:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(delete(table))
        session.commit()
    yield


@pytest.fixture
def objects() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
async def backend(objects: FakeObjectStore) -> AsyncIterator[Backend]:
    backend = create_backend(get_settings(), objects=objects)
    yield backend
    await backend.bus.wait_idle()
    backend.bus.remove_all_channels()


SignUp = Callable[..., Awaitable[AppContext]]


@pytest.fixture
def sign_up(backend: Backend) -> SignUp:
    """Register a user and return their initialised :class:`AppContext`."""

    async def _sign_up(
        username: str,
        *,
        role: str | None = None,
        name: str | None = None,
        on: Backend | None = None,
    ) -> AppContext:
        target = on or backend
        context = AppContext(target)
        await context.identity.sign_up(
            f"{username}@uni.test",
            PASSWORD,
            {"username": username, "name": name or username.title(), "university": "Strathmore"},
        )
        if role is not None:
            service = target.store.service()
            (await service.table("user_roles").insert({"user_id": context.user_id, "role": role}).execute()).unwrap()
            await context.initialize()
        return context

    return _sign_up
