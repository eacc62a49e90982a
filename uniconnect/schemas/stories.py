"""Pydantic read models for stories."""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from .posts import MediaType
from .profiles import ProfileRead


class StoryRead(BaseModel):
    id: UUID
    user_id: UUID
    content: str | None = None
    media_url: str | None = None
    media_type: MediaType | None = None
    created_at: datetime
    expires_at: datetime
    profile: ProfileRead | None = None
    likes_count: int = 0
    is_liked: bool = False


__all__ = ["StoryRead"]
