"""Pydantic read models assembled by the posts view-model."""
from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from .profiles import ProfileRead

Visibility = Literal["public", "course_only", "friends"]
MediaType = Literal["image", "video"]


class PostMediaRead(BaseModel):
    id: UUID
    post_id: UUID
    media_url: str
    media_type: MediaType


class CommentRead(BaseModel):
    id: UUID
    post_id: UUID
    user_id: UUID
    content: str
    created_at: datetime
    profile: ProfileRead | None = None


class PostRead(BaseModel):
    """A post joined with its author, media, likes and comments."""

    id: UUID
    user_id: UUID
    content: str
    hashtags: list[str] = Field(default_factory=list)
    visibility: Visibility = "public"
    created_at: datetime
    profile: ProfileRead | None = None
    media: list[PostMediaRead] = Field(default_factory=list)
    likes_count: int = 0
    is_liked: bool = False
    comments_count: int = 0
    comments: list[CommentRead] = Field(default_factory=list)


__all__ = ["Visibility", "MediaType", "PostMediaRead", "CommentRead", "PostRead"]
