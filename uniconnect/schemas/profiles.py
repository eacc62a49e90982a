"""Pydantic read models for profiles."""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ProfileRead(BaseModel):
    """Public profile as joined into every read model."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    username: str
    name: str
    bio: str | None = None
    avatar_url: str | None = None
    university: str | None = None
    course: str | None = None
    year_of_study: int | None = None
    is_suspended: bool = False
    is_online: bool = False
    is_verified: bool = False
    created_at: datetime


class ProfileUpdate(BaseModel):
    """Fields a user may change on their own profile."""

    name: str | None = Field(default=None, min_length=1, max_length=150)
    bio: str | None = Field(default=None, max_length=500)
    university: str | None = Field(default=None, max_length=255)
    course: str | None = Field(default=None, max_length=255)
    year_of_study: int | None = Field(default=None, ge=1, le=10)


__all__ = ["ProfileRead", "ProfileUpdate"]
