"""Pydantic schema for follower statistics."""
from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel


class FollowStats(BaseModel):
    user_id: UUID
    followers_count: int = 0
    following_count: int = 0


__all__ = ["FollowStats"]
