"""Pydantic schemas for notifications."""
from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel


class NotificationType(StrEnum):
    LIKE = "like"
    COMMENT = "comment"
    FOLLOW = "follow"
    MENTION = "mention"
    BROADCAST = "broadcast"
    VERIFICATION = "verification"


class NotificationRead(BaseModel):
    id: UUID
    user_id: UUID
    type: NotificationType
    title: str
    message: str
    is_read: bool = False
    related_id: UUID | None = None
    created_at: datetime


__all__ = ["NotificationType", "NotificationRead"]
