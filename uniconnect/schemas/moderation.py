"""Pydantic read models for confessions, verification requests, audit logs and admin stats."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel

from .profiles import ProfileRead

ReviewStatus = Literal["pending", "approved", "rejected"]


class ConfessionRead(BaseModel):
    id: UUID
    # Only populated for moderators; confessions are anonymous to everyone else.
    user_id: UUID | None = None
    content: str
    status: ReviewStatus
    created_at: datetime


class VerificationRequestRead(BaseModel):
    id: UUID
    user_id: UUID
    reason: str
    payment_reference: str | None = None
    amount_kshs: int
    status: ReviewStatus
    admin_notes: str | None = None
    created_at: datetime
    reviewed_at: datetime | None = None
    reviewed_by: UUID | None = None
    profile: ProfileRead | None = None


class AuditLogRead(BaseModel):
    id: UUID
    action: str
    admin_id: UUID | None = None
    target_id: UUID | None = None
    target_type: str | None = None
    details: dict[str, Any] | None = None
    created_at: datetime


class AdminStats(BaseModel):
    total_students: int = 0
    online_users: int = 0
    suspended_users: int = 0
    posts_today: int = 0


__all__ = [
    "ReviewStatus",
    "ConfessionRead",
    "VerificationRequestRead",
    "AuditLogRead",
    "AdminStats",
]
