"""Pydantic read models for conversations and messages."""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from .profiles import ProfileRead


class MessageRead(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    content: str
    created_at: datetime
    read_at: datetime | None = None
    sender: ProfileRead | None = None


class ParticipantRead(BaseModel):
    user_id: UUID
    profile: ProfileRead | None = None


class ConversationRead(BaseModel):
    """A conversation with every participant, its latest message and the viewer's unread count."""

    id: UUID
    is_group: bool = False
    group_name: str | None = None
    created_at: datetime
    participants: list[ParticipantRead] = Field(default_factory=list)
    last_message: MessageRead | None = None
    unread_count: int = 0

    @property
    def last_activity(self) -> datetime:
        return self.last_message.created_at if self.last_message else self.created_at


__all__ = ["MessageRead", "ParticipantRead", "ConversationRead"]
