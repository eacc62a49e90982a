"""SQLAlchemy ORM models for ephemeral stories."""
from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from uniconnect.database import Base, utcnow


class Story(Base):
    __tablename__ = "stories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("auth_users.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=True)
    media_url = Column(String(2048), nullable=True)
    media_type = Column(String(16), nullable=True, server_default="image", default="image")
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)


class StoryLike(Base):
    __tablename__ = "story_likes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    story_id = Column(Uuid, ForeignKey("stories.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("auth_users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (UniqueConstraint("story_id", "user_id", name="uq_story_likes_story_user"),)


__all__ = ["Story", "StoryLike"]
