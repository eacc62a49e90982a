"""SQLAlchemy ORM models for moderated content: confessions, verification and audit logs."""
from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from uniconnect.database import Base, utcnow


class Confession(Base):
    __tablename__ = "confessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("auth_users.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, server_default="pending", default="pending", index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


class VerificationRequest(Base):
    __tablename__ = "verification_requests"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("auth_users.id", ondelete="CASCADE"), unique=True, nullable=False)
    reason = Column(Text, nullable=False)
    payment_reference = Column(String(120), nullable=True)
    amount_kshs = Column(Integer, nullable=False, server_default="500", default=500)
    status = Column(String(16), nullable=False, server_default="pending", default="pending")
    admin_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by = Column(Uuid, ForeignKey("auth_users.id", ondelete="SET NULL"), nullable=True)


class AuditLog(Base):
    """Append-only record of an admin action."""

    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    action = Column(String(64), nullable=False, index=True)
    admin_id = Column(Uuid, ForeignKey("auth_users.id", ondelete="SET NULL"), nullable=True)
    target_id = Column(Uuid, nullable=True)
    target_type = Column(String(32), nullable=True)
    details = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True)


__all__ = ["Confession", "VerificationRequest", "AuditLog"]
