"""SQLAlchemy ORM models for identities, profiles and roles."""
from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.sql import expression, func

from uniconnect.database import Base, utcnow


class AuthUser(Base):
    """Credential record owned by the identity provider."""

    __tablename__ = "auth_users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    last_sign_in_at = Column(DateTime(timezone=True), nullable=True)


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("auth_users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)
    username = Column(String(150), unique=True, nullable=False, index=True)
    name = Column(String(150), nullable=False)
    bio = Column(String(500), nullable=True)
    avatar_url = Column(String(1024), nullable=True)
    university = Column(String(255), nullable=True)
    course = Column(String(255), nullable=True)
    year_of_study = Column(Integer, nullable=True)
    is_suspended = Column(Boolean, nullable=False, server_default=expression.false(), default=False)
    is_online = Column(Boolean, nullable=False, server_default=expression.false(), default=False)
    is_verified = Column(Boolean, nullable=False, server_default=expression.false(), default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)


class UserRole(Base):
    __tablename__ = "user_roles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("auth_users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(32), nullable=False, server_default="student", default="student")

    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)


__all__ = ["AuthUser", "Profile", "UserRole"]
