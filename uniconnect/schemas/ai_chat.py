"""Pydantic schemas for the AI chat gateway and client session."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ChatRole = Literal["user", "assistant", "system"]
AssistantMode = Literal["admin", "student"]
ChatErrorKind = Literal["rate_limited", "quota_exhausted", "failed"]


class ChatTurn(BaseModel):
    role: ChatRole
    content: str


class AIChatRequest(BaseModel):
    """Body accepted by ``POST /functions/v1/ai-chat``."""

    messages: list[ChatTurn] = Field(..., min_length=1)
    role: AssistantMode = "student"


class ChatMessage(BaseModel):
    """A bubble in the client-side chat transcript."""

    id: str
    role: ChatRole
    content: str = ""
    error: ChatErrorKind | None = None


__all__ = [
    "ChatRole",
    "AssistantMode",
    "ChatErrorKind",
    "ChatTurn",
    "AIChatRequest",
    "ChatMessage",
]
