"""Confessions view-model: the approved wall plus the admin review queue."""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from ..errors import NotFoundError, ValidationError
from ..schemas.moderation import ConfessionRead
from .audit_logs import record_audit
from .base import ViewModel

logger = logging.getLogger(__name__)

MAX_CONFESSION_LENGTH = 1000


class ConfessionsViewModel(ViewModel):
    tables = ("confessions",)

    def __init__(self, context, **kwargs) -> None:
        super().__init__(context, **kwargs)
        self.confessions: list[ConfessionRead] = []
        self.pending_confessions: list[ConfessionRead] = []

    def _read(self, row: dict[str, Any]) -> ConfessionRead:
        confession = ConfessionRead.model_validate(row)
        if not self.context.is_moderator:
            confession.user_id = None
        return confession

    async def load(self) -> None:
        store = self.store
        approved = store.table("confessions").select("*").eq("status", "approved").order("created_at", desc=True)
        if self.context.is_admin:
            pending = store.table("confessions").select("*").eq("status", "pending").order("created_at", desc=True)
            approved_rows, pending_rows = await asyncio.gather(approved.execute(), pending.execute())
            self.pending_confessions = [self._read(row) for row in pending_rows.unwrap()]
        else:
            approved_rows = await approved.execute()
            self.pending_confessions = []
        self.confessions = [self._read(row) for row in approved_rows.unwrap()]

    async def submit_confession(self, content: str) -> dict[str, Any]:
        user_id = self.context.require_user()
        text = (content or "").strip()
        if not text:
            raise ValidationError("Confession cannot be empty")
        if len(text) > MAX_CONFESSION_LENGTH:
            raise ValidationError(f"Confession must be at most {MAX_CONFESSION_LENGTH} characters")
        return (
            await self.store.table("confessions").insert({"user_id": user_id, "content": text}).single().execute()
        ).unwrap()

    async def _review(self, confession_id: uuid.UUID, status: str, action: str) -> None:
        admin_id = self.context.require_user()
        updated = (
            await self.store.table("confessions").update({"status": status}).eq("id", confession_id).execute()
        ).unwrap()
        if not updated:
            raise NotFoundError(f"Confession {confession_id} not found")
        await record_audit(
            self.store,
            admin_id=admin_id,
            action=action,
            target_id=confession_id,
            target_type="confession",
        )

    async def approve_confession(self, confession_id: uuid.UUID) -> None:
        await self._review(confession_id, "approved", "approve_confession")

    async def reject_confession(self, confession_id: uuid.UUID) -> None:
        await self._review(confession_id, "rejected", "reject_confession")


__all__ = ["ConfessionsViewModel", "MAX_CONFESSION_LENGTH"]
