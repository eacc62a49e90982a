"""Audit log view-model and the helper every admin action records through."""
from __future__ import annotations

import logging
import uuid
from typing import Any

from ..backend.realtime import ChangeEvent
from ..backend.store import Store
from ..schemas.moderation import AuditLogRead
from .base import ViewModel

logger = logging.getLogger(__name__)


async def record_audit(
    store: Store,
    *,
    admin_id: uuid.UUID,
    action: str,
    target_id: uuid.UUID | str | None = None,
    target_type: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    row = {
        "action": action,
        "admin_id": admin_id,
        "target_id": target_id,
        "target_type": target_type,
        "details": details,
    }
    created = (await store.table("audit_logs").insert(row).single().execute()).unwrap()
    logger.info("Admin %s performed %s on %s %s", admin_id, action, target_type or "-", target_id or "-")
    return created


class AuditLogsViewModel(ViewModel):
    tables = ("audit_logs",)

    def __init__(self, context, **kwargs) -> None:
        super().__init__(context, **kwargs)
        self.logs: list[AuditLogRead] = []

    async def load(self) -> None:
        rows = (
            await self.store.table("audit_logs")
            .select("*")
            .order("created_at", desc=True)
            .limit(self.context.settings.audit_log_limit)
            .execute()
        ).unwrap()
        self.logs = [AuditLogRead.model_validate(row) for row in rows]

    def subscribe(self) -> None:
        self.track(self.channel().on("INSERT", "audit_logs", self.handle_change).subscribe())

    def apply_change(self, event: ChangeEvent) -> bool:
        if not self.context.is_admin:
            return False
        if event.event_type != "INSERT" or event.new is None:
            return False
        entry = AuditLogRead.model_validate(event.new)
        if all(existing.id != entry.id for existing in self.logs):
            self.logs = [entry, *self.logs][: self.context.settings.audit_log_limit]
        return True


__all__ = ["AuditLogsViewModel", "record_audit"]
