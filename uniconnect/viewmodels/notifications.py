"""Notifications view-model: a bounded, newest-first buffer patched from INSERT events."""
from __future__ import annotations

import logging
import uuid
from typing import Any

from ..backend.realtime import ChangeEvent
from ..backend.store import Store
from ..errors import NotFoundError
from ..schemas.notifications import NotificationRead, NotificationType
from .base import ViewModel

logger = logging.getLogger(__name__)


async def create_notification(
    store: Store,
    *,
    user_id: uuid.UUID | str,
    type: NotificationType | str,
    title: str,
    message: str,
    related_id: uuid.UUID | str | None = None,
) -> dict[str, Any]:
    """Insert one notification for ``user_id``; the single write path used by other view-models."""

    row = {
        "user_id": user_id,
        "type": NotificationType(type).value,
        "title": title,
        "message": message,
        "related_id": related_id,
    }
    created = (await store.table("notifications").insert(row).single().execute()).unwrap()
    logger.debug("Created %s notification %s for %s", row["type"], created["id"], user_id)
    return created


class NotificationsViewModel(ViewModel):
    tables = ("notifications",)

    def __init__(self, context, **kwargs) -> None:
        super().__init__(context, **kwargs)
        self.notifications: list[NotificationRead] = []

    @property
    def buffer_size(self) -> int:
        return self.context.settings.notification_buffer_size

    @property
    def unread_count(self) -> int:
        return sum(1 for notification in self.notifications if not notification.is_read)

    async def load(self) -> None:
        user_id = self.context.require_user()
        rows = (
            await self.store.table("notifications")
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(self.buffer_size)
            .execute()
        ).unwrap()
        self.notifications = [NotificationRead.model_validate(row) for row in rows]

    def subscribe(self) -> None:
        user_id = self.context.require_user()
        channel = self.channel().on("INSERT", "notifications", self.handle_change, filter=f"user_id=eq.{user_id}")
        self.track(channel.subscribe())

    async def handle_change(self, event: ChangeEvent) -> None:
        # Always patched in place, whatever the configured strategy.
        if self.started and self.apply_change(event):
            self._changed()

    def apply_change(self, event: ChangeEvent) -> bool:
        if event.table != "notifications" or event.event_type != "INSERT" or event.new is None:
            return False
        incoming = NotificationRead.model_validate(event.new)
        if any(existing.id == incoming.id for existing in self.notifications):
            return True
        self.notifications = [incoming, *self.notifications][: self.buffer_size]
        return True

    def _replace(self, updated: dict[uuid.UUID, NotificationRead]) -> None:
        self.notifications = [updated.get(item.id, item) for item in self.notifications]

    async def mark_as_read(self, notification_id: uuid.UUID) -> None:
        user_id = self.context.require_user()
        target = next((item for item in self.notifications if item.id == notification_id), None)
        if target is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        if target.is_read:
            return

        async def write() -> None:
            (
                await self.store.table("notifications")
                .update({"is_read": True})
                .eq("id", notification_id)
                .eq("user_id", user_id)
                .execute()
            ).unwrap()

        await self.optimistic(
            lambda: self._replace({target.id: target.model_copy(update={"is_read": True})}),
            lambda: self._replace({target.id: target}),
            write,
        )

    async def mark_all_as_read(self) -> None:
        user_id = self.context.require_user()
        unread = [item for item in self.notifications if not item.is_read]
        if not unread:
            return

        async def write() -> None:
            (
                await self.store.table("notifications")
                .update({"is_read": True})
                .eq("user_id", user_id)
                .eq("is_read", False)
                .execute()
            ).unwrap()

        await self.optimistic(
            lambda: self._replace({item.id: item.model_copy(update={"is_read": True}) for item in unread}),
            lambda: self._replace({item.id: item for item in unread}),
            write,
        )


__all__ = ["NotificationsViewModel", "create_notification"]
