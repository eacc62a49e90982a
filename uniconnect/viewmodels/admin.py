"""Admin dashboard view-model: user directory, platform counters and moderation actions."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, time, timezone

from ..errors import NotFoundError, ValidationError
from ..schemas.moderation import AdminStats
from ..schemas.notifications import NotificationType
from ..schemas.profiles import ProfileRead
from .audit_logs import record_audit
from .base import ViewModel

logger = logging.getLogger(__name__)


class AdminViewModel(ViewModel):
    tables = ("profiles", "posts")

    def __init__(self, context, **kwargs) -> None:
        super().__init__(context, **kwargs)
        self.profiles: list[ProfileRead] = []
        self.stats = AdminStats()

    async def load(self) -> None:
        store = self.store
        rows = (await store.table("profiles").select("*").order("created_at", desc=True).execute()).unwrap()
        roles = (await store.table("user_roles").select("user_id, role").execute()).unwrap()
        staff = {row["user_id"] for row in roles if row["role"] in {"admin", "moderator"}}

        start_of_day = datetime.combine(datetime.now(timezone.utc).date(), time.min, tzinfo=timezone.utc)
        posts_today = await store.table("posts").select("id", count="exact", head=True).gte("created_at", start_of_day).execute()
        posts_today.unwrap()

        self.profiles = [ProfileRead.model_validate(row) for row in rows]
        self.stats = AdminStats(
            total_students=sum(1 for profile in self.profiles if profile.user_id not in staff),
            online_users=sum(1 for profile in self.profiles if profile.is_online),
            suspended_users=sum(1 for profile in self.profiles if profile.is_suspended),
            posts_today=posts_today.count or 0,
        )

    async def _set_suspended(self, user_id: uuid.UUID, suspended: bool) -> None:
        admin_id = self.context.require_user()
        if user_id == admin_id:
            raise ValidationError("Admins cannot suspend themselves")
        updated = (
            await self.store.table("profiles")
            .update({"is_suspended": suspended, "is_online": False} if suspended else {"is_suspended": False})
            .eq("user_id", user_id)
            .execute()
        ).unwrap()
        if not updated:
            raise NotFoundError(f"User {user_id} not found")
        await record_audit(
            self.store,
            admin_id=admin_id,
            action="suspend_user" if suspended else "unsuspend_user",
            target_id=user_id,
            target_type="user",
        )

    async def suspend_user(self, user_id: uuid.UUID) -> None:
        await self._set_suspended(user_id, True)

    async def unsuspend_user(self, user_id: uuid.UUID) -> None:
        await self._set_suspended(user_id, False)

    async def broadcast(self, title: str, message: str) -> int:
        """Send one ``broadcast`` notification to every profile; returns the number sent."""

        admin_id = self.context.require_user()
        title, message = (title or "").strip(), (message or "").strip()
        if not title or not message:
            raise ValidationError("Broadcast title and message are required")

        store = self.store
        recipients = (await store.table("profiles").select("user_id").execute()).unwrap()
        rows = [
            {"user_id": row["user_id"], "type": NotificationType.BROADCAST.value, "title": title, "message": message}
            for row in recipients
        ]
        if rows:
            (await store.table("notifications").insert(rows).execute()).unwrap()
        await record_audit(
            store,
            admin_id=admin_id,
            action="broadcast",
            target_type="notification",
            details={"title": title, "recipients": len(rows)},
        )
        logger.info("Broadcast %r sent to %d users", title, len(rows))
        return len(rows)


__all__ = ["AdminViewModel"]
