"""Follows view-model: who the viewer follows, who follows them, and stats for other profiles."""
from __future__ import annotations

import asyncio
import logging
import uuid

from ..backend.realtime import ChangeEvent
from ..backend.store import UNIQUE_VIOLATION
from ..errors import ValidationError
from ..schemas.follows import FollowStats
from ..schemas.notifications import NotificationType
from ..schemas.profiles import ProfileRead
from .base import ViewModel
from .notifications import create_notification

logger = logging.getLogger(__name__)


class FollowsViewModel(ViewModel):
    tables = ("follows",)

    def __init__(self, context, **kwargs) -> None:
        super().__init__(context, **kwargs)
        self.following_ids: list[uuid.UUID] = []
        self.follower_ids: list[uuid.UUID] = []
        self._profiles: dict[uuid.UUID, ProfileRead] = {}

    @property
    def following(self) -> list[ProfileRead]:
        return [self._profiles[user_id] for user_id in self.following_ids if user_id in self._profiles]

    @property
    def followers(self) -> list[ProfileRead]:
        return [self._profiles[user_id] for user_id in self.follower_ids if user_id in self._profiles]

    @property
    def following_count(self) -> int:
        return len(self.following_ids)

    @property
    def followers_count(self) -> int:
        return len(self.follower_ids)

    def is_following(self, user_id: uuid.UUID) -> bool:
        return user_id in self.following_ids

    def is_follower(self, user_id: uuid.UUID) -> bool:
        return user_id in self.follower_ids

    async def load(self) -> None:
        user_id = self.context.require_user()
        store = self.store
        following, followers = await asyncio.gather(
            store.table("follows").select("*").eq("follower_id", user_id).order("created_at", desc=True).execute(),
            store.table("follows").select("*").eq("following_id", user_id).order("created_at", desc=True).execute(),
        )
        following_ids = [row["following_id"] for row in following.unwrap()]
        follower_ids = [row["follower_id"] for row in followers.unwrap()]
        related = list(set(following_ids) | set(follower_ids))
        profiles = (await store.table("profiles").select("*").in_("user_id", related).execute()).unwrap()
        self._profiles = {row["user_id"]: ProfileRead.model_validate(row) for row in profiles}
        self.following_ids = following_ids
        self.follower_ids = follower_ids

    def apply_change(self, event: ChangeEvent) -> bool:
        record = event.record
        viewer = self.user_id
        if record.get("follower_id") == viewer:
            target, ids = record["following_id"], self.following_ids
        elif record.get("following_id") == viewer:
            target, ids = record["follower_id"], self.follower_ids
        else:
            # Someone else's relationship; nothing in this read model changes.
            return True
        if event.event_type == "DELETE":
            if target in ids:
                ids.remove(target)
            return True
        if event.event_type != "INSERT" or target not in self._profiles:
            return False
        if target not in ids:
            ids.insert(0, target)
        return True

    async def follow_user(self, user_id: uuid.UUID) -> None:
        viewer = self.context.require_user()
        if user_id == viewer:
            raise ValidationError("You cannot follow yourself")
        if self.is_following(user_id):
            return

        response = await self.store.table("follows").insert({"follower_id": viewer, "following_id": user_id}).execute()
        if response.error is not None and response.error.code == UNIQUE_VIOLATION:
            logger.debug("User %s already follows %s", viewer, user_id)
            return
        response.unwrap()
        await create_notification(
            self.store,
            user_id=user_id,
            type=NotificationType.FOLLOW,
            title=f"{self.context.display_name} started following you",
            message="Check out their profile!",
            related_id=viewer,
        )

    async def unfollow_user(self, user_id: uuid.UUID) -> None:
        viewer = self.context.require_user()
        (
            await self.store.table("follows").delete().eq("follower_id", viewer).eq("following_id", user_id).execute()
        ).unwrap()

    async def fetch_stats(self, user_id: uuid.UUID) -> FollowStats:
        store = self.store
        followers, following = await asyncio.gather(
            store.table("follows").select("id", count="exact", head=True).eq("following_id", user_id).execute(),
            store.table("follows").select("id", count="exact", head=True).eq("follower_id", user_id).execute(),
        )
        followers.unwrap()
        following.unwrap()
        return FollowStats(user_id=user_id, followers_count=followers.count or 0, following_count=following.count or 0)


__all__ = ["FollowsViewModel"]
