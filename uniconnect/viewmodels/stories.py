"""Stories view-model: unexpired stories with author profiles, likes and per-user rings."""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Any

from ..backend.realtime import ChangeEvent
from ..backend.storage import POST_MEDIA_BUCKET
from ..database import utcnow
from ..errors import NotFoundError, UploadFailedError, ValidationError
from ..schemas.profiles import ProfileRead
from ..schemas.stories import StoryRead
from ..services.uploads import MediaFile, media_type_for, owner_media_path, validate_media
from .base import ViewModel

logger = logging.getLogger(__name__)


class StoriesViewModel(ViewModel):
    tables = ("stories", "story_likes")

    def __init__(self, context, **kwargs) -> None:
        super().__init__(context, **kwargs)
        self._story_rows: list[dict[str, Any]] = []
        self._profiles: dict[uuid.UUID, ProfileRead] = {}
        self._likes: dict[uuid.UUID, set[uuid.UUID]] = {}
        self._stories: list[StoryRead] = []

    @property
    def stories(self) -> list[StoryRead]:
        """Stories still live at the time of reading; ``expires_at`` must be strictly in the future."""

        now = utcnow()
        return [story for story in self._stories if story.expires_at > now]

    @property
    def stories_by_user(self) -> dict[uuid.UUID, list[StoryRead]]:
        rings: dict[uuid.UUID, list[StoryRead]] = {}
        for story in self.stories:
            rings.setdefault(story.user_id, []).append(story)
        return rings

    async def load(self) -> None:
        store = self.store
        rows = (
            await store.table("stories").select("*").gt("expires_at", utcnow()).order("created_at", desc=True).execute()
        ).unwrap()
        story_ids = [row["id"] for row in rows]
        profiles, likes = await asyncio.gather(
            store.table("profiles").select("*").in_("user_id", list({row["user_id"] for row in rows})).execute(),
            store.table("story_likes").select("*").in_("story_id", story_ids).execute(),
        )
        self._story_rows = rows
        self._profiles = {row["user_id"]: ProfileRead.model_validate(row) for row in profiles.unwrap()}
        self._likes = {}
        for row in likes.unwrap():
            self._likes.setdefault(row["story_id"], set()).add(row["user_id"])
        self._rebuild()

    def _rebuild(self) -> None:
        viewer = self.user_id
        self._stories = [
            StoryRead.model_validate(
                {
                    **row,
                    "profile": self._profiles.get(row["user_id"]),
                    "likes_count": len(self._likes.get(row["id"], ())),
                    "is_liked": viewer is not None and viewer in self._likes.get(row["id"], ()),
                }
            )
            for row in self._story_rows
        ]

    def apply_change(self, event: ChangeEvent) -> bool:
        record = event.record
        if event.table == "story_likes" and event.event_type in {"INSERT", "DELETE"}:
            likers = self._likes.setdefault(record["story_id"], set())
            if event.event_type == "INSERT":
                likers.add(record["user_id"])
            else:
                likers.discard(record["user_id"])
        elif event.table == "stories" and event.event_type == "DELETE":
            self._story_rows = [row for row in self._story_rows if row["id"] != record["id"]]
            self._likes.pop(record["id"], None)
        else:
            return False
        self._rebuild()
        return True

    async def create_story(self, content: str | None = None, file: MediaFile | None = None) -> dict[str, Any]:
        user_id = self.context.require_user()
        text = (content or "").strip() or None
        if text is None and file is None:
            raise ValidationError("A story needs text or media")
        if file is not None:
            validate_media(file, max_bytes=self.context.settings.max_story_media_bytes)

        media_url = media_type = None
        if file is not None:
            path = owner_media_path(user_id, file)
            result = await self.context.objects.upload(POST_MEDIA_BUCKET, path, file.data, file.content_type)
            if result.ok:
                media_url = self.context.objects.get_public_url(POST_MEDIA_BUCKET, path)
                media_type = media_type_for(file)
            elif text is None:
                raise UploadFailedError(result.error or "Story upload failed")
            else:
                logger.warning("Posting story without media after failed upload: %s", result.error)

        expires_at = utcnow() + timedelta(hours=self.context.settings.story_ttl_hours)
        return (
            await self.store.table("stories")
            .insert(
                {
                    "user_id": user_id,
                    "content": text,
                    "media_url": media_url,
                    "media_type": media_type,
                    "expires_at": expires_at,
                }
            )
            .single()
            .execute()
        ).unwrap()

    async def like_story(self, story_id: uuid.UUID) -> bool:
        user_id = self.context.require_user()
        if all(row["id"] != story_id for row in self._story_rows):
            raise NotFoundError(f"Story {story_id} not found")
        likers = self._likes.setdefault(story_id, set())
        liked = user_id in likers

        def toggle(add: bool) -> None:
            if add:
                likers.add(user_id)
            else:
                likers.discard(user_id)
            self._rebuild()

        async def write() -> None:
            table = self.store.table("story_likes")
            if liked:
                query = table.delete().eq("story_id", story_id).eq("user_id", user_id)
            else:
                query = table.insert({"story_id": story_id, "user_id": user_id})
            (await query.execute()).unwrap()

        await self.optimistic(lambda: toggle(not liked), lambda: toggle(liked), write)
        return not liked

    async def delete_story(self, story_id: uuid.UUID) -> None:
        deleted = (await self.store.table("stories").delete().eq("id", story_id).execute()).unwrap()
        if not deleted:
            raise NotFoundError(f"Story {story_id} not found")


__all__ = ["StoriesViewModel"]
