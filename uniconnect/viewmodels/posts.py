"""Posts view-model: the feed joined with authors, media, likes and comments."""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from typing import Any, Iterable, Sequence

from ..backend.realtime import ChangeEvent
from ..backend.storage import POST_MEDIA_BUCKET
from ..errors import NotFoundError, ValidationError
from ..schemas.notifications import NotificationType
from ..schemas.posts import CommentRead, PostMediaRead, PostRead
from ..schemas.profiles import ProfileRead
from ..services.content import extract_hashtags, normalize_hashtags
from ..services.uploads import MediaFile, media_type_for, post_media_path, validate_media
from .base import ViewModel
from .notifications import create_notification

logger = logging.getLogger(__name__)

VISIBILITIES = ("public", "course_only", "friends")
MAX_COMMENT_LENGTH = 500


class PostsViewModel(ViewModel):
    tables = ("posts", "likes", "comments", "post_media")

    def __init__(self, context, **kwargs) -> None:
        super().__init__(context, **kwargs)
        self.posts: list[PostRead] = []
        self._post_rows: list[dict[str, Any]] = []
        self._profiles: dict[uuid.UUID, ProfileRead] = {}
        self._media: dict[uuid.UUID, list[PostMediaRead]] = {}
        self._likes: dict[uuid.UUID, set[uuid.UUID]] = {}
        self._comments: dict[uuid.UUID, list[dict[str, Any]]] = {}

    async def load(self) -> None:
        store = self.store
        post_rows = (await store.table("posts").select("*").order("created_at", desc=True).execute()).unwrap()
        post_ids = [row["id"] for row in post_rows]
        author_ids = list({row["user_id"] for row in post_rows})

        profiles, media, likes, comments = await asyncio.gather(
            store.table("profiles").select("*").in_("user_id", author_ids).execute(),
            store.table("post_media").select("*").in_("post_id", post_ids).execute(),
            store.table("likes").select("*").in_("post_id", post_ids).execute(),
            store.table("comments").select("*").in_("post_id", post_ids).order("created_at").execute(),
        )
        profile_rows = profiles.unwrap()
        comment_rows = comments.unwrap()

        commenters = {row["user_id"] for row in comment_rows} - {row["user_id"] for row in profile_rows}
        if commenters:
            profile_rows = profile_rows + (
                await store.table("profiles").select("*").in_("user_id", list(commenters)).execute()
            ).unwrap()

        self._post_rows = post_rows
        self._profiles = {row["user_id"]: ProfileRead.model_validate(row) for row in profile_rows}
        grouped_media: dict[uuid.UUID, list[PostMediaRead]] = defaultdict(list)
        for row in media.unwrap():
            grouped_media[row["post_id"]].append(PostMediaRead.model_validate(row))
        self._media = dict(grouped_media)
        self._likes = {}
        for row in likes.unwrap():
            self._likes.setdefault(row["post_id"], set()).add(row["user_id"])
        self._comments = {}
        for row in comment_rows:
            self._comments.setdefault(row["post_id"], []).append(row)
        self._rebuild()

    def _rebuild(self) -> None:
        viewer = self.user_id
        posts: list[PostRead] = []
        for row in self._post_rows:
            likers = self._likes.get(row["id"], set())
            comments = [
                CommentRead.model_validate({**comment, "profile": self._profiles.get(comment["user_id"])})
                for comment in self._comments.get(row["id"], [])
            ]
            posts.append(
                PostRead.model_validate(
                    {
                        **row,
                        "hashtags": row.get("hashtags") or [],
                        "profile": self._profiles.get(row["user_id"]),
                        "media": self._media.get(row["id"], []),
                        "likes_count": len(likers),
                        "is_liked": viewer is not None and viewer in likers,
                        "comments_count": len(comments),
                        "comments": comments,
                    }
                )
            )
        self.posts = posts

    def _find(self, post_id: uuid.UUID) -> dict[str, Any]:
        row = next((row for row in self._post_rows if row["id"] == post_id), None)
        if row is None:
            raise NotFoundError(f"Post {post_id} not found")
        return row

    def get_post(self, post_id: uuid.UUID) -> PostRead:
        self._find(post_id)
        return next(post for post in self.posts if post.id == post_id)

    def apply_change(self, event: ChangeEvent) -> bool:
        record = event.record
        if event.table == "likes" and event.event_type in {"INSERT", "DELETE"}:
            likers = self._likes.setdefault(record["post_id"], set())
            if event.event_type == "INSERT":
                likers.add(record["user_id"])
            else:
                likers.discard(record["user_id"])
        elif event.table == "comments":
            comments = self._comments.setdefault(record["post_id"], [])
            remaining = [comment for comment in comments if comment["id"] != record["id"]]
            if event.event_type != "DELETE":
                if record["user_id"] not in self._profiles:
                    return False
                remaining.append(dict(record))
                remaining.sort(key=lambda comment: comment["created_at"])
            self._comments[record["post_id"]] = remaining
        elif event.table == "posts" and event.event_type == "DELETE":
            self._post_rows = [row for row in self._post_rows if row["id"] != record["id"]]
            for index in (self._likes, self._comments, self._media):
                index.pop(record["id"], None)
        else:
            return False
        self._rebuild()
        return True

    async def create_post(
        self,
        content: str,
        hashtags: Sequence[str] | None = None,
        visibility: str = "public",
        files: Iterable[MediaFile] = (),
    ) -> dict[str, Any]:
        """Insert a post, then upload each file and attach it; failed uploads are skipped."""

        user_id = self.context.require_user()
        files = list(files)
        text = (content or "").strip()
        if not text and not files:
            raise ValidationError("Post content cannot be empty")
        if visibility not in VISIBILITIES:
            raise ValidationError(f"Unknown visibility {visibility!r}")
        for file in files:
            validate_media(file, max_bytes=self.context.settings.max_post_media_bytes)
        tags = normalize_hashtags(list(hashtags)) if hashtags is not None else extract_hashtags(text)

        post = (
            await self.store.table("posts")
            .insert({"user_id": user_id, "content": text, "hashtags": tags, "visibility": visibility})
            .single()
            .execute()
        ).unwrap()

        objects = self.context.objects
        for file in files:
            path = post_media_path(user_id, post["id"], file)
            result = await objects.upload(POST_MEDIA_BUCKET, path, file.data, file.content_type)
            if not result.ok:
                logger.warning("Skipping attachment %s of post %s: %s", file.filename, post["id"], result.error)
                continue
            (
                await self.store.table("post_media")
                .insert(
                    {
                        "post_id": post["id"],
                        "media_url": objects.get_public_url(POST_MEDIA_BUCKET, path),
                        "media_type": media_type_for(file),
                    }
                )
                .execute()
            ).unwrap()
        return post

    async def like_post(self, post_id: uuid.UUID) -> bool:
        """Toggle the viewer's like; returns the new liked state."""

        user_id = self.context.require_user()
        post = self._find(post_id)
        likers = self._likes.setdefault(post_id, set())
        liked = user_id in likers

        def apply() -> None:
            (likers.discard if liked else likers.add)(user_id)
            self._rebuild()

        def revert() -> None:
            (likers.add if liked else likers.discard)(user_id)
            self._rebuild()

        async def write() -> None:
            table = self.store.table("likes")
            if liked:
                query = table.delete().eq("post_id", post_id).eq("user_id", user_id)
            else:
                query = table.insert({"post_id": post_id, "user_id": user_id})
            (await query.execute()).unwrap()

        await self.optimistic(apply, revert, write)
        if not liked and post["user_id"] != user_id:
            await create_notification(
                self.store,
                user_id=post["user_id"],
                type=NotificationType.LIKE,
                title="New like",
                message=f"{self.context.display_name} liked your post",
                related_id=post_id,
            )
        return not liked

    async def comment_on_post(self, post_id: uuid.UUID, content: str) -> dict[str, Any]:
        user_id = self.context.require_user()
        post = self._find(post_id)
        text = (content or "").strip()
        if not text:
            raise ValidationError("Comment cannot be empty")
        if len(text) > MAX_COMMENT_LENGTH:
            raise ValidationError(f"Comment must be at most {MAX_COMMENT_LENGTH} characters")

        comment = (
            await self.store.table("comments")
            .insert({"post_id": post_id, "user_id": user_id, "content": text})
            .single()
            .execute()
        ).unwrap()
        if post["user_id"] != user_id:
            await create_notification(
                self.store,
                user_id=post["user_id"],
                type=NotificationType.COMMENT,
                title="New comment",
                message=f"{self.context.display_name} commented on your post",
                related_id=post_id,
            )
        return comment

    async def delete_post(self, post_id: uuid.UUID) -> None:
        deleted = (await self.store.table("posts").delete().eq("id", post_id).execute()).unwrap()
        if not deleted:
            raise NotFoundError(f"Post {post_id} not found")


__all__ = ["PostsViewModel", "VISIBILITIES"]
