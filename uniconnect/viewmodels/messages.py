"""Messaging view-model: conversation list, open conversation history and find-or-create for DMs."""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Iterable

from ..backend.store import UNIQUE_VIOLATION, error_from
from ..database import utcnow
from ..errors import NotFoundError, ValidationError
from ..schemas.messages import ConversationRead, MessageRead, ParticipantRead
from ..schemas.profiles import ProfileRead
from .base import SequenceGuard, ViewModel

logger = logging.getLogger(__name__)


def direct_key(first: uuid.UUID | str, second: uuid.UUID | str) -> str:
    """Deterministic key of the one-to-one conversation between two users."""

    return ":".join(sorted((str(first), str(second))))


class MessagesViewModel(ViewModel):
    tables = ("messages",)

    def __init__(self, context, **kwargs) -> None:
        super().__init__(context, **kwargs)
        self.conversations: list[ConversationRead] = []
        self.active_conversation_id: uuid.UUID | None = None
        self.messages: list[MessageRead] = []
        self._history_guard = SequenceGuard()

    @property
    def total_unread(self) -> int:
        return sum(conversation.unread_count for conversation in self.conversations)

    def subscribe(self) -> None:
        user_id = self.context.require_user()
        channel = (
            self.channel()
            .on("*", "messages", self.handle_change)
            .on("INSERT", "conversation_participants", self.handle_change, filter=f"user_id=eq.{user_id}")
        )
        self.track(channel.subscribe())

    async def load(self) -> None:
        await self.fetch_conversations()
        if self.active_conversation_id is not None:
            await self.fetch_messages(self.active_conversation_id)

    async def _profiles(self, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, ProfileRead]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        rows = (await self.store.table("profiles").select("*").in_("user_id", ids).execute()).unwrap()
        return {row["user_id"]: ProfileRead.model_validate(row) for row in rows}

    async def fetch_conversations(self) -> list[ConversationRead]:
        user_id = self.context.require_user()
        store = self.store
        memberships = (
            await store.table("conversation_participants").select("conversation_id").eq("user_id", user_id).execute()
        ).unwrap()
        conversation_ids = list(dict.fromkeys(row["conversation_id"] for row in memberships))
        if not conversation_ids:
            self.conversations = []
            return self.conversations

        conversations, participants, messages = await asyncio.gather(
            store.table("conversations").select("*").in_("id", conversation_ids).execute(),
            store.table("conversation_participants").select("*").in_("conversation_id", conversation_ids).execute(),
            store.table("messages")
            .select("*")
            .in_("conversation_id", conversation_ids)
            .order("created_at", desc=True)
            .execute(),
        )
        participant_rows = participants.unwrap()
        message_rows = messages.unwrap()
        profiles = await self._profiles(row["user_id"] for row in participant_rows)

        assembled: list[ConversationRead] = []
        for conversation in conversations.unwrap():
            members = [row for row in participant_rows if row["conversation_id"] == conversation["id"]]
            history = [row for row in message_rows if row["conversation_id"] == conversation["id"]]
            latest = history[0] if history else None
            assembled.append(
                ConversationRead.model_validate(
                    {
                        **conversation,
                        "participants": [
                            ParticipantRead(user_id=row["user_id"], profile=profiles.get(row["user_id"]))
                            for row in members
                        ],
                        "last_message": (
                            MessageRead.model_validate({**latest, "sender": profiles.get(latest["sender_id"])})
                            if latest
                            else None
                        ),
                        "unread_count": sum(
                            1 for row in history if row["sender_id"] != user_id and row["read_at"] is None
                        ),
                    }
                )
            )
        assembled.sort(key=lambda item: item.last_activity, reverse=True)
        self.conversations = assembled
        return self.conversations

    async def fetch_messages(self, conversation_id: uuid.UUID) -> list[MessageRead]:
        """Load one conversation's history oldest-first and mark incoming messages read."""

        user_id = self.context.require_user()
        token = self._history_guard.issue()
        store = self.store
        rows = (
            await store.table("messages").select("*").eq("conversation_id", conversation_id).order("created_at").execute()
        ).unwrap()

        unread_ids = [row["id"] for row in rows if row["sender_id"] != user_id and row["read_at"] is None]
        if unread_ids:
            read_at = utcnow()
            (await store.table("messages").update({"read_at": read_at}).in_("id", unread_ids).execute()).unwrap()
            for row in rows:
                if row["id"] in unread_ids:
                    row["read_at"] = read_at
        profiles = await self._profiles(row["sender_id"] for row in rows)
        history = [MessageRead.model_validate({**row, "sender": profiles.get(row["sender_id"])}) for row in rows]

        if not self._history_guard.is_current(token):
            logger.warning("Discarding stale history load for conversation %s", conversation_id)
            return history
        self.messages = history
        self.conversations = [
            item.model_copy(update={"unread_count": 0}) if item.id == conversation_id else item
            for item in self.conversations
        ]
        self._changed()
        return history

    async def set_active_conversation(self, conversation_id: uuid.UUID | None) -> None:
        self.active_conversation_id = conversation_id
        self.messages = []
        self._changed()
        if conversation_id is not None:
            await self.fetch_messages(conversation_id)
        else:
            self._history_guard.issue()

    async def _ensure_participants(self, conversation_id: uuid.UUID, members: list[uuid.UUID]) -> None:
        rows = [{"conversation_id": conversation_id, "user_id": member} for member in members]
        for _attempt in range(2):
            response = (
                await self.store.table("conversation_participants")
                .upsert(rows, on_conflict="conversation_id,user_id", ignore_duplicates=True)
                .execute()
            )
            if response.error is None or response.error.code != UNIQUE_VIOLATION:
                break
        response.unwrap()

    async def _find_shared_direct(self, user_id: uuid.UUID, other_id: uuid.UUID) -> uuid.UUID | None:
        store = self.store
        mine = (
            await store.table("conversation_participants").select("conversation_id").eq("user_id", user_id).execute()
        ).unwrap()
        my_ids = [row["conversation_id"] for row in mine]
        if not my_ids:
            return None
        shared = (
            await store.table("conversation_participants")
            .select("conversation_id")
            .eq("user_id", other_id)
            .in_("conversation_id", my_ids)
            .execute()
        ).unwrap()
        shared_ids = [row["conversation_id"] for row in shared]
        if not shared_ids:
            return None
        direct = (
            await store.table("conversations")
            .select("id")
            .in_("id", shared_ids)
            .eq("is_group", False)
            .order("created_at")
            .limit(1)
            .execute()
        ).unwrap()
        return direct[0]["id"] if direct else None

    async def start_conversation(self, other_user_id: uuid.UUID) -> uuid.UUID:
        """Return the one-to-one conversation with ``other_user_id``, creating it if needed."""

        user_id = self.context.require_user()
        if other_user_id == user_id:
            raise ValidationError("You cannot start a conversation with yourself")
        store = self.store
        other = (
            await store.table("profiles").select("user_id").eq("user_id", other_user_id).maybe_single().execute()
        ).unwrap()
        if other is None:
            raise NotFoundError(f"User {other_user_id} not found")

        key = direct_key(user_id, other_user_id)
        existing = (await store.table("conversations").select("id").eq("direct_key", key).maybe_single().execute()).unwrap()
        conversation_id = existing["id"] if existing else await self._find_shared_direct(user_id, other_user_id)

        if conversation_id is None:
            created = await store.table("conversations").insert({"is_group": False, "direct_key": key}).single().execute()
            if created.error is None:
                conversation_id = created.data["id"]
                logger.info("Started conversation %s between %s and %s", conversation_id, user_id, other_user_id)
            elif created.error.code == UNIQUE_VIOLATION:
                winner = (
                    await store.table("conversations").select("id").eq("direct_key", key).maybe_single().execute()
                ).unwrap()
                if winner is None:
                    raise error_from(created.error)
                conversation_id = winner["id"]
            else:
                created.unwrap()

        await self._ensure_participants(conversation_id, [user_id, other_user_id])
        return conversation_id

    async def create_group_chat(self, name: str, member_ids: Iterable[uuid.UUID]) -> uuid.UUID:
        user_id = self.context.require_user()
        group_name = (name or "").strip()
        if not group_name:
            raise ValidationError("Group name is required")
        members = [member for member in dict.fromkeys(member_ids) if member != user_id]

        conversation = (
            await self.store.table("conversations")
            .insert({"is_group": True, "group_name": group_name})
            .single()
            .execute()
        ).unwrap()
        rows = [{"conversation_id": conversation["id"], "user_id": member} for member in [user_id, *members]]
        (await self.store.table("conversation_participants").insert(rows).execute()).unwrap()
        logger.info("Created group chat %s with %d members", conversation["id"], len(rows))
        return conversation["id"]

    async def send_message(self, conversation_id: uuid.UUID, content: str) -> dict[str, Any]:
        user_id = self.context.require_user()
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message cannot be empty")
        return (
            await self.store.table("messages")
            .insert({"conversation_id": conversation_id, "sender_id": user_id, "content": text})
            .single()
            .execute()
        ).unwrap()


__all__ = ["MessagesViewModel", "direct_key"]
