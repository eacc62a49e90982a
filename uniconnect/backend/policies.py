"""Row-level access rules enforced by the store for every non-service statement.

Each table has a :class:`TablePolicy` that contributes a visibility clause to
reads and accepts or rejects individual rows on writes. Checks run inside the
statement's session so ownership lookups see the same transaction state.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy import Table, false, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

ROLE_PRECEDENCE = ("admin", "moderator", "student")
ADMIN_ONLY_PROFILE_FIELDS = frozenset({"is_suspended", "is_verified"})
PRIVILEGED_NOTIFICATION_TYPES = frozenset({"broadcast", "verification"})

Row = Mapping[str, Any]


class PolicyViolation(Exception):
    """Raised when a statement is rejected by an access rule."""


@dataclass
class PolicyContext:
    """The acting identity of one store statement."""

    session: Session
    tables: Mapping[str, Table]
    actor_id: uuid.UUID | None = None
    role: str | None = None
    is_suspended: bool = False

    @classmethod
    def load(cls, session: Session, tables: Mapping[str, Table], actor_id: uuid.UUID | None) -> "PolicyContext":
        if actor_id is None:
            return cls(session=session, tables=tables)

        roles_table = tables["user_roles"]
        profiles = tables["profiles"]
        roles = set(
            session.execute(select(roles_table.c.role).where(roles_table.c.user_id == actor_id)).scalars()
        )
        role = next((candidate for candidate in ROLE_PRECEDENCE if candidate in roles), None)
        suspended = session.execute(
            select(profiles.c.is_suspended).where(profiles.c.user_id == actor_id)
        ).scalar_one_or_none()
        return cls(session=session, tables=tables, actor_id=actor_id, role=role, is_suspended=bool(suspended))

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_moderator(self) -> bool:
        return self.role in {"admin", "moderator"}

    def require_actor(self) -> uuid.UUID:
        if self.actor_id is None:
            raise PolicyViolation("Authentication required")
        return self.actor_id

    def require_active(self) -> uuid.UUID:
        actor = self.require_actor()
        if self.is_suspended:
            raise PolicyViolation("Suspended accounts cannot create content")
        return actor

    def require_admin(self) -> None:
        self.require_actor()
        if not self.is_admin:
            raise PolicyViolation("Admin role required")

    def require_moderator(self) -> None:
        self.require_actor()
        if not self.is_moderator:
            raise PolicyViolation("Admin or moderator role required")

    def conversation_ids(self):
        """Subquery of conversation ids the actor participates in."""

        participants = self.tables["conversation_participants"]
        return select(participants.c.conversation_id).where(participants.c.user_id == self.actor_id)

    def is_participant(self, conversation_id: Any) -> bool:
        participants = self.tables["conversation_participants"]
        stmt = select(participants.c.id).where(
            participants.c.conversation_id == conversation_id,
            participants.c.user_id == self.actor_id,
        )
        return self.session.execute(stmt.limit(1)).first() is not None


class TablePolicy:
    """Default rule set: readable by anyone, writable by nobody."""

    def visible(self, ctx: PolicyContext, table: Table) -> ColumnElement[bool] | None:
        return None

    def check_insert(self, ctx: PolicyContext, row: Row) -> None:
        raise PolicyViolation("Inserts are not permitted on this table")

    def check_update(self, ctx: PolicyContext, old: Row, values: Row) -> None:
        raise PolicyViolation("Updates are not permitted on this table")

    def check_delete(self, ctx: PolicyContext, row: Row) -> None:
        raise PolicyViolation("Deletes are not permitted on this table")


class DenyAllPolicy(TablePolicy):
    def visible(self, ctx, table):
        return false()


class OwnedContentPolicy(TablePolicy):
    """Rows owned by the user named in ``owner_column``."""

    def __init__(self, owner_column: str = "user_id", *, moderated_delete: bool = False, editable: bool = True) -> None:
        self.owner_column = owner_column
        self.moderated_delete = moderated_delete
        self.editable = editable

    def _require_owner(self, ctx: PolicyContext, row: Row) -> None:
        actor = ctx.require_actor()
        if row.get(self.owner_column) != actor:
            raise PolicyViolation(f"{self.owner_column} must be the signed-in user")

    def check_insert(self, ctx, row):
        ctx.require_active()
        self._require_owner(ctx, row)

    def check_update(self, ctx, old, values):
        if not self.editable:
            super().check_update(ctx, old, values)
        self._require_owner(ctx, old)
        if self.owner_column in values and values[self.owner_column] != old.get(self.owner_column):
            raise PolicyViolation("Ownership cannot be transferred")

    def check_delete(self, ctx, row):
        if self.moderated_delete and ctx.actor_id is not None and ctx.is_moderator:
            return
        self._require_owner(ctx, row)


class PostMediaPolicy(TablePolicy):
    def _post_owner(self, ctx: PolicyContext, post_id: Any) -> Any:
        posts = ctx.tables["posts"]
        return ctx.session.execute(select(posts.c.user_id).where(posts.c.id == post_id)).scalar_one_or_none()

    def check_insert(self, ctx, row):
        actor = ctx.require_active()
        if self._post_owner(ctx, row.get("post_id")) != actor:
            raise PolicyViolation("Media can only be attached to your own posts")

    def check_delete(self, ctx, row):
        actor = ctx.require_actor()
        if not ctx.is_moderator and self._post_owner(ctx, row.get("post_id")) != actor:
            raise PolicyViolation("Media can only be removed by the post owner")


class ProfilePolicy(TablePolicy):
    def check_update(self, ctx, old, values):
        actor = ctx.require_actor()
        if ctx.is_admin:
            return
        if old.get("user_id") != actor:
            raise PolicyViolation("Profiles can only be edited by their owner")
        restricted = ADMIN_ONLY_PROFILE_FIELDS.intersection(values) | ({"user_id", "id"} & set(values))
        if restricted:
            raise PolicyViolation(f"Only admins may change: {', '.join(sorted(restricted))}")


class ConfessionPolicy(OwnedContentPolicy):
    def visible(self, ctx, table):
        if ctx.actor_id is None:
            return table.c.status == "approved"
        if ctx.is_moderator:
            return None
        return or_(table.c.status == "approved", table.c.user_id == ctx.actor_id)

    def check_insert(self, ctx, row):
        super().check_insert(ctx, row)
        if row.get("status", "pending") != "pending" and not ctx.is_moderator:
            raise PolicyViolation("New confessions must await review")

    def check_update(self, ctx, old, values):
        ctx.require_moderator()

    def check_delete(self, ctx, row):
        ctx.require_moderator()


class VerificationRequestPolicy(OwnedContentPolicy):
    def visible(self, ctx, table):
        if ctx.actor_id is None:
            return false()
        if ctx.is_admin:
            return None
        return table.c.user_id == ctx.actor_id

    def check_insert(self, ctx, row):
        super().check_insert(ctx, row)
        if row.get("status", "pending") != "pending":
            raise PolicyViolation("New verification requests must be pending")

    def check_update(self, ctx, old, values):
        ctx.require_admin()

    def check_delete(self, ctx, row):
        ctx.require_admin()


class AuditLogPolicy(TablePolicy):
    def visible(self, ctx, table):
        return None if ctx.actor_id is not None and ctx.is_admin else false()

    def check_insert(self, ctx, row):
        ctx.require_moderator()
        if row.get("admin_id") != ctx.actor_id:
            raise PolicyViolation("Audit entries must name the acting admin")


class NotificationPolicy(TablePolicy):
    def visible(self, ctx, table):
        if ctx.actor_id is None:
            return false()
        return table.c.user_id == ctx.actor_id

    def check_insert(self, ctx, row):
        ctx.require_active()
        if row.get("type") in PRIVILEGED_NOTIFICATION_TYPES:
            ctx.require_admin()

    def check_update(self, ctx, old, values):
        if old.get("user_id") != ctx.require_actor():
            raise PolicyViolation("Notifications can only be updated by their recipient")
        if set(values) - {"is_read"}:
            raise PolicyViolation("Only the read state of a notification can change")

    def check_delete(self, ctx, row):
        if row.get("user_id") != ctx.require_actor():
            raise PolicyViolation("Notifications can only be deleted by their recipient")


class ConversationPolicy(TablePolicy):
    def visible(self, ctx, table):
        if ctx.actor_id is None:
            return false()
        return or_(
            table.c.id.in_(ctx.conversation_ids()),
            table.c.direct_key.contains(str(ctx.actor_id)),
        )

    def check_insert(self, ctx, row):
        actor = ctx.require_active()
        key = row.get("direct_key")
        if key is not None and str(actor) not in key.split(":"):
            raise PolicyViolation("Direct conversations must include the signed-in user")

    def check_update(self, ctx, old, values):
        ctx.require_actor()
        if not ctx.is_participant(old.get("id")):
            raise PolicyViolation("Only participants can update a conversation")


class ConversationParticipantPolicy(TablePolicy):
    def visible(self, ctx, table):
        if ctx.actor_id is None:
            return false()
        conversations = ctx.tables["conversations"]
        direct = select(conversations.c.id).where(conversations.c.direct_key.contains(str(ctx.actor_id)))
        return or_(table.c.conversation_id.in_(ctx.conversation_ids()), table.c.conversation_id.in_(direct))

    def check_insert(self, ctx, row):
        actor = ctx.require_active()
        conversation_id = row.get("conversation_id")
        if ctx.is_participant(conversation_id):
            return

        participants = ctx.tables["conversation_participants"]
        conversations = ctx.tables["conversations"]
        has_members = ctx.session.execute(
            select(participants.c.id).where(participants.c.conversation_id == conversation_id).limit(1)
        ).first()
        if has_members is None and row.get("user_id") == actor:
            return

        key = ctx.session.execute(
            select(conversations.c.direct_key).where(conversations.c.id == conversation_id)
        ).scalar_one_or_none()
        if key is not None:
            members = key.split(":")
            if str(actor) in members and str(row.get("user_id")) in members:
                return
        raise PolicyViolation("Only participants can add members to a conversation")

    def check_delete(self, ctx, row):
        if row.get("user_id") != ctx.require_actor():
            raise PolicyViolation("Participants can only remove themselves")


class MessagePolicy(TablePolicy):
    def visible(self, ctx, table):
        if ctx.actor_id is None:
            return false()
        return table.c.conversation_id.in_(ctx.conversation_ids())

    def check_insert(self, ctx, row):
        actor = ctx.require_active()
        if row.get("sender_id") != actor:
            raise PolicyViolation("sender_id must be the signed-in user")
        if not ctx.is_participant(row.get("conversation_id")):
            raise PolicyViolation("Only participants can send messages")

    def check_update(self, ctx, old, values):
        actor = ctx.require_actor()
        if set(values) != {"read_at"}:
            raise PolicyViolation("Only read receipts can be recorded on messages")
        if old.get("sender_id") == actor:
            raise PolicyViolation("Senders cannot mark their own messages as read")
        if not ctx.is_participant(old.get("conversation_id")):
            raise PolicyViolation("Only participants can mark messages as read")

    def check_delete(self, ctx, row):
        if row.get("sender_id") != ctx.require_actor():
            raise PolicyViolation("Messages can only be deleted by their sender")


POLICIES: dict[str, TablePolicy] = {
    "auth_users": DenyAllPolicy(),
    "user_roles": TablePolicy(),
    "profiles": ProfilePolicy(),
    "posts": OwnedContentPolicy(moderated_delete=True),
    "post_media": PostMediaPolicy(),
    "likes": OwnedContentPolicy(editable=False),
    "comments": OwnedContentPolicy(moderated_delete=True),
    "stories": OwnedContentPolicy(moderated_delete=True),
    "story_likes": OwnedContentPolicy(editable=False),
    "follows": OwnedContentPolicy("follower_id", editable=False),
    "confessions": ConfessionPolicy(),
    "verification_requests": VerificationRequestPolicy(),
    "audit_logs": AuditLogPolicy(),
    "notifications": NotificationPolicy(),
    "conversations": ConversationPolicy(),
    "conversation_participants": ConversationParticipantPolicy(),
    "messages": MessagePolicy(),
}

_DENY_ALL = DenyAllPolicy()


def policy_for(table_name: str) -> TablePolicy:
    return POLICIES.get(table_name, _DENY_ALL)


__all__ = [
    "PolicyContext",
    "PolicyViolation",
    "TablePolicy",
    "POLICIES",
    "policy_for",
]
