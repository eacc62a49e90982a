"""Pydantic read models exposed by the view-models and routers."""
from .ai_chat import AIChatRequest, ChatMessage, ChatTurn
from .follows import FollowStats
from .messages import ConversationRead, MessageRead, ParticipantRead
from .moderation import AdminStats, AuditLogRead, ConfessionRead, VerificationRequestRead
from .notifications import NotificationRead, NotificationType
from .posts import CommentRead, PostMediaRead, PostRead
from .profiles import ProfileRead, ProfileUpdate
from .stories import StoryRead

__all__ = [
    "AIChatRequest",
    "ChatMessage",
    "ChatTurn",
    "FollowStats",
    "ConversationRead",
    "MessageRead",
    "ParticipantRead",
    "AdminStats",
    "AuditLogRead",
    "ConfessionRead",
    "VerificationRequestRead",
    "NotificationRead",
    "NotificationType",
    "CommentRead",
    "PostMediaRead",
    "PostRead",
    "ProfileRead",
    "ProfileUpdate",
    "StoryRead",
]
