"""Convenience exports for ORM models."""
from .conversation import Conversation, ConversationParticipant, Message
from .follow import Follow
from .moderation import AuditLog, Confession, VerificationRequest
from .notification import Notification
from .post import Comment, Like, Post, PostMedia
from .profile import AuthUser, Profile, UserRole
from .story import Story, StoryLike

__all__ = [
    "AuthUser",
    "Profile",
    "UserRole",
    "Post",
    "PostMedia",
    "Like",
    "Comment",
    "Story",
    "StoryLike",
    "Conversation",
    "ConversationParticipant",
    "Message",
    "Notification",
    "Follow",
    "Confession",
    "VerificationRequest",
    "AuditLog",
]
