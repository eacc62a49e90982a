"""View-models: one denormalised, realtime-synchronised read model per feature."""
from .admin import AdminViewModel
from .audit_logs import AuditLogsViewModel, record_audit
from .base import RefreshCoordinator, RefreshStrategy, SequenceGuard, ViewModel
from .confessions import ConfessionsViewModel
from .follows import FollowsViewModel
from .messages import MessagesViewModel, direct_key
from .notifications import NotificationsViewModel, create_notification
from .posts import PostsViewModel
from .stories import StoriesViewModel
from .verification import VerificationViewModel

__all__ = [
    "AdminViewModel",
    "AuditLogsViewModel",
    "ConfessionsViewModel",
    "FollowsViewModel",
    "MessagesViewModel",
    "NotificationsViewModel",
    "PostsViewModel",
    "RefreshCoordinator",
    "RefreshStrategy",
    "SequenceGuard",
    "StoriesViewModel",
    "VerificationViewModel",
    "ViewModel",
    "create_notification",
    "direct_key",
    "record_audit",
]
