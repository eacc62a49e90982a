"""Exception hierarchy shared by the backend adapters, view-models and services."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .backend.store import StoreError


class UniConnectError(RuntimeError):
    """Base class for every error raised by UniConnect Hub."""


class AuthenticationError(UniConnectError):
    """Raised when sign-in or sign-up is rejected."""


class AccountSuspendedError(AuthenticationError):
    """Raised when a suspended account tries to sign in."""

    def __init__(self, message: str = "Your account has been suspended. Contact admin.") -> None:
        super().__init__(message)


class NotAuthenticatedError(UniConnectError):
    """Raised when a user-scoped operation runs without a session."""

    def __init__(self, message: str = "Sign in to continue") -> None:
        super().__init__(message)


class NotReadyError(UniConnectError):
    """Raised when a view-model is used before the application context is initialised."""


class NotFoundError(UniConnectError):
    """Raised when a referenced record does not exist."""


class ValidationError(UniConnectError):
    """Raised for invalid input detected before any store or network call."""


class UploadValidationError(ValidationError):
    """Raised when a file is too large or has a disallowed content type."""


class UploadFailedError(UniConnectError):
    """Raised when an object-store upload fails and the upload is the whole operation."""


class StoreOperationError(UniConnectError):
    """Raised when a store statement returned an error result."""

    def __init__(self, error: "StoreError") -> None:
        super().__init__(error.message)
        self.error = error

    @property
    def code(self) -> str:
        return self.error.code


class PermissionDeniedError(StoreOperationError):
    """The store's access policy rejected the statement."""


class DuplicateRecordError(StoreOperationError):
    """The statement violated a uniqueness constraint."""


class AIChatError(UniConnectError):
    """Raised when the AI chat gateway fails."""

    kind = "failed"


class AIRateLimitError(AIChatError):
    """The AI gateway answered 429."""

    kind = "rate_limited"


class AIQuotaExceededError(AIChatError):
    """The AI gateway answered 402."""

    kind = "quota_exhausted"


__all__ = [
    "UniConnectError",
    "AuthenticationError",
    "AccountSuspendedError",
    "NotAuthenticatedError",
    "NotReadyError",
    "NotFoundError",
    "ValidationError",
    "UploadValidationError",
    "UploadFailedError",
    "StoreOperationError",
    "PermissionDeniedError",
    "DuplicateRecordError",
    "AIChatError",
    "AIRateLimitError",
    "AIQuotaExceededError",
]
