"""Error taxonomy shared by the services, the stores and the HTTP boundary."""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Discriminant carried by every ChatServiceError."""
    INVALID_MODEL = "INVALID_MODEL"
    INVALID_INPUT = "INVALID_INPUT"
    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    GENERATION_FAILED = "GENERATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ChatServiceError(Exception):
    """
    Terminal failure surfaced to callers of the core.

    Errors are classified once, where enough information exists, and then
    propagated unchanged; the HTTP layer switches on `kind` to pick a status.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.kind = kind
        self.message = message
        self.retry_after = retry_after
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"ChatServiceError({self.kind.value}, {self.message!r})"


class StorageError(ChatServiceError):
    """A conversation store could not complete an operation."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorKind.INTERNAL_ERROR, message, details=details)


def not_found(conversation_id: str) -> ChatServiceError:
    return ChatServiceError(
        ErrorKind.NOT_FOUND,
        f"Conversation {conversation_id} not found",
        details={"conversation_id": conversation_id}
    )
