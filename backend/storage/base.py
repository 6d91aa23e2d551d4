"""
Conversation store interface.

`ConversationStore` is the pluggable persistence backend for conversation
records. `FileStore` and `DocumentStore` are interchangeable at construction
time and must produce identical observable results for identical operation
sequences; the shared helpers here keep the mutation rules in one place.
"""
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from models.conversation import Conversation, Message, make_title, utcnow
from models.errors import ChatServiceError, ErrorKind

Clock = Callable[[], datetime]


def generate_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:12]}"


def check_page(limit: int, skip: int) -> None:
    if limit < 1:
        raise ChatServiceError(ErrorKind.INVALID_INPUT, "limit must be at least 1")
    if skip < 0:
        raise ChatServiceError(ErrorKind.INVALID_INPUT, "skip cannot be negative")


def check_query(query: Optional[str]) -> str:
    if not isinstance(query, str) or not query.strip():
        raise ChatServiceError(ErrorKind.INVALID_INPUT, "Search query is required")
    return query


def newest_first(conversations: Iterable[Conversation]) -> List[Conversation]:
    """Order by updated_at, then created_at, both descending."""
    return sorted(conversations, key=lambda c: (c.updated_at, c.created_at), reverse=True)


def apply_message(conversation: Conversation, message: Message, stamp: datetime) -> Conversation:
    """
    Append a message to a conversation in place.

    The message is stamped when it has no timestamp and `updated_at` moves to
    `stamp`. The title is derived from the first user message exactly once,
    when the conversation reaches two messages.
    """
    if message.timestamp is None:
        message.timestamp = stamp
    conversation.messages.append(message)
    conversation.updated_at = stamp

    if len(conversation.messages) == 2:
        first_user = conversation.first_user_message()
        if first_user is not None:
            conversation.title = make_title(first_user.content)
    return conversation


class ConversationStore(ABC):
    """Abstract repository for Conversation records."""

    backend_name = "abstract"

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._last_stamp: Optional[datetime] = None
        self._stamp_lock = threading.Lock()

    def _stamp(self, floor: Optional[datetime] = None) -> datetime:
        """Strictly increasing timestamp, also strictly after `floor` when given."""
        with self._stamp_lock:
            now = self._clock()
            for previous in (self._last_stamp, floor):
                if previous is not None and now <= previous:
                    now = previous + timedelta(microseconds=1)
            self._last_stamp = now
            return now

    @abstractmethod
    def create(self, session_id: Optional[str] = None, tags: Optional[List[str]] = None) -> Conversation:
        """Create an empty conversation titled 'New Conversation'."""

    @abstractmethod
    def get(self, conversation_id: str) -> Conversation:
        """Return a conversation or raise NOT_FOUND."""

    @abstractmethod
    def append(self, conversation_id: str, message: Message) -> Conversation:
        """Append a message, returning the updated conversation or raising NOT_FOUND."""

    @abstractmethod
    def list(self, session_id: Optional[str] = None, limit: int = 20, skip: int = 0) -> List[Conversation]:
        """Newest-updated first, optionally filtered by session."""

    @abstractmethod
    def search(self, query: str, limit: int = 20, skip: int = 0) -> List[Conversation]:
        """Case-insensitive substring match on title, message content or tags."""

    @abstractmethod
    def delete(self, conversation_id: str) -> Conversation:
        """Remove a conversation, returning it, or raise NOT_FOUND."""

    @abstractmethod
    def count(self, session_id: Optional[str] = None) -> int:
        """Number of stored conversations, optionally for one session."""

    @abstractmethod
    def import_conversation(self, conversation: Conversation) -> Conversation:
        """Insert a complete record under a new id, keeping its content and timestamps."""
