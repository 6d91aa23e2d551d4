"""Conversation data models."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from models.errors import ChatServiceError, ErrorKind

USER = "user"
ASSISTANT = "assistant"
VALID_ROLES = (USER, ASSISTANT)

DEFAULT_TITLE = "New Conversation"
TITLE_MAX_LENGTH = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime as `YYYY-MM-DDTHH:MM:SS.ffffffZ` in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(timestamp_str: str) -> datetime:
    """
    Parse an ISO timestamp from either store, handling various formats.

    PostgreSQL returns timestamps with varying microsecond precision and a
    `+00:00` suffix, the file snapshot uses a `Z` suffix. Both are normalized
    to an aware UTC datetime.

    Args:
        timestamp_str: ISO 8601 timestamp string

    Returns:
        Timezone-aware datetime in UTC
    """
    timestamp_str = timestamp_str.strip().replace("Z", "+00:00").replace(" ", "T", 1)

    # Truncate or pad fractional seconds to 6 digits
    if "." in timestamp_str:
        head, tail = timestamp_str.split(".", 1)
        digits = ""
        while tail and tail[0].isdigit():
            digits += tail[0]
            tail = tail[1:]
        timestamp_str = f"{head}.{digits[:6].ljust(6, '0')}{tail}"

    parsed = datetime.fromisoformat(timestamp_str)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def make_title(text: str) -> str:
    """Summarize a message as a title: 50 characters, '...' when cut."""
    if len(text) > TITLE_MAX_LENGTH:
        return text[:TITLE_MAX_LENGTH] + "..."
    return text


def normalize_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """Lowercase, strip and de-duplicate tags, keeping first-seen order."""
    normalized: List[str] = []
    for tag in tags or []:
        value = str(tag).strip().lower()
        if value and value not in normalized:
            normalized.append(value)
    return normalized


@dataclass
class Message:
    """A single chat message."""
    role: str
    content: str
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.role not in VALID_ROLES:
            raise ChatServiceError(
                ErrorKind.INVALID_INPUT,
                f"Invalid message role '{self.role}'. Expected one of: {', '.join(VALID_ROLES)}"
            )
        if not isinstance(self.content, str) or not self.content.strip():
            raise ChatServiceError(ErrorKind.INVALID_INPUT, "Message content must be a non-empty string")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": format_timestamp(self.timestamp) if self.timestamp else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        timestamp = data.get("timestamp")
        return cls(
            role=data["role"],
            content=data["content"],
            timestamp=parse_timestamp(timestamp) if timestamp else None,
        )


@dataclass
class Conversation:
    """A titled, ordered sequence of messages tied to a session."""
    id: str
    session_id: str
    created_at: datetime
    updated_at: datetime
    title: str = DEFAULT_TITLE
    messages: List[Message] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)

    def first_user_message(self) -> Optional[Message]:
        for message in self.messages:
            if message.role == USER:
                return message
        return None

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on title, message content or tags."""
        needle = query.lower()
        if needle in self.title.lower():
            return True
        if any(needle in message.content.lower() for message in self.messages):
            return True
        return any(needle in tag.lower() for tag in self.tags)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [message.to_dict() for message in self.messages],
            "sessionId": self.session_id,
            "tags": list(self.tags),
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Conversation":
        return cls(
            id=data["id"],
            title=data.get("title") or DEFAULT_TITLE,
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            session_id=data["sessionId"],
            tags=normalize_tags(data.get("tags")),
            created_at=parse_timestamp(data["createdAt"]),
            updated_at=parse_timestamp(data["updatedAt"]),
        )
