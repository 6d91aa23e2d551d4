"""Data models for Parley Chat API."""
from .errors import ChatServiceError, ErrorKind, StorageError
from .conversation import Conversation, Message
from .api import GenerateRequest, ChatRequest

__all__ = [
    "ChatServiceError",
    "ErrorKind",
    "StorageError",
    "Conversation",
    "Message",
    "GenerateRequest",
    "ChatRequest",
]
