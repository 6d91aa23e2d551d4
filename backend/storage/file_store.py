"""Local conversation store backed by a single JSON snapshot file."""
import copy
import json
import logging
import os
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Union

from config import CONVERSATIONS_FILE
from models.conversation import Conversation, Message, normalize_tags, utcnow
from models.errors import ChatServiceError, StorageError, not_found
from storage.base import (
    Clock,
    ConversationStore,
    apply_message,
    check_page,
    check_query,
    generate_session_id,
    newest_first,
)

logger = logging.getLogger(__name__)


class FileStore(ConversationStore):
    """
    Keep conversations in memory and persist them as one JSON document.

    Every mutation rewrites the whole snapshot through a temporary file and an
    atomic rename, so readers never see a half-written file. Only one process
    may use a given file; threads within the process are serialized by a lock.
    """

    backend_name = "file"

    def __init__(self, path: Union[str, Path] = CONVERSATIONS_FILE, clock: Clock = utcnow):
        """
        Args:
            path: Snapshot location; parent directories are created as needed
            clock: Source of "now" for timestamps
        """
        super().__init__(clock)
        self.path = Path(path)
        self._lock = threading.RLock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conversations: Dict[str, Conversation] = self._load()
        logger.info(f"FileStore initialized with {len(self._conversations)} conversations from {self.path}")

    def _load(self) -> Dict[str, Conversation]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                records = json.load(f)
            conversations = [Conversation.from_dict(record) for record in records]
        except (OSError, ValueError, KeyError, TypeError, ChatServiceError) as e:
            # Refuse to start rather than overwrite an unreadable snapshot
            logger.error(f"Failed to load conversations from {self.path}: {e}", exc_info=True)
            raise StorageError(f"Conversation file {self.path} is unreadable: {e}") from e
        return {conversation.id: conversation for conversation in conversations}

    def _save(self) -> None:
        records = [conversation.to_dict() for conversation in self._conversations.values()]
        try:
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".conversations-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(records, f, indent=2, ensure_ascii=False)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            logger.error(f"Failed to save conversations to {self.path}: {e}", exc_info=True)
            raise StorageError(f"Failed to save conversations: {e}") from e

    def _generate_id(self) -> str:
        return f"conv_{uuid.uuid4().hex[:12]}"

    def _find(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise not_found(conversation_id)
        return conversation

    def create(self, session_id: Optional[str] = None, tags: Optional[List[str]] = None) -> Conversation:
        with self._lock:
            now = self._stamp()
            conversation = Conversation(
                id=self._generate_id(),
                session_id=session_id or generate_session_id(),
                tags=normalize_tags(tags),
                created_at=now,
                updated_at=now,
            )
            self._conversations[conversation.id] = conversation
            self._commit(lambda: self._conversations.pop(conversation.id, None))
            logger.info(f"Created conversation {conversation.id}", extra={"conversation_id": conversation.id})
            return copy.deepcopy(conversation)

    def get(self, conversation_id: str) -> Conversation:
        with self._lock:
            return copy.deepcopy(self._find(conversation_id))

    def append(self, conversation_id: str, message: Message) -> Conversation:
        with self._lock:
            current = self._find(conversation_id)
            updated = apply_message(copy.deepcopy(current), copy.deepcopy(message), self._stamp(current.updated_at))
            self._conversations[conversation_id] = updated
            self._commit(lambda: self._conversations.__setitem__(conversation_id, current))
            return copy.deepcopy(updated)

    def list(self, session_id: Optional[str] = None, limit: int = 20, skip: int = 0) -> List[Conversation]:
        check_page(limit, skip)
        with self._lock:
            results = [
                c for c in self._conversations.values()
                if session_id is None or c.session_id == session_id
            ]
            return copy.deepcopy(newest_first(results)[skip:skip + limit])

    def search(self, query: str, limit: int = 20, skip: int = 0) -> List[Conversation]:
        query = check_query(query)
        check_page(limit, skip)
        with self._lock:
            results = [c for c in self._conversations.values() if c.matches(query)]
            return copy.deepcopy(newest_first(results)[skip:skip + limit])

    def delete(self, conversation_id: str) -> Conversation:
        with self._lock:
            deleted = self._conversations.pop(conversation_id, None)
            if deleted is None:
                raise not_found(conversation_id)
            self._commit(lambda: self._conversations.__setitem__(conversation_id, deleted))
            logger.info(f"Deleted conversation {conversation_id}", extra={"conversation_id": conversation_id})
            return copy.deepcopy(deleted)

    def count(self, session_id: Optional[str] = None) -> int:
        with self._lock:
            if session_id is None:
                return len(self._conversations)
            return sum(1 for c in self._conversations.values() if c.session_id == session_id)

    def import_conversation(self, conversation: Conversation) -> Conversation:
        with self._lock:
            record = copy.deepcopy(conversation)
            record.id = self._generate_id()
            self._conversations[record.id] = record
            self._commit(lambda: self._conversations.pop(record.id, None))
            return copy.deepcopy(record)

    def _commit(self, rollback) -> None:
        """Persist the snapshot; undo the in-memory change if that fails."""
        try:
            self._save()
        except StorageError:
            rollback()
            raise
