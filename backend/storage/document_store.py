"""Conversation store backed by Supabase PostgreSQL."""
import logging
import uuid
from typing import Any, Dict, List, Optional

from supabase import create_client, Client

from config import SUPABASE_URL, SUPABASE_KEY, CONVERSATIONS_TABLE, CONVERSATIONS_SEARCH_FUNCTION
from models.conversation import (
    Conversation,
    Message,
    format_timestamp,
    normalize_tags,
    parse_timestamp,
    utcnow,
)
from models.errors import ChatServiceError, StorageError, not_found
from storage.base import (
    Clock,
    ConversationStore,
    apply_message,
    check_page,
    check_query,
    generate_session_id,
)

logger = logging.getLogger(__name__)

# Joins the searchable fields so a match can't straddle two of them
SEARCH_SEPARATOR = "\x1f"

# The table should be created in Supabase with:
# CREATE EXTENSION IF NOT EXISTS pg_trgm;
# CREATE TABLE conversations (
#   id uuid PRIMARY KEY,
#   title text NOT NULL DEFAULT 'New Conversation',
#   session_id text NOT NULL,
#   tags text[] NOT NULL DEFAULT '{}',
#   messages jsonb NOT NULL DEFAULT '[]',
#   search_text text NOT NULL DEFAULT '',
#   created_at timestamptz NOT NULL,
#   updated_at timestamptz NOT NULL
# );
# CREATE INDEX conversations_session_idx ON conversations (session_id, updated_at DESC);
# CREATE INDEX conversations_updated_idx ON conversations (updated_at DESC, created_at DESC);
# CREATE INDEX conversations_search_idx ON conversations USING gin (search_text gin_trgm_ops);
#
# Search goes through this function: PostgREST reads `*` in an ilike filter
# value as `%`, which would turn a literal asterisk into a wildcard.
# CREATE OR REPLACE FUNCTION search_conversations(pattern text, row_limit int, row_offset int)
# RETURNS SETOF conversations LANGUAGE sql STABLE AS $$
#   SELECT * FROM conversations
#   WHERE search_text ILIKE pattern
#   ORDER BY updated_at DESC, created_at DESC
#   LIMIT row_limit OFFSET row_offset;
# $$;


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so the query is matched literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_search_text(conversation: Conversation) -> str:
    fields = [conversation.title]
    fields.extend(message.content for message in conversation.messages)
    fields.extend(conversation.tags)
    return SEARCH_SEPARATOR.join(fields)


class DocumentStore(ConversationStore):
    """
    Store conversations as rows in a Supabase table.

    Messages live in a jsonb column. Search calls a SQL function that runs an
    escaped ILIKE over the indexed `search_text` column, which is rewritten on
    every mutation. Appends use optimistic concurrency on `updated_at` so
    concurrent writers in other processes never lose a message.
    """

    backend_name = "supabase"
    MAX_APPEND_RETRIES = 5

    def __init__(
        self,
        supabase_url: Optional[str] = SUPABASE_URL,
        supabase_key: Optional[str] = SUPABASE_KEY,
        table_name: str = CONVERSATIONS_TABLE,
        search_function: str = CONVERSATIONS_SEARCH_FUNCTION,
        client: Optional[Client] = None,
        clock: Clock = utcnow
    ):
        """
        Initialize the document store with a Supabase client.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            table_name: Name of the conversations table
            search_function: Name of the SQL search function (see schema above)
            client: Pre-built Supabase client (tests inject fakes here)
            clock: Source of "now" for timestamps

        Raises:
            ValueError: If no client is given and credentials are missing
        """
        super().__init__(clock)
        self.table_name = table_name
        self.search_function = search_function

        if client is None:
            if not supabase_url or not supabase_key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY environment variables are required")
            client = create_client(supabase_url, supabase_key)
        self.client = client

        logger.info(f"Initialized DocumentStore with table: {table_name}")

    def _table(self):
        return self.client.table(self.table_name)

    def _execute(self, action: str, query) -> Any:
        try:
            return query.execute()
        except ChatServiceError:
            raise
        except Exception as e:
            logger.error(f"Database error while trying to {action}: {e}", exc_info=True)
            raise StorageError(f"Failed to {action}: {e}") from e

    def _to_row(self, conversation: Conversation) -> Dict[str, Any]:
        return {
            "id": conversation.id,
            "title": conversation.title,
            "session_id": conversation.session_id,
            "tags": list(conversation.tags),
            "messages": [message.to_dict() for message in conversation.messages],
            "search_text": build_search_text(conversation),
            "created_at": format_timestamp(conversation.created_at),
            "updated_at": format_timestamp(conversation.updated_at),
        }

    def _from_row(self, row: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=str(row["id"]),
            title=row.get("title") or "New Conversation",
            session_id=row["session_id"],
            tags=normalize_tags(row.get("tags")),
            messages=[Message.from_dict(m) for m in (row.get("messages") or [])],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def _fetch_row(self, conversation_id: str) -> Dict[str, Any]:
        result = self._execute(
            "load conversation",
            self._table().select("*").eq("id", conversation_id).limit(1)
        )
        if not result.data:
            raise not_found(conversation_id)
        return result.data[0]

    def _insert(self, conversation: Conversation) -> Conversation:
        result = self._execute("create conversation", self._table().insert(self._to_row(conversation)))
        return self._from_row(result.data[0]) if result.data else conversation

    def create(self, session_id: Optional[str] = None, tags: Optional[List[str]] = None) -> Conversation:
        now = self._stamp()
        conversation = Conversation(
            id=str(uuid.uuid4()),
            session_id=session_id or generate_session_id(),
            tags=normalize_tags(tags),
            created_at=now,
            updated_at=now,
        )
        created = self._insert(conversation)
        logger.info(f"Created conversation {created.id}", extra={"conversation_id": created.id})
        return created

    def get(self, conversation_id: str) -> Conversation:
        return self._from_row(self._fetch_row(conversation_id))

    def append(self, conversation_id: str, message: Message) -> Conversation:
        for attempt in range(1, self.MAX_APPEND_RETRIES + 1):
            row = self._fetch_row(conversation_id)
            conversation = self._from_row(row)
            pending = Message(role=message.role, content=message.content, timestamp=message.timestamp)
            apply_message(conversation, pending, self._stamp(conversation.updated_at))

            new_row = self._to_row(conversation)
            result = self._execute(
                "append message",
                self._table()
                .update({key: new_row[key] for key in ("title", "messages", "search_text", "updated_at")})
                .eq("id", conversation_id)
                .eq("updated_at", row["updated_at"])
            )
            if result.data:
                return self._from_row(result.data[0])

            logger.warning(
                f"Concurrent update on conversation {conversation_id}, retrying ({attempt})",
                extra={"conversation_id": conversation_id, "attempt": attempt}
            )

        raise StorageError(
            f"Could not append to conversation {conversation_id}: too many concurrent updates",
            details={"conversation_id": conversation_id}
        )

    def list(self, session_id: Optional[str] = None, limit: int = 20, skip: int = 0) -> List[Conversation]:
        check_page(limit, skip)
        query = self._table().select("*")
        if session_id is not None:
            query = query.eq("session_id", session_id)
        result = self._execute("list conversations", self._newest_first(query).range(skip, skip + limit - 1))
        return [self._from_row(row) for row in result.data or []]

    def search(self, query: str, limit: int = 20, skip: int = 0) -> List[Conversation]:
        query = check_query(query)
        check_page(limit, skip)
        params = {"pattern": f"%{escape_like(query)}%", "row_limit": limit, "row_offset": skip}
        result = self._execute("search conversations", self.client.rpc(self.search_function, params))
        return [self._from_row(row) for row in result.data or []]

    def delete(self, conversation_id: str) -> Conversation:
        deleted = self.get(conversation_id)
        result = self._execute("delete conversation", self._table().delete().eq("id", conversation_id))
        if not result.data:
            # Removed by someone else between the read and the delete
            raise not_found(conversation_id)
        logger.info(f"Deleted conversation {conversation_id}", extra={"conversation_id": conversation_id})
        return deleted

    def count(self, session_id: Optional[str] = None) -> int:
        query = self._table().select("id", count="exact")
        if session_id is not None:
            query = query.eq("session_id", session_id)
        result = self._execute("count conversations", query)
        return result.count or 0

    def import_conversation(self, conversation: Conversation) -> Conversation:
        record = Conversation(
            id=str(uuid.uuid4()),
            title=conversation.title,
            session_id=conversation.session_id,
            tags=normalize_tags(conversation.tags),
            messages=[Message(m.role, m.content, m.timestamp) for m in conversation.messages],
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )
        return self._insert(record)

    @staticmethod
    def _newest_first(query):
        return query.order("updated_at", desc=True).order("created_at", desc=True)
