"""Conversation stores for Parley Chat API."""
import logging
from pathlib import Path
from typing import Optional, Union

from config import STORAGE_BACKEND, SUPABASE_URL, SUPABASE_KEY, CONVERSATIONS_FILE
from .base import ConversationStore
from .file_store import FileStore
from .document_store import DocumentStore

logger = logging.getLogger(__name__)

BACKENDS = ("auto", "supabase", "file")


def create_conversation_store(
    backend: str = STORAGE_BACKEND,
    supabase_url: Optional[str] = SUPABASE_URL,
    supabase_key: Optional[str] = SUPABASE_KEY,
    file_path: Union[str, Path] = CONVERSATIONS_FILE
) -> ConversationStore:
    """
    Build the conversation store once at process start.

    `auto` uses Supabase when credentials are configured and the table answers
    a count query, and falls back to the local file store otherwise. `supabase`
    and `file` force a backend; a forced Supabase store that can't be reached
    is an error.

    Args:
        backend: One of "auto", "supabase", "file"
        supabase_url: Supabase project URL
        supabase_key: Supabase API key
        file_path: Snapshot location for the file store

    Returns:
        The store to pass down to the services
    """
    if backend not in BACKENDS:
        raise ValueError(f"Unknown storage backend '{backend}'. Expected one of: {', '.join(BACKENDS)}")

    if backend == "file":
        return FileStore(file_path)

    if backend == "auto" and not (supabase_url and supabase_key):
        logger.warning("No Supabase credentials provided, using file storage")
        return FileStore(file_path)

    try:
        store = DocumentStore(supabase_url=supabase_url, supabase_key=supabase_key)
        total = store.count()
        logger.info(f"Connected to Supabase, {total} conversations stored")
        return store
    except Exception as e:
        if backend == "supabase":
            logger.error(f"Supabase storage unavailable: {e}", exc_info=True)
            raise
        logger.warning(f"Supabase connection failed ({e}), falling back to file storage")
        return FileStore(file_path)


__all__ = ["ConversationStore", "FileStore", "DocumentStore", "create_conversation_store"]
