"""Conversation service: persist both sides of a chat exchange."""
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config import DEFAULT_PAGE_SIZE, HISTORY_TURNS, MAX_PAGE_SIZE
from models.conversation import ASSISTANT, USER, Conversation, Message
from models.errors import ChatServiceError, ErrorKind
from services.generation_service import GenerationService
from storage.base import ConversationStore

logger = logging.getLogger(__name__)


@dataclass
class ChatReply:
    """What the caller gets back from send_message()."""
    conversation_id: str
    session_id: str
    message: Message
    conversation_title: str
    model: str
    attempt: int


@dataclass
class Page:
    """One page of conversations plus pagination metadata."""
    conversations: List[Conversation]
    pagination: Dict[str, Any]


class ConversationService:
    """Composes the generation service with a conversation store."""

    def __init__(
        self,
        store: ConversationStore,
        generation_service: GenerationService,
        history_turns: int = HISTORY_TURNS
    ):
        self.store = store
        self.generation_service = generation_service
        self.history_turns = history_turns

    def send_message(
        self,
        text: Optional[str],
        conversation_id: Optional[str] = None,
        session_id: Optional[str] = None,
        model: Optional[str] = None
    ) -> ChatReply:
        """
        Record a user message, generate a reply and record it.

        The user message is committed before generation. When generation
        fails it stays in the conversation, no assistant message is added and
        the generation error propagates unchanged.

        Args:
            text: The user's message
            conversation_id: Existing conversation to continue, if any
            session_id: Session for a newly created conversation
            model: Whitelisted model name (defaults to the service default)

        Returns:
            ChatReply with the assistant message and the conversation title

        Raises:
            ChatServiceError: NOT_FOUND for an unknown conversation id, or any
                error kind raised by GenerationService.generate()
        """
        model = model if model is not None else self.generation_service.default_model
        text = self.generation_service.validate(text, model)

        if conversation_id:
            conversation = self.store.get(conversation_id)
        else:
            conversation = self.store.create(session_id=session_id)

        prompt = self.build_prompt(conversation.messages, text)
        conversation = self.store.append(conversation.id, Message(role=USER, content=text))

        try:
            result = self.generation_service.generate(prompt, model=model)
        except ChatServiceError as e:
            logger.warning(
                f"Generation failed for conversation {conversation.id}: {e.kind.value}",
                extra={"conversation_id": conversation.id, "error_code": e.kind.value}
            )
            raise

        assistant = Message(role=ASSISTANT, content=result.text)
        conversation = self.store.append(conversation.id, assistant)
        logger.info(
            f"Exchange stored in conversation {conversation.id} ({len(conversation.messages)} messages)",
            extra={"conversation_id": conversation.id, "attempt": result.attempt}
        )

        return ChatReply(
            conversation_id=conversation.id,
            session_id=conversation.session_id,
            message=conversation.messages[-1],
            conversation_title=conversation.title,
            model=result.model,
            attempt=result.attempt,
        )

    def build_prompt(self, history: List[Message], text: str) -> str:
        """
        Prefix the new message with the most recent exchanges.

        Returns `text` unchanged when there is no history to include.
        """
        recent = history[-2 * self.history_turns:] if self.history_turns > 0 else []
        if not recent:
            return text

        lines = []
        for message in recent:
            speaker = "User" if message.role == USER else "Assistant"
            lines.append(f"{speaker}: {message.content}")
        conversation_history = "\n".join(lines)

        return f"""Previous conversation:
{conversation_history}

User: {text}
Assistant:"""

    def get_conversation(self, conversation_id: str) -> Conversation:
        return self.store.get(conversation_id)

    def delete_conversation(self, conversation_id: str) -> Conversation:
        return self.store.delete(conversation_id)

    def list_conversations(
        self,
        session_id: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> Page:
        page, limit = self._check_paging(page, limit)
        skip = (page - 1) * limit
        conversations = self.store.list(session_id=session_id, limit=limit, skip=skip)
        count = self.store.count(session_id=session_id)
        total_pages = math.ceil(count / limit) if count else 0
        return Page(
            conversations=conversations,
            pagination={
                "current": page,
                "total": total_pages,
                "count": count,
                "hasNext": page < total_pages,
                "hasPrev": page > 1,
            }
        )

    def search_conversations(self, query: Optional[str], page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Page:
        if not isinstance(query, str) or not query.strip():
            raise ChatServiceError(ErrorKind.INVALID_INPUT, "Search query is required")
        page, limit = self._check_paging(page, limit)
        skip = (page - 1) * limit

        # One extra row tells us whether another page exists
        found = self.store.search(query.strip(), limit=limit + 1, skip=skip)
        return Page(
            conversations=found[:limit],
            pagination={
                "current": page,
                "hasNext": len(found) > limit,
                "hasPrev": page > 1,
            }
        )

    @staticmethod
    def _check_paging(page: int, limit: int):
        if page < 1:
            raise ChatServiceError(ErrorKind.INVALID_INPUT, "page must be at least 1")
        if limit < 1:
            raise ChatServiceError(ErrorKind.INVALID_INPUT, "limit must be at least 1")
        return page, min(limit, MAX_PAGE_SIZE)
