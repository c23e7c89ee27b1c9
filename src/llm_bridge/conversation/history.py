# src/llm_bridge/conversation/history.py

"""In-memory conversation history with JSON export/import."""

import logging
import uuid
from datetime import datetime, timezone
from time import time

from pydantic import BaseModel, Field

from llm_bridge.llms.base import Message
from llm_bridge.usage.tracker import estimate_tokens

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ConversationMeta(BaseModel):
    id: str
    title: str | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    total_tokens: int = 0
    message_count: int = 0


class Conversation(BaseModel):
    meta: ConversationMeta
    messages: list[Message] = Field(default_factory=list)


class ConversationHistoryManager:
    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}

    def create_conversation(
        self, conversation_id: str | None = None, title: str | None = None
    ) -> str:
        conversation_id = conversation_id or self._generate_id()
        now = _now()
        self._conversations[conversation_id] = Conversation(
            meta=ConversationMeta(
                id=conversation_id, title=title, created_at=now, updated_at=now
            )
        )
        logger.debug("Created conversation: %s", conversation_id)
        return conversation_id

    def add_message(
        self,
        conversation_id: str,
        message: Message,
        token_count: int | None = None,
    ) -> None:
        conversation = self._require(conversation_id)
        conversation.messages.append(message)
        conversation.meta.message_count += 1
        conversation.meta.updated_at = _now()
        if token_count:
            conversation.meta.total_tokens += token_count

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    def get_messages(self, conversation_id: str) -> list[Message]:
        conversation = self._conversations.get(conversation_id)
        return list(conversation.messages) if conversation else []

    def list_conversations(self) -> list[ConversationMeta]:
        return [c.meta.model_copy() for c in self._conversations.values()]

    def delete_conversation(self, conversation_id: str) -> bool:
        return self._conversations.pop(conversation_id, None) is not None

    def clear_all(self) -> None:
        self._conversations.clear()

    def export_conversation(self, conversation_id: str) -> str:
        return self._require(conversation_id).model_dump_json(indent=2)

    def import_conversation(self, data: str) -> str:
        """Restore an exported conversation, replacing any with the same id."""
        conversation = Conversation.model_validate_json(data)
        self._conversations[conversation.meta.id] = conversation
        logger.debug("Imported conversation: %s", conversation.meta.id)
        return conversation.meta.id

    def trim_to_fit_context(self, conversation_id: str, max_tokens: int) -> list[Message]:
        """Newest messages whose estimated size fits in `max_tokens`."""
        kept: list[Message] = []
        used = 0
        for message in reversed(self.get_messages(conversation_id)):
            estimated = estimate_tokens(message.text())
            if used + estimated > max_tokens:
                break
            kept.append(message)
            used += estimated
        kept.reverse()
        return kept

    def _require(self, conversation_id: str) -> Conversation:
        try:
            return self._conversations[conversation_id]
        except KeyError:
            logger.error("Conversation not found: %s", conversation_id)
            raise KeyError(f"Conversation '{conversation_id}' not found")

    def _generate_id(self) -> str:
        return f"conv_{int(time() * 1000)}_{uuid.uuid4().hex[:9]}"
