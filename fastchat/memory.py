from __future__ import annotations

import logging

from .errors import InvalidArgument
from .models import ChatMessage, MessageRole
from .storage import SQLiteStore

logger = logging.getLogger(__name__)


class ConversationMemory:
    # The system preamble is never stored, so FIFO trimming cannot drop it.

    def __init__(self, store: SQLiteStore, max_messages: int = 20) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        self.store = store
        self.max_messages = max_messages

    def load_context(self, conversation_id: str) -> list[ChatMessage]:
        _require_conversation_id(conversation_id)
        return self.store.get_messages(conversation_id, limit=self.max_messages)

    def window_for(self, conversation_id: str, user_message: str) -> list[ChatMessage]:
        pending = ChatMessage(role=MessageRole.USER, content=user_message)
        return (self.load_context(conversation_id) + [pending])[-self.max_messages :]

    def append(self, conversation_id: str, role: MessageRole | str, content: str) -> None:
        _require_conversation_id(conversation_id)
        try:
            role = MessageRole(role)
        except ValueError as exc:
            raise InvalidArgument(f"Unknown message role: {role}") from exc
        self._store(conversation_id, [ChatMessage(role=role, content=content)])

    def append_turn(self, conversation_id: str, user_message: str, reply: str) -> None:
        _require_conversation_id(conversation_id)
        self._store(
            conversation_id,
            [
                ChatMessage(role=MessageRole.USER, content=user_message),
                ChatMessage(role=MessageRole.ASSISTANT, content=reply),
            ],
        )

    def clear(self, conversation_id: str) -> None:
        _require_conversation_id(conversation_id)
        removed = self.store.delete_conversation(conversation_id)
        logger.info("Cleared conversation %s (%s messages)", conversation_id, removed)

    def _store(self, conversation_id: str, messages: list[ChatMessage]) -> None:
        evicted = self.store.add_messages(conversation_id, messages, keep_last=self.max_messages)
        if evicted:
            logger.debug("Evicted %s old messages from conversation %s", evicted, conversation_id)


def _require_conversation_id(conversation_id: str) -> None:
    if not conversation_id or not conversation_id.strip():
        raise InvalidArgument("conversationId must not be blank")
