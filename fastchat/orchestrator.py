from __future__ import annotations

import logging
from contextlib import contextmanager
from threading import Lock
from typing import Iterator
from weakref import WeakValueDictionary

from .completion import CompletionClient
from .errors import ConversationBusy, InvalidArgument, UpstreamFailure
from .memory import ConversationMemory
from .models import ChatMessage

logger = logging.getLogger(__name__)


class Coordinator:
    """Runs one chat turn: window lookup, completion call, then persistence.

    A turn is stored only once the reply is complete, as a single user/assistant
    pair. Turns and clears on the same conversation take turns; a caller waits
    at most ``lock_timeout`` seconds before getting ConversationBusy.
    """

    def __init__(
        self,
        memory: ConversationMemory,
        completion: CompletionClient,
        max_message_length: int = 4000,
        lock_timeout: float = 30.0,
    ) -> None:
        self.memory = memory
        self.completion = completion
        self.max_message_length = max_message_length
        self.lock_timeout = lock_timeout
        self._locks: WeakValueDictionary[str, Lock] = WeakValueDictionary()
        self._locks_guard = Lock()

    def respond(self, conversation_id: str, user_message: str) -> str:
        self._validate(conversation_id, user_message)
        with self._conversation_lock(conversation_id):
            window = self.memory.window_for(conversation_id, user_message)
            logger.info("Chat turn for %s with %s context messages", conversation_id, len(window))
            reply = self.completion.complete(window)
            self.memory.append_turn(conversation_id, user_message, reply)
        logger.info("Reply for %s: %s chars", conversation_id, len(reply))
        return reply

    def stream(self, conversation_id: str, user_message: str) -> Iterator[str]:
        # Validate eagerly; the generator body only runs once iteration starts.
        self._validate(conversation_id, user_message)
        return self._stream_turn(conversation_id, user_message)

    def _stream_turn(self, conversation_id: str, user_message: str) -> Iterator[str]:
        with self._conversation_lock(conversation_id):
            window = self.memory.window_for(conversation_id, user_message)
            logger.info("Streaming chat turn for %s with %s context messages", conversation_id, len(window))
            parts: list[str] = []
            for text in self.completion.stream(window):
                parts.append(text)
                yield text

            reply = "".join(parts).strip()
            if not reply:
                raise UpstreamFailure("Completion provider returned an empty reply")
            self.memory.append_turn(conversation_id, user_message, reply)
        logger.info("Streamed reply for %s: %s chars", conversation_id, len(reply))

    def history(self, conversation_id: str) -> list[ChatMessage]:
        return self.memory.load_context(conversation_id)

    def clear(self, conversation_id: str) -> None:
        if not conversation_id or not conversation_id.strip():
            raise InvalidArgument("conversationId must not be blank")
        with self._conversation_lock(conversation_id):
            self.memory.clear(conversation_id)

    def _validate(self, conversation_id: str, user_message: str) -> None:
        if not conversation_id or not conversation_id.strip():
            raise InvalidArgument("conversationId must not be blank")
        if not user_message or not user_message.strip():
            raise InvalidArgument("message must not be blank")
        if len(user_message) > self.max_message_length:
            raise InvalidArgument(f"message must be <= {self.max_message_length} characters")

    @contextmanager
    def _conversation_lock(self, conversation_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.get(conversation_id)
            if lock is None:
                lock = Lock()
                self._locks[conversation_id] = lock
        if not lock.acquire(timeout=self.lock_timeout):
            logger.warning("Conversation %s still busy after %ss", conversation_id, self.lock_timeout)
            raise ConversationBusy("Another turn is in progress for this conversation")
        try:
            yield
        finally:
            lock.release()
