from __future__ import annotations

import logging
from typing import Any, Iterator, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from .errors import UpstreamFailure
from .models import ChatMessage, MessageRole

logger = logging.getLogger(__name__)


class CompletionClient:
    def __init__(
        self,
        system_prompt: str,
        chat_model: Any | None = None,
        model_name: str = "gemini-2.0-flash",
        temperature: float = 0.3,
    ) -> None:
        self.system_prompt = system_prompt
        self.model_name = model_name
        self.temperature = temperature
        self._chat_model = chat_model

    @property
    def chat_model(self) -> Any:
        if self._chat_model is None:
            self._chat_model = ChatGoogleGenerativeAI(model=self.model_name, temperature=self.temperature)
        return self._chat_model

    def build_prompt(self, history: Sequence[ChatMessage]) -> list[BaseMessage]:
        return [SystemMessage(content=self.system_prompt)] + to_lc_messages(history)

    def complete(self, history: Sequence[ChatMessage]) -> str:
        try:
            result = self.chat_model.invoke(self.build_prompt(history))
        except Exception as exc:
            logger.exception("Completion call failed for model %s", self.model_name)
            raise UpstreamFailure(f"Completion provider failed: {exc}") from exc

        reply = _text_of(result.content).strip()
        if not reply:
            raise UpstreamFailure("Completion provider returned an empty reply")
        return reply

    def stream(self, history: Sequence[ChatMessage]) -> Iterator[str]:
        try:
            for chunk in self.chat_model.stream(self.build_prompt(history)):
                text = _text_of(chunk.content)
                if text:
                    yield text
        except Exception as exc:
            logger.exception("Streaming completion failed for model %s", self.model_name)
            raise UpstreamFailure(f"Completion provider failed: {exc}") from exc


def to_lc_messages(history: Sequence[ChatMessage]) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    for item in history:
        if item.role == MessageRole.USER:
            messages.append(HumanMessage(content=item.content))
        elif item.role == MessageRole.ASSISTANT:
            messages.append(AIMessage(content=item.content))
        else:
            messages.append(SystemMessage(content=item.content))
    return messages


def _text_of(content: Any) -> str:
    # Some providers return a list of content parts instead of a plain string.
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)
