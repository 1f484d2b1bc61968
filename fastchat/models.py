from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChatRequest(ApiModel):
    conversation_id: str = Field(alias="conversationId")
    message: str = Field(max_length=4000)

    @field_validator("conversation_id")
    @classmethod
    def _conversation_id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("conversationId is required")
        return value

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message is required")
        return value


class ChatResponse(ApiModel):
    conversation_id: str = Field(alias="conversationId")
    reply: str


class SessionResponse(ApiModel):
    conversation_id: str = Field(alias="conversationId")


class HistoryResponse(ApiModel):
    conversation_id: str = Field(alias="conversationId")
    messages: list[ChatMessage]
