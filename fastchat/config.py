from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

from .prompts import SYSTEM_PROMPT

DEFAULT_ALLOWED_ORIGINS = "http://localhost:5173,https://fastchat-ten.vercel.app"


@dataclass(frozen=True)
class Settings:
    db_path: str = "data/fastchat.db"
    memory_max_messages: int = 20
    max_message_length: int = 4000
    conversation_lock_timeout: float = 30.0
    google_model: str = "gemini-2.0-flash"
    temperature: float = 0.3
    allowed_origins: tuple[str, ...] = tuple(DEFAULT_ALLOWED_ORIGINS.split(","))
    system_prompt: str = SYSTEM_PROMPT
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.memory_max_messages < 1:
            raise ValueError("MEMORY_MAX_MESSAGES must be at least 1")
        if self.max_message_length < 1:
            raise ValueError("MAX_MESSAGE_LENGTH must be at least 1")
        if self.conversation_lock_timeout <= 0:
            raise ValueError("CONVERSATION_LOCK_TIMEOUT must be positive")

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        origins = os.getenv("CORS_ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS)
        return cls(
            db_path=os.getenv("FASTCHAT_DB_PATH", cls.db_path),
            memory_max_messages=int(os.getenv("MEMORY_MAX_MESSAGES", str(cls.memory_max_messages))),
            max_message_length=int(os.getenv("MAX_MESSAGE_LENGTH", str(cls.max_message_length))),
            conversation_lock_timeout=float(
                os.getenv("CONVERSATION_LOCK_TIMEOUT", str(cls.conversation_lock_timeout))
            ),
            google_model=os.getenv("GOOGLE_MODEL", cls.google_model),
            temperature=float(os.getenv("MODEL_TEMPERATURE", str(cls.temperature))),
            allowed_origins=tuple(origin.strip() for origin in origins.split(",") if origin.strip()),
            system_prompt=os.getenv("FASTCHAT_SYSTEM_PROMPT") or SYSTEM_PROMPT,
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
