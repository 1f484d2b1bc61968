from __future__ import annotations

import logging
import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Iterator, Sequence

from .errors import StoreFailure
from .models import ChatMessage

logger = logging.getLogger(__name__)


class SQLiteStore:
    """Append-only message log keyed by conversation id; row ids give insertion order."""

    def __init__(self, db_path: str = "fastchat.db") -> None:
        self.db_path = db_path
        self._lock = Lock()
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            with self._lock, closing(self._connect()) as conn, conn:
                yield conn
        except sqlite3.Error as exc:
            logger.exception("Message store operation failed on %s", self.db_path)
            raise StoreFailure(f"Message store unavailable: {exc}") from exc

    def _initialize(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    conversation_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages (conversation_id, id)"
            )

    def add_messages(
        self, conversation_id: str, messages: Sequence[ChatMessage], keep_last: int | None = None
    ) -> int:
        """Insert messages in order, then evict all but the newest ``keep_last``.

        Returns the number of evicted rows.
        """
        with self._transaction() as conn:
            conn.executemany(
                "INSERT INTO messages (conversation_id, role, content, timestamp) VALUES (?, ?, ?, ?)",
                [
                    (conversation_id, message.role.value, message.content, message.timestamp.isoformat())
                    for message in messages
                ],
            )
            if keep_last is None:
                return 0
            cursor = conn.execute(
                """
                DELETE FROM messages
                WHERE conversation_id = ?
                  AND id NOT IN (
                    SELECT id FROM messages
                    WHERE conversation_id = ?
                    ORDER BY id DESC
                    LIMIT ?
                  )
                """,
                (conversation_id, conversation_id, keep_last),
            )
            return cursor.rowcount

    def get_messages(self, conversation_id: str, limit: int = 50) -> list[ChatMessage]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT role, content, timestamp
                FROM messages
                WHERE conversation_id = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (conversation_id, limit),
            ).fetchall()
        return [
            ChatMessage(role=row["role"], content=row["content"], timestamp=datetime.fromisoformat(row["timestamp"]))
            for row in reversed(rows)
        ]

    def delete_conversation(self, conversation_id: str) -> int:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            return cursor.rowcount
