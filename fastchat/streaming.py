from __future__ import annotations

import json
import logging
from http import HTTPStatus
from typing import Any, Iterator

from .errors import ChatError, public_message

logger = logging.getLogger(__name__)


def format_sse_event(event_type: str, data: Any) -> str:
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


def format_chunk_event(content: str) -> str:
    return format_sse_event("chunk", {"content": content})


def format_done_event(conversation_id: str, reply: str) -> str:
    return format_sse_event("done", {"conversationId": conversation_id, "reply": reply})


def format_error_event(status: int, message: str) -> str:
    return format_sse_event(
        "error",
        {"status": status, "error": HTTPStatus(status).phrase, "message": message},
    )


def sse_chat_stream(conversation_id: str, chunks: Iterator[str]) -> Iterator[str]:
    """Frame reply chunks as SSE, ending with a done event or a single error event.

    Headers are already sent once streaming starts, so failures are reported in
    band instead of through the JSON error envelope.
    """
    parts: list[str] = []
    try:
        for chunk in chunks:
            parts.append(chunk)
            yield format_chunk_event(chunk)
    except ChatError as exc:
        yield format_error_event(exc.status_code, public_message(exc))
        return
    except Exception:
        logger.exception("Unexpected error while streaming conversation %s", conversation_id)
        yield format_error_event(500, "Unexpected error")
        return
    yield format_done_event(conversation_id, "".join(parts).strip())
