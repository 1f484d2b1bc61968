import logging
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .completion import CompletionClient
from .config import Settings, get_settings
from .errors import ChatError, public_message
from .memory import ConversationMemory
from .models import ChatRequest, ChatResponse, HistoryResponse, SessionResponse
from .orchestrator import Coordinator
from .storage import SQLiteStore
from .streaming import sse_chat_stream

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_coordinator(request: Request) -> Coordinator:
    return request.app.state.coordinator


@router.post("/session", response_model=SessionResponse)
def create_session():
    return SessionResponse(conversation_id=str(uuid4()))


@router.delete("/session/{conversation_id}", status_code=204)
def delete_session(conversation_id: str, coordinator: Coordinator = Depends(get_coordinator)):
    coordinator.clear(conversation_id)
    return Response(status_code=204)


@router.get("/session/{conversation_id}/messages", response_model=HistoryResponse)
def session_messages(conversation_id: str, coordinator: Coordinator = Depends(get_coordinator)):
    return HistoryResponse(conversation_id=conversation_id, messages=coordinator.history(conversation_id))


@router.post("/chat", response_model=ChatResponse)
def chat(chat_request: ChatRequest, coordinator: Coordinator = Depends(get_coordinator)):
    reply = coordinator.respond(chat_request.conversation_id, chat_request.message)
    return ChatResponse(conversation_id=chat_request.conversation_id, reply=reply)


@router.post("/chat/stream")
def chat_stream(chat_request: ChatRequest, coordinator: Coordinator = Depends(get_coordinator)):
    chunks = coordinator.stream(chat_request.conversation_id, chat_request.message)
    return StreamingResponse(
        sse_chat_stream(chat_request.conversation_id, chunks),
        media_type="text/event-stream",
    )


def _error_body(status: int, message: str, path: str) -> dict[str, Any]:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "status": status,
        "error": HTTPStatus(status).phrase,
        "message": message,
        "path": path,
    }


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def handle_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        body = _error_body(400, "Validation failed", request.url.path)
        fields: dict[str, str] = {}
        for error in exc.errors():
            # malformed JSON is reported at ("body", <offset>)
            loc = error["loc"]
            field = loc[-1] if loc and isinstance(loc[-1], str) else "body"
            fields[field] = error["msg"].removeprefix("Value error, ")
        body["fields"] = fields
        return JSONResponse(status_code=400, content=body)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.status_code, str(exc.detail), request.url.path),
            headers=exc.headers,
        )

    @app.exception_handler(ChatError)
    async def handle_chat_error(request: Request, exc: ChatError) -> JSONResponse:
        status = exc.status_code
        return JSONResponse(status_code=status, content=_error_body(status, public_message(exc), request.url.path))

    @app.exception_handler(Exception)
    async def handle_generic(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content=_error_body(500, "Unexpected error", request.url.path))


def create_app(settings: Settings | None = None, chat_model: Any | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level, format="[%(asctime)s] %(levelname)s %(name)s - %(message)s")

    app = FastAPI(title="FastChat Backend")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    store = SQLiteStore(db_path=settings.db_path)
    memory = ConversationMemory(store=store, max_messages=settings.memory_max_messages)
    completion = CompletionClient(
        system_prompt=settings.system_prompt,
        chat_model=chat_model,
        model_name=settings.google_model,
        temperature=settings.temperature,
    )
    app.state.settings = settings
    app.state.coordinator = Coordinator(
        memory=memory,
        completion=completion,
        max_message_length=settings.max_message_length,
        lock_timeout=settings.conversation_lock_timeout,
    )

    @app.get("/health")
    def healthcheck():
        return {"ok": True, "service": app.title}

    app.include_router(router)
    _register_error_handlers(app)
    logger.info(
        "FastChat ready: db=%s window=%s model=%s",
        settings.db_path,
        settings.memory_max_messages,
        settings.google_model,
    )
    return app


app = create_app()
