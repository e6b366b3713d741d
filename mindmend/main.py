"""
FastAPI application: the MindMend entry point.

    POST   /api/chat                          chat turn (JSON or framed stream)
    POST   /api/session                       guess a name, derive userId, greet
    GET    /api/conversations/{user_id}       recent stored turns
    GET    /api/conversations/{user_id}/stats per-user counts
    DELETE /api/conversations/{user_id}       forget a user
    GET    /api/health                        liveness + feature flags

Collaborators are built once in the lifespan from config.yaml, unless a
pipeline was passed to create_app() (tests do this).
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from mindmend import __version__
from mindmend.config import get_config
from mindmend.emotion import EmotionClassifier
from mindmend.errors import GenerationError, UpstreamUnavailable, ValidationError
from mindmend.generator import ResponseGenerator
from mindmend.names import extract_name, user_id_for, welcome_message
from mindmend.pipeline import ChatPipeline, PipelineSettings, parse_request
from mindmend.storage.conversation_store import ConversationStore, is_store_configured

logger = logging.getLogger(__name__)

STUCK_MESSAGE = "I got stuck. Please try again."
MEMORY_DISABLED = "Conversation memory is disabled"
MEMORY_UNAVAILABLE = "Conversation memory is unavailable right now"

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, log_cfg.get("level", "INFO").upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def build_pipeline(cfg: dict) -> ChatPipeline:
    """Wire generator, classifier and (if configured) the conversation store."""
    store = None
    if is_store_configured(cfg):
        store = ConversationStore.from_config(cfg)
    else:
        logger.warning("Vector database not configured, running stateless (no memory)")

    classifier = None
    if cfg.get("emotion", {}).get("enabled", True):
        classifier = EmotionClassifier.from_config(cfg)

    return ChatPipeline(
        generator=ResponseGenerator.from_config(cfg),
        store=store,
        classifier=classifier,
        settings=PipelineSettings.from_config(cfg),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    if app.state.pipeline is None:
        cfg = get_config()
        _setup_logging(cfg)
        app.state.pipeline = build_pipeline(cfg)

    pipeline: ChatPipeline = app.state.pipeline
    logger.info("MindMend %s started", __version__)
    logger.info("Model: %s", getattr(pipeline.generator, "model", "?"))
    logger.info("Memory: %s", "enabled" if pipeline.memory_enabled else "disabled (stateless)")
    logger.info("Emotion classifier: %s", "enabled" if pipeline.classifier else "disabled")
    logger.info(
        "Streaming: %s",
        "incremental" if pipeline.settings.incremental_stream else "whole reply",
    )
    if pipeline.settings.dev_mode:
        logger.warning("Development mode: raw upstream errors are returned to clients")

    yield

    logger.info("MindMend shutting down")
    if pipeline.store is not None:
        pipeline.store.close()


router = APIRouter()


def _pipeline(request: Request) -> ChatPipeline:
    return request.app.state.pipeline


def _error(message: str, status_code: int, detail: str = "", dev_mode: bool = False) -> JSONResponse:
    payload = {"error": message}
    if dev_mode and detail:
        payload["detail"] = detail
    return JSONResponse(payload, status_code=status_code)


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

@router.post("/api/chat")
async def chat(request: Request):
    """
    One chat turn. Body: {messages, userId, userName?, stream?}.
    Validation failures are 400 with no upstream calls; a generation
    failure is 500 with a retry message.
    """
    pipeline = _pipeline(request)
    dev = pipeline.settings.dev_mode

    try:
        body = await request.json()
    except Exception:
        return _error("Invalid JSON body", 400)

    try:
        req = parse_request(body)
    except ValidationError as e:
        return _error(str(e), 400)

    stream = req.stream if req.stream is not None else pipeline.settings.stream_by_default

    if stream and pipeline.settings.incremental_stream:
        return StreamingResponse(
            pipeline.stream(req),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )

    try:
        result = await pipeline.run(req)
    except GenerationError as e:
        return _error(str(e), 500, e.detail, dev)
    except Exception as e:
        logger.exception("Chat request failed for %s", req.user_id)
        return _error(STUCK_MESSAGE, 500, str(e), dev)

    if stream:
        return StreamingResponse(
            iter(list(result.frames())),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )
    return JSONResponse(result.to_json())


@router.post("/api/session")
async def session(request: Request):
    """Guess a display name from free text and return the derived userId and greeting."""
    try:
        body = await request.json()
    except Exception:
        return _error("Invalid JSON body", 400)

    text = body.get("text") if isinstance(body, dict) else None
    if not isinstance(text, str):
        return _error("text is required", 400)

    name = extract_name(text)
    return JSONResponse({
        "name": name,
        "userId": user_id_for(name),
        "welcome": welcome_message(name),
    })


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------

@router.get("/api/conversations/{user_id}")
async def recent_conversations(request: Request, user_id: str, limit: int = 20):
    store = _pipeline(request).store
    if store is None:
        return _error(MEMORY_DISABLED, 503)
    try:
        records = await store.get_recent_conversations(user_id, limit=limit)
    except ValidationError as e:
        return _error(str(e), 400)
    except UpstreamUnavailable as e:
        logger.error("Listing conversations failed: %s", e)
        return _error(MEMORY_UNAVAILABLE, 502)
    return JSONResponse({
        "userId": user_id,
        "messages": [r.to_dict() for r in records],
        "count": len(records),
    })


@router.get("/api/conversations/{user_id}/stats")
async def conversation_stats(request: Request, user_id: str):
    store = _pipeline(request).store
    if store is None:
        return _error(MEMORY_DISABLED, 503)
    try:
        stats = await store.get_user_stats(user_id)
    except ValidationError as e:
        return _error(str(e), 400)
    except UpstreamUnavailable as e:
        logger.error("Conversation stats failed: %s", e)
        return _error(MEMORY_UNAVAILABLE, 502)
    return JSONResponse(stats)


@router.delete("/api/conversations/{user_id}")
async def forget_conversations(request: Request, user_id: str):
    store = _pipeline(request).store
    if store is None:
        return _error(MEMORY_DISABLED, 503)
    try:
        deleted = await store.delete_user_conversations(user_id)
    except ValidationError as e:
        return _error(str(e), 400)
    except UpstreamUnavailable as e:
        logger.error("Deleting conversations failed: %s", e)
        return _error(MEMORY_UNAVAILABLE, 502)
    return JSONResponse({"userId": user_id, "deleted": deleted})


@router.get("/api/health")
async def health(request: Request, deep: bool = False):
    """Health check. With ?deep=true also checks the inference endpoint and the index."""
    pipeline = _pipeline(request)
    payload = {
        "status": "ok",
        "version": __version__,
        "memory": pipeline.memory_enabled,
        "emotion": pipeline.classifier is not None,
        "streaming": "incremental" if pipeline.settings.incremental_stream else "whole",
    }
    if not deep:
        return JSONResponse(payload)

    backend = getattr(pipeline.generator, "backend", None)
    payload["inference"] = bool(backend and await backend.health_check())
    if pipeline.store is not None:
        try:
            stats = await asyncio.to_thread(pipeline.store.get_stats)
            payload["total_embeddings"] = stats.get("total_embeddings", 0)
        except Exception as e:
            logger.warning("Index stats unavailable: %s", e)
            payload["total_embeddings"] = None
    if not payload["inference"]:
        payload["status"] = "degraded"
    return JSONResponse(payload)


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

def create_app(pipeline: ChatPipeline | None = None) -> FastAPI:
    app = FastAPI(
        title="MindMend",
        description="A warm place to talk things through.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline
    app.include_router(router)
    return app


app = create_app()
