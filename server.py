# server.py - FastAPI multi-tenant site chat server
import hmac
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import BackgroundTasks, Body, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, field_validator

from bots import delete_bot, list_bot_ids, load_bot, normalize_bot_config, save_bot
from bots.admission import admit, charge_budget, check_origin
from chat import LangChainInferenceService, action_response, create_chat_graph, maybe_dispatch, run_chat
from knowledge import clear_knowledge, refresh_knowledge
from knowledge.embedder import OpenAIEmbeddingService
from storage import create_store
from utils.errors import BadRequest, BotNotFound, ChatError, Unauthorized, UpstreamError
from utils.logger import get_server_logger
from utils.rate_limiter import get_client_ip
from utils.validators import normalize_origin, validate_bot_id

import config as limits
from config import INTERNAL_ERROR_MESSAGE

load_dotenv()

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")
REDIS_URL = os.getenv("REDIS_URL")
DEV_ALLOWED_ORIGINS = [o.strip() for o in os.getenv("DEV_ALLOWED_ORIGINS", "").split(",") if o.strip()]

# Routes whose CORS answer depends on the bot's allowlist
BOT_SCOPED_PATHS = ("/api/chat", "/bot/")

ROUTES = [
    "GET /health",
    "GET /limits",
    "GET /bot/{botId}",
    "POST /api/chat",
    "POST /admin/upsert (auth)",
    "POST /admin/get (auth)",
    "POST /admin/list (auth)",
    "POST /admin/delete (auth)",
    "POST /admin/kb/refresh (auth)",
    "POST /admin/kb/clear (auth)",
]

# Initialize loggers
logger = get_server_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup lifecycle handler."""
    logger.info(f"Site Chat API starting ({type(app.state.store).__name__})...")
    yield
    logger.info("Site Chat API shutting down...")


app = FastAPI(
    title="Site Chat API",
    description="Embeddable, per-site chat assistants backed by a hosted model",
    version="1.0.0",
    lifespan=lifespan
)


def configure_services(
    app: FastAPI,
    store=None,
    inference=None,
    embedder=None,
    admin_token: Optional[str] = None,
    dev_origins: Optional[List[str]] = None,
    clock=time.time,
):
    """Attach the store, model services and compiled chat graph to the app."""
    app.state.store = store if store is not None else create_store(REDIS_URL)
    app.state.inference = inference if inference is not None else LangChainInferenceService()
    app.state.embedder = embedder if embedder is not None else OpenAIEmbeddingService()
    app.state.chat_graph = create_chat_graph(app.state.store, app.state.inference, app.state.embedder)
    app.state.admin_token = ADMIN_TOKEN if admin_token is None else admin_token
    normalized = [normalize_origin(o) for o in (DEV_ALLOWED_ORIGINS if dev_origins is None else dev_origins)]
    app.state.dev_origins = [o for o in normalized if o]
    app.state.clock = clock


configure_services(app)


# --- CORS and response helpers ---

def cors_headers(allow_origin: Optional[str]) -> Dict[str, str]:
    headers = {
        "Vary": "Origin",
        "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
        "Access-Control-Allow-Headers": "content-type, authorization, x-bot-key, x-debug",
        "Access-Control-Max-Age": "86400",
    }
    if allow_origin:
        headers["Access-Control-Allow-Origin"] = allow_origin
    return headers


def json_response(body: Dict[str, Any], status_code: int = 200, allow_origin: Optional[str] = None,
                  headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    merged = cors_headers(allow_origin)
    merged.update(headers or {})
    return JSONResponse(content=body, status_code=status_code, headers=merged)


def well_formed_origin(request: Request) -> Optional[str]:
    origin = request.headers.get("origin")
    return origin if origin and normalize_origin(origin) else None


def open_route_origin(request: Request) -> Optional[str]:
    """Origin to echo on routes that no bot allowlist governs."""
    if request.url.path.startswith(BOT_SCOPED_PATHS):
        return None
    return well_formed_origin(request)


def request_id_of(request: Request) -> str:
    return getattr(request.state, "request_id", None) or uuid.uuid4().hex


def is_admin(request: Request) -> bool:
    token = request.app.state.admin_token
    auth = request.headers.get("authorization", "")
    if not token or not auth.startswith("Bearer "):
        return False
    supplied = auth[len("Bearer "):].strip()
    return hmac.compare_digest(supplied.encode("utf-8"), token.encode("utf-8"))


def wants_debug(request: Request) -> bool:
    """Debug output needs the flag and a valid admin token."""
    flag = request.query_params.get("debug") or request.headers.get("x-debug") or ""
    return flag.lower() in ("1", "true") and is_admin(request)


def require_admin(request: Request):
    if not is_admin(request):
        raise Unauthorized("Missing or invalid admin token.")


# --- Middleware and exception handlers ---

@app.middleware("http")
async def assign_request_id(request: Request, call_next):
    request.state.request_id = uuid.uuid4().hex
    response = await call_next(request)
    response.headers["X-Request-Id"] = request.state.request_id
    return response


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    allow_origin = exc.allow_origin if exc.allow_origin else open_route_origin(request)
    return json_response(
        exc.to_dict(request_id_of(request), debug=wants_debug(request)),
        status_code=exc.status_code,
        allow_origin=allow_origin,
        headers=exc.headers(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    error = BadRequest("Malformed request body.", detail=str(exc.errors()))
    logger.info(f"[{request_id_of(request)}] {request.method} {request.url.path} - malformed body")
    return await chat_error_handler(request, error)


# Request/Response Models
class ChatRequest(BaseModel):
    botId: str
    messages: List[Any] = []
    botKey: Optional[str] = None

    @field_validator('botId')
    @classmethod
    def validate_bot(cls, v):
        return validate_bot_id(v)


class BotIdRequest(BaseModel):
    botId: str

    @field_validator('botId')
    @classmethod
    def validate_bot(cls, v):
        return validate_bot_id(v)


# Routes
@app.options("/{path:path}")
async def preflight(path: str, request: Request):
    """Preflight is answered without a store lookup; the real request enforces the origin."""
    return Response(status_code=204, headers=cors_headers(well_formed_origin(request)))


@app.get("/")
async def root(request: Request):
    """Friendly 404 listing the available routes."""
    return json_response(
        {"ok": False, "error": "not_found", "requestId": request_id_of(request), "routes": ROUTES},
        status_code=404,
        allow_origin=well_formed_origin(request),
    )


@app.get("/health")
async def health(request: Request):
    """Health check endpoint."""
    return json_response({"ok": True}, allow_origin=well_formed_origin(request))


@app.get("/limits")
async def get_limits(request: Request):
    """Global ceilings every bot config is clamped to."""
    return json_response({
        "ok": True,
        "model": {
            "max_tokens": list(limits.MAX_TOKENS_RANGE),
            "temperature": list(limits.TEMPERATURE_RANGE),
            "max_output_chars": list(limits.MAX_OUTPUT_CHARS_RANGE),
        },
        "knowledge": {
            "max_knowledge_text_chars": limits.MAX_KNOWLEDGE_TEXT_CHARS,
            "max_knowledge_urls": limits.MAX_KNOWLEDGE_URLS,
            "max_page_excerpt_chars": limits.MAX_PAGE_EXCERPT_CHARS,
            "max_context_chars": limits.MAX_CONTEXT_CHARS,
            "rag_max_urls": list(limits.RAG_MAX_URLS_RANGE),
            "rag_top_k": list(limits.RAG_TOP_K_RANGE),
            "chunk_size": list(limits.CHUNK_SIZE_RANGE),
            "cache_ttl_seconds": list(limits.CACHE_TTL_RANGE),
        },
        "conversation": {
            "max_turns": list(limits.MAX_TURNS_RANGE),
            "max_message_chars": list(limits.MAX_MESSAGE_CHARS_RANGE),
            "max_system_chars": limits.MAX_SYSTEM_CHARS,
            "max_total_input_chars": limits.MAX_TOTAL_INPUT_CHARS,
        },
        "rate_limits": {
            "requests": list(limits.RATE_LIMIT_REQUESTS_RANGE),
            "window_seconds": list(limits.RATE_LIMIT_WINDOW_RANGE),
        },
        "budget": {
            "max_requests_per_day": list(limits.MAX_REQUESTS_PER_DAY_RANGE),
            "max_tokens_per_day": list(limits.MAX_TOKENS_PER_DAY_RANGE),
        },
    }, allow_origin=well_formed_origin(request))


@app.get("/bot/{bot_id}")
def public_config(bot_id: str, request: Request):
    """Widget-safe view of a bot: branding and lead copy, never secrets."""
    config = load_bot(request.app.state.store, bot_id.strip())
    if config is None:
        raise BotNotFound("This chat is not available.")
    allow_origin = check_origin(config, request.headers.get("origin"), request.app.state.dev_origins)
    return json_response(
        {"ok": True, "bot": config.public_view(), "requestId": request_id_of(request)},
        allow_origin=allow_origin,
    )


@app.post("/api/chat")
def chat(body: ChatRequest, request: Request, background_tasks: BackgroundTasks):
    """Answer one visitor turn for an embedded bot."""
    state = request.app.state
    request_id = request_id_of(request)
    debug = wants_debug(request)
    start_time = time.time()
    allow_origin = None

    logger.info(f"[{request_id}] POST /api/chat - bot: {body.botId}")

    try:
        admission = admit(
            state.store,
            body.botId,
            origin=request.headers.get("origin"),
            supplied_key=body.botKey or request.headers.get("x-bot-key"),
            client_ip=get_client_ip(request),
            now=state.clock(),
            dev_origins=state.dev_origins,
        )
        allow_origin = admission.allow_origin
        config = admission.config

        result = run_chat(state.chat_graph, config, body.messages)
        charge_budget(state.store, config, result["tokens"], state.clock())

    except ChatError as e:
        if e.allow_origin is None:
            e.allow_origin = allow_origin
        if isinstance(e, UpstreamError):
            logger.warning(f"[{request_id}] POST /api/chat failed upstream after {time.time() - start_time:.2f}s")
        else:
            logger.info(f"[{request_id}] POST /api/chat rejected: {e.error}")
        return json_response(
            e.to_dict(request_id, debug=debug),
            status_code=e.status_code,
            allow_origin=e.allow_origin,
            headers=e.headers(),
        )
    except Exception as e:
        logger.exception(f"[{request_id}] Unexpected error during chat")
        body_out = {"ok": False, "error": "internal_error", "message": INTERNAL_ERROR_MESSAGE, "requestId": request_id}
        if debug:
            body_out["detail"] = f"{type(e).__name__}: {e}"
        return json_response(body_out, status_code=500, allow_origin=allow_origin)

    reply = result["reply"]
    payload: Dict[str, Any] = {"ok": True, "message": reply.message, "requestId": request_id}
    if reply.action is not None:
        payload["action"] = action_response(config, reply.action)
        maybe_dispatch(background_tasks, config, reply.action, request_id)
    if debug:
        payload["raw"] = jsonable_encoder(result.get("raw"))

    elapsed = time.time() - start_time
    logger.info(f"[{request_id}] POST /api/chat completed in {elapsed:.2f}s - {result['tokens']} tokens")
    return json_response(payload, allow_origin=allow_origin)


# --- Admin (bearer token) ---

@app.post("/admin/upsert", dependencies=[Depends(require_admin)])
def admin_upsert(request: Request, payload: Dict[str, Any] = Body(...)):
    """Create or update a bot. Partial bodies keep the stored values for omitted fields."""
    store = request.app.state.store
    bot_id = payload.get("botId")
    existing = load_bot(store, bot_id.strip()) if isinstance(bot_id, str) and bot_id.strip() else None

    try:
        config = normalize_bot_config(payload, existing)
    except ValueError as e:
        raise BadRequest(str(e))

    save_bot(store, config)
    logger.info(f"[{request_id_of(request)}] Upserted bot {config.bot_id} ({'update' if existing else 'create'})")
    return json_response(
        {"ok": True, "config": config.to_record(), "requestId": request_id_of(request)},
        allow_origin=well_formed_origin(request),
    )


@app.post("/admin/get", dependencies=[Depends(require_admin)])
def admin_get(body: BotIdRequest, request: Request):
    config = load_bot(request.app.state.store, body.botId)
    if config is None:
        raise BotNotFound(f"No bot named {body.botId!r}.")
    return json_response(
        {"ok": True, "config": config.to_record(), "requestId": request_id_of(request)},
        allow_origin=well_formed_origin(request),
    )


@app.post("/admin/list", dependencies=[Depends(require_admin)])
def admin_list(request: Request):
    return json_response(
        {"ok": True, "botIds": list_bot_ids(request.app.state.store), "requestId": request_id_of(request)},
        allow_origin=well_formed_origin(request),
    )


@app.post("/admin/delete", dependencies=[Depends(require_admin)])
def admin_delete(body: BotIdRequest, request: Request):
    if not delete_bot(request.app.state.store, body.botId):
        raise BotNotFound(f"No bot named {body.botId!r}.")
    logger.info(f"[{request_id_of(request)}] Deleted bot {body.botId}")
    return json_response(
        {"ok": True, "deleted": body.botId, "requestId": request_id_of(request)},
        allow_origin=well_formed_origin(request),
    )


@app.post("/admin/kb/refresh", dependencies=[Depends(require_admin)])
def admin_kb_refresh(body: BotIdRequest, request: Request):
    """Re-fetch the bot's knowledge URLs, bypassing the page cache."""
    config = load_bot(request.app.state.store, body.botId)
    if config is None:
        raise BotNotFound(f"No bot named {body.botId!r}.")

    start_time = time.time()
    outcome = refresh_knowledge(config, request.app.state.store)
    logger.info(
        f"[{request_id_of(request)}] Refreshed knowledge for {body.botId} in {time.time() - start_time:.2f}s - "
        f"{len(outcome['refreshed'])} ok, {len(outcome['failed'])} failed"
    )
    return json_response(
        {"ok": True, "botId": body.botId, **outcome, "requestId": request_id_of(request)},
        allow_origin=well_formed_origin(request),
    )


@app.post("/admin/kb/clear", dependencies=[Depends(require_admin)])
def admin_kb_clear(body: BotIdRequest, request: Request):
    config = load_bot(request.app.state.store, body.botId)
    if config is None:
        raise BotNotFound(f"No bot named {body.botId!r}.")
    cleared = clear_knowledge(config, request.app.state.store)
    return json_response(
        {"ok": True, "botId": body.botId, "cleared": cleared, "requestId": request_id_of(request)},
        allow_origin=well_formed_origin(request),
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8787")))
