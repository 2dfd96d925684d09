# config.py - Centralized limits for the multi-tenant site chat API
"""
All global ceilings and per-bot defaults in one place.

Bot records are admin-supplied, so every per-bot value is clamped to the
(min, max) ranges below when it is written. Request-time code relies on that.
"""

# === STORE KEYS ===
BOT_KEY_PREFIX = "bot:"
BOT_INDEX_KEY = "bots:index"

# === IDENTITY / TEXT FIELDS ===
MAX_SITE_NAME_CHARS = 120
MAX_TONE_CHARS = 300
MAX_GREETING_CHARS = 300
MAX_MODEL_ID_CHARS = 100
MAX_URL_LENGTH = 2048
MAX_HEADER_VALUE_CHARS = 512
MAX_BLOCK_MESSAGE_CHARS = 500
MAX_ALLOWED_ORIGINS = 20
MAX_BOT_KEY_CHARS = 256

DEFAULT_SITE_NAME = "Site"
DEFAULT_TONE = "helpful, concise, high-trust"
DEFAULT_GREETING = "Hi, how can I help today?"

# === MODEL ===
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_TOKENS = 400
MAX_TOKENS_RANGE = (16, 2048)
DEFAULT_TEMPERATURE = 0.4
TEMPERATURE_RANGE = (0.0, 2.0)
DEFAULT_MAX_OUTPUT_CHARS = 4000
MAX_OUTPUT_CHARS_RANGE = (200, 8000)

# === LEAD CAPTURE ===
MAX_QUALIFYING_QUESTIONS = 8
MAX_QUALIFYING_QUESTION_CHARS = 300

# === GUARDRAILS ===
MAX_DISALLOW_PHRASES = 10
MAX_DISALLOW_PHRASE_CHARS = 200
MAX_EXTRA_SYSTEM_CHARS = 2000

# === KNOWLEDGE ===
MAX_KNOWLEDGE_TEXT_CHARS = 18_000   # Static knowledge blob
MAX_KNOWLEDGE_URLS = 16
MAX_PAGE_EXCERPT_CHARS = 6_000      # Per page inside the context block
MAX_CONTEXT_CHARS = 18_000          # Whole context block, any mode
MAX_CHUNKS_PER_PAGE = 24
CHUNK_OVERLAP = 100
MAX_FETCH_BYTES = 2 * 1024 * 1024
FETCH_WORKERS = 8

# === RAG (per-bot tunables) ===
DEFAULT_RAG_MAX_URLS = 3
RAG_MAX_URLS_RANGE = (1, 8)
DEFAULT_RAG_TOP_K = 4
RAG_TOP_K_RANGE = (1, 12)
DEFAULT_CHUNK_SIZE = 800
CHUNK_SIZE_RANGE = (200, 2000)
DEFAULT_CACHE_TTL_SECONDS = 3600
CACHE_TTL_RANGE = (60, 7 * 24 * 3600)
DEFAULT_EMBED_MODEL = "text-embedding-3-small"

# === CONVERSATION SHAPE ===
DEFAULT_MAX_TURNS = 12
MAX_TURNS_RANGE = (1, 50)
DEFAULT_MAX_MESSAGE_CHARS = 2000
MAX_MESSAGE_CHARS_RANGE = (50, 8000)
MAX_HISTORY_ITEMS = 200             # Items examined from the caller's history
MAX_SYSTEM_CHARS = 24_000
MAX_TOTAL_INPUT_CHARS = 48_000      # System message + turns

# === RATE LIMITING ===
DEFAULT_RATE_LIMIT_REQUESTS = 20
RATE_LIMIT_REQUESTS_RANGE = (1, 1000)
DEFAULT_RATE_LIMIT_WINDOW_SECONDS = 60
RATE_LIMIT_WINDOW_RANGE = (1, 3600)

# === DAILY BUDGET (0 disables a dimension) ===
MAX_REQUESTS_PER_DAY_RANGE = (0, 1_000_000)
MAX_TOKENS_PER_DAY_RANGE = (0, 100_000_000)
BUDGET_COUNTER_TTL_SECONDS = 36 * 3600
CHARS_PER_TOKEN = 4
DEFAULT_BLOCK_MESSAGE = (
    "Thanks for chatting! This assistant has reached its usage limit for now. "
    "Please use the contact page for next steps."
)

# === TIMEOUTS (seconds) ===
FETCH_TIMEOUT_SECONDS = 7
EMBED_TIMEOUT_SECONDS = 15
INFERENCE_TIMEOUT_SECONDS = 30
WEBHOOK_TIMEOUT_SECONDS = 5

# === REPLIES ===
RATE_LIMIT_MESSAGE = "You are sending messages too quickly. Please wait a moment and try again."
FALLBACK_MESSAGE = "Sorry, I couldn't come up with a reply just now. Please try again."
UPSTREAM_FAILURE_MESSAGE = "The assistant is temporarily unavailable. Please try again in a moment."
INTERNAL_ERROR_MESSAGE = "Something went wrong on our side. Please try again."
