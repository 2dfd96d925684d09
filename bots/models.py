# bots/models.py
"""
Per-bot configuration records.

Records are written only through the admin path and are read-only while a
chat request is being served. normalize_bot_config() is the single way a
record is produced: it never rejects a write except for a missing botId.
Every other field falls back to the existing record, then to the default
in config.py, and is clamped to its global range.
"""

import math
import re
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

import config as limits
from utils.text import safe_trim
from utils.validators import URLValidationError, normalize_origin, validate_bot_id, validate_url

BRAND_HEX_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")
CONTACT_URL_PREFIXES = ("http://", "https://", "mailto:", "tel:", "/")
TRUE_STRINGS = {"1", "true", "yes", "on"}
FALSE_STRINGS = {"0", "false", "no", "off"}


class BotMode(str, Enum):
    INFO = "info"
    ASSISTANT = "assistant"
    SALES = "sales"
    SUPPORT = "support"


class LeadMode(str, Enum):
    SOFT = "soft"
    BALANCED = "balanced"
    DIRECT = "direct"


class RagMode(str, Enum):
    SIMPLE = "simple"
    EMBED = "embed"


class OriginPolicy(str, Enum):
    PERMISSIVE = "permissive"
    STRICT = "strict"


class ActionType(str, Enum):
    OPEN_CONTACT = "open_contact"
    CREATE_LEAD = "create_lead"
    WEBHOOK = "webhook"
    NONE = "none"


LEAD_MODE_ALIASES = {"hard": LeadMode.DIRECT, "aggressive": LeadMode.DIRECT}


# --- Records ---

class Record(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RagSettings(Record):
    enabled: bool = False
    mode: RagMode = RagMode.SIMPLE
    max_urls: int = limits.DEFAULT_RAG_MAX_URLS
    top_k: int = limits.DEFAULT_RAG_TOP_K
    chunk_size: int = limits.DEFAULT_CHUNK_SIZE
    cache_ttl_seconds: int = limits.DEFAULT_CACHE_TTL_SECONDS
    embed_model: str = limits.DEFAULT_EMBED_MODEL


class ConversationLimits(Record):
    max_turns: int = limits.DEFAULT_MAX_TURNS
    max_message_chars: int = limits.DEFAULT_MAX_MESSAGE_CHARS


class RateLimitSettings(Record):
    requests: int = limits.DEFAULT_RATE_LIMIT_REQUESTS
    window_seconds: int = limits.DEFAULT_RATE_LIMIT_WINDOW_SECONDS


class BudgetSettings(Record):
    max_requests_per_day: int = 0
    max_tokens_per_day: int = 0
    block_message: str = limits.DEFAULT_BLOCK_MESSAGE


class ActionPolicy(Record):
    enabled: bool = False
    allowed: List[ActionType] = Field(default_factory=list)
    webhook_url: Optional[str] = None
    webhook_auth_header: Optional[str] = None
    webhook_secret: Optional[str] = None

    def permits(self, action_type: ActionType) -> bool:
        if not self.enabled or action_type == ActionType.NONE:
            return False
        return not self.allowed or action_type in self.allowed


class Guardrails(Record):
    knowledge_only: bool = False
    disallow: List[str] = Field(default_factory=list)
    extra_system: str = ""


class BotConfig(Record):
    bot_id: str
    site_name: str = limits.DEFAULT_SITE_NAME
    contact_url: Optional[str] = None
    greeting: str = limits.DEFAULT_GREETING
    brand_hex: Optional[str] = None
    tone: str = limits.DEFAULT_TONE
    mode: BotMode = BotMode.ASSISTANT
    model: str = limits.DEFAULT_MODEL
    max_tokens: int = limits.DEFAULT_MAX_TOKENS
    temperature: float = limits.DEFAULT_TEMPERATURE
    allowed_origins: List[str] = Field(default_factory=list)
    origin_policy: OriginPolicy = OriginPolicy.PERMISSIVE
    bot_key: Optional[str] = None
    lead_mode: LeadMode = LeadMode.BALANCED
    qualifying_questions: List[str] = Field(default_factory=list)
    knowledge_text: str = ""
    knowledge_urls: List[str] = Field(default_factory=list)
    rag: RagSettings = Field(default_factory=RagSettings)
    conversation: ConversationLimits = Field(default_factory=ConversationLimits)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    budget: BudgetSettings = Field(default_factory=BudgetSettings)
    actions: ActionPolicy = Field(default_factory=ActionPolicy)
    guardrails: Guardrails = Field(default_factory=Guardrails)
    max_output_chars: int = limits.DEFAULT_MAX_OUTPUT_CHARS

    def to_record(self) -> Dict[str, Any]:
        """JSON-ready dict, as persisted and echoed to admins."""
        return self.model_dump(mode="json", by_alias=True)

    def public_view(self) -> Dict[str, Any]:
        """Fields the embeddable widget may see. No secrets, origins or limits."""
        return {
            "botId": self.bot_id,
            "siteName": self.site_name,
            "contactUrl": self.contact_url,
            "greeting": self.greeting,
            "brandHex": self.brand_hex,
            "mode": self.mode.value,
            "leadMode": self.lead_mode.value,
            "qualifyingQuestions": list(self.qualifying_questions),
        }


# --- Coercion helpers: return None when a value is unusable ---

def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    number = _as_float(value)
    return int(number) if number is not None else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
    return None


def _as_text(max_chars: int) -> Callable[[Any], Optional[str]]:
    def coerce(value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        return safe_trim(value.strip(), max_chars)
    return coerce


def _as_nonempty_text(max_chars: int) -> Callable[[Any], Optional[str]]:
    as_text = _as_text(max_chars)

    def coerce(value: Any) -> Optional[str]:
        return as_text(value) or None
    return coerce


def _as_enum(enum_cls, aliases: Optional[Dict[str, Enum]] = None) -> Callable[[Any], Optional[Enum]]:
    def coerce(value: Any) -> Optional[Enum]:
        if isinstance(value, enum_cls):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        if aliases and key in aliases:
            return aliases[key]
        try:
            return enum_cls(key)
        except ValueError:
            return None
    return coerce


def _as_list(coerce_item: Callable[[Any], Any], max_items: int) -> Callable[[Any], Optional[list]]:
    """Clean a list item by item; bad items are dropped, duplicates removed, long lists truncated."""
    def coerce(value: Any) -> Optional[list]:
        if not isinstance(value, (list, tuple)):
            return None
        cleaned = []
        for item in value:
            item = coerce_item(item)
            if item is None or item == "" or item in cleaned:
                continue
            cleaned.append(item)
            if len(cleaned) >= max_items:
                break
        return cleaned
    return coerce


def _as_outbound_url(value: Any) -> Optional[str]:
    """http(s) URL, or "" as an explicit clear."""
    if isinstance(value, str) and not value.strip():
        return ""
    try:
        return validate_url(value)
    except URLValidationError:
        return None


def _as_contact_url(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value:
        return ""
    if len(value) > limits.MAX_URL_LENGTH or not value.lower().startswith(CONTACT_URL_PREFIXES):
        return None
    return value


def _as_brand_hex(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value:
        return ""
    return value.lower() if BRAND_HEX_PATTERN.match(value) else None


def _as_action_type(value: Any) -> Optional[ActionType]:
    action_type = _as_enum(ActionType)(value)
    return None if action_type == ActionType.NONE else action_type


def _clamp(value, bounds: Tuple):
    low, high = bounds
    return max(low, min(high, value))


class _FieldSource:
    """Resolves one section's fields: incoming value, else existing value, else default."""

    def __init__(self, incoming: Any, existing: Any):
        self.incoming = incoming if isinstance(incoming, dict) else {}
        self.existing = existing if isinstance(existing, dict) else {}

    def section(self, key: str) -> "_FieldSource":
        return _FieldSource(self.incoming.get(key), self.existing.get(key))

    def pick(self, key: str, coerce: Callable[[Any], Any], default: Any) -> Any:
        for source in (self.incoming, self.existing):
            if key in source:
                value = coerce(source[key])
                if value is not None:
                    return value
        return default

    def pick_int(self, key: str, default: int, bounds: Tuple[int, int]) -> int:
        return _clamp(self.pick(key, _as_int, default), bounds)

    def pick_float(self, key: str, default: float, bounds: Tuple[float, float]) -> float:
        return _clamp(self.pick(key, _as_float, default), bounds)


# --- Normalization ---

def normalize_bot_config(incoming: Any, existing: Optional[BotConfig] = None) -> BotConfig:
    """
    Build a clamped, fully-populated BotConfig from an admin write.

    Args:
        incoming: Raw JSON body (partial or full record)
        existing: The currently stored record for the same bot, if any

    Returns:
        Normalized BotConfig

    Raises:
        ValueError: If botId is missing or empty
    """
    if not isinstance(incoming, dict):
        raise ValueError("botId is required")
    bot_id = validate_bot_id(incoming.get("botId"))

    prior = existing.to_record() if existing is not None else {}
    fields = _FieldSource(incoming, prior)

    allowed_origins = fields.pick(
        "allowedOrigins", _as_list(normalize_origin, limits.MAX_ALLOWED_ORIGINS), []
    )

    rag = fields.section("rag")
    conversation = fields.section("conversation")
    rate_limit = fields.section("rateLimit")
    budget = fields.section("budget")
    actions = fields.section("actions")
    guardrails = fields.section("guardrails")

    return BotConfig(
        bot_id=bot_id,
        site_name=fields.pick("siteName", _as_nonempty_text(limits.MAX_SITE_NAME_CHARS), limits.DEFAULT_SITE_NAME),
        contact_url=fields.pick("contactUrl", _as_contact_url, None) or None,
        greeting=fields.pick("greeting", _as_nonempty_text(limits.MAX_GREETING_CHARS), limits.DEFAULT_GREETING),
        brand_hex=fields.pick("brandHex", _as_brand_hex, None) or None,
        tone=fields.pick("tone", _as_nonempty_text(limits.MAX_TONE_CHARS), limits.DEFAULT_TONE),
        mode=fields.pick("mode", _as_enum(BotMode), BotMode.ASSISTANT),
        model=fields.pick("model", _as_nonempty_text(limits.MAX_MODEL_ID_CHARS), limits.DEFAULT_MODEL),
        max_tokens=fields.pick_int("maxTokens", limits.DEFAULT_MAX_TOKENS, limits.MAX_TOKENS_RANGE),
        temperature=fields.pick_float("temperature", limits.DEFAULT_TEMPERATURE, limits.TEMPERATURE_RANGE),
        allowed_origins=allowed_origins,
        origin_policy=_resolve_origin_policy(incoming, prior, allowed_origins),
        bot_key=fields.pick("botKey", _as_text(limits.MAX_BOT_KEY_CHARS), None) or None,
        lead_mode=fields.pick("leadMode", _as_enum(LeadMode, LEAD_MODE_ALIASES), LeadMode.BALANCED),
        qualifying_questions=fields.pick(
            "qualifyingQuestions",
            _as_list(_as_text(limits.MAX_QUALIFYING_QUESTION_CHARS), limits.MAX_QUALIFYING_QUESTIONS),
            [],
        ),
        knowledge_text=fields.pick("knowledgeText", _as_text(limits.MAX_KNOWLEDGE_TEXT_CHARS), ""),
        knowledge_urls=fields.pick(
            "knowledgeUrls", _as_list(_as_outbound_url, limits.MAX_KNOWLEDGE_URLS), []
        ),
        rag=RagSettings(
            enabled=rag.pick("enabled", _as_bool, False),
            mode=rag.pick("mode", _as_enum(RagMode), RagMode.SIMPLE),
            max_urls=rag.pick_int("maxUrls", limits.DEFAULT_RAG_MAX_URLS, limits.RAG_MAX_URLS_RANGE),
            top_k=rag.pick_int("topK", limits.DEFAULT_RAG_TOP_K, limits.RAG_TOP_K_RANGE),
            chunk_size=rag.pick_int("chunkSize", limits.DEFAULT_CHUNK_SIZE, limits.CHUNK_SIZE_RANGE),
            cache_ttl_seconds=rag.pick_int(
                "cacheTtlSeconds", limits.DEFAULT_CACHE_TTL_SECONDS, limits.CACHE_TTL_RANGE
            ),
            embed_model=rag.pick(
                "embedModel", _as_nonempty_text(limits.MAX_MODEL_ID_CHARS), limits.DEFAULT_EMBED_MODEL
            ),
        ),
        conversation=ConversationLimits(
            max_turns=conversation.pick_int("maxTurns", limits.DEFAULT_MAX_TURNS, limits.MAX_TURNS_RANGE),
            max_message_chars=conversation.pick_int(
                "maxMessageChars", limits.DEFAULT_MAX_MESSAGE_CHARS, limits.MAX_MESSAGE_CHARS_RANGE
            ),
        ),
        rate_limit=RateLimitSettings(
            requests=rate_limit.pick_int(
                "requests", limits.DEFAULT_RATE_LIMIT_REQUESTS, limits.RATE_LIMIT_REQUESTS_RANGE
            ),
            window_seconds=rate_limit.pick_int(
                "windowSeconds", limits.DEFAULT_RATE_LIMIT_WINDOW_SECONDS, limits.RATE_LIMIT_WINDOW_RANGE
            ),
        ),
        budget=BudgetSettings(
            max_requests_per_day=budget.pick_int("maxRequestsPerDay", 0, limits.MAX_REQUESTS_PER_DAY_RANGE),
            max_tokens_per_day=budget.pick_int("maxTokensPerDay", 0, limits.MAX_TOKENS_PER_DAY_RANGE),
            block_message=budget.pick(
                "blockMessage", _as_nonempty_text(limits.MAX_BLOCK_MESSAGE_CHARS), limits.DEFAULT_BLOCK_MESSAGE
            ),
        ),
        actions=ActionPolicy(
            enabled=actions.pick("enabled", _as_bool, False),
            allowed=actions.pick("allowed", _as_list(_as_action_type, len(ActionType)), []),
            webhook_url=actions.pick("webhookUrl", _as_outbound_url, None) or None,
            webhook_auth_header=actions.pick(
                "webhookAuthHeader", _as_text(limits.MAX_HEADER_VALUE_CHARS), None
            ) or None,
            webhook_secret=actions.pick("webhookSecret", _as_text(limits.MAX_HEADER_VALUE_CHARS), None) or None,
        ),
        guardrails=Guardrails(
            knowledge_only=guardrails.pick("knowledgeOnly", _as_bool, False),
            disallow=guardrails.pick(
                "disallow",
                _as_list(_as_text(limits.MAX_DISALLOW_PHRASE_CHARS), limits.MAX_DISALLOW_PHRASES),
                [],
            ),
            extra_system=guardrails.pick("extraSystem", _as_text(limits.MAX_EXTRA_SYSTEM_CHARS), ""),
        ),
        max_output_chars=fields.pick_int(
            "maxOutputChars", limits.DEFAULT_MAX_OUTPUT_CHARS, limits.MAX_OUTPUT_CHARS_RANGE
        ),
    )


def _resolve_origin_policy(incoming: Dict, prior: Dict, allowed_origins: List[str]) -> OriginPolicy:
    """
    Strict whenever an allowlist exists. With an empty list the bot is
    permissive unless an operator explicitly asked for strict (deny every
    browser origin). An explicit strict survives partial updates only while
    the stored list is still empty.
    """
    if allowed_origins:
        return OriginPolicy.STRICT

    as_policy = _as_enum(OriginPolicy)
    explicit = as_policy(incoming.get("originPolicy"))
    if explicit is not None:
        return explicit
    if not prior.get("allowedOrigins"):
        stored = as_policy(prior.get("originPolicy"))
        if stored is not None:
            return stored
    return OriginPolicy.PERMISSIVE


def load_bot_config(record: Any) -> BotConfig:
    """Rebuild a config from a stored record, re-applying every clamp."""
    return normalize_bot_config(record)
