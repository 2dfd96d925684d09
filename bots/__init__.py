# bots/__init__.py
from .models import (
    ActionPolicy,
    ActionType,
    BotConfig,
    BotMode,
    LeadMode,
    OriginPolicy,
    RagMode,
    normalize_bot_config,
)
from .repository import delete_bot, list_bot_ids, load_bot, save_bot

__all__ = [
    "ActionPolicy",
    "ActionType",
    "BotConfig",
    "BotMode",
    "LeadMode",
    "OriginPolicy",
    "RagMode",
    "normalize_bot_config",
    "delete_bot",
    "list_bot_ids",
    "load_bot",
    "save_bot",
]
