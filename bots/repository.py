# bots/repository.py - Bot records and the bot id index in the KV store
import json
from typing import List, Optional

from config import BOT_INDEX_KEY, BOT_KEY_PREFIX
from storage import KVStore
from utils.logger import get_server_logger

from .models import BotConfig, load_bot_config

logger = get_server_logger()


def bot_key(bot_id: str) -> str:
    return f"{BOT_KEY_PREFIX}{bot_id}"


def load_bot(store: KVStore, bot_id: str) -> Optional[BotConfig]:
    """Fetch and re-normalize a stored record. Unreadable records count as missing."""
    raw = store.get(bot_key(bot_id))
    if raw is None:
        return None
    try:
        return load_bot_config(json.loads(raw))
    except (json.JSONDecodeError, ValueError) as e:
        logger.error(f"[{bot_id}] Stored config is unreadable: {e}")
        return None


def save_bot(store: KVStore, bot: BotConfig) -> None:
    """Write the record, then make sure the id is in the index (last write wins)."""
    store.put(bot_key(bot.bot_id), json.dumps(bot.to_record()))
    ids = list_bot_ids(store)
    if bot.bot_id not in ids:
        ids.append(bot.bot_id)
        store.put(BOT_INDEX_KEY, json.dumps(sorted(ids)))


def delete_bot(store: KVStore, bot_id: str) -> bool:
    """Remove a record and its index entry. Returns False if it did not exist."""
    existed = store.get(bot_key(bot_id)) is not None
    store.delete(bot_key(bot_id))
    ids = list_bot_ids(store)
    if bot_id in ids:
        ids.remove(bot_id)
        store.put(BOT_INDEX_KEY, json.dumps(ids))
    return existed


def list_bot_ids(store: KVStore) -> List[str]:
    raw = store.get(BOT_INDEX_KEY)
    if not raw:
        return []
    try:
        ids = json.loads(raw)
    except json.JSONDecodeError:
        logger.error("Bot index is unreadable, treating as empty")
        return []
    return [i for i in ids if isinstance(i, str)] if isinstance(ids, list) else []
