# chat/actions.py
"""
Best-effort webhook delivery for actions that need someone to be told.

Delivery runs as a FastAPI background task, after the response has been
sent. Failures only ever show up in the logs.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
from fastapi import BackgroundTasks

from bots.models import ActionType, BotConfig
from config import WEBHOOK_TIMEOUT_SECONDS
from utils.logger import get_actions_logger

from .response_parser import Action

logger = get_actions_logger()

DISPATCHED_TYPES = (ActionType.CREATE_LEAD, ActionType.WEBHOOK)


def needs_dispatch(config: BotConfig, action: Optional[Action]) -> bool:
    # open_contact is handled in the browser with the returned contactUrl
    return action is not None and action.type in DISPATCHED_TYPES and bool(config.actions.webhook_url)


def build_webhook_payload(config: BotConfig, action: Action, request_id: str) -> Dict[str, Any]:
    return {
        "botId": config.bot_id,
        "siteName": config.site_name,
        "requestId": request_id,
        "action": {"type": action.type.value, "payload": action.payload},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def dispatch_webhook(config: BotConfig, action: Action, request_id: str) -> bool:
    """POST the action to the bot's webhook. Returns True on a 2xx, never raises."""
    headers = {"Content-Type": "application/json"}
    if config.actions.webhook_auth_header:
        headers["Authorization"] = config.actions.webhook_auth_header
    if config.actions.webhook_secret:
        headers["X-Webhook-Secret"] = config.actions.webhook_secret

    try:
        response = requests.post(
            config.actions.webhook_url,
            json=build_webhook_payload(config, action, request_id),
            headers=headers,
            timeout=WEBHOOK_TIMEOUT_SECONDS,
        )
    except requests.exceptions.RequestException as e:
        logger.warning(f"[{request_id}] Webhook for {config.bot_id} failed: {type(e).__name__}")
        return False

    if not response.ok:
        logger.warning(f"[{request_id}] Webhook for {config.bot_id} returned {response.status_code}")
        return False

    logger.info(f"[{request_id}] Webhook delivered for {config.bot_id} ({action.type.value})")
    return True


def maybe_dispatch(tasks: BackgroundTasks, config: BotConfig, action: Optional[Action], request_id: str) -> bool:
    """Schedule delivery if the action calls for it. Returns whether anything was scheduled."""
    if not needs_dispatch(config, action):
        return False
    tasks.add_task(dispatch_webhook, config, action, request_id)
    return True
