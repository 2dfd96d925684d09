# chat/response_parser.py
"""
Turns raw model output into a reply plus an optional action.

The model may answer in plain text or with a JSON envelope
{"message": ..., "action": {"type": ..., "payload": {...}}}. Anything that
does not parse cleanly is treated as plain text. Whatever the model says,
the bot's action policy decides whether an action survives.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from bots.models import ActionType, BotConfig
from config import FALLBACK_MESSAGE
from utils.text import safe_trim

CODE_FENCE = re.compile(r"^```(?:json)?\s*(\{.*\})\s*```$", re.DOTALL | re.IGNORECASE)


@dataclass
class Action:
    type: ActionType
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ParsedReply:
    message: str
    action: Optional[Action] = None


def extract_text(raw: Any) -> str:
    """Pull the reply text out of the known result shapes; "" if none match."""
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if not isinstance(raw, dict):
        return ""

    if isinstance(raw.get("response"), str):
        return raw["response"]

    result = raw.get("result")
    if isinstance(result, dict) and isinstance(result.get("response"), str):
        return result["response"]
    if isinstance(result, str):
        return result

    if isinstance(raw.get("output_text"), str):
        return raw["output_text"]

    choices = raw.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        content = (choices[0].get("message") or {}).get("content")
        if isinstance(content, str):
            return content

    return ""


def _parse_action(value: Dict[str, Any]) -> Action:
    try:
        action_type = ActionType(str(value.get("type", "")).strip().lower())
    except ValueError:
        action_type = ActionType.NONE
    payload = value.get("payload")
    return Action(type=action_type, payload=payload if isinstance(payload, dict) else {})


def parse_reply(raw: Any) -> ParsedReply:
    text = extract_text(raw).strip()

    fenced = CODE_FENCE.match(text)
    candidate = fenced.group(1) if fenced else text
    if not (candidate.startswith("{") and candidate.endswith("}")):
        return ParsedReply(message=text)

    try:
        envelope = json.loads(candidate)
    except ValueError:
        return ParsedReply(message=text)

    if not isinstance(envelope, dict) or not isinstance(envelope.get("message"), str):
        return ParsedReply(message=text)

    action_value = envelope.get("action")
    if action_value is None:
        return ParsedReply(message=envelope["message"].strip())
    if not isinstance(action_value, dict):
        return ParsedReply(message=text)

    return ParsedReply(message=envelope["message"].strip(), action=_parse_action(action_value))


def apply_action_policy(config: BotConfig, action: Optional[Action]) -> Optional[Action]:
    """
    Drop actions the bot does not allow. A disabled policy discards every
    action, whatever the model was told or tricked into emitting.
    """
    if action is None or action.type == ActionType.NONE:
        return None
    if not config.actions.permits(action.type):
        return None
    return action


def finalize_message(message: str, config: BotConfig) -> str:
    """Never return an empty reply; cap what goes back to the browser."""
    message = (message or "").strip()
    if not message:
        message = FALLBACK_MESSAGE
    return safe_trim(message, config.max_output_chars)


def extract_usage(raw: Any) -> Optional[int]:
    """Total tokens reported by the service, if it reported any."""
    if not isinstance(raw, dict) or not isinstance(raw.get("usage"), dict):
        return None
    usage = raw["usage"]

    total = usage.get("total_tokens")
    if isinstance(total, int) and total > 0:
        return total

    parts = [
        usage.get(k) for k in ("input_tokens", "output_tokens", "prompt_tokens", "completion_tokens")
    ]
    counted = sum(p for p in parts if isinstance(p, int) and p > 0)
    return counted or None


def action_response(config: BotConfig, action: Action) -> Dict[str, Any]:
    """Action as returned to the widget; open_contact carries the contact URL."""
    body: Dict[str, Any] = {"type": action.type.value}
    if action.type == ActionType.OPEN_CONTACT and config.contact_url:
        body["contactUrl"] = config.contact_url
    if action.payload:
        body["payload"] = action.payload
    return body
