# tests/test_response_parser.py - Model output parsing and action policy tests
import json

import pytest

from bots.models import ActionType, normalize_bot_config
from chat.inference import invoke_model, to_langchain_messages
from chat.response_parser import (
    Action,
    action_response,
    apply_action_policy,
    extract_text,
    extract_usage,
    finalize_message,
    parse_reply,
)
from config import FALLBACK_MESSAGE
from utils.errors import UpstreamError


class TestExtractText:
    """Tests for pulling text out of result shapes."""

    @pytest.mark.parametrize("raw", [
        "Hello",
        {"response": "Hello"},
        {"result": {"response": "Hello"}},
        {"result": "Hello"},
        {"output_text": "Hello"},
        {"choices": [{"message": {"content": "Hello"}}]},
    ])
    def test_known_shapes(self, raw):
        assert extract_text(raw) == "Hello"

    @pytest.mark.parametrize("raw", [None, 42, {"unexpected": True}, {"choices": []}])
    def test_unknown_shapes_are_empty(self, raw):
        assert extract_text(raw) == ""


class TestParseReply:
    """Tests for the optional JSON envelope."""

    def test_plain_text(self):
        reply = parse_reply({"response": "  We are open 9 to 5.  "})
        assert reply.message == "We are open 9 to 5."
        assert reply.action is None

    def test_envelope_with_action(self):
        raw = json.dumps({"message": "Connecting you.", "action": {"type": "open_contact", "payload": {"why": "quote"}}})
        reply = parse_reply(raw)
        assert reply.message == "Connecting you."
        assert reply.action == Action(type=ActionType.OPEN_CONTACT, payload={"why": "quote"})

    def test_fenced_envelope(self):
        raw = '```json\n{"message": "Hi!", "action": {"type": "none"}}\n```'
        reply = parse_reply(raw)
        assert reply.message == "Hi!"
        assert reply.action.type == ActionType.NONE

    def test_unknown_action_type_becomes_none(self):
        reply = parse_reply('{"message": "ok", "action": {"type": "delete_everything"}}')
        assert reply.action.type == ActionType.NONE

    def test_envelope_without_action(self):
        reply = parse_reply('{"message": "Just text"}')
        assert reply.message == "Just text"
        assert reply.action is None

    @pytest.mark.parametrize("raw", [
        '{"message": "broken"',
        '{"text": "no message key"}',
        '{"message": 5}',
        '{"message": "x", "action": "open_contact"}',
        '[1, 2, 3]',
    ])
    def test_bad_envelopes_fall_back_to_text(self, raw):
        reply = parse_reply(raw)
        assert reply.message == raw
        assert reply.action is None


class TestActionPolicy:
    """Tests for filtering actions by bot policy."""

    def test_disabled_policy_drops_everything(self):
        config = normalize_bot_config({"botId": "a", "actions": {"enabled": False}})
        assert apply_action_policy(config, Action(type=ActionType.OPEN_CONTACT)) is None

    def test_allowlist(self):
        config = normalize_bot_config({"botId": "a", "actions": {"enabled": True, "allowed": ["create_lead"]}})
        assert apply_action_policy(config, Action(type=ActionType.OPEN_CONTACT)) is None
        lead = Action(type=ActionType.CREATE_LEAD, payload={"email": "a@b.c"})
        assert apply_action_policy(config, lead) == lead

    def test_empty_allowlist_permits_all_kinds(self):
        config = normalize_bot_config({"botId": "a", "actions": {"enabled": True}})
        assert apply_action_policy(config, Action(type=ActionType.WEBHOOK)) is not None

    def test_none_action_is_dropped(self):
        config = normalize_bot_config({"botId": "a", "actions": {"enabled": True}})
        assert apply_action_policy(config, Action(type=ActionType.NONE)) is None

    def test_action_response_shape(self):
        config = normalize_bot_config({"botId": "a", "contactUrl": "https://acme.com/contact"})
        assert action_response(config, Action(type=ActionType.OPEN_CONTACT)) == {
            "type": "open_contact",
            "contactUrl": "https://acme.com/contact",
        }
        assert action_response(config, Action(type=ActionType.CREATE_LEAD, payload={"name": "Pat"})) == {
            "type": "create_lead",
            "payload": {"name": "Pat"},
        }


class TestFinalizeAndUsage:
    """Tests for the final reply and token accounting."""

    def test_empty_message_gets_fallback(self):
        config = normalize_bot_config({"botId": "a"})
        assert finalize_message("   ", config) == FALLBACK_MESSAGE

    def test_message_capped(self):
        config = normalize_bot_config({"botId": "a", "maxOutputChars": 200})
        assert len(finalize_message("m" * 1000, config)) == 200

    @pytest.mark.parametrize("raw, expected", [
        ({"usage": {"total_tokens": 120}}, 120),
        ({"usage": {"input_tokens": 100, "output_tokens": 20}}, 120),
        ({"usage": {"prompt_tokens": 7, "completion_tokens": 3}}, 10),
        ({"usage": {}}, None),
        ({"response": "hi"}, None),
        ("hi", None),
    ])
    def test_extract_usage(self, raw, expected):
        assert extract_usage(raw) == expected


class TestInvokeModel:
    """Tests for the single-attempt model call."""

    def test_passes_settings(self, inference):
        messages = [{"role": "system", "content": "s"}, {"role": "user", "content": "u"}]
        invoke_model(inference, "gpt-4o-mini", messages, 256, 0.3)
        assert inference.calls == [{"model": "gpt-4o-mini", "messages": messages, "max_tokens": 256, "temperature": 0.3}]

    def test_failure_becomes_upstream_error_once(self, inference):
        inference.error = ConnectionError("reset")
        with pytest.raises(UpstreamError) as excinfo:
            invoke_model(inference, "gpt-4o-mini", [], 256, 0.3)
        assert len(inference.calls) == 1
        assert excinfo.value.status_code == 502
        assert "reset" in excinfo.value.detail

    def test_langchain_message_conversion(self):
        converted = to_langchain_messages([
            {"role": "system", "content": "rules"},
            {"role": "user", "content": "question"},
            {"role": "assistant", "content": "answer"},
        ])
        assert [m.type for m in converted] == ["system", "human", "ai"]
        assert converted[1].content == "question"
