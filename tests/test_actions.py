# tests/test_actions.py - Webhook dispatch tests
import requests
from fastapi import BackgroundTasks

from bots.models import ActionType, normalize_bot_config
from chat import actions
from chat.response_parser import Action


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300


def webhook_bot(**policy):
    policy.setdefault("enabled", True)
    policy.setdefault("webhookUrl", "https://hooks.example.com/leads")
    return normalize_bot_config({"botId": "acme", "siteName": "Acme", "actions": policy})


class TestDispatchWebhook:
    """Tests for dispatch_webhook."""

    def test_posts_payload_with_headers(self, monkeypatch):
        calls = []

        def fake_post(url, **kwargs):
            calls.append((url, kwargs))
            return FakeResponse()

        monkeypatch.setattr(actions.requests, "post", fake_post)
        config = webhook_bot(webhookAuthHeader="Bearer hook-token", webhookSecret="whsec")
        action = Action(type=ActionType.CREATE_LEAD, payload={"email": "pat@example.com"})

        assert actions.dispatch_webhook(config, action, "req-1") is True

        url, kwargs = calls[0]
        assert url == "https://hooks.example.com/leads"
        assert kwargs["headers"]["Authorization"] == "Bearer hook-token"
        assert kwargs["headers"]["X-Webhook-Secret"] == "whsec"
        assert kwargs["timeout"] == actions.WEBHOOK_TIMEOUT_SECONDS
        body = kwargs["json"]
        assert body["botId"] == "acme"
        assert body["siteName"] == "Acme"
        assert body["requestId"] == "req-1"
        assert body["action"] == {"type": "create_lead", "payload": {"email": "pat@example.com"}}
        assert body["timestamp"].endswith("+00:00")

    def test_no_optional_headers_when_unset(self, monkeypatch):
        calls = []
        monkeypatch.setattr(actions.requests, "post", lambda url, **kw: calls.append(kw) or FakeResponse())
        actions.dispatch_webhook(webhook_bot(), Action(type=ActionType.WEBHOOK), "req-2")
        assert "Authorization" not in calls[0]["headers"]
        assert "X-Webhook-Secret" not in calls[0]["headers"]

    def test_network_error_is_swallowed(self, monkeypatch):
        def timeout(*args, **kwargs):
            raise requests.exceptions.Timeout("slow hook")

        monkeypatch.setattr(actions.requests, "post", timeout)
        assert actions.dispatch_webhook(webhook_bot(), Action(type=ActionType.WEBHOOK), "req-3") is False

    def test_error_status_is_swallowed(self, monkeypatch):
        monkeypatch.setattr(actions.requests, "post", lambda *a, **kw: FakeResponse(500))
        assert actions.dispatch_webhook(webhook_bot(), Action(type=ActionType.WEBHOOK), "req-4") is False


class TestMaybeDispatch:
    """Tests for deciding whether to schedule delivery."""

    def test_lead_is_scheduled(self):
        tasks = BackgroundTasks()
        assert actions.maybe_dispatch(tasks, webhook_bot(), Action(type=ActionType.CREATE_LEAD), "r") is True
        assert len(tasks.tasks) == 1

    def test_open_contact_is_not_sent(self):
        tasks = BackgroundTasks()
        assert actions.maybe_dispatch(tasks, webhook_bot(), Action(type=ActionType.OPEN_CONTACT), "r") is False
        assert tasks.tasks == []

    def test_no_webhook_url(self):
        tasks = BackgroundTasks()
        config = normalize_bot_config({"botId": "acme", "actions": {"enabled": True}})
        assert actions.maybe_dispatch(tasks, config, Action(type=ActionType.WEBHOOK), "r") is False

    def test_no_action(self):
        assert actions.maybe_dispatch(BackgroundTasks(), webhook_bot(), None, "r") is False
