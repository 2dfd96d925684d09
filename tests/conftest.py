# tests/conftest.py - Shared fixtures: in-memory store, fake model services, test client
import os
import sys

import pytest
from fastapi.testclient import TestClient

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from server import app, configure_services
from storage import MemoryKVStore

ADMIN_TOKEN = "test-admin-token"

# 2026-01-01 01:00:00 UTC, on a whole-minute boundary
START_TIME = 1_767_229_200.0

EMBED_VOCABULARY = ("price", "refund", "contact", "shipping", "team")


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeInference:
    """Records every call and answers with a canned reply."""

    def __init__(self):
        self.calls = []
        self.reply = "Hi there! How can I help you today?"
        self.usage = None
        self.error = None

    def run(self, model, inputs):
        self.calls.append({"model": model, **inputs})
        if self.error is not None:
            raise self.error
        result = {"response": self.reply}
        if self.usage is not None:
            result["usage"] = self.usage
        return result


class FakeEmbedder:
    """Keyword-count vectors: texts about the same topic point the same way."""

    def __init__(self):
        self.calls = []
        self.error = None

    @staticmethod
    def vector(text):
        lowered = text.lower()
        return [float(lowered.count(word)) for word in EMBED_VOCABULARY] + [0.1]

    def run(self, model, texts):
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [self.vector(t) for t in texts]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryKVStore(clock=clock)


@pytest.fixture
def inference():
    return FakeInference()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def client(store, inference, embedder, clock):
    configure_services(
        app,
        store=store,
        inference=inference,
        embedder=embedder,
        admin_token=ADMIN_TOKEN,
        dev_origins=[],
        clock=clock,
    )
    return TestClient(app)


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def create_bot(client, admin_headers):
    """Upsert a bot through the admin API and return the stored record."""
    def _create(**fields):
        fields.setdefault("botId", "acme")
        response = client.post("/admin/upsert", json=fields, headers=admin_headers)
        assert response.status_code == 200, response.text
        return response.json()["config"]
    return _create
