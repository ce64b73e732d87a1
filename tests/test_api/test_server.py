"""
Tests for the FastAPI surface.

Uses TestClient against a gateway with no configured providers, so
every answer is served by the Mock adapter.
"""

from __future__ import annotations

import json
import os
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from ai_gateway.api.server import create_app
from ai_gateway.config.settings import GatewaySettings
from ai_gateway.llm.gateway import AIGateway
from ai_gateway.llm.providers.mock import MockAdapter
from ai_gateway.llm.types import PROVIDER_ENV_VARS, ProviderType
from ai_gateway.workload.prompts import EMPTY_DATASET_ANALYSIS, INITIAL_SUMMARY


@pytest.fixture(autouse=True)
def _no_env_credentials():
    with patch.dict(os.environ, {}, clear=False):
        for var in PROVIDER_ENV_VARS.values():
            os.environ.pop(var, None)
        yield


@pytest.fixture
def gateway():
    def factory(provider, credential=None):
        assert provider == ProviderType.MOCK
        return MockAdapter(word_delay=0)

    return AIGateway(GatewaySettings(), adapter_factory=factory)


@pytest.fixture
def client(gateway):
    return TestClient(create_app(gateway))


def _parse_sse(body: str) -> list[dict]:
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        payload = json.loads(lines["data"])
        assert payload["type"] == lines["event"]
        events.append(payload)
    return events


ACTIVITIES = [
    {
        "id": 1,
        "user_id": "u1",
        "category_id": "c1",
        "subcategory": "Window Repair",
        "location": "Classroom 4B",
        "notes": "Cracked pane",
    },
]
USERS = [{"id": "u1", "name": "Thandi"}]
CATEGORIES = [{"id": "c1", "name": "Maintenance"}]


# ── Health & Introspection ─────────────────────────────────


class TestIntrospection:

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_providers(self, client):
        resp = client.get("/api/ai/providers")
        assert resp.status_code == 200
        names = [p["provider"] for p in resp.json()["providers"]]
        assert names == ["claude", "gemini", "deepseek", "kimi", "mock"]

    def test_diagnostics(self, client):
        resp = client.get("/api/diagnostics")
        assert resp.status_code == 200
        body = resp.json()
        assert body["fallbackSystem"]["workingProvider"] == "mock"
        assert body["providers"][0]["provider"] == "mock"


# ── Initial Summary ────────────────────────────────────────


class TestInitialSummary:

    def test_empty_dataset(self, client):
        resp = client.post("/api/ai/chat", json={"message": INITIAL_SUMMARY})
        assert resp.status_code == 200
        body = resp.json()
        assert body["analysis"] == EMPTY_DATASET_ANALYSIS
        assert len(body["suggestions"]) == 3
        assert body["history"] == []

    def test_with_activities(self, client):
        resp = client.post("/api/ai/chat", json={
            "message": INITIAL_SUMMARY,
            "context": {
                "activities": ACTIVITIES,
                "users": USERS,
                "allCategories": CATEGORIES,
            },
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["analysis"]
        assert body["suggestions"]
        assert body["providerUsed"] == "mock"
        assert [m["role"] for m in body["history"]] == ["user", "assistant"]
        assert "Thandi" in body["history"][0]["content"]


# ── Activity Parsing ───────────────────────────────────────


PARSE_CATEGORIES = [
    {"id": "maint", "name": "Maintenance"},
    {"id": "sports", "name": "Sports"},
]


class TestParse:

    def test_mock_parses_report(self, client):
        resp = client.post("/api/ai/parse", json={
            "message": "Broken window in classroom 4b",
            "categories": [{"id": "maintenance", "name": "Maintenance"}, *PARSE_CATEGORIES[1:]],
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["category_id"] == "maintenance"
        assert body["subcategory"] == "Window Repair"
        assert body["location"] == "Classroom 4B"
        assert body["notes"] == "Mock AI parsed: Broken window in classroom 4b"
        assert body["providerUsed"] == "mock"

    def test_no_categories_falls_back_to_unplanned(self, client):
        resp = client.post("/api/ai/parse", json={"message": "Leaking tap in the lab"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["category_id"] == "unplanned"
        assert body["location"] == "Laboratory"

    def test_nothing_to_parse(self, client):
        resp = client.post("/api/ai/parse", json={
            "message": "", "categories": PARSE_CATEGORIES,
        })
        assert resp.status_code == 422

    def test_unknown_provider(self, client):
        resp = client.post(
            "/api/ai/parse?provider=openai",
            json={"message": "hi", "categories": PARSE_CATEGORIES},
        )
        assert resp.status_code == 400


# ── Chat ───────────────────────────────────────────────────


class TestChat:

    def test_unknown_provider(self, client):
        resp = client.post("/api/ai/chat?provider=openai", json={"message": "hi"})
        assert resp.status_code == 400

    def test_empty_message(self, client):
        resp = client.post("/api/ai/chat", json={"message": "   "})
        assert resp.status_code == 422

    def test_json_reply(self, client):
        resp = client.post("/api/ai/chat", json={
            "message": "Any maintenance trends?",
            "stream": False,
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["providerUsed"] == "mock"
        assert "Maintenance Analysis" in body["content"]

    def test_stream_reply(self, client):
        resp = client.post("/api/ai/chat", json={
            "message": "Summarize the workload",
            "history": [
                {"role": "user", "content": "INITIAL_SUMMARY"},
                {"role": "model", "parts": [{"text": "Earlier analysis"}]},
            ],
        })
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")

        events = _parse_sse(resp.text)
        assert events[0]["type"] == "connected"
        assert events[-1]["type"] == "complete"
        streamed = "".join(e["content"] for e in events if e["type"] == "content")
        assert streamed == events[-1]["fullContent"]
        assert "Mock AI Analysis" in streamed
