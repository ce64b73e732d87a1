"""
Tests for the AIGateway facade.

Validates degradation on deadlines, structured results, stream frame
sequences (connected / fallback / degraded) and the diagnostics report.
"""

from __future__ import annotations

import asyncio
import json
import os
from unittest.mock import patch

import pytest

from ai_gateway.config.settings import GatewaySettings, StreamLimits, TimeoutSettings
from ai_gateway.exceptions import UpstreamError
from ai_gateway.llm.credentials import InMemoryConfigurationStore, encrypt_value
from ai_gateway.llm.gateway import AIGateway
from ai_gateway.llm.providers.base import ProviderAdapter, StreamHandle
from ai_gateway.llm.providers.mock import WORKLOAD_ANALYSIS_TEXT, MockAdapter
from ai_gateway.llm.types import (
    PROVIDER_ENV_VARS,
    FrameType,
    GenerationMode,
    GenerationOptions,
    GenerationRequest,
    ProviderConfiguration,
    ProviderType,
    TokenUsage,
)
from ai_gateway.observability.logging_config import get_request_id
from ai_gateway.workload.activities import build_activity_parse_request

MASTER = "gateway-master-key"

ANALYSIS_SCHEMA = {
    "type": "object",
    "properties": {
        "analysis": {"type": "string"},
        "suggestions": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["analysis", "suggestions"],
}


# ===========================================================================
# Fakes
# ===========================================================================

class FakeAdapter(ProviderAdapter):
    """Configurable stand-in for a remote provider."""

    def __init__(self, provider, *, pieces=None, error=None, delay=0.0):
        self.provider = provider
        super().__init__()
        self.pieces = pieces or ["Remote ", "answer."]
        self.error = error
        self.delay = delay
        self.handles: list[StreamHandle] = []

    async def generate_content(self, prompt, options=None):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self._result(
            "".join(self.pieces), TokenUsage(prompt_tokens=3, completion_tokens=2)
        )

    async def generate_content_stream(self, messages, options=None):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error

        async def source():
            for piece in self.pieces:
                yield piece

        handle = StreamHandle(source(), self.provider)
        self.handles.append(handle)
        return handle


@pytest.fixture(autouse=True)
def _no_env_credentials():
    with patch.dict(os.environ, {}, clear=False):
        for var in PROVIDER_ENV_VARS.values():
            os.environ.pop(var, None)
        yield


def _config(provider, **kwargs) -> ProviderConfiguration:
    return ProviderConfiguration(
        provider=provider,
        encrypted_credential_ref=encrypt_value(f"{provider.value}-key", MASTER),
        **kwargs,
    )


def _gateway(configs=(), adapters=None, **timeouts) -> AIGateway:
    adapters = adapters or {}
    settings = GatewaySettings(
        timeouts=TimeoutSettings(**{"request": 2.0, "generation": 1.0, **timeouts}),
        stream=StreamLimits(chunk_size=40),
    )

    def factory(provider, credential=None):
        if provider == ProviderType.MOCK:
            return MockAdapter(word_delay=0)
        return adapters[provider]

    return AIGateway(
        settings,
        InMemoryConfigurationStore(list(configs)),
        master_key=MASTER,
        adapter_factory=factory,
    )


async def _frames(gateway, request, **kwargs):
    return [frame async for frame in gateway.stream(request, **kwargs)]


# ===========================================================================
# complete()
# ===========================================================================

class TestComplete:

    @pytest.mark.asyncio
    async def test_mock_when_nothing_configured(self):
        result = await _gateway().complete(GenerationRequest(prompt="workload summary"))
        assert result.provider_used == ProviderType.MOCK
        assert result.text == WORKLOAD_ANALYSIS_TEXT
        assert result.used_fallback is False

    @pytest.mark.asyncio
    async def test_remote_provider(self):
        gateway = _gateway(
            [_config(ProviderType.DEEPSEEK)],
            {ProviderType.DEEPSEEK: FakeAdapter(ProviderType.DEEPSEEK)},
        )
        result = await gateway.complete(
            GenerationRequest(prompt="hi", provider=ProviderType.DEEPSEEK)
        )
        assert result.text == "Remote answer."
        assert result.requested_provider == ProviderType.DEEPSEEK
        assert result.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_fallback_annotated(self):
        gateway = _gateway(
            [_config(ProviderType.CLAUDE), _config(ProviderType.KIMI)],
            {
                ProviderType.CLAUDE: FakeAdapter(
                    ProviderType.CLAUDE, error=UpstreamError("down", status_code=500)
                ),
                ProviderType.KIMI: FakeAdapter(ProviderType.KIMI),
            },
        )
        result = await gateway.complete(
            GenerationRequest(prompt="hi", provider=ProviderType.CLAUDE)
        )
        assert result.provider_used == ProviderType.KIMI
        assert result.used_fallback is True
        assert result.fallback_provider == ProviderType.KIMI
        assert result.to_dict()["fallbackProvider"] == "kimi"

    @pytest.mark.asyncio
    async def test_request_deadline_degrades(self):
        gateway = _gateway(
            [_config(ProviderType.CLAUDE)],
            {ProviderType.CLAUDE: FakeAdapter(ProviderType.CLAUDE, delay=5)},
            request=0.05,
        )
        result = await gateway.complete(
            GenerationRequest(prompt="hi", provider=ProviderType.CLAUDE)
        )
        assert result.timeout is True
        assert result.provider_used == ProviderType.MOCK
        assert result.used_fallback is True
        assert result.text == WORKLOAD_ANALYSIS_TEXT

    @pytest.mark.asyncio
    async def test_structured(self):
        request = GenerationRequest(
            prompt="Analyse school activity",
            mode=GenerationMode.STRUCTURED,
            options=GenerationOptions(schema=ANALYSIS_SCHEMA),
        )
        result = await _gateway().complete(request)
        assert set(result.data) == {"analysis", "suggestions"}
        assert json.loads(result.text) == result.data

    @pytest.mark.asyncio
    async def test_structured_deadline_returns_generic_analysis(self):
        gateway = _gateway(
            [_config(ProviderType.GEMINI)],
            {ProviderType.GEMINI: FakeAdapter(ProviderType.GEMINI, delay=5)},
            request=0.05,
        )
        request = GenerationRequest(
            prompt="Analyse",
            provider=ProviderType.GEMINI,
            mode=GenerationMode.STRUCTURED,
            options=GenerationOptions(schema=ANALYSIS_SCHEMA),
        )
        result = await gateway.complete(request)
        assert result.timeout
        assert "suggestions" in result.data

    @pytest.mark.asyncio
    async def test_structured_deadline_follows_requested_schema(self):
        gateway = _gateway(
            [_config(ProviderType.GEMINI)],
            {ProviderType.GEMINI: FakeAdapter(ProviderType.GEMINI, delay=5)},
            request=0.05,
        )
        categories = [{"id": "maintenance", "name": "Maintenance"}]
        request = build_activity_parse_request(
            "Broken door in room 12", categories, ProviderType.GEMINI
        )
        result = await gateway.complete(request)
        assert result.timeout
        assert result.data["category_id"] == "maintenance"
        assert result.data["subcategory"] == "Door Repair"
        assert result.data["location"] == "Room 12"

    @pytest.mark.asyncio
    async def test_request_id_cleared(self):
        await _gateway().complete(GenerationRequest(prompt="hi"))
        assert get_request_id() is None


# ===========================================================================
# stream()
# ===========================================================================

class TestStream:

    @pytest.mark.asyncio
    async def test_connected_content_complete(self):
        frames = await _frames(_gateway(), GenerationRequest(
            prompt="workload summary", mode=GenerationMode.STREAM,
        ))
        types = [f.type for f in frames]
        assert types[0] == FrameType.CONNECTED
        assert types[-1] == FrameType.COMPLETE
        assert FrameType.CONTENT in types

        complete = frames[-1].payload
        assert complete["fullContent"].strip() == WORKLOAD_ANALYSIS_TEXT
        assert complete["provider"] == "mock"
        assert "".join(
            f.payload["content"] for f in frames if f.type == FrameType.CONTENT
        ) == complete["fullContent"]

    @pytest.mark.asyncio
    async def test_stream_usage_recorded(self):
        gateway = _gateway()
        await _frames(gateway, GenerationRequest(prompt="workload", mode=GenerationMode.STREAM))
        stats = gateway.usage.get_usage_statistics(ProviderType.MOCK)
        assert stats["rateLimiting"]["currentPeriod"]["requestsThisMinute"] == 1
        assert stats["tokenUsage"]["totalTokens"] > 0

    @pytest.mark.asyncio
    async def test_estimated_usage_when_not_reported(self):
        adapter = FakeAdapter(ProviderType.KIMI, pieces=["x" * 400])
        gateway = _gateway([_config(ProviderType.KIMI)], {ProviderType.KIMI: adapter})
        await _frames(gateway, GenerationRequest(
            prompt="hi", provider=ProviderType.KIMI, mode=GenerationMode.STREAM,
        ))
        stats = gateway.usage.get_usage_statistics(ProviderType.KIMI)
        assert stats["tokenUsage"]["completionTokens"] == 100
        assert adapter.handles[0].closed

    @pytest.mark.asyncio
    async def test_fallback_frame(self):
        gateway = _gateway(
            [_config(ProviderType.CLAUDE), _config(ProviderType.GEMINI)],
            {
                ProviderType.CLAUDE: FakeAdapter(
                    ProviderType.CLAUDE, error=UpstreamError("bad", status_code=401)
                ),
                ProviderType.GEMINI: FakeAdapter(ProviderType.GEMINI),
            },
        )
        frames = await _frames(gateway, GenerationRequest(
            prompt="hi", provider=ProviderType.CLAUDE, mode=GenerationMode.STREAM,
        ))
        first = frames[0]
        assert first.type == FrameType.FALLBACK
        assert first.payload["provider"] == "gemini"
        assert first.payload["requestedProvider"] == "claude"
        assert first.payload["reason"] == "auth"
        assert frames[-1].payload["fullContent"] == "Remote answer."

    @pytest.mark.asyncio
    async def test_open_deadline_degrades(self):
        gateway = _gateway(
            [_config(ProviderType.CLAUDE)],
            {ProviderType.CLAUDE: FakeAdapter(ProviderType.CLAUDE, delay=5)},
            request=0.05,
        )
        frames = await _frames(gateway, GenerationRequest(
            prompt="hi", provider=ProviderType.CLAUDE, mode=GenerationMode.STREAM,
        ))
        assert frames[0].type == FrameType.FALLBACK
        assert frames[0].payload["reason"] == "timeout"
        assert frames[-1].type == FrameType.COMPLETE
        assert frames[-1].payload["timeout"] is True
        assert frames[-1].payload["fullContent"] == WORKLOAD_ANALYSIS_TEXT

    @pytest.mark.asyncio
    async def test_disconnect_closes_handle(self):
        adapter = FakeAdapter(ProviderType.DEEPSEEK, pieces=["a "] * 20)
        gateway = _gateway([_config(ProviderType.DEEPSEEK)], {ProviderType.DEEPSEEK: adapter})
        frames = await _frames(
            gateway,
            GenerationRequest(prompt="hi", mode=GenerationMode.STREAM),
            is_disconnected=lambda: True,
        )
        assert [f.type for f in frames] == [FrameType.CONNECTED]
        assert adapter.handles[0].closed

    @pytest.mark.asyncio
    async def test_generate_dispatches_by_mode(self):
        gateway = _gateway()
        stream = gateway.generate(GenerationRequest(prompt="hi", mode=GenerationMode.STREAM))
        frames = [frame async for frame in stream]
        assert frames[-1].type == FrameType.COMPLETE

        result = await gateway.generate(GenerationRequest(prompt="hi"))
        assert result.provider_used == ProviderType.MOCK


# ===========================================================================
# Introspection
# ===========================================================================

class TestIntrospection:

    @pytest.mark.asyncio
    async def test_list_providers(self):
        gateway = _gateway([_config(ProviderType.GEMINI, is_default=True)])
        entries = {e["provider"]: e for e in await gateway.list_providers()}
        assert set(entries) == {"claude", "gemini", "deepseek", "kimi", "mock"}
        assert entries["gemini"]["configured"] is True
        assert entries["gemini"]["isWorkingProvider"] is True
        assert entries["claude"]["configured"] is False
        assert entries["mock"]["configured"] is True

    @pytest.mark.asyncio
    async def test_diagnostics(self):
        config = _config(ProviderType.DEEPSEEK, id="cfg-1234567890", model="deepseek-chat")
        gateway = _gateway(
            [config], {ProviderType.DEEPSEEK: FakeAdapter(ProviderType.DEEPSEEK)},
        )
        await gateway.complete(GenerationRequest(prompt="hi", provider=ProviderType.DEEPSEEK))
        report = await gateway.get_diagnostics()

        assert report["environment"] == "development"
        assert [p["provider"] for p in report["providers"]] == ["deepseek", "mock"]
        deepseek = report["providers"][0]
        assert deepseek["configurations"] == [
            {"id": "****7890", "isDefault": False, "model": "deepseek-chat"},
        ]
        assert deepseek["healthStatus"]["totalSuccesses"] == 1
        assert deepseek["usageStatistics"]["costAnalysis"]["totalRequests"] == 1
        assert "cacheStatistics" in deepseek
        assert "cacheStatistics" not in report["providers"][1]

        fallback = report["fallbackSystem"]
        assert fallback["workingProvider"] == "deepseek"
        assert fallback["fallbackOrder"] == ["claude", "gemini", "deepseek", "kimi"]
        assert fallback["statistics"]["totalRequests"] == 1

        dumped = json.dumps(report)
        assert config.encrypted_credential_ref not in dumped
        assert "deepseek-key" not in dumped
