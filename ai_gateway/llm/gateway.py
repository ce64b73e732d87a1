"""
AI Gateway facade — the single entry point for the HTTP layer and CLI.

Wires the configuration resolver, usage tracker, timeout supervisor,
health monitor and fallback orchestrator together, and guarantees that
every well-formed request gets a well-formed answer: when the request
deadline passes or every provider fails, callers receive a degraded
result served by the Mock analysis text instead of an exception.

Usage:
    from ai_gateway.llm.gateway import AIGateway

    gateway = AIGateway(settings, store, master_key=os.environ["AI_GATEWAY_MASTER_KEY"])

    result = await gateway.complete(GenerationRequest(prompt="Summarize"))
    print(result.text, result.provider_used, result.used_fallback)

    async for frame in gateway.stream(request):
        send(frame.to_sse())

    diagnostics = await gateway.get_diagnostics()
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional, Union

from ai_gateway.config.settings import GatewaySettings
from ai_gateway.exceptions import GatewayError, classify_error
from ai_gateway.llm.credentials import (
    ConfigurationStore,
    CredentialResolver,
    InMemoryConfigurationStore,
    YamlConfigurationStore,
)
from ai_gateway.llm.health import HealthMonitor
from ai_gateway.llm.orchestrator import AdapterFactory, FallbackOrchestrator
from ai_gateway.llm.providers import ADAPTER_CLASSES, create_adapter
from ai_gateway.llm.providers.mock import WORKLOAD_ANALYSIS_TEXT, MockAdapter
from ai_gateway.llm.streaming import ChunkReconstructor, reconstruct_stream
from ai_gateway.llm.timeouts import OperationClass, TimeoutSupervisor
from ai_gateway.llm.types import (
    DEFAULT_FALLBACK_ORDER,
    FrameType,
    GenerationMode,
    GenerationRequest,
    GenerationResult,
    ProviderType,
    StreamFrame,
    TokenUsage,
)
from ai_gateway.llm.usage import UsageTracker
from ai_gateway.observability.logging_config import clear_request_id, set_request_id
from ai_gateway.observability.redaction import mask_secret, sanitize_error_message

logger = logging.getLogger(__name__)


def _new_request_id() -> str:
    return uuid.uuid4().hex[:12]


class AIGateway:
    """Facade over the orchestrator, with top-level degradation."""

    def __init__(
        self,
        settings: Optional[GatewaySettings] = None,
        store: Optional[ConfigurationStore] = None,
        master_key: Optional[str] = None,
        usage: Optional[UsageTracker] = None,
        health: Optional[HealthMonitor] = None,
        adapter_factory: AdapterFactory = create_adapter,
    ):
        self.settings = settings or GatewaySettings()
        self.store = store or InMemoryConfigurationStore()
        self.supervisor = TimeoutSupervisor(self.settings.timeouts)
        self.usage = usage or UsageTracker(self.settings)
        self.health = health or HealthMonitor()
        self.fallback_order = [ProviderType(p) for p in self.settings.fallback_order]
        self.resolver = CredentialResolver(
            self.store,
            self.supervisor,
            master_key=master_key,
            allow_env_credentials=self.settings.allow_env_credentials,
            fallback_order=self.fallback_order,
        )
        self.orchestrator = FallbackOrchestrator(
            self.resolver,
            self.usage,
            self.supervisor,
            health=self.health,
            settings=self.settings,
            adapter_factory=adapter_factory,
        )

    @classmethod
    def from_settings(
        cls, settings: GatewaySettings, master_key: Optional[str] = None
    ) -> "AIGateway":
        """Build a gateway, loading the configuration store from YAML if set."""
        store: ConfigurationStore
        if settings.config_store_path:
            store = YamlConfigurationStore(settings.config_store_path)
        else:
            store = InMemoryConfigurationStore()
        return cls(settings, store, master_key=master_key)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(
        self, request: GenerationRequest
    ) -> Union[Any, AsyncIterator[StreamFrame]]:
        """
        Dispatch by mode. Returns an awaitable GenerationResult for sync
        and structured requests, or an async iterator of frames for
        stream requests.
        """
        if request.mode == GenerationMode.STREAM:
            return self.stream(request)
        return self.complete(request)

    async def complete(self, request: GenerationRequest) -> GenerationResult:
        """Sync or structured generation under the request deadline."""
        token = set_request_id(_new_request_id())
        start = time.monotonic()
        try:
            result = await self.supervisor.race(self._complete(request), OperationClass.REQUEST)
        except GatewayError as e:
            logger.error(
                "gateway_request_degraded",
                extra={
                    "operation": request.mode.value,
                    "error_kind": classify_error(e).value,
                    "error": sanitize_error_message(str(e)),
                },
            )
            result = await self._degraded_result(request, timeout=isinstance(e, TimeoutError))
        finally:
            clear_request_id(token)
        result.latency_ms = (time.monotonic() - start) * 1000
        return result

    async def _complete(self, request: GenerationRequest) -> GenerationResult:
        options = request.options
        estimated = len(request.prompt_text) // 4 + options.max_tokens

        if request.mode == GenerationMode.STRUCTURED:
            schema = options.schema or {}

            def operation(adapter):
                return adapter.generate_structured_content(request.prompt_text, schema, options)
        else:
            def operation(adapter):
                return adapter.generate_content(request.prompt_text, options)

        outcome = await self.orchestrator.execute(
            request.provider, operation, kind=request.mode, estimated_tokens=estimated
        )

        if request.mode == GenerationMode.STRUCTURED:
            result = GenerationResult(
                text=json.dumps(outcome.value),
                provider_used=outcome.provider_used,
                usage=outcome.usage or TokenUsage(),
                data=outcome.value,
            )
        else:
            result = outcome.value
        result.provider_used = outcome.provider_used
        result.requested_provider = outcome.requested_provider
        result.used_fallback = outcome.used_fallback
        result.fallback_provider = outcome.fallback_provider
        return result

    async def _degraded_result(
        self, request: GenerationRequest, timeout: bool
    ) -> GenerationResult:
        requested = request.provider
        structured = request.mode == GenerationMode.STRUCTURED
        data = None
        if structured:
            # Mock answers in the shape of the requested schema.
            data = await MockAdapter(word_delay=0).generate_structured_content(
                request.prompt_text, request.options.schema or {}, request.options
            )
        return GenerationResult(
            text=json.dumps(data) if structured else WORKLOAD_ANALYSIS_TEXT,
            provider_used=ProviderType.MOCK,
            requested_provider=requested,
            used_fallback=requested != ProviderType.MOCK,
            fallback_provider=ProviderType.MOCK if requested != ProviderType.MOCK else None,
            timeout=timeout,
            data=data,
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(
        self,
        request: GenerationRequest,
        is_disconnected: Optional[Callable[[], Any]] = None,
    ) -> AsyncIterator[StreamFrame]:
        """
        Stream frames for `request`.

        Opening the provider stream (including any fallback) runs under
        the request deadline; once open, reads are bounded by the
        stream-idle deadline and the stream ceilings.
        """
        # Async generators may resume in another context, so the
        # request id is cleared rather than reset to a token.
        set_request_id(_new_request_id())
        try:
            options = request.options
            messages = request.conversation
            estimated = len(request.prompt_text) // 4 + options.max_tokens

            try:
                outcome = await self.supervisor.race(
                    self.orchestrator.execute(
                        request.provider,
                        lambda adapter: adapter.generate_content_stream(messages, options),
                        kind=GenerationMode.STREAM,
                        estimated_tokens=estimated,
                    ),
                    OperationClass.REQUEST,
                )
            except GatewayError as e:
                logger.error(
                    "gateway_stream_degraded",
                    extra={
                        "error_kind": classify_error(e).value,
                        "error": sanitize_error_message(str(e)),
                    },
                )
                for frame in self._degraded_frames(request, timeout=isinstance(e, TimeoutError)):
                    yield frame
                return

            handle = outcome.value
            reconstructor = ChunkReconstructor(self.settings.stream)
            meta = {
                "provider": outcome.provider_used.value,
                "requestedProvider": outcome.requested_provider.value,
                "usedFallback": outcome.used_fallback,
            }
            if outcome.used_fallback:
                yield reconstructor.start(
                    FrameType.FALLBACK,
                    {**meta, "reason": outcome.fallback_reason},
                )
            else:
                yield reconstructor.start(FrameType.CONNECTED, meta)

            try:
                async for frame in reconstruct_stream(
                    handle,
                    reconstructor,
                    self.supervisor,
                    is_disconnected=is_disconnected,
                    complete_extra=lambda: dict(meta),
                ):
                    yield frame
            finally:
                await handle.aclose()
                usage = handle.usage if handle.usage_reported else TokenUsage.estimate(
                    request.prompt_text, reconstructor.full_content
                )
                self.usage.record_completion(outcome.provider_used, usage)
        finally:
            clear_request_id()

    def _degraded_frames(self, request: GenerationRequest, timeout: bool) -> list[StreamFrame]:
        reconstructor = ChunkReconstructor(self.settings.stream)
        requested = request.provider.value if request.provider else None
        frames = [reconstructor.start(
            FrameType.FALLBACK,
            {
                "provider": ProviderType.MOCK.value,
                "requestedProvider": requested,
                "usedFallback": True,
                "reason": "timeout" if timeout else "unavailable",
            },
        )]
        frames.extend(reconstructor.feed(WORKLOAD_ANALYSIS_TEXT))
        frames.extend(reconstructor.finish({
            "provider": ProviderType.MOCK.value,
            "usedFallback": True,
            "timeout": timeout,
        }))
        return frames

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def list_providers(self) -> list[dict[str, Any]]:
        configured = await self.resolver.configured_providers()
        working = configured[0] if configured else ProviderType.MOCK
        entries = []
        for provider in (*DEFAULT_FALLBACK_ORDER, ProviderType.MOCK):
            entries.append({
                "provider": provider.value,
                "displayName": provider.display_name,
                "configured": provider in configured or provider == ProviderType.MOCK,
                "isWorkingProvider": provider == working,
                "supportsContextCaching": ADAPTER_CLASSES[provider].supports_context_caching,
            })
        return entries

    async def get_diagnostics(self) -> dict[str, Any]:
        """
        Health, usage and cost per active provider, plus fallback stats.

        Credential references never appear; configuration ids are masked.
        """
        configured = await self.resolver.configured_providers()
        configurations = await self.resolver.active_configurations()

        providers = []
        for provider in (*configured, ProviderType.MOCK):
            stats = self.usage.get_usage_statistics(provider)
            entry: dict[str, Any] = {
                "provider": provider.value,
                "displayName": provider.display_name,
                "configurations": [
                    {"id": mask_secret(c.id), "isDefault": c.is_default, "model": c.model}
                    for c in configurations if c.provider == provider
                ],
                "healthStatus": self.health.get_status(provider),
                "usageStatistics": {
                    "rateLimiting": stats["rateLimiting"],
                    "costAnalysis": stats["costAnalysis"],
                    "tokenUsage": stats["tokenUsage"],
                },
            }
            if ADAPTER_CLASSES[provider].supports_context_caching:
                entry["cacheStatistics"] = self.usage.get_cache_statistics(provider)
            providers.append(entry)

        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": self.settings.environment.value,
            "providers": providers,
            "fallbackSystem": {
                "fallbackOrder": [p.value for p in self.fallback_order],
                "workingProvider": configured[0].value if configured else ProviderType.MOCK.value,
                "enforceRateLimits": self.settings.enforce_rate_limits,
                "statistics": self.orchestrator.statistics.to_dict(),
            },
        }
