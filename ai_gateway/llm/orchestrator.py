"""
Fallback Orchestrator — one state machine for every call shape.

Given a requested provider and an operation delegate (a coroutine
function taking an adapter), the orchestrator walks the candidates
until one succeeds:

    REQUESTED → CONSTRUCT(primary)
        construction fails → TRY_WORKING_PROVIDER → ... → MOCK
    CALL(candidate)
        raises → classify → FALLBACK(next untried candidate) → ... → MOCK
    success → DONE

Each provider is tried at most once per request, so the number of
attempts is bounded by the number of providers. The Mock adapter is
the terminal candidate and does not fail.

The same `execute()` serves sync, structured and stream-open calls;
only the delegate changes.

Usage:
    outcome = await orchestrator.execute(
        ProviderType.CLAUDE,
        lambda adapter: adapter.generate_content(prompt, options),
        kind=GenerationMode.SYNC,
    )
    outcome.provider_used, outcome.used_fallback, outcome.value
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from ai_gateway.config.settings import GatewaySettings
from ai_gateway.exceptions import (
    ConfigurationError,
    ErrorKind,
    GatewayError,
    RateLimitError,
    classify_error,
)
from ai_gateway.llm.credentials import CredentialResolver
from ai_gateway.llm.health import HealthMonitor
from ai_gateway.llm.providers import ProviderAdapter, create_adapter
from ai_gateway.llm.timeouts import OperationClass, TimeoutSupervisor
from ai_gateway.llm.types import GenerationMode, ProviderType, TokenUsage
from ai_gateway.llm.usage import UsageTracker
from ai_gateway.observability.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

T = TypeVar("T")

AdapterFactory = Callable[..., ProviderAdapter]


# ---------------------------------------------------------------------------
# Outcome Types
# ---------------------------------------------------------------------------


class OrchestratorState(str, Enum):
    REQUESTED = "requested"
    CONSTRUCT = "construct"
    TRY_WORKING_PROVIDER = "try_working_provider"
    CALL = "call"
    FALLBACK = "fallback"
    MOCK = "mock"
    DONE = "done"


@dataclass
class Attempt:
    """One construction or call attempt against a provider."""

    provider: ProviderType
    state: OrchestratorState
    success: bool
    reason: Optional[str] = None        # ErrorKind value or "no_credential"
    error: Optional[str] = None         # Sanitized message
    latency_ms: float = 0.0


@dataclass
class OrchestrationOutcome(Generic[T]):
    value: T
    provider_used: ProviderType
    requested_provider: ProviderType
    adapter: Optional[ProviderAdapter] = None
    usage: Optional[TokenUsage] = None
    fallback_reason: Optional[str] = None
    attempts: list[Attempt] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return self.provider_used != self.requested_provider

    @property
    def fallback_provider(self) -> Optional[ProviderType]:
        return self.provider_used if self.used_fallback else None


class FallbackStatistics:
    """Process-wide fallback counters for diagnostics."""

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.total_requests = 0
            self.total_fallbacks = 0
            self.by_reason: dict[str, int] = {}
            self.by_route: dict[str, int] = {}
            self.by_provider_used: dict[str, int] = {}
            self.last_fallback: Optional[dict[str, Any]] = None

    def record(self, outcome: OrchestrationOutcome) -> None:
        with self._lock:
            self.total_requests += 1
            used = outcome.provider_used.value
            self.by_provider_used[used] = self.by_provider_used.get(used, 0) + 1
            if not outcome.used_fallback:
                return
            self.total_fallbacks += 1
            reason = outcome.fallback_reason or ErrorKind.UNKNOWN.value
            self.by_reason[reason] = self.by_reason.get(reason, 0) + 1
            route = f"{outcome.requested_provider.value}->{used}"
            self.by_route[route] = self.by_route.get(route, 0) + 1
            self.last_fallback = {
                "from": outcome.requested_provider.value,
                "to": used,
                "reason": reason,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            rate = self.total_fallbacks / self.total_requests if self.total_requests else 0.0
            return {
                "totalRequests": self.total_requests,
                "totalFallbacks": self.total_fallbacks,
                "fallbackRate": round(rate * 100, 2),
                "fallbacksByReason": dict(self.by_reason),
                "fallbackRoutes": dict(self.by_route),
                "requestsByProvider": dict(self.by_provider_used),
                "lastFallback": dict(self.last_fallback) if self.last_fallback else None,
            }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class FallbackOrchestrator:
    """
    Runs an operation delegate against the requested provider, falling
    back through configured providers and finally the Mock adapter.
    """

    def __init__(
        self,
        resolver: CredentialResolver,
        usage: UsageTracker,
        supervisor: TimeoutSupervisor,
        health: Optional[HealthMonitor] = None,
        settings: Optional[GatewaySettings] = None,
        adapter_factory: AdapterFactory = create_adapter,
    ):
        self._resolver = resolver
        self._usage = usage
        self._supervisor = supervisor
        self._health = health or HealthMonitor()
        self._settings = settings or GatewaySettings()
        self._factory = adapter_factory
        self.statistics = FallbackStatistics()

    async def working_provider(self) -> ProviderType:
        """The provider used when a request names none: default first, else Mock."""
        configured = await self._resolver.configured_providers()
        return configured[0] if configured else ProviderType.MOCK

    async def _construct(
        self, provider: ProviderType, attempts: list[Attempt], state: OrchestratorState
    ) -> Optional[ProviderAdapter]:
        if provider == ProviderType.MOCK:
            return self._factory(ProviderType.MOCK, None)

        credential = await self._resolver.resolve(provider)
        if credential is None:
            attempts.append(Attempt(provider, state, False, reason="no_credential"))
            return None
        try:
            return self._factory(provider, credential)
        except GatewayError as e:
            kind = classify_error(e)
            attempts.append(Attempt(
                provider, state, False,
                reason=kind.value, error=sanitize_error_message(str(e)),
            ))
            self._health.record_failure(provider, kind)
            logger.warning(
                "llm_adapter_construction_failed",
                extra={"provider": provider.value, "error_kind": kind.value},
            )
            return None

    async def _call(
        self,
        provider: ProviderType,
        adapter: ProviderAdapter,
        operation: Callable[[ProviderAdapter], Awaitable[T]],
        kind: GenerationMode,
        estimated_tokens: int,
    ) -> T:
        check = self._usage.check(provider, estimated_tokens)
        if not check.allowed:
            logger.warning(
                "llm_rate_limit_exceeded",
                extra={
                    "provider": provider.value,
                    "reason": check.reason,
                    "wait_time_seconds": round(check.wait_time_seconds, 1),
                    "enforced": self._settings.enforce_rate_limits,
                },
            )
            if self._settings.enforce_rate_limits and provider != ProviderType.MOCK:
                raise RateLimitError(
                    f"Local budget exceeded for {provider.value}: {check.reason}",
                    provider=provider.value,
                    retry_after_seconds=check.wait_time_seconds,
                )

        self._usage.record_attempt(provider)
        value = await self._supervisor.race(operation(adapter), OperationClass.GENERATION)
        if kind != GenerationMode.STREAM:
            self._usage.record_completion(provider, adapter.last_usage or TokenUsage())
        return value

    async def _candidates(self, primary: ProviderType) -> list[ProviderType]:
        configured = await self._resolver.configured_providers()
        ordered = [primary] + [p for p in configured if p != primary]
        if ProviderType.MOCK not in ordered:
            ordered.append(ProviderType.MOCK)
        return ordered

    async def execute(
        self,
        requested: Optional[ProviderType],
        operation: Callable[[ProviderAdapter], Awaitable[T]],
        *,
        kind: GenerationMode = GenerationMode.SYNC,
        estimated_tokens: int = 0,
    ) -> OrchestrationOutcome[T]:
        """
        Run `operation` with fallback.

        Args:
            requested: Provider asked for, or None for the working provider.
            operation: Coroutine function receiving the adapter.
            kind: Call shape; stream completions are recorded by the caller.
            estimated_tokens: Used for the advisory budget check.

        Raises:
            ConfigurationError: Only if even the Mock adapter fails.
        """
        primary = requested or await self.working_provider()
        attempts: list[Attempt] = []
        fallback_reason: Optional[str] = None

        for position, provider in enumerate(await self._candidates(primary)):
            if position == 0:
                state = OrchestratorState.CONSTRUCT
            elif provider == ProviderType.MOCK:
                state = OrchestratorState.MOCK
            elif attempts and attempts[-1].state == OrchestratorState.CALL:
                state = OrchestratorState.FALLBACK
            else:
                state = OrchestratorState.TRY_WORKING_PROVIDER

            adapter = await self._construct(provider, attempts, state)
            if adapter is None:
                fallback_reason = fallback_reason or attempts[-1].reason
                continue

            start = time.monotonic()
            try:
                value = await self._call(provider, adapter, operation, kind, estimated_tokens)
            except Exception as e:
                error_kind = classify_error(e)
                elapsed = (time.monotonic() - start) * 1000
                attempts.append(Attempt(
                    provider, OrchestratorState.CALL, False,
                    reason=error_kind.value,
                    error=sanitize_error_message(str(e)),
                    latency_ms=elapsed,
                ))
                fallback_reason = fallback_reason or error_kind.value
                self._health.record_failure(provider, error_kind)
                logger.warning(
                    "llm_provider_failed",
                    extra={
                        "provider": provider.value,
                        "operation": kind.value,
                        "error_kind": error_kind.value,
                        "latency_ms": round(elapsed, 1),
                        "error": sanitize_error_message(str(e)),
                    },
                )
                if provider == ProviderType.MOCK:
                    raise ConfigurationError(
                        "Mock adapter failed; no provider could serve the request",
                        provider=provider.value,
                    ) from e
                continue

            elapsed = (time.monotonic() - start) * 1000
            attempts.append(Attempt(
                provider, OrchestratorState.DONE, True, latency_ms=elapsed,
            ))
            self._health.record_success(provider)
            outcome: OrchestrationOutcome[T] = OrchestrationOutcome(
                value=value,
                provider_used=provider,
                requested_provider=primary,
                adapter=adapter,
                usage=adapter.last_usage,
                fallback_reason=fallback_reason if provider != primary else None,
                attempts=attempts,
            )
            self.statistics.record(outcome)
            if outcome.used_fallback:
                logger.info(
                    "llm_fallback_used",
                    extra={
                        "provider": provider.value,
                        "requested_provider": primary.value,
                        "error_kind": outcome.fallback_reason,
                        "operation": kind.value,
                    },
                )
            return outcome

        # Mock is always a candidate, so this is unreachable unless the
        # factory refuses to build it.
        raise ConfigurationError("No provider could be constructed, including Mock")
