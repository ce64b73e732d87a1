"""
Rate Limiter & Cost Accountant — per-provider usage windows and budgets.

Each provider has one UsageWindow (requests and tokens per minute, cost
per hour) and one cost ledger (gross cost, cache savings, tokens). All
mutation happens under a single lock, so concurrent requests served by
the event loop or by worker threads never observe torn counters.

Windows are tumbling and aligned to wall-clock boundaries: the minute
window covers [floor(now / 60) * 60, +60) and the hour window
[floor(now / 3600) * 3600, +3600). A counter resets exactly when `now`
crosses into a new window.

Checks are advisory: `check()` reports utilization and whether a call
would exceed a ceiling; the orchestrator decides what to do with it.

Usage:
    tracker = UsageTracker(settings)
    check = tracker.check(ProviderType.DEEPSEEK, estimated_tokens=800)
    tracker.record_attempt(ProviderType.DEEPSEEK)
    cost = tracker.record_completion(ProviderType.DEEPSEEK, usage)
    stats = tracker.get_usage_statistics(ProviderType.DEEPSEEK)
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ai_gateway.config.settings import GatewaySettings
from ai_gateway.llm.types import ProviderType, TokenUsage

logger = logging.getLogger(__name__)

MINUTE_SECONDS = 60
HOUR_SECONDS = 3600


# ---------------------------------------------------------------------------
# Window & Ledger
# ---------------------------------------------------------------------------


@dataclass
class UsageWindow:
    """Tumbling-window counters for one provider."""

    requests_this_minute: int = 0
    tokens_this_minute: int = 0
    cost_this_hour: float = 0.0
    window_start: float = 0.0
    hour_window_start: float = 0.0

    def roll(self, now: float) -> None:
        """Reset any counter whose window boundary has been crossed."""
        minute_start = (now // MINUTE_SECONDS) * MINUTE_SECONDS
        if minute_start != self.window_start:
            self.window_start = minute_start
            self.requests_this_minute = 0
            self.tokens_this_minute = 0

        hour_start = (now // HOUR_SECONDS) * HOUR_SECONDS
        if hour_start != self.hour_window_start:
            self.hour_window_start = hour_start
            self.cost_this_hour = 0.0


@dataclass
class CostLedger:
    """Lifetime cost and token totals for one provider."""

    requests: int = 0
    completed_requests: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cache_hit_tokens: int = 0
    cache_miss_tokens: int = 0
    gross_cost: float = 0.0
    cache_savings: float = 0.0

    @property
    def net_cost(self) -> float:
        return self.gross_cost - self.cache_savings

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class CostBreakdown:
    gross_cost: float
    cache_savings: float

    @property
    def net_cost(self) -> float:
        return self.gross_cost - self.cache_savings


@dataclass
class RateLimitCheck:
    """Outcome of an advisory budget check."""

    allowed: bool
    reason: Optional[str] = None
    wait_time_seconds: float = 0.0
    utilization: dict[str, float] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class UsageTracker:
    """
    Owns usage windows and cost ledgers for every provider.

    Injected into the gateway; tests use a fake clock and `reset()`.
    """

    def __init__(
        self,
        settings: Optional[GatewaySettings] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._settings = settings or GatewaySettings()
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._windows: dict[ProviderType, UsageWindow] = {}
        self._ledgers: dict[ProviderType, CostLedger] = {}

    # --- internal helpers (caller holds the lock) ---

    def _window(self, provider: ProviderType, now: float) -> UsageWindow:
        window = self._windows.get(provider)
        if window is None:
            window = UsageWindow(
                window_start=(now // MINUTE_SECONDS) * MINUTE_SECONDS,
                hour_window_start=(now // HOUR_SECONDS) * HOUR_SECONDS,
            )
            self._windows[provider] = window
        window.roll(now)
        return window

    def _ledger(self, provider: ProviderType) -> CostLedger:
        ledger = self._ledgers.get(provider)
        if ledger is None:
            ledger = CostLedger()
            self._ledgers[provider] = ledger
        return ledger

    # --- cost ---

    def calculate_cost(self, provider: ProviderType, usage: TokenUsage) -> CostBreakdown:
        """
        Price a call: input × price_in + output × price_out, with the
        provider's discount applied to cache-hit input tokens.
        """
        pricing = self._settings.pricing_for(provider.value)
        gross = (
            usage.prompt_tokens * pricing.input_per_million
            + usage.completion_tokens * pricing.output_per_million
        ) / 1_000_000
        hit_tokens = min(usage.cache_hit_tokens, usage.prompt_tokens)
        savings = hit_tokens * pricing.input_per_million * pricing.cache_hit_discount / 1_000_000
        return CostBreakdown(gross_cost=gross, cache_savings=savings)

    def estimate_cost(
        self, provider: ProviderType, prompt_tokens: int, completion_tokens: int = 0
    ) -> float:
        usage = TokenUsage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
        return self.calculate_cost(provider, usage).net_cost

    # --- checks & recording ---

    def check(self, provider: ProviderType, estimated_tokens: int = 0) -> RateLimitCheck:
        """
        Compare current counters plus the estimate against the ceilings.

        Never mutates counters beyond window rollover.
        """
        limits = self._settings.rate_limits_for(provider.value)
        estimated_cost = self.estimate_cost(provider, estimated_tokens)

        with self._lock:
            now = self._clock()
            window = self._window(provider, now)
            utilization = {
                "requests": window.requests_this_minute / limits.max_requests_per_minute,
                "tokens": window.tokens_this_minute / limits.max_tokens_per_minute,
                "cost": window.cost_this_hour / limits.max_cost_per_hour,
            }
            minute_wait = window.window_start + MINUTE_SECONDS - now
            hour_wait = window.hour_window_start + HOUR_SECONDS - now

            if window.requests_this_minute + 1 > limits.max_requests_per_minute:
                return RateLimitCheck(
                    allowed=False,
                    reason="requests_per_minute",
                    wait_time_seconds=minute_wait,
                    utilization=utilization,
                )
            if window.tokens_this_minute + estimated_tokens > limits.max_tokens_per_minute:
                return RateLimitCheck(
                    allowed=False,
                    reason="tokens_per_minute",
                    wait_time_seconds=minute_wait,
                    utilization=utilization,
                )
            if window.cost_this_hour + estimated_cost > limits.max_cost_per_hour:
                return RateLimitCheck(
                    allowed=False,
                    reason="cost_per_hour",
                    wait_time_seconds=hour_wait,
                    utilization=utilization,
                )
            return RateLimitCheck(allowed=True, utilization=utilization)

    def record_attempt(self, provider: ProviderType) -> None:
        """Count a call against the per-minute request budget."""
        with self._lock:
            window = self._window(provider, self._clock())
            window.requests_this_minute += 1
            self._ledger(provider).requests += 1

    def record_completion(self, provider: ProviderType, usage: TokenUsage) -> float:
        """
        Add tokens and cost of a finished call. Returns the net cost.
        """
        breakdown = self.calculate_cost(provider, usage)
        with self._lock:
            window = self._window(provider, self._clock())
            window.tokens_this_minute += usage.total_tokens
            window.cost_this_hour += breakdown.net_cost

            ledger = self._ledger(provider)
            ledger.completed_requests += 1
            ledger.prompt_tokens += usage.prompt_tokens
            ledger.completion_tokens += usage.completion_tokens
            ledger.cache_hit_tokens += usage.cache_hit_tokens
            ledger.cache_miss_tokens += usage.cache_miss_tokens
            ledger.gross_cost += breakdown.gross_cost
            ledger.cache_savings += breakdown.cache_savings

        logger.debug(
            "usage_recorded",
            extra={
                "provider": provider.value,
                "total_tokens": usage.total_tokens,
                "cost": round(breakdown.net_cost, 6),
            },
        )
        return breakdown.net_cost

    # --- reporting ---

    def get_usage_statistics(self, provider: ProviderType) -> dict[str, Any]:
        limits = self._settings.rate_limits_for(provider.value)
        with self._lock:
            window = self._window(provider, self._clock())
            ledger = self._ledger(provider)

            requests = window.requests_this_minute
            tokens = window.tokens_this_minute
            cost_hour = window.cost_this_hour
            completed = ledger.completed_requests
            net_cost = ledger.net_cost
            gross_cost = ledger.gross_cost
            savings = ledger.cache_savings
            total_tokens = ledger.total_tokens
            prompt_tokens = ledger.prompt_tokens
            completion_tokens = ledger.completion_tokens
            total_requests = ledger.requests

        return {
            "rateLimiting": {
                "currentPeriod": {
                    "requestsThisMinute": requests,
                    "tokensThisMinute": tokens,
                    "costThisHour": round(cost_hour, 6),
                },
                "limits": {
                    "maxRequestsPerMinute": limits.max_requests_per_minute,
                    "maxTokensPerMinute": limits.max_tokens_per_minute,
                    "maxCostPerHour": limits.max_cost_per_hour,
                },
                "utilizationPercent": {
                    "requests": round(requests / limits.max_requests_per_minute * 100, 2),
                    "tokens": round(tokens / limits.max_tokens_per_minute * 100, 2),
                    "cost": round(cost_hour / limits.max_cost_per_hour * 100, 2),
                },
            },
            "costAnalysis": {
                "totalRequests": total_requests,
                "grossCost": round(gross_cost, 6),
                "cacheSavings": round(savings, 6),
                "totalCost": round(net_cost, 6),
                "averageCostPerRequest": round(net_cost / completed, 6) if completed else 0.0,
                "costPerThousandTokens": (
                    round(net_cost / total_tokens * 1000, 6) if total_tokens else 0.0
                ),
                # Linear extrapolation of the current hour; an approximation.
                "projectedMonthlyCost": round(cost_hour * 24 * 30, 4),
            },
            "tokenUsage": {
                "promptTokens": prompt_tokens,
                "completionTokens": completion_tokens,
                "totalTokens": total_tokens,
            },
        }

    def get_cache_statistics(self, provider: ProviderType) -> dict[str, Any]:
        with self._lock:
            ledger = self._ledger(provider)
            hits = ledger.cache_hit_tokens
            misses = ledger.cache_miss_tokens
            savings = ledger.cache_savings
        seen = hits + misses
        return {
            "cacheHitTokens": hits,
            "cacheMissTokens": misses,
            "cacheHitRate": round(hits / seen * 100, 2) if seen else 0.0,
            "cacheSavings": round(savings, 6),
        }

    def snapshot(self, provider: ProviderType) -> UsageWindow:
        """Copy of the provider's current window (for tests and the CLI)."""
        with self._lock:
            window = self._window(provider, self._clock())
            return UsageWindow(**window.__dict__)

    def reset(self, provider: Optional[ProviderType] = None) -> None:
        with self._lock:
            if provider is None:
                self._windows.clear()
                self._ledgers.clear()
            else:
                self._windows.pop(provider, None)
                self._ledgers.pop(provider, None)
