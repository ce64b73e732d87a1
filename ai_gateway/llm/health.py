"""
Per-provider health bookkeeping.

A provider is healthy while it has fewer than three consecutive errors
and its last success is under thirty minutes old. Health feeds the
diagnostics surface only; fallback decisions are made per request.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ai_gateway.exceptions import ErrorKind
from ai_gateway.llm.types import ProviderType

MAX_CONSECUTIVE_ERRORS = 3
STALE_AFTER_SECONDS = 30 * 60


@dataclass
class ProviderHealth:
    consecutive_errors: int = 0
    total_errors: int = 0
    total_successes: int = 0
    last_success: Optional[float] = None
    last_error: Optional[float] = None
    last_error_kind: Optional[ErrorKind] = None
    errors_by_kind: dict[str, int] = field(default_factory=dict)


class HealthMonitor:
    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._health: dict[ProviderType, ProviderHealth] = {}

    def _entry(self, provider: ProviderType) -> ProviderHealth:
        entry = self._health.get(provider)
        if entry is None:
            entry = ProviderHealth()
            self._health[provider] = entry
        return entry

    def record_success(self, provider: ProviderType) -> None:
        with self._lock:
            entry = self._entry(provider)
            entry.consecutive_errors = 0
            entry.total_successes += 1
            entry.last_success = self._clock()

    def record_failure(self, provider: ProviderType, kind: ErrorKind) -> None:
        with self._lock:
            entry = self._entry(provider)
            entry.consecutive_errors += 1
            entry.total_errors += 1
            entry.last_error = self._clock()
            entry.last_error_kind = kind
            entry.errors_by_kind[kind.value] = entry.errors_by_kind.get(kind.value, 0) + 1

    def is_healthy(self, provider: ProviderType) -> bool:
        with self._lock:
            entry = self._entry(provider)
            return self._healthy(entry, self._clock())

    @staticmethod
    def _healthy(entry: ProviderHealth, now: float) -> bool:
        if entry.consecutive_errors >= MAX_CONSECUTIVE_ERRORS:
            return False
        if entry.last_success is None:
            # Never called, or only failed so far
            return entry.total_errors == 0
        return now - entry.last_success < STALE_AFTER_SECONDS

    def get_status(self, provider: ProviderType) -> dict[str, Any]:
        with self._lock:
            entry = self._entry(provider)
            now = self._clock()
            healthy = self._healthy(entry, now)
            since_success = (
                int((now - entry.last_success) // 60)
                if entry.last_success is not None else None
            )
            return {
                "isHealthy": healthy,
                "consecutiveErrors": entry.consecutive_errors,
                "totalErrors": entry.total_errors,
                "totalSuccesses": entry.total_successes,
                "timeSinceLastSuccessMinutes": since_success,
                "lastErrorKind": entry.last_error_kind.value if entry.last_error_kind else None,
                "errorsByKind": dict(entry.errors_by_kind),
                "canFallback": provider != ProviderType.MOCK,
            }

    def reset(self) -> None:
        with self._lock:
            self._health.clear()
