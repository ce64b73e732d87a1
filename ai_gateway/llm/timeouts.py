"""
Timeout Supervisor — bounded-time execution for every gateway operation.

Each operation class has its own deadline (see TimeoutSettings). The
supervisor races the operation against a timer; if the timer wins, the
operation is cancelled (which closes its connection) and a
GatewayTimeoutError is raised. Timeouts raised by an inner race pass
through an outer one unchanged.

Usage:
    supervisor = TimeoutSupervisor(settings.timeouts)

    result = await supervisor.race(
        adapter.generate_content(prompt, options),
        OperationClass.GENERATION,
    )

    async for raw in supervisor.iterate(handle):
        ...
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Awaitable, Optional, TypeVar

from ai_gateway.config.settings import TimeoutSettings
from ai_gateway.exceptions import GatewayTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationClass(str, Enum):
    REQUEST = "request"
    CREDENTIAL_LOOKUP = "credential_lookup"
    GENERATION = "generation"
    STREAM_IDLE = "stream_idle"


class TimeoutSupervisor:
    """Races awaitables against per-operation deadlines."""

    def __init__(self, settings: Optional[TimeoutSettings] = None):
        self._settings = settings or TimeoutSettings()

    @property
    def settings(self) -> TimeoutSettings:
        return self._settings

    def deadline_for(self, operation: OperationClass) -> float:
        return float(getattr(self._settings, operation.value))

    async def race(
        self,
        awaitable: Awaitable[T],
        operation: OperationClass,
        seconds: Optional[float] = None,
    ) -> T:
        """
        Await `awaitable` with the deadline for `operation`.

        Args:
            awaitable: Coroutine or future to run.
            operation: Operation class, selects the deadline.
            seconds: Explicit deadline overriding the configured one.

        Raises:
            GatewayTimeoutError: If the deadline passes first.
        """
        timeout = seconds if seconds is not None else self.deadline_for(operation)
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except GatewayTimeoutError:
            # Inner deadline already fired; keep its operation and timing.
            raise
        except asyncio.TimeoutError as e:
            logger.warning(
                "operation_timed_out",
                extra={"operation": operation.value, "timeout_seconds": timeout},
            )
            raise GatewayTimeoutError(
                f"{operation.value} exceeded {timeout:.1f}s",
                operation=operation.value,
                timeout_seconds=timeout,
            ) from e

    async def iterate(
        self,
        stream: AsyncIterator[T],
        seconds: Optional[float] = None,
    ) -> AsyncIterator[T]:
        """
        Yield items from `stream`, failing if any single read takes
        longer than the stream-idle deadline.
        """
        iterator = stream.__aiter__()
        while True:
            try:
                item = await self.race(
                    iterator.__anext__(), OperationClass.STREAM_IDLE, seconds
                )
            except StopAsyncIteration:
                return
            yield item
