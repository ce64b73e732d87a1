"""
Streaming Chunk Reconstructor — raw provider reads → bounded SSE frames.

Provider streams deliver arbitrary fragments (single tokens, partial
UTF-8 sequences, whole paragraphs). The reconstructor buffers them and
re-cuts the text at natural boundaries, so the browser receives
readable chunks of roughly CHUNK_SIZE characters:

    connected → content* → [continuation] → complete
    connected → content* → error

Two ceilings bound a stream. Hitting either one is a signal, not an
error: a `continuation` frame is emitted and the stream completes with
`truncated: true`.

Concatenating every `content` payload always equals the `fullContent`
of the `complete` frame.

Usage:
    reconstructor = ChunkReconstructor(settings.stream)
    yield reconstructor.start()
    async for frame in reconstruct_stream(handle, reconstructor, supervisor):
        yield frame
"""

from __future__ import annotations

import codecs
import inspect
import logging
from typing import Any, AsyncIterator, Callable, Optional

from ai_gateway.config.settings import StreamLimits
from ai_gateway.exceptions import GatewayError
from ai_gateway.llm.providers.base import StreamHandle
from ai_gateway.llm.timeouts import TimeoutSupervisor
from ai_gateway.llm.types import FrameType, StreamFrame
from ai_gateway.observability.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

# Preferred split points, highest priority first.
BREAK_MARKERS = ("\n\n", ". ", "! ", "? ", "\n")
FALLBACK_SPLIT_RATIO = 0.8


def find_breakpoint(buffer: str) -> int:
    """
    Index at which to cut `buffer`; the chunk is buffer[:index].

    The cut lands right after the last occurrence of the highest
    priority marker present. Without markers, cut at 80% of the buffer
    (never less than one character).
    """
    for marker in BREAK_MARKERS:
        index = buffer.rfind(marker)
        if index != -1:
            return index + len(marker)
    return max(1, int(len(buffer) * FALLBACK_SPLIT_RATIO))


class ChunkReconstructor:
    """
    Per-stream buffer, counters and frame builder.

    Not thread-safe; one instance serves exactly one stream.
    """

    def __init__(self, limits: Optional[StreamLimits] = None):
        self.limits = limits or StreamLimits()
        self._buffer = ""
        self._emitted: list[str] = []
        self._emitted_length = 0
        self._received_length = 0
        self.chunk_count = 0
        self.halt_reason: Optional[str] = None
        self.terminated = False

    # --- state ---

    @property
    def halted(self) -> bool:
        return self.halt_reason is not None

    @property
    def full_content(self) -> str:
        return "".join(self._emitted)

    @property
    def received_length(self) -> int:
        return self._received_length

    @property
    def buffer(self) -> str:
        return self._buffer

    # --- frames ---

    def _frame(self, frame_type: FrameType, payload: dict[str, Any], chunk_index: Optional[int] = None) -> StreamFrame:
        return StreamFrame(
            type=frame_type,
            payload=payload,
            cumulative_length=self._emitted_length,
            chunk_index=chunk_index,
        )

    def start(
        self,
        frame_type: FrameType = FrameType.CONNECTED,
        payload: Optional[dict[str, Any]] = None,
    ) -> StreamFrame:
        """Opening frame: `connected`, or `fallback` when not on the requested provider."""
        if frame_type not in (FrameType.CONNECTED, FrameType.FALLBACK):
            raise ValueError(f"A stream cannot start with {frame_type.value}")
        return self._frame(frame_type, dict(payload or {}))

    def _emit_content(self, chunk: str) -> StreamFrame:
        self._emitted.append(chunk)
        self._emitted_length += len(chunk)
        index = self.chunk_count
        self.chunk_count += 1
        return self._frame(
            FrameType.CONTENT,
            {
                "content": chunk,
                "accumulatedContent": self.full_content,
                "bufferRemaining": len(self._buffer),
            },
            chunk_index=index,
        )

    def feed(self, text: str) -> list[StreamFrame]:
        """
        Add decoded text and return the content frames it completes.

        Once a ceiling is hit the reconstructor halts and ignores
        further input; call `finish()` to close the stream.
        """
        if self.terminated or self.halted or not text:
            return []

        remaining = self.limits.max_length - self._received_length
        if len(text) > remaining:
            text = text[:max(0, remaining)]
            self.halt_reason = "max_length"
        self._received_length += len(text)
        self._buffer += text

        frames: list[StreamFrame] = []
        while len(self._buffer) > self.limits.chunk_size:
            if self.chunk_count >= self.limits.max_chunks:
                self.halt_reason = "max_chunks"
                break
            cut = find_breakpoint(self._buffer)
            chunk, self._buffer = self._buffer[:cut], self._buffer[cut:]
            frames.append(self._emit_content(chunk))
        return frames

    def finish(self, extra: Optional[dict[str, Any]] = None) -> list[StreamFrame]:
        """
        Flush the buffer and emit the terminal frame(s).

        A halted stream gets `continuation` before `complete`.
        """
        if self.terminated:
            return []

        frames: list[StreamFrame] = []
        if self._buffer:
            if self.chunk_count < self.limits.max_chunks:
                chunk, self._buffer = self._buffer, ""
                frames.append(self._emit_content(chunk))
            else:
                self.halt_reason = self.halt_reason or "max_chunks"

        if self.halted:
            logger.info(
                "stream_truncated",
                extra={"state": self.halt_reason, "chunk_count": self.chunk_count},
            )
            frames.append(self._frame(
                FrameType.CONTINUATION,
                {
                    "reason": self.halt_reason,
                    "message": "Response reached the streaming limit and was truncated.",
                    "totalLength": self._emitted_length,
                    "chunkCount": self.chunk_count,
                },
            ))

        payload: dict[str, Any] = {
            "fullContent": self.full_content,
            "totalLength": self._emitted_length,
            "chunkCount": self.chunk_count,
            "truncated": self.halted,
        }
        payload.update(extra or {})
        frames.append(self._frame(FrameType.COMPLETE, payload))
        self.terminated = True
        return frames

    def fail(self, exc: BaseException) -> Optional[StreamFrame]:
        """Single `error` frame with what was accumulated so far."""
        if self.terminated:
            return None
        self.terminated = True
        error_type = (
            type(exc).__name__ if isinstance(exc, GatewayError) else "StreamError"
        )
        return self._frame(
            FrameType.ERROR,
            {
                "message": sanitize_error_message(str(exc) or type(exc).__name__),
                "errorType": error_type,
                "accumulatedLength": self._emitted_length,
                "chunkCount": self.chunk_count,
                "partialContent": self.full_content + self._buffer,
            },
        )


async def _check(callback: Optional[Callable[[], Any]]) -> bool:
    if callback is None:
        return False
    result = callback()
    if inspect.isawaitable(result):
        result = await result
    return bool(result)


async def reconstruct_stream(
    handle: StreamHandle,
    reconstructor: ChunkReconstructor,
    supervisor: Optional[TimeoutSupervisor] = None,
    is_disconnected: Optional[Callable[[], Any]] = None,
    complete_extra: Optional[Callable[[], dict[str, Any]]] = None,
) -> AsyncIterator[StreamFrame]:
    """
    Drive `handle` through `reconstructor`, yielding frames.

    The handle is closed on every exit path: normal completion, halt,
    error, caller disconnect, or the consumer abandoning the generator.

    Args:
        handle: Open provider stream.
        reconstructor: Fresh reconstructor for this stream.
        supervisor: Applies the stream-idle deadline to every read.
        is_disconnected: Sync or async callable polled before each read.
        complete_extra: Called once at completion; its dict is merged
                        into the `complete` payload.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    reads = supervisor.iterate(handle) if supervisor is not None else handle
    iterator = reads.__aiter__()
    try:
        while not reconstructor.halted:
            if await _check(is_disconnected):
                logger.info(
                    "stream_client_disconnected",
                    extra={"provider": handle.provider.value, "chunk_count": reconstructor.chunk_count},
                )
                return
            try:
                raw = await iterator.__anext__()
            except StopAsyncIteration:
                tail = decoder.decode(b"", final=True)
                for frame in reconstructor.feed(tail):
                    yield frame
                break
            text = decoder.decode(raw) if isinstance(raw, (bytes, bytearray)) else raw
            for frame in reconstructor.feed(text):
                yield frame

        for frame in reconstructor.finish(complete_extra() if complete_extra else None):
            yield frame
    except Exception as e:
        logger.warning(
            "stream_failed",
            extra={
                "provider": handle.provider.value,
                "chunk_count": reconstructor.chunk_count,
                "error": sanitize_error_message(str(e)),
            },
        )
        frame = reconstructor.fail(e)
        if frame is not None:
            yield frame
    finally:
        if reads is not handle:
            await reads.aclose()
        await handle.aclose()
