"""
Claude adapter — Anthropic Messages API via the official async SDK.

Streaming uses `messages.create(stream=True)`, reading text deltas from
`content_block_delta` events and token counts from `message_start` /
`message_delta`. Prompt-cache reads are reported as cache hits.
"""

from __future__ import annotations

import logging
import time
from typing import Any, AsyncIterator, Optional

import anthropic

from ai_gateway.exceptions import (
    AuthenticationError,
    GatewayTimeoutError,
    RateLimitError,
    UpstreamError,
)
from ai_gateway.llm.providers.base import ProviderAdapter, StreamHandle, require_api_key
from ai_gateway.llm.types import (
    ChatMessage,
    GenerationOptions,
    GenerationResult,
    ProviderType,
    TokenUsage,
)
from ai_gateway.observability.redaction import sanitize_error_message

logger = logging.getLogger(__name__)


def _translate_error(exc: anthropic.APIError) -> Exception:
    message = sanitize_error_message(f"Claude API error: {exc}")
    provider = ProviderType.CLAUDE.value
    if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return AuthenticationError(message, provider=provider, status_code=exc.status_code)
    if isinstance(exc, anthropic.RateLimitError):
        retry_after = exc.response.headers.get("retry-after") if exc.response else None
        return RateLimitError(
            message,
            provider=provider,
            retry_after_seconds=float(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    if isinstance(exc, anthropic.APITimeoutError):
        return GatewayTimeoutError(message, provider=provider, operation="upstream")
    if isinstance(exc, anthropic.APIStatusError):
        return UpstreamError(message, provider=provider, status_code=exc.status_code)
    return UpstreamError(message, provider=provider)


class ClaudeAdapter(ProviderAdapter):
    provider = ProviderType.CLAUDE
    default_model = "claude-sonnet-4-20250514"
    supports_context_caching = True

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        super().__init__(model=model)
        api_key = require_api_key(self.provider, api_key)
        if not api_key.startswith("sk-ant-"):
            raise AuthenticationError(
                "Claude API key must start with 'sk-ant-'", provider=self.name
            )
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)

    def _request_kwargs(
        self, messages: list[ChatMessage], options: GenerationOptions
    ) -> dict[str, Any]:
        # System turns go in the dedicated field, not the message list
        system_parts = [m.content for m in messages if m.role == "system"]
        if options.system_instruction:
            system_parts.insert(0, options.system_instruction)

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": [m.to_dict() for m in messages if m.role != "system"],
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)
        return kwargs

    @staticmethod
    def _usage(raw: Any) -> TokenUsage:
        if raw is None:
            return TokenUsage()
        input_tokens = getattr(raw, "input_tokens", 0) or 0
        cache_read = getattr(raw, "cache_read_input_tokens", 0) or 0
        return TokenUsage(
            prompt_tokens=input_tokens + cache_read,
            completion_tokens=getattr(raw, "output_tokens", 0) or 0,
            cache_hit_tokens=cache_read,
            cache_miss_tokens=input_tokens,
        )

    async def generate_content(
        self, prompt: str, options: Optional[GenerationOptions] = None
    ) -> GenerationResult:
        options = options or GenerationOptions()
        kwargs = self._request_kwargs([ChatMessage(role="user", content=prompt)], options)
        start = time.monotonic()

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            raise _translate_error(e) from e

        elapsed = (time.monotonic() - start) * 1000
        text = "".join(
            getattr(block, "text", "") for block in (response.content or [])
        )
        return self._result(
            text,
            self._usage(response.usage),
            latency_ms=elapsed,
            truncated=getattr(response, "stop_reason", None) == "max_tokens",
        )

    async def generate_content_stream(
        self, messages: list[ChatMessage], options: Optional[GenerationOptions] = None
    ) -> StreamHandle:
        options = options or GenerationOptions()
        kwargs = self._request_kwargs(messages, options)

        try:
            stream = await self._client.messages.create(stream=True, **kwargs)
        except anthropic.APIError as e:
            raise _translate_error(e) from e

        usage = TokenUsage()
        self.last_usage = usage
        return StreamHandle(
            self._iter_text(stream, usage),
            self.provider,
            usage=usage,
            on_close=stream.close,
        )

    async def _iter_text(self, stream: Any, usage: TokenUsage) -> AsyncIterator[str]:
        try:
            async for event in stream:
                event_type = getattr(event, "type", "")
                if event_type == "message_start":
                    reported = self._usage(getattr(event.message, "usage", None))
                    usage.prompt_tokens = reported.prompt_tokens
                    usage.cache_hit_tokens = reported.cache_hit_tokens
                    usage.cache_miss_tokens = reported.cache_miss_tokens
                elif event_type == "content_block_delta":
                    delta = event.delta
                    if getattr(delta, "type", "") == "text_delta" and delta.text:
                        yield delta.text
                elif event_type == "message_delta":
                    output = getattr(getattr(event, "usage", None), "output_tokens", None)
                    if output:
                        usage.completion_tokens = output
        except anthropic.APIError as e:
            raise _translate_error(e) from e
