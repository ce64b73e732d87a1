"""
Shared adapter for OpenAI-compatible chat-completions backends.

DeepSeek and Moonshot Kimi expose the same /chat/completions contract
(bearer auth, `choices[0].message.content`, SSE deltas with a final
`[DONE]`), so both subclass this adapter and only change endpoints,
models and token caps.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, AsyncIterator, Optional

import httpx

from ai_gateway.llm.providers.base import (
    ProviderAdapter,
    StreamHandle,
    iter_sse_data,
    open_stream,
    raise_for_provider_status,
    require_api_key,
    translate_transport_error,
)
from ai_gateway.llm.types import (
    ChatMessage,
    GenerationOptions,
    GenerationResult,
    TokenUsage,
)

logger = logging.getLogger(__name__)


class OpenAICompatibleAdapter(ProviderAdapter):
    """Chat-completions adapter over httpx."""

    default_base_url: str = ""
    max_output_tokens: Optional[int] = None

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        request_timeout: float = 60.0,
    ):
        super().__init__(model=model)
        self._api_key = require_api_key(self.provider, api_key)
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self._client = http_client
        self._request_timeout = request_timeout

    # --- request building ---

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    def _max_tokens(self, options: GenerationOptions) -> int:
        if self.max_output_tokens is not None:
            return min(options.max_tokens, self.max_output_tokens)
        return options.max_tokens

    def _payload(
        self,
        messages: list[ChatMessage],
        options: GenerationOptions,
        stream: bool = False,
    ) -> dict[str, Any]:
        wire_messages: list[dict[str, str]] = []
        if options.system_instruction:
            wire_messages.append({"role": "system", "content": options.system_instruction})
        wire_messages.extend(m.to_dict() for m in messages)

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": wire_messages,
            "max_tokens": self._max_tokens(options),
            "temperature": options.temperature,
        }
        if options.response_format == "json" and not stream:
            payload["response_format"] = {"type": "json_object"}
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        return payload

    def _parse_usage(self, raw: Optional[dict[str, Any]]) -> TokenUsage:
        raw = raw or {}
        return TokenUsage(
            prompt_tokens=int(raw.get("prompt_tokens") or 0),
            completion_tokens=int(raw.get("completion_tokens") or 0),
            cache_hit_tokens=int(raw.get("prompt_cache_hit_tokens") or 0),
            cache_miss_tokens=int(raw.get("prompt_cache_miss_tokens") or 0),
        )

    def _get_client(self) -> tuple[httpx.AsyncClient, bool]:
        """Return (client, owned). Owned clients are closed after use."""
        if self._client is not None:
            return self._client, False
        return httpx.AsyncClient(timeout=self._request_timeout), True

    # --- capabilities ---

    async def generate_content(
        self, prompt: str, options: Optional[GenerationOptions] = None
    ) -> GenerationResult:
        options = options or GenerationOptions()
        payload = self._payload([ChatMessage(role="user", content=prompt)], options)
        start = time.monotonic()

        client, owned = self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                headers=self._headers(),
                json=payload,
            )
        except httpx.HTTPError as e:
            raise translate_transport_error(e, self.provider) from e
        finally:
            if owned:
                await client.aclose()

        raise_for_provider_status(response, self.provider)
        data = response.json()
        choices = data.get("choices") or [{}]
        text = (choices[0].get("message") or {}).get("content") or ""
        truncated = choices[0].get("finish_reason") == "length"
        usage = self._parse_usage(data.get("usage"))

        elapsed = (time.monotonic() - start) * 1000
        logger.debug(
            "provider_call_completed",
            extra={
                "provider": self.name,
                "latency_ms": round(elapsed, 1),
                "total_tokens": usage.total_tokens,
            },
        )
        return self._result(text, usage, latency_ms=elapsed, truncated=truncated)

    async def generate_content_stream(
        self, messages: list[ChatMessage], options: Optional[GenerationOptions] = None
    ) -> StreamHandle:
        options = options or GenerationOptions()
        payload = self._payload(messages, options, stream=True)

        client, owned = self._get_client()
        request = client.build_request(
            "POST",
            f"{self.base_url}/chat/completions",
            headers=self._headers(),
            json=payload,
        )
        response = await open_stream(client, request, self.provider, owned)

        usage = TokenUsage()
        self.last_usage = usage

        async def close() -> None:
            await response.aclose()
            if owned:
                await client.aclose()

        return StreamHandle(
            self._iter_deltas(response, usage),
            self.provider,
            usage=usage,
            on_close=close,
        )

    async def _iter_deltas(
        self, response: httpx.Response, usage: TokenUsage
    ) -> AsyncIterator[str]:
        try:
            async for data in iter_sse_data(response):
                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if event.get("usage"):
                    reported = self._parse_usage(event["usage"])
                    usage.prompt_tokens = reported.prompt_tokens
                    usage.completion_tokens = reported.completion_tokens
                    usage.cache_hit_tokens = reported.cache_hit_tokens
                    usage.cache_miss_tokens = reported.cache_miss_tokens
                for choice in event.get("choices") or []:
                    content = (choice.get("delta") or {}).get("content")
                    if content:
                        yield content
        except httpx.HTTPError as e:
            raise translate_transport_error(e, self.provider) from e
