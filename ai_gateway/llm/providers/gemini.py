"""
Gemini adapter — Google Generative Language REST API over httpx.

Non-streaming calls hit `:generateContent`; streaming uses
`:streamGenerateContent?alt=sse`, where every SSE event carries a
partial candidate and (on the last event) `usageMetadata`.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, AsyncIterator, Optional

import httpx

from ai_gateway.exceptions import AuthenticationError
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
    ProviderType,
    TokenUsage,
)

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _candidate_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or [{}]
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(str(p.get("text", "")) for p in parts)


def _usage(metadata: Optional[dict[str, Any]]) -> TokenUsage:
    metadata = metadata or {}
    prompt = int(metadata.get("promptTokenCount") or 0)
    cached = int(metadata.get("cachedContentTokenCount") or 0)
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=int(metadata.get("candidatesTokenCount") or 0),
        cache_hit_tokens=cached,
        cache_miss_tokens=max(0, prompt - cached),
    )


class GeminiAdapter(ProviderAdapter):
    provider = ProviderType.GEMINI
    default_model = "gemini-2.0-flash"
    supports_context_caching = True

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        request_timeout: float = 60.0,
    ):
        super().__init__(model=model)
        api_key = require_api_key(self.provider, api_key)
        if len(api_key) <= 20:
            raise AuthenticationError(
                "Gemini API key is too short to be valid", provider=self.name
            )
        self._api_key = api_key
        self.base_url = (base_url or GEMINI_BASE_URL).rstrip("/")
        self._client = http_client
        self._request_timeout = request_timeout

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "x-goog-api-key": self._api_key}

    def _payload(
        self, messages: list[ChatMessage], options: GenerationOptions
    ) -> dict[str, Any]:
        system_parts = [m.content for m in messages if m.role == "system"]
        if options.system_instruction:
            system_parts.insert(0, options.system_instruction)

        generation_config: dict[str, Any] = {
            "maxOutputTokens": options.max_tokens,
            "temperature": options.temperature,
        }
        if options.response_format == "json":
            generation_config["responseMimeType"] = "application/json"

        payload: dict[str, Any] = {
            "contents": [
                {
                    "role": "model" if m.role == "assistant" else "user",
                    "parts": [{"text": m.content}],
                }
                for m in messages if m.role != "system"
            ],
            "generationConfig": generation_config,
        }
        if system_parts:
            payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
        return payload

    def _get_client(self) -> tuple[httpx.AsyncClient, bool]:
        if self._client is not None:
            return self._client, False
        return httpx.AsyncClient(timeout=self._request_timeout), True

    async def generate_content(
        self, prompt: str, options: Optional[GenerationOptions] = None
    ) -> GenerationResult:
        options = options or GenerationOptions()
        payload = self._payload([ChatMessage(role="user", content=prompt)], options)
        url = f"{self.base_url}/models/{self.model}:generateContent"
        start = time.monotonic()

        client, owned = self._get_client()
        try:
            response = await client.post(url, headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            raise translate_transport_error(e, self.provider) from e
        finally:
            if owned:
                await client.aclose()

        raise_for_provider_status(response, self.provider)
        data = response.json()
        elapsed = (time.monotonic() - start) * 1000
        candidates = data.get("candidates") or [{}]
        return self._result(
            _candidate_text(data),
            _usage(data.get("usageMetadata")),
            latency_ms=elapsed,
            truncated=candidates[0].get("finishReason") == "MAX_TOKENS",
        )

    async def generate_content_stream(
        self, messages: list[ChatMessage], options: Optional[GenerationOptions] = None
    ) -> StreamHandle:
        options = options or GenerationOptions()
        payload = self._payload(messages, options)
        url = f"{self.base_url}/models/{self.model}:streamGenerateContent"

        client, owned = self._get_client()
        request = client.build_request(
            "POST", url, params={"alt": "sse"}, headers=self._headers(), json=payload
        )
        response = await open_stream(client, request, self.provider, owned)

        usage = TokenUsage()
        self.last_usage = usage

        async def close() -> None:
            await response.aclose()
            if owned:
                await client.aclose()

        return StreamHandle(
            self._iter_text(response, usage), self.provider, usage=usage, on_close=close
        )

    async def _iter_text(
        self, response: httpx.Response, usage: TokenUsage
    ) -> AsyncIterator[str]:
        try:
            async for data in iter_sse_data(response):
                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if event.get("usageMetadata"):
                    reported = _usage(event["usageMetadata"])
                    usage.prompt_tokens = reported.prompt_tokens
                    usage.completion_tokens = reported.completion_tokens
                    usage.cache_hit_tokens = reported.cache_hit_tokens
                    usage.cache_miss_tokens = reported.cache_miss_tokens
                text = _candidate_text(event)
                if text:
                    yield text
        except httpx.HTTPError as e:
            raise translate_transport_error(e, self.provider) from e
