"""
Provider Adapter interface — one capability set for every LLM backend.

Every backend (Claude, Gemini, DeepSeek, Kimi, Mock) implements:
- generate_content: single prompt → GenerationResult
- generate_content_stream: conversation → StreamHandle (raw reads)
- generate_structured_content: prompt + JSON schema → validated object

Adapters translate transport failures into the gateway exception
taxonomy and never retry or fall back themselves; that is the
orchestrator's job.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

import httpx
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from ai_gateway.exceptions import (
    AuthenticationError,
    GatewayTimeoutError,
    RateLimitError,
    SchemaValidationError,
    UpstreamError,
)
from ai_gateway.llm.types import (
    ChatMessage,
    GenerationOptions,
    GenerationResult,
    ProviderType,
    TokenUsage,
)
from ai_gateway.observability.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

# Placeholder key shipped in the development health check; never valid.
PLACEHOLDER_API_KEY = "test_key_for_development_health_check"

RawChunk = Union[bytes, str]


# ---------------------------------------------------------------------------
# Stream Handle
# ---------------------------------------------------------------------------


class StreamHandle:
    """
    An open provider stream: an async iterator of raw reads plus a
    close operation that releases the underlying connection.

    `aclose()` is idempotent and is called by the reconstructor on every
    exit path. `usage` is filled in by the adapter when the backend
    reports final token counts.
    """

    def __init__(
        self,
        source: AsyncIterator[RawChunk],
        provider: ProviderType,
        *,
        usage: Optional[TokenUsage] = None,
        on_close: Optional[Callable[[], Optional[Awaitable[None]]]] = None,
    ):
        self._source = source
        self.provider = provider
        self.usage = usage or TokenUsage()
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def usage_reported(self) -> bool:
        return self.usage.total_tokens > 0

    def __aiter__(self) -> "StreamHandle":
        return self

    async def __anext__(self) -> RawChunk:
        if self._closed:
            raise StopAsyncIteration
        return await self._source.__anext__()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            source_close = getattr(self._source, "aclose", None)
            if source_close is not None:
                await source_close()
        finally:
            if self._on_close is not None:
                result = self._on_close()
                if asyncio.iscoroutine(result):
                    await result


# ---------------------------------------------------------------------------
# Adapter ABC
# ---------------------------------------------------------------------------


class ProviderAdapter(ABC):
    """Base class for every backend adapter."""

    provider: ProviderType
    default_model: str = ""
    supports_context_caching: bool = False

    def __init__(self, model: Optional[str] = None):
        self.model = model or self.default_model
        self.last_usage: Optional[TokenUsage] = None

    @property
    def name(self) -> str:
        return self.provider.value

    @property
    def display_name(self) -> str:
        return self.provider.display_name

    @abstractmethod
    async def generate_content(
        self, prompt: str, options: Optional[GenerationOptions] = None
    ) -> GenerationResult:
        ...

    @abstractmethod
    async def generate_content_stream(
        self, messages: list[ChatMessage], options: Optional[GenerationOptions] = None
    ) -> StreamHandle:
        ...

    async def generate_structured_content(
        self,
        prompt: str,
        schema: dict[str, Any],
        options: Optional[GenerationOptions] = None,
    ) -> Any:
        """
        Ask for JSON matching `schema` and validate the answer.

        Adapters with native JSON output override `_json_options`;
        the rest rely on the schema appended to the prompt.
        """
        options = options or GenerationOptions()
        json_prompt = (
            f"{prompt}\n\nPlease respond with valid JSON only that matches "
            f"this schema: {json.dumps(schema)}"
        )
        result = await self.generate_content(json_prompt, self._json_options(options))
        return parse_structured_output(result.text, schema, provider=self.name)

    def _json_options(self, options: GenerationOptions) -> GenerationOptions:
        return GenerationOptions(
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            system_instruction=options.system_instruction,
            schema=options.schema,
            response_format="json",
        )

    def _result(
        self,
        text: str,
        usage: TokenUsage,
        latency_ms: float = 0.0,
        truncated: bool = False,
    ) -> GenerationResult:
        self.last_usage = usage
        return GenerationResult(
            text=text,
            provider_used=self.provider,
            usage=usage,
            truncated=truncated,
            model=self.model,
            latency_ms=latency_ms,
        )


# ---------------------------------------------------------------------------
# Structured output
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _loads_lenient(text: str) -> Any:
    cleaned = _FENCE_RE.sub("", text.strip())
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise
        return json.loads(cleaned[start:end + 1])


def parse_structured_output(
    text: str, schema: dict[str, Any], provider: Optional[str] = None
) -> Any:
    """
    Parse model output as JSON and validate it against `schema`.

    Raises:
        SchemaValidationError: If the text is not JSON or fails validation.
    """
    try:
        data = _loads_lenient(text)
    except json.JSONDecodeError as e:
        raise SchemaValidationError(
            f"Structured output is not valid JSON: {e.msg}",
            provider=provider,
            raw_text=text[:500],
        ) from e

    try:
        validator = Draft202012Validator(schema)
    except SchemaError as e:
        raise SchemaValidationError(
            f"Invalid JSON schema: {e.message}", provider=provider
        ) from e

    errors = sorted(validator.iter_errors(data), key=lambda e: "/".join(map(str, e.path)))
    if errors:
        messages = [f"{'/'.join(map(str, e.path)) or '<root>'}: {e.message}" for e in errors]
        raise SchemaValidationError(
            f"Structured output failed validation: {messages[0]}",
            provider=provider,
            raw_text=text[:500],
            details={"errors": messages},
        )
    return data


# ---------------------------------------------------------------------------
# HTTP helpers (httpx backends)
# ---------------------------------------------------------------------------


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def raise_for_provider_status(response: httpx.Response, provider: ProviderType) -> None:
    """Map a non-2xx response to the gateway exception taxonomy."""
    if response.is_success:
        return
    status = response.status_code
    try:
        body = response.text
    except httpx.ResponseNotRead:
        body = ""
    message = sanitize_error_message(
        f"{provider.display_name} API error {status}: {body or response.reason_phrase}"
    )
    if status in (401, 403):
        raise AuthenticationError(message, provider=provider.value, status_code=status)
    if status == 429:
        raise RateLimitError(
            message, provider=provider.value, retry_after_seconds=_retry_after(response)
        )
    if status in (408, 504):
        raise GatewayTimeoutError(message, provider=provider.value, operation="upstream")
    raise UpstreamError(message, provider=provider.value, status_code=status)


def translate_transport_error(exc: httpx.HTTPError, provider: ProviderType) -> Exception:
    """Convert an httpx transport exception into a gateway exception."""
    message = sanitize_error_message(f"{provider.display_name} request failed: {exc}")
    if isinstance(exc, httpx.TimeoutException):
        return GatewayTimeoutError(message, provider=provider.value, operation="upstream")
    return UpstreamError(message, provider=provider.value)


async def open_stream(
    client: httpx.AsyncClient,
    request: httpx.Request,
    provider: ProviderType,
    owned: bool,
) -> httpx.Response:
    """
    Send a streaming request and check its status.

    On any failure, including cancellation when a deadline fires, the
    response and an owned client are closed before the error propagates.
    """
    response: Optional[httpx.Response] = None
    try:
        response = await client.send(request, stream=True)
        if not response.is_success:
            await response.aread()
            raise_for_provider_status(response, provider)
        return response
    except BaseException as e:
        if response is not None:
            await response.aclose()
        if owned:
            await client.aclose()
        if isinstance(e, httpx.HTTPError):
            raise translate_transport_error(e, provider) from e
        raise


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """Yield the `data:` payloads of a server-sent-events response."""
    async for line in response.aiter_lines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[5:].strip()
        if data == "[DONE]":
            return
        if data:
            yield data


def require_api_key(provider: ProviderType, api_key: Optional[str]) -> str:
    """Reject missing and placeholder credentials before any network use."""
    if not api_key or not api_key.strip():
        raise AuthenticationError(
            f"{provider.display_name} API key not configured", provider=provider.value
        )
    if api_key.strip() == PLACEHOLDER_API_KEY:
        raise AuthenticationError(
            f"{provider.display_name} API key is the development placeholder",
            provider=provider.value,
        )
    return api_key.strip()
