"""
Core data types shared by adapters, the orchestrator and the gateway.

Runtime values are plain dataclasses; configuration lives in pydantic
models under `ai_gateway.config`. Wire shapes (JSON responses and SSE
frames) use camelCase keys because the browser client reads them
directly.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class ProviderType(str, Enum):
    CLAUDE = "claude"
    GEMINI = "gemini"
    DEEPSEEK = "deepseek"
    KIMI = "kimi"
    MOCK = "mock"

    @classmethod
    def parse(cls, value: Any) -> Optional["ProviderType"]:
        """Lenient lookup: accepts enum members or case-insensitive names."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None

    @property
    def display_name(self) -> str:
        return PROVIDER_DISPLAY_NAMES[self]


PROVIDER_DISPLAY_NAMES: dict[ProviderType, str] = {
    ProviderType.CLAUDE: "Claude (Anthropic)",
    ProviderType.GEMINI: "Gemini (Google)",
    ProviderType.DEEPSEEK: "DeepSeek",
    ProviderType.KIMI: "Kimi (Moonshot AI)",
    ProviderType.MOCK: "Mock Analysis",
}

DEFAULT_FALLBACK_ORDER: tuple[ProviderType, ...] = (
    ProviderType.CLAUDE,
    ProviderType.GEMINI,
    ProviderType.DEEPSEEK,
    ProviderType.KIMI,
)

# Environment variables consulted when no stored configuration exists.
PROVIDER_ENV_VARS: dict[ProviderType, str] = {
    ProviderType.CLAUDE: "CLAUDE_API_KEY",
    ProviderType.GEMINI: "GEMINI_API_KEY",
    ProviderType.DEEPSEEK: "DEEPSEEK_API_KEY",
    ProviderType.KIMI: "KIMI_API_KEY",
}


@dataclass(frozen=True)
class ProviderConfiguration:
    """One stored provider configuration (read-only to the gateway)."""

    provider: ProviderType
    encrypted_credential_ref: str
    is_active: bool = True
    is_default: bool = False
    model: Optional[str] = None
    base_url: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderConfiguration":
        provider = ProviderType.parse(data.get("provider"))
        if provider is None or provider == ProviderType.MOCK:
            raise ValueError(f"Unknown provider in configuration: {data.get('provider')!r}")
        credential = data.get("encrypted_credential_ref") or data.get("encrypted_api_key")
        if not credential:
            raise ValueError(f"Configuration for {provider.value} has no credential reference")
        return cls(
            provider=provider,
            encrypted_credential_ref=str(credential),
            is_active=bool(data.get("is_active", True)),
            is_default=bool(data.get("is_default", False)),
            model=data.get("model"),
            base_url=data.get("base_url"),
            id=str(data["id"]) if data.get("id") is not None else None,
        )

    def __repr__(self) -> str:
        return (
            f"ProviderConfiguration(provider={self.provider.value}, id={self.id}, "
            f"is_active={self.is_active}, is_default={self.is_default})"
        )


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class GenerationMode(str, Enum):
    SYNC = "sync"
    STREAM = "stream"
    STRUCTURED = "structured"


@dataclass
class ChatMessage:
    role: str       # "user" | "assistant" | "system"
    content: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        role = data.get("role", "user")
        # The browser client sends Gemini-style history ("model" + parts)
        if role == "model":
            role = "assistant"
        content = data.get("content")
        if content is None and data.get("parts"):
            content = "".join(str(p.get("text", "")) for p in data["parts"])
        return cls(role=role, content=str(content or ""))

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class GenerationOptions:
    max_tokens: int = 1024
    temperature: float = 0.7
    system_instruction: Optional[str] = None
    schema: Optional[dict[str, Any]] = None
    response_format: Optional[str] = None   # "json" for JSON mode


@dataclass
class GenerationRequest:
    """A single gateway request."""

    prompt: Optional[str] = None
    messages: list[ChatMessage] = field(default_factory=list)
    provider: Optional[ProviderType] = None
    mode: GenerationMode = GenerationMode.SYNC
    options: GenerationOptions = field(default_factory=GenerationOptions)

    def __post_init__(self) -> None:
        if not self.prompt and not self.messages:
            raise ValueError("GenerationRequest needs a prompt or messages")
        if self.mode == GenerationMode.STRUCTURED and not self.options.schema:
            raise ValueError("Structured requests require options.schema")
        if self.options.max_tokens <= 0:
            raise ValueError("max_tokens must be positive")

    @property
    def conversation(self) -> list[ChatMessage]:
        """Messages with the prompt appended as the final user turn."""
        messages = list(self.messages)
        if self.prompt:
            messages.append(ChatMessage(role="user", content=self.prompt))
        return messages

    @property
    def prompt_text(self) -> str:
        """Single-prompt view for sync/structured calls."""
        if self.prompt and not self.messages:
            return self.prompt
        return "\n\n".join(
            f"{m.role}: {m.content}" for m in self.conversation
        )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cache_hit_tokens: int = 0
    cache_miss_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @property
    def cache_hit_rate(self) -> float:
        seen = self.cache_hit_tokens + self.cache_miss_tokens
        return self.cache_hit_tokens / seen if seen else 0.0

    @classmethod
    def estimate(cls, prompt: str, completion: str) -> "TokenUsage":
        """Rough estimate (one token per four characters)."""
        return cls(
            prompt_tokens=max(1, len(prompt) // 4) if prompt else 0,
            completion_tokens=max(1, len(completion) // 4) if completion else 0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "cacheHitTokens": self.cache_hit_tokens,
            "cacheMissTokens": self.cache_miss_tokens,
        }


@dataclass
class GenerationResult:
    """Unified result from any provider, annotated by the orchestrator."""

    text: str
    provider_used: ProviderType
    usage: TokenUsage = field(default_factory=TokenUsage)
    requested_provider: Optional[ProviderType] = None
    used_fallback: bool = False
    fallback_provider: Optional[ProviderType] = None
    truncated: bool = False
    timeout: bool = False
    data: Any = None            # Parsed object for structured calls
    model: str = ""
    latency_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "content": self.text,
            "providerUsed": self.provider_used.value,
            "requestedProvider": (
                self.requested_provider.value if self.requested_provider else None
            ),
            "usedFallback": self.used_fallback,
            "usage": self.usage.to_dict(),
        }
        if self.fallback_provider is not None:
            result["fallbackProvider"] = self.fallback_provider.value
        if self.truncated:
            result["truncated"] = True
        if self.timeout:
            result["timeout"] = True
        if self.data is not None:
            result["data"] = self.data
        return result


# ---------------------------------------------------------------------------
# Stream frames
# ---------------------------------------------------------------------------


class FrameType(str, Enum):
    CONNECTED = "connected"
    FALLBACK = "fallback"
    CONTENT = "content"
    CONTINUATION = "continuation"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (FrameType.COMPLETE, FrameType.ERROR)


@dataclass
class StreamFrame:
    """One SSE frame sent to the browser."""

    type: FrameType
    payload: dict[str, Any] = field(default_factory=dict)
    cumulative_length: int = 0
    chunk_index: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value}
        data.update(self.payload)
        data["cumulativeLength"] = self.cumulative_length
        if self.chunk_index is not None:
            data["chunkIndex"] = self.chunk_index
        return data

    def to_sse(self) -> str:
        return f"event: {self.type.value}\ndata: {json.dumps(self.to_dict())}\n\n"
