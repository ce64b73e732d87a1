"""
Provider adapters and the factory that builds them.

The set of backends is closed; `create_adapter` dispatches on the
ProviderType enum.
"""

from __future__ import annotations

from typing import Any, Optional

from ai_gateway.exceptions import AuthenticationError, ConfigurationError
from ai_gateway.llm.providers.base import ProviderAdapter, StreamHandle
from ai_gateway.llm.providers.claude import ClaudeAdapter
from ai_gateway.llm.providers.deepseek import DeepSeekAdapter
from ai_gateway.llm.providers.gemini import GeminiAdapter
from ai_gateway.llm.providers.kimi import KimiAdapter
from ai_gateway.llm.providers.mock import MockAdapter
from ai_gateway.llm.types import ProviderType

ADAPTER_CLASSES: dict[ProviderType, type[ProviderAdapter]] = {
    ProviderType.CLAUDE: ClaudeAdapter,
    ProviderType.GEMINI: GeminiAdapter,
    ProviderType.DEEPSEEK: DeepSeekAdapter,
    ProviderType.KIMI: KimiAdapter,
    ProviderType.MOCK: MockAdapter,
}


def create_adapter(provider: ProviderType, credential: Optional[Any] = None) -> ProviderAdapter:
    """
    Construct the adapter for `provider`.

    Args:
        provider: Backend to build.
        credential: A ResolvedCredential (ignored for Mock).

    Raises:
        AuthenticationError: Missing or implausible credential.
        ConfigurationError: Unknown provider.
    """
    if provider == ProviderType.MOCK:
        return MockAdapter()

    adapter_cls = ADAPTER_CLASSES.get(provider)
    if adapter_cls is None:
        raise ConfigurationError(f"No adapter for provider {provider!r}")
    if credential is None:
        raise AuthenticationError(
            f"No credential available for {provider.display_name}", provider=provider.value
        )

    kwargs: dict[str, Any] = {"api_key": credential.api_key, "model": credential.model}
    if getattr(credential, "base_url", None) and provider != ProviderType.CLAUDE:
        kwargs["base_url"] = credential.base_url
    return adapter_cls(**kwargs)


__all__ = [
    "ADAPTER_CLASSES",
    "ProviderAdapter",
    "StreamHandle",
    "create_adapter",
]
