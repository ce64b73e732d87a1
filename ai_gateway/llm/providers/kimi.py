"""Moonshot Kimi adapter (OpenAI-compatible)."""

from __future__ import annotations

from ai_gateway.llm.providers.openai_compat import OpenAICompatibleAdapter
from ai_gateway.llm.types import ProviderType


class KimiAdapter(OpenAICompatibleAdapter):
    provider = ProviderType.KIMI
    default_model = "moonshot-v1-8k"
    default_base_url = "https://api.moonshot.cn/v1"
