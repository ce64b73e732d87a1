"""
DeepSeek adapter.

DeepSeek reports context-cache hits (`prompt_cache_hit_tokens`), which
the cost accountant prices at a 90% discount. Output is capped at 1000
tokens per call to keep runaway generations cheap.
"""

from __future__ import annotations

from ai_gateway.llm.providers.openai_compat import OpenAICompatibleAdapter
from ai_gateway.llm.types import ProviderType


class DeepSeekAdapter(OpenAICompatibleAdapter):
    provider = ProviderType.DEEPSEEK
    default_model = "deepseek-chat"
    default_base_url = "https://api.deepseek.com/v1"
    max_output_tokens = 1000
    supports_context_caching = True
