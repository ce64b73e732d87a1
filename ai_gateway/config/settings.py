"""
Pydantic settings schema for the AI Gateway.

Two environment profiles ship as defaults. Production has tight
deadlines and smaller stream ceilings; development is more patient
for local models and debugging. Any field can be overridden from a
YAML file or environment variables (see `ai_gateway.config.loader`).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

# Provider names are kept as plain strings here so the config layer
# does not depend on the llm package.
DEFAULT_FALLBACK_ORDER = ["claude", "gemini", "deepseek", "kimi"]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Environment(str, Enum):
    PRODUCTION = "production"
    DEVELOPMENT = "development"
    TEST = "test"


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------

class TimeoutSettings(BaseModel):
    """Deadlines in seconds, one per operation class."""
    request: float = Field(10.0, gt=0, description="Whole gateway request")
    credential_lookup: float = Field(2.0, gt=0)
    generation: float = Field(7.0, gt=0, description="Single sync/structured call")
    stream_idle: float = Field(6.0, gt=0, description="Max wait between stream reads")


class StreamLimits(BaseModel):
    """Chunking parameters for the stream reconstructor."""
    chunk_size: int = Field(200, ge=1)
    max_chunks: int = Field(2000, ge=1)
    max_length: int = Field(30000, ge=1)


class RateLimitSettings(BaseModel):
    """Per-provider budget ceilings."""
    max_requests_per_minute: int = Field(60, ge=1)
    max_tokens_per_minute: int = Field(200_000, ge=1)
    max_cost_per_hour: float = Field(10.0, gt=0)


class PricingSettings(BaseModel):
    """USD per million tokens, with the discount applied to cache hits."""
    input_per_million: float = Field(0.0, ge=0)
    output_per_million: float = Field(0.0, ge=0)
    cache_hit_discount: float = Field(0.0, ge=0, le=1)


DEFAULT_PRICING: dict[str, PricingSettings] = {
    "claude": PricingSettings(
        input_per_million=3.0, output_per_million=15.0, cache_hit_discount=0.9,
    ),
    "gemini": PricingSettings(
        input_per_million=0.10, output_per_million=0.40, cache_hit_discount=0.75,
    ),
    "deepseek": PricingSettings(
        input_per_million=0.14, output_per_million=0.28, cache_hit_discount=0.9,
    ),
    "kimi": PricingSettings(
        input_per_million=1.65, output_per_million=1.65, cache_hit_discount=0.0,
    ),
    "mock": PricingSettings(),
}


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------

class GatewaySettings(BaseModel):
    """Complete gateway configuration."""
    environment: Environment = Environment.DEVELOPMENT
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    stream: StreamLimits = Field(default_factory=StreamLimits)
    rate_limits: RateLimitSettings = Field(default_factory=RateLimitSettings)
    provider_rate_limits: dict[str, RateLimitSettings] = Field(default_factory=dict)
    pricing: dict[str, PricingSettings] = Field(
        default_factory=lambda: dict(DEFAULT_PRICING)
    )
    fallback_order: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FALLBACK_ORDER)
    )
    enforce_rate_limits: bool = Field(
        False, description="Deny calls over budget instead of only logging them"
    )
    allow_env_credentials: bool = Field(
        True, description="Read CLAUDE_API_KEY etc. when the store has no entry"
    )
    config_store_path: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def apply_profile_defaults(cls, values: Any) -> Any:
        """
        Fill deadlines and stream ceilings from the environment profile.

        Fields given as dicts are merged over the profile, so
        `{"timeouts": {"request": 3}}` keeps the profile's other
        deadlines. Model instances are taken as-is.
        """
        if not isinstance(values, dict):
            return values
        environment = Environment(values.get("environment", Environment.DEVELOPMENT))
        profile = PROFILE_DEFAULTS[environment]
        values = dict(values)
        for key in ("timeouts", "stream"):
            given = values.get(key)
            if given is None:
                values[key] = dict(profile[key])
            elif isinstance(given, dict):
                values[key] = {**profile[key], **given}
        return values

    @field_validator("fallback_order")
    @classmethod
    def fallback_order_known(cls, v: list[str]) -> list[str]:
        known = set(DEFAULT_FALLBACK_ORDER)
        cleaned = [name.strip().lower() for name in v]
        unknown = [name for name in cleaned if name not in known]
        if unknown:
            raise ValueError(f"Unknown providers in fallback_order: {unknown}")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("fallback_order contains duplicates")
        return cleaned

    def rate_limits_for(self, provider: str) -> RateLimitSettings:
        return self.provider_rate_limits.get(provider, self.rate_limits)

    def pricing_for(self, provider: str) -> PricingSettings:
        return self.pricing.get(provider) or DEFAULT_PRICING.get(provider) or PricingSettings()


PROFILE_DEFAULTS: dict[Environment, dict] = {
    Environment.PRODUCTION: {
        "timeouts": {
            "request": 10.0,
            "credential_lookup": 2.0,
            "generation": 7.0,
            "stream_idle": 6.0,
        },
        "stream": {"chunk_size": 200, "max_chunks": 2000, "max_length": 30000},
    },
    Environment.DEVELOPMENT: {
        "timeouts": {
            "request": 45.0,
            "credential_lookup": 5.0,
            "generation": 25.0,
            "stream_idle": 30.0,
        },
        "stream": {"chunk_size": 200, "max_chunks": 4000, "max_length": 50000},
    },
}
PROFILE_DEFAULTS[Environment.TEST] = PROFILE_DEFAULTS[Environment.DEVELOPMENT]
