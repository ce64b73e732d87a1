"""
Tests for gateway settings and the settings loader.

Covers environment profiles, YAML overrides, environment-variable
overrides for the stream limits, and validation errors.
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from ai_gateway.config.loader import (
    load_provider_configurations,
    load_settings,
    resolve_environment,
)
from ai_gateway.config.settings import (
    DEFAULT_PRICING,
    Environment,
    GatewaySettings,
    RateLimitSettings,
    StreamLimits,
)


@pytest.fixture(autouse=True)
def _clean_env():
    keys = [
        "AI_GATEWAY_ENV", "AI_GATEWAY_CONFIG", "AI_GATEWAY_CHUNK_SIZE",
        "AI_GATEWAY_MAX_CHUNKS", "AI_GATEWAY_MAX_LENGTH",
    ]
    with patch.dict(os.environ, {}, clear=False):
        for key in keys:
            os.environ.pop(key, None)
        yield


# ===========================================================================
# Profiles
# ===========================================================================

class TestProfiles:

    def test_production_profile(self):
        settings = load_settings("production")
        assert settings.environment == Environment.PRODUCTION
        assert settings.timeouts.request == 10.0
        assert settings.timeouts.credential_lookup == 2.0
        assert settings.timeouts.generation == 7.0
        assert settings.timeouts.stream_idle == 6.0
        assert settings.stream.chunk_size == 200
        assert settings.stream.max_chunks == 2000
        assert settings.stream.max_length == 30000

    def test_development_profile(self):
        settings = load_settings("development")
        assert settings.timeouts.request == 45.0
        assert settings.timeouts.credential_lookup == 5.0
        assert settings.stream.max_chunks == 4000
        assert settings.stream.max_length == 50000

    def test_defaults_to_development(self):
        assert load_settings().environment == Environment.DEVELOPMENT

    def test_env_var_selects_profile(self):
        with patch.dict(os.environ, {"AI_GATEWAY_ENV": "production"}):
            assert load_settings().environment == Environment.PRODUCTION

    def test_unknown_environment(self):
        with pytest.raises(ValueError, match="Unknown environment"):
            resolve_environment("staging-42")


# ===========================================================================
# Overrides
# ===========================================================================

class TestOverrides:

    def test_stream_env_overrides(self):
        with patch.dict(os.environ, {
            "AI_GATEWAY_CHUNK_SIZE": "50",
            "AI_GATEWAY_MAX_CHUNKS": "10",
            "AI_GATEWAY_MAX_LENGTH": "999",
        }):
            settings = load_settings("production")
        assert settings.stream.chunk_size == 50
        assert settings.stream.max_chunks == 10
        assert settings.stream.max_length == 999
        # Untouched profile values survive the merge
        assert settings.timeouts.request == 10.0

    def test_non_integer_env_override(self):
        with patch.dict(os.environ, {"AI_GATEWAY_CHUNK_SIZE": "big"}):
            with pytest.raises(ValueError, match="AI_GATEWAY_CHUNK_SIZE"):
                load_settings("production")

    def test_yaml_overrides(self, tmp_path):
        path = tmp_path / "gateway.yaml"
        path.write_text(
            "timeouts:\n"
            "  request: 20\n"
            "enforce_rate_limits: true\n"
            "fallback_order: [gemini, claude]\n"
            "provider_rate_limits:\n"
            "  deepseek:\n"
            "    max_requests_per_minute: 5\n"
        )
        settings = load_settings("production", path)
        assert settings.timeouts.request == 20
        assert settings.timeouts.generation == 7.0
        assert settings.enforce_rate_limits is True
        assert settings.fallback_order == ["gemini", "claude"]
        assert settings.rate_limits_for("deepseek").max_requests_per_minute == 5
        assert settings.rate_limits_for("claude").max_requests_per_minute == 60

    def test_env_beats_yaml(self, tmp_path):
        path = tmp_path / "gateway.yaml"
        path.write_text("stream:\n  chunk_size: 300\n")
        with patch.dict(os.environ, {"AI_GATEWAY_CHUNK_SIZE": "120"}):
            settings = load_settings("development", path)
        assert settings.stream.chunk_size == 120

    def test_invalid_values_raise_value_error(self, tmp_path):
        path = tmp_path / "gateway.yaml"
        path.write_text("timeouts:\n  request: -1\n")
        with pytest.raises(ValueError, match="Invalid gateway settings"):
            load_settings("production", path)

    def test_missing_yaml(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings("production", tmp_path / "nope.yaml")


# ===========================================================================
# Settings model
# ===========================================================================

class TestGatewaySettings:

    def test_default_fallback_order(self):
        assert GatewaySettings().fallback_order == ["claude", "gemini", "deepseek", "kimi"]

    def test_unknown_provider_in_order(self):
        with pytest.raises(ValueError):
            GatewaySettings(fallback_order=["claude", "openai"])

    def test_duplicate_provider_in_order(self):
        with pytest.raises(ValueError):
            GatewaySettings(fallback_order=["claude", "claude"])

    def test_default_rate_limits(self):
        limits = GatewaySettings().rate_limits_for("deepseek")
        assert limits == RateLimitSettings(
            max_requests_per_minute=60,
            max_tokens_per_minute=200_000,
            max_cost_per_hour=10.0,
        )

    def test_deepseek_pricing(self):
        pricing = GatewaySettings().pricing_for("deepseek")
        assert pricing.input_per_million == 0.14
        assert pricing.output_per_million == 0.28
        assert pricing.cache_hit_discount == 0.9

    def test_bare_settings_follow_development_profile(self):
        settings = GatewaySettings()
        assert settings.environment == Environment.DEVELOPMENT
        assert settings.timeouts.request == 45.0
        assert settings.timeouts.generation == 25.0
        assert settings.stream.max_chunks == 4000
        assert settings.stream.max_length == 50000

    def test_production_environment_gets_production_profile(self):
        settings = GatewaySettings(environment="production")
        assert settings.timeouts.request == 10.0
        assert settings.timeouts.credential_lookup == 2.0
        assert settings.stream.max_chunks == 2000
        assert settings.stream.max_length == 30000

    def test_partial_dict_merged_over_profile(self):
        settings = GatewaySettings(environment="production", timeouts={"request": 3})
        assert settings.timeouts.request == 3
        assert settings.timeouts.generation == 7.0

    def test_explicit_model_kept(self):
        settings = GatewaySettings(stream=StreamLimits(chunk_size=40))
        assert settings.stream.chunk_size == 40
        assert settings.stream.max_chunks == 2000

    def test_mock_is_free(self):
        pricing = DEFAULT_PRICING["mock"]
        assert pricing.input_per_million == 0
        assert pricing.output_per_million == 0


class TestProviderConfigurationFile:

    def test_mapping_form(self, tmp_path):
        path = tmp_path / "providers.yaml"
        path.write_text(
            "configurations:\n"
            "  - provider: claude\n"
            "    encrypted_credential_ref: token\n"
        )
        assert load_provider_configurations(path)[0]["provider"] == "claude"

    def test_list_form(self, tmp_path):
        path = tmp_path / "providers.yaml"
        path.write_text("- provider: kimi\n  encrypted_credential_ref: t\n")
        assert load_provider_configurations(path)[0]["provider"] == "kimi"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_provider_configurations(tmp_path / "missing.yaml")
