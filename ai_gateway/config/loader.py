"""
Settings loader for the AI Gateway.

Resolution order (later wins):
1. Environment profile defaults (production / development)
2. Optional YAML file (explicit path or AI_GATEWAY_CONFIG)
3. Environment variables AI_GATEWAY_CHUNK_SIZE, AI_GATEWAY_MAX_CHUNKS,
   AI_GATEWAY_MAX_LENGTH
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from ai_gateway.config.settings import PROFILE_DEFAULTS, Environment, GatewaySettings

ENV_VAR = "AI_GATEWAY_ENV"
CONFIG_PATH_ENV = "AI_GATEWAY_CONFIG"

_STREAM_ENV_OVERRIDES = {
    "AI_GATEWAY_CHUNK_SIZE": "chunk_size",
    "AI_GATEWAY_MAX_CHUNKS": "max_chunks",
    "AI_GATEWAY_MAX_LENGTH": "max_length",
}


def resolve_environment(env: Optional[str] = None) -> Environment:
    """Parse an environment name, falling back to AI_GATEWAY_ENV."""
    raw = (env or os.environ.get(ENV_VAR, "development")).lower().strip()
    try:
        return Environment(raw)
    except ValueError as e:
        raise ValueError(
            f"Unknown environment '{raw}'. "
            f"Expected one of: {[member.value for member in Environment]}"
        ) from e


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: str | Path) -> dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    with open(path, "r") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return raw


def _env_overrides() -> dict[str, Any]:
    stream: dict[str, int] = {}
    for var, field in _STREAM_ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value is None or not value.strip():
            continue
        try:
            stream[field] = int(value)
        except ValueError as e:
            raise ValueError(f"{var} must be an integer, got '{value}'") from e
    return {"stream": stream} if stream else {}


def load_settings(
    env: Optional[str] = None,
    config_path: Optional[str | Path] = None,
) -> GatewaySettings:
    """
    Build validated GatewaySettings.

    Args:
        env: Environment name. Defaults to AI_GATEWAY_ENV or "development".
        config_path: Optional YAML file with overrides. Defaults to
                     AI_GATEWAY_CONFIG when set.

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist.
        ValueError: If the merged config is invalid.
    """
    environment = resolve_environment(env)
    raw: dict[str, Any] = copy.deepcopy(PROFILE_DEFAULTS[environment])
    raw["environment"] = environment.value

    config_path = config_path or os.environ.get(CONFIG_PATH_ENV)
    if config_path:
        raw = _deep_merge(raw, _read_yaml(config_path))

    raw = _deep_merge(raw, _env_overrides())

    try:
        return GatewaySettings(**raw)
    except ValidationError as e:
        raise ValueError(f"Invalid gateway settings:\n{e}") from e


def load_provider_configurations(path: str | Path) -> list[dict[str, Any]]:
    """
    Read the raw provider configuration list from a YAML file.

    Accepts either a top-level list or a mapping with a
    `configurations:` key.
    """
    raw = yaml.safe_load(Path(path).read_text()) if Path(path).exists() else None
    if raw is None:
        raise FileNotFoundError(f"Provider configuration file not found or empty: {path}")
    if isinstance(raw, dict):
        raw = raw.get("configurations", [])
    if not isinstance(raw, list):
        raise ValueError(f"Provider configurations must be a list: {path}")
    return raw
