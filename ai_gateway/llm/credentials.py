"""
Configuration Resolver — bounded-time credential lookup and decryption.

Provider credentials live in an external configuration store (owned by
the admin surface) as Fernet tokens derived from a master key. The
resolver reads the active configuration for a provider, decrypts it at
call time, and returns a ResolvedCredential. Every failure mode (store
too slow, nothing configured, bad token, no master key) resolves to
None, the "no credential" signal the orchestrator uses to fall back.

Security model:
    - Plaintext credentials are NEVER stored or logged
    - Encryption key is derived from AI_GATEWAY_MASTER_KEY
    - Decryption happens only when a request needs the credential

Usage:
    from ai_gateway.llm.credentials import CredentialResolver, InMemoryConfigurationStore

    store = InMemoryConfigurationStore([config])
    resolver = CredentialResolver(store, supervisor, master_key="...")
    credential = await resolver.resolve(ProviderType.CLAUDE)
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Protocol

from cryptography.fernet import Fernet, InvalidToken

from ai_gateway.config.loader import load_provider_configurations
from ai_gateway.exceptions import ConfigurationError, GatewayTimeoutError
from ai_gateway.llm.timeouts import OperationClass, TimeoutSupervisor
from ai_gateway.llm.types import (
    DEFAULT_FALLBACK_ORDER,
    PROVIDER_ENV_VARS,
    ProviderConfiguration,
    ProviderType,
)
from ai_gateway.observability.redaction import mask_secret

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Encryption
# ---------------------------------------------------------------------------

MASTER_KEY_ENV = "AI_GATEWAY_MASTER_KEY"


def _derive_fernet_key(master_key: str) -> bytes:
    """
    Derive a Fernet-compatible key from a master key string.

    Uses SHA-256 hash of the master key, base64-encoded to 32 bytes.
    """
    hashed = hashlib.sha256(master_key.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(hashed)


def _get_fernet(master_key: Optional[str] = None) -> Fernet:
    """
    Get a Fernet instance from the master key.

    Raises:
        EnvironmentError: If no master key is available.
    """
    key = master_key or os.environ.get(MASTER_KEY_ENV, "").strip()
    if not key:
        raise EnvironmentError(
            f"{MASTER_KEY_ENV} environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
        )
    return Fernet(_derive_fernet_key(key))


def encrypt_value(plaintext: str, master_key: Optional[str] = None) -> str:
    """Encrypt a plaintext credential into a storable token."""
    f = _get_fernet(master_key)
    return f.encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt_value(encrypted_text: str, master_key: Optional[str] = None) -> str:
    """
    Decrypt a stored credential token.

    Raises:
        InvalidToken: If the token is invalid or the key is wrong.
    """
    f = _get_fernet(master_key)
    return f.decrypt(encrypted_text.encode("utf-8")).decode("utf-8")


# ---------------------------------------------------------------------------
# Configuration stores
# ---------------------------------------------------------------------------


class ConfigurationStore(Protocol):
    """Read-only view of the provider configuration table."""

    async def get_active_configurations(
        self, provider: Optional[ProviderType] = None
    ) -> list[ProviderConfiguration]:
        ...


def _validate_defaults(configurations: Iterable[ProviderConfiguration]) -> None:
    seen: set[ProviderType] = set()
    for config in configurations:
        if not (config.is_active and config.is_default):
            continue
        if config.provider in seen:
            raise ConfigurationError(
                f"More than one default configuration for {config.provider.value}",
                provider=config.provider.value,
            )
        seen.add(config.provider)


class InMemoryConfigurationStore:
    """Configuration store backed by a list (tests and local dev)."""

    def __init__(self, configurations: Optional[Iterable[ProviderConfiguration]] = None):
        self._configurations = list(configurations or [])
        _validate_defaults(self._configurations)

    async def get_active_configurations(
        self, provider: Optional[ProviderType] = None
    ) -> list[ProviderConfiguration]:
        return [
            c for c in self._configurations
            if c.is_active and (provider is None or c.provider == provider)
        ]


class YamlConfigurationStore(InMemoryConfigurationStore):
    """
    Configuration store loaded from a YAML export of the admin table.

    Expected format:
        configurations:
          - provider: claude
            encrypted_credential_ref: gAAAAA...
            is_default: true
    """

    def __init__(self, path: str | Path):
        raw = load_provider_configurations(path)
        try:
            configurations = [ProviderConfiguration.from_dict(item) for item in raw]
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid provider configuration in {path}: {e}") from e
        super().__init__(configurations)
        self.path = Path(path)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


@dataclass
class ResolvedCredential:
    """A decrypted credential, ready for adapter construction."""

    provider: ProviderType
    api_key: str = field(repr=False)
    model: Optional[str] = None
    base_url: Optional[str] = None
    source: str = "store"           # "store" | "env"
    configuration_id: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"ResolvedCredential(provider={self.provider.value}, "
            f"api_key={mask_secret(self.api_key)}, source={self.source})"
        )


class CredentialResolver:
    """
    Looks up and decrypts provider credentials within the lookup deadline.
    """

    def __init__(
        self,
        store: ConfigurationStore,
        supervisor: Optional[TimeoutSupervisor] = None,
        master_key: Optional[str] = None,
        allow_env_credentials: bool = True,
        fallback_order: Optional[Iterable[ProviderType]] = None,
    ):
        self._store = store
        self._supervisor = supervisor or TimeoutSupervisor()
        self._master_key = master_key
        self._allow_env = allow_env_credentials
        self._fallback_order = tuple(fallback_order or DEFAULT_FALLBACK_ORDER)

    @property
    def fallback_order(self) -> tuple[ProviderType, ...]:
        return self._fallback_order

    async def _lookup(self, provider: Optional[ProviderType]) -> list[ProviderConfiguration]:
        try:
            return await self._supervisor.race(
                self._store.get_active_configurations(provider),
                OperationClass.CREDENTIAL_LOOKUP,
            )
        except GatewayTimeoutError:
            logger.warning(
                "credential_lookup_timed_out",
                extra={"provider": provider.value if provider else "all"},
            )
            return []

    def _env_credential(self, provider: ProviderType) -> Optional[ResolvedCredential]:
        if not self._allow_env:
            return None
        env_var = PROVIDER_ENV_VARS.get(provider)
        value = os.environ.get(env_var, "").strip() if env_var else ""
        if not value:
            return None
        return ResolvedCredential(provider=provider, api_key=value, source="env")

    def _decrypt(self, config: ProviderConfiguration) -> Optional[ResolvedCredential]:
        try:
            plaintext = decrypt_value(config.encrypted_credential_ref, self._master_key)
        except EnvironmentError:
            logger.error(
                "credential_master_key_missing",
                extra={"provider": config.provider.value},
            )
            return None
        except InvalidToken:
            logger.error(
                "credential_decrypt_failed",
                extra={
                    "provider": config.provider.value,
                    "configuration_id": mask_secret(config.id),
                },
            )
            return None
        return ResolvedCredential(
            provider=config.provider,
            api_key=plaintext,
            model=config.model,
            base_url=config.base_url,
            source="store",
            configuration_id=config.id,
        )

    async def resolve(self, provider: ProviderType) -> Optional[ResolvedCredential]:
        """
        Resolve the credential for `provider`, or None.

        The default configuration is preferred over other active ones.
        """
        if provider == ProviderType.MOCK:
            return None

        configurations = await self._lookup(provider)
        ordered = sorted(configurations, key=lambda c: not c.is_default)
        for config in ordered:
            credential = self._decrypt(config)
            if credential is not None:
                return credential

        credential = self._env_credential(provider)
        if credential is None:
            logger.info("credential_not_found", extra={"provider": provider.value})
        return credential

    async def active_configurations(self) -> list[ProviderConfiguration]:
        """All active configurations, bounded by the lookup deadline."""
        return await self._lookup(None)

    async def configured_providers(self) -> list[ProviderType]:
        """
        Providers with an active configuration or environment credential,
        in fallback order, the provider of a default configuration first.
        """
        configurations = await self._lookup(None)
        configured = {c.provider for c in configurations}
        if self._allow_env:
            for provider, env_var in PROVIDER_ENV_VARS.items():
                if os.environ.get(env_var, "").strip():
                    configured.add(provider)

        defaults = [
            p for p in self._fallback_order
            if any(c.provider == p and c.is_default for c in configurations)
        ]
        rest = [p for p in self._fallback_order if p in configured and p not in defaults]
        return defaults + rest
