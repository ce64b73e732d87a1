"""
Exception hierarchy for the AI Gateway.

Structured error handling with clear categories:
- Configuration errors (no credential, invalid store, bad settings)
- Authentication failures reported by a provider
- Rate limits (local budget or upstream 429)
- Timeouts raised by the timeout supervisor
- Structured-output validation failures
- Upstream failures (5xx, transport errors)

Every provider-level exception is caught by the fallback orchestrator
and classified with `classify_error()`; callers of the gateway never
see one of these for a well-formed request.

Usage:
    from ai_gateway.exceptions import UpstreamError, classify_error

    try:
        response = await client.post(url, json=payload)
    except httpx.TransportError as e:
        raise UpstreamError("DeepSeek unreachable", provider="deepseek") from e
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class GatewayError(Exception):
    """
    Base exception for all AI Gateway errors.

    All custom exceptions inherit from this, so you can catch
    `GatewayError` to handle any gateway-specific error.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.details = details or {}


# ── Configuration Errors ──────────────────────────────────────────


class ConfigurationError(GatewayError):
    """
    Raised when a provider cannot be constructed or settings are invalid.

    Examples:
    - No active configuration and no environment credential
    - Two default configurations for the same provider
    - Unknown provider name
    """


class AuthenticationError(GatewayError):
    """
    Raised when a credential is rejected, locally or by the provider.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, provider=provider, details=details)
        self.status_code = status_code


# ── Capacity & Time ───────────────────────────────────────────────


class RateLimitError(GatewayError):
    """
    Raised when a provider (or the local budget) refuses a call for now.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        retry_after_seconds: Optional[float] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, provider=provider, details=details)
        self.retry_after_seconds = retry_after_seconds


class GatewayTimeoutError(GatewayError, TimeoutError):
    """
    Raised by the timeout supervisor when an operation loses the race
    against its deadline.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        provider: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, provider=provider, details=details)
        self.operation = operation
        self.timeout_seconds = timeout_seconds


# ── Output & Upstream ─────────────────────────────────────────────


class SchemaValidationError(GatewayError):
    """
    Raised when structured output cannot be parsed or does not match
    the requested JSON schema.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        raw_text: str = "",
        details: Optional[dict] = None,
    ):
        super().__init__(message, provider=provider, details=details)
        self.raw_text = raw_text


class UpstreamError(GatewayError):
    """
    Raised when a provider is unavailable or returns an unexpected response.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, provider=provider, details=details)
        self.status_code = status_code


# ── Classification ────────────────────────────────────────────────


class ErrorKind(str, Enum):
    """Coarse failure class used for fallback bookkeeping."""
    AUTH = "auth"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    UNKNOWN = "unknown"


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Map any exception raised by a provider call to an ErrorKind.

    Upstream errors carrying an HTTP status are classified by status
    (401/403 → auth, 429 → rate_limit, 408/504 → timeout).
    """
    if isinstance(exc, AuthenticationError):
        return ErrorKind.AUTH
    if isinstance(exc, RateLimitError):
        return ErrorKind.RATE_LIMIT
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exc, UpstreamError) and exc.status_code is not None:
        if exc.status_code in (401, 403):
            return ErrorKind.AUTH
        if exc.status_code == 429:
            return ErrorKind.RATE_LIMIT
        if exc.status_code in (408, 504):
            return ErrorKind.TIMEOUT
    return ErrorKind.UNKNOWN
