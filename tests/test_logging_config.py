"""
Tests for structured logging and redaction.

Validates:
- JSONFormatter emits valid JSON with gateway fields (provider, error_kind)
- DevFormatter shows known fields inline
- ContextFilter injects request_id from the task context
- configure_logging() switches mode based on AI_GATEWAY_ENV
- Credentials are scrubbed from error messages and masked for display
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from io import StringIO
from unittest.mock import patch

import pytest

from ai_gateway.observability.logging_config import (
    ContextFilter,
    DevFormatter,
    JSONFormatter,
    clear_request_id,
    configure_logging,
    get_request_id,
    set_request_id,
)
from ai_gateway.observability.redaction import mask_secret, sanitize_error_message


# ─── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _cleanup_request_id():
    clear_request_id()
    yield
    clear_request_id()


@pytest.fixture(autouse=True)
def _cleanup_root_handlers():
    yield
    root = logging.getLogger()
    for h in root.handlers[:]:
        root.removeHandler(h)


def _make_record(
    msg: str = "test message",
    level: int = logging.INFO,
    name: str = "ai_gateway.test",
    extra: dict | None = None,
) -> logging.LogRecord:
    record = logging.LogRecord(
        name=name, level=level, pathname="test.py", lineno=1,
        msg=msg, args=(), exc_info=None,
    )
    for key, value in (extra or {}).items():
        setattr(record, key, value)
    return record


# ─── JSONFormatter ────────────────────────────────────────────────────


class TestJSONFormatter:

    def test_required_fields(self):
        parsed = json.loads(JSONFormatter().format(
            _make_record("llm_fallback_used", level=logging.WARNING)
        ))
        assert parsed["level"] == "WARNING"
        assert parsed["logger"] == "ai_gateway.test"
        assert parsed["message"] == "llm_fallback_used"
        assert "T" in parsed["timestamp"]

    def test_extra_fields(self):
        record = _make_record(extra={"provider": "gemini", "error_kind": "timeout"})
        parsed = json.loads(JSONFormatter().format(record))
        assert parsed["provider"] == "gemini"
        assert parsed["error_kind"] == "timeout"

    def test_request_id(self):
        record = _make_record(extra={"request_id": "abc123"})
        parsed = json.loads(JSONFormatter().format(record))
        assert parsed["request_id"] == "abc123"

    def test_non_serializable_extra_becomes_string(self):
        record = _make_record(extra={"handle": object()})
        parsed = json.loads(JSONFormatter().format(record))
        assert isinstance(parsed["handle"], str)

    def test_exception_info(self):
        try:
            raise ValueError("stream broke")
        except ValueError:
            import sys
            record = _make_record("error")
            record.exc_info = sys.exc_info()
        parsed = json.loads(JSONFormatter().format(record))
        assert "stream broke" in parsed["exception"]


# ─── DevFormatter ─────────────────────────────────────────────────────


class TestDevFormatter:

    def test_inline_fields(self):
        record = _make_record(extra={"provider": "claude", "latency_ms": 12.5})
        output = DevFormatter().format(record)
        assert "provider=claude" in output
        assert "latency_ms=12.5" in output

    def test_unknown_fields_hidden(self):
        record = _make_record(extra={"something_else": "x"})
        assert "something_else" not in DevFormatter().format(record)

    def test_error_is_red(self):
        output = DevFormatter().format(_make_record(level=logging.ERROR))
        assert "\033[31m" in output


# ─── Request Context ──────────────────────────────────────────────────


class TestRequestContext:

    def test_set_get_clear(self):
        set_request_id("req-1")
        assert get_request_id() == "req-1"
        clear_request_id()
        assert get_request_id() is None

    def test_reset_with_token(self):
        set_request_id("outer")
        token = set_request_id("inner")
        clear_request_id(token)
        assert get_request_id() == "outer"

    def test_filter_injects_request_id(self):
        set_request_id("req-42")
        record = _make_record()
        assert ContextFilter().filter(record) is True
        assert record.request_id == "req-42"  # type: ignore[attr-defined]

    def test_filter_skips_when_unset(self):
        record = _make_record()
        ContextFilter().filter(record)
        assert not hasattr(record, "request_id")

    @pytest.mark.asyncio
    async def test_tasks_keep_their_own_request_id(self):
        async def worker(name: str) -> str | None:
            set_request_id(name)
            await asyncio.sleep(0)
            return get_request_id()

        results = await asyncio.gather(worker("a"), worker("b"))
        assert results == ["a", "b"]


# ─── configure_logging ────────────────────────────────────────────────


class TestConfigureLogging:

    def test_production_uses_json(self):
        configure_logging(env="production")
        assert isinstance(logging.getLogger().handlers[0].formatter, JSONFormatter)

    def test_development_uses_dev(self):
        configure_logging(env="development")
        assert isinstance(logging.getLogger().handlers[0].formatter, DevFormatter)

    def test_reads_env_var(self):
        with patch.dict(os.environ, {"AI_GATEWAY_ENV": "production"}):
            configure_logging()
        assert isinstance(logging.getLogger().handlers[0].formatter, JSONFormatter)

    def test_single_handler_with_filter(self):
        logging.getLogger().addHandler(logging.StreamHandler())
        configure_logging(env="development")
        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert any(isinstance(f, ContextFilter) for f in handlers[0].filters)

    def test_quiets_http_libraries(self):
        configure_logging(env="development")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("anthropic").level == logging.WARNING

    def test_json_end_to_end(self):
        configure_logging(env="production")
        stream = StringIO()
        logging.getLogger().handlers[0].stream = stream
        set_request_id("e2e")

        logging.getLogger("ai_gateway.e2e").info(
            "llm_provider_failed", extra={"provider": "kimi"}
        )

        parsed = json.loads(stream.getvalue().strip())
        assert parsed["message"] == "llm_provider_failed"
        assert parsed["provider"] == "kimi"
        assert parsed["request_id"] == "e2e"


# ─── Redaction ────────────────────────────────────────────────────────


class TestRedaction:

    def test_bearer_token(self):
        cleaned = sanitize_error_message("Authorization: Bearer abc.def-123 rejected")
        assert "abc.def-123" not in cleaned
        assert "Bearer [REDACTED]" in cleaned

    def test_sk_key(self):
        cleaned = sanitize_error_message("invalid key sk-ant-api03-SECRETSECRET")
        assert "SECRETSECRET" not in cleaned

    def test_api_key_assignment(self):
        cleaned = sanitize_error_message('{"api_key": "hunter2hunter2"}')
        assert "hunter2" not in cleaned

    def test_query_key(self):
        cleaned = sanitize_error_message("GET /v1beta/models?key=AIzaSyXXXX&alt=sse")
        assert "AIzaSyXXXX" not in cleaned

    def test_truncates(self):
        assert len(sanitize_error_message("x" * 500)) == 200

    def test_mask_secret(self):
        assert mask_secret("sk-ant-1234567890") == "****7890"
        assert mask_secret("short") == "*****"
        assert mask_secret(None) == ""
