"""
Redaction helpers for credentials and identifiers.

Provider error bodies sometimes echo the request headers or the key
itself; everything that ends up in a log line or an error frame goes
through `sanitize_error_message()` first.
"""

from __future__ import annotations

import re
from typing import Optional

_REDACTION_PATTERNS = (
    (re.compile(r"Bearer\s+[A-Za-z0-9._\-]+", re.IGNORECASE), "Bearer [REDACTED]"),
    (re.compile(r"(api[_-]?key[\"']?\s*[:=]\s*[\"']?)[^\s\"'&,}]+", re.IGNORECASE),
     r"\1[REDACTED]"),
    (re.compile(r"(token[\"']?\s*[:=]\s*[\"']?)[^\s\"'&,}]+", re.IGNORECASE),
     r"\1[REDACTED]"),
    (re.compile(r"([?&]key=)[^\s&]+"), r"\1[REDACTED]"),
    (re.compile(r"sk-[A-Za-z0-9_\-]{6,}"), "sk-[REDACTED]"),
)


def sanitize_error_message(message: str, max_length: int = 200) -> str:
    """Strip credential-looking substrings and truncate."""
    cleaned = str(message)
    for pattern, replacement in _REDACTION_PATTERNS:
        cleaned = pattern.sub(replacement, cleaned)
    return cleaned[:max_length]


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """
    Mask a credential or identifier for display.

    Shows only the last `visible` characters: "sk-ant-abc123" → "****c123".
    Short values are masked entirely.
    """
    if not value:
        return ""
    if len(value) <= visible * 2:
        return "*" * len(value)
    return "****" + value[-visible:]
