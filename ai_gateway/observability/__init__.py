"""
Observability for the AI Gateway.

Structured logging (JSON in production, colored text locally) with a
per-request id, plus redaction helpers so credentials never reach a
log line or a diagnostics payload.
"""
