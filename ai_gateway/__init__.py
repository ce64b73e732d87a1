"""
AI Gateway for the workload-tracking application.

Routes generation requests across Claude, Gemini, DeepSeek, Kimi and a
deterministic Mock backend, with credential resolution, timeouts,
budget tracking, chunked SSE streaming and automatic fallback.
"""

__version__ = "0.1.0"
