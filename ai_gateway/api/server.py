"""
HTTP surface for the AI Gateway.

FastAPI application exposing the chat endpoint used by the dashboard,
plus provider listing and diagnostics. Every well-formed chat request
is answered with 200: failures degrade to Mock output inside the
gateway rather than surfacing as HTTP errors.

Usage:
    from ai_gateway.api.server import create_app

    app = create_app(gateway)
    uvicorn.run(app, host="0.0.0.0", port=8000)

Endpoints:
    POST /api/ai/chat?provider=<name> — Initial summary, chat (JSON or SSE)
    POST /api/ai/parse?provider=<name> — Staff report → structured activity
    GET  /api/ai/providers           — Provider catalogue
    GET  /api/diagnostics            — Health, usage, cost, fallback stats
    GET  /api/health                 — Liveness
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ai_gateway import __version__
from ai_gateway.llm.gateway import AIGateway
from ai_gateway.llm.types import ProviderType
from ai_gateway.workload.activities import (
    build_activity_parse_request,
    normalize_parsed_activity,
)
from ai_gateway.workload.prompts import INITIAL_SUMMARY
from ai_gateway.workload.summary import (
    build_chat_request,
    build_initial_summary_request,
    empty_summary,
)

logger = logging.getLogger(__name__)


# ── Request Models ───────────────────────────────────────────


class ChatContext(BaseModel):
    """Dashboard data sent along with the initial summary request."""
    activities: list[dict[str, Any]] = Field(default_factory=list)
    users: list[dict[str, Any]] = Field(default_factory=list)
    allCategories: list[dict[str, Any]] = Field(default_factory=list)


class ChatRequest(BaseModel):
    """Request body for POST /api/ai/chat."""
    message: str
    history: list[dict[str, Any]] = Field(default_factory=list)
    context: ChatContext = Field(default_factory=ChatContext)
    stream: bool = True


class ParseRequest(BaseModel):
    """Request body for POST /api/ai/parse."""
    message: str = ""
    categories: list[dict[str, Any]] = Field(default_factory=list)
    photo: Optional[str] = Field(None, description="Photo as a data URI")
    audioFileName: Optional[str] = None


def _parse_provider(name: Optional[str]) -> Optional[ProviderType]:
    if not name:
        return None
    provider = ProviderType.parse(name)
    if provider is None:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown provider '{name}'. "
                   f"Expected one of: {[p.value for p in ProviderType]}",
        )
    return provider


# ── App Factory ──────────────────────────────────────────────


def create_app(
    gateway: AIGateway,
    cors_origins: Optional[list[str]] = None,
) -> FastAPI:
    """
    Create the FastAPI application serving `gateway`.

    Args:
        gateway: Configured AIGateway.
        cors_origins: Allowed CORS origins (default: all).
    """
    app = FastAPI(
        title="Workload AI Gateway",
        description="Multi-provider AI gateway for workload analysis.",
        version=__version__,
        docs_url="/api/docs",
        redoc_url=None,
    )
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Health ───────────────────────────────────────────

    @app.get("/api/health", tags=["Health"])
    async def health_check():
        return {
            "status": "ok",
            "version": __version__,
            "environment": gateway.settings.environment.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # ── Chat ─────────────────────────────────────────────

    @app.post("/api/ai/chat", tags=["AI"])
    async def chat(
        body: ChatRequest,
        request: Request,
        provider: Optional[str] = Query(default=None),
    ):
        """Initial summary (structured) or follow-up chat (stream or JSON)."""
        provider_type = _parse_provider(provider)

        if body.message == INITIAL_SUMMARY:
            context = body.context
            if not context.activities:
                return empty_summary()

            summary_request = build_initial_summary_request(
                context.activities, context.users, context.allCategories, provider_type
            )
            result = await gateway.complete(summary_request)
            data = result.data if isinstance(result.data, dict) else {}
            analysis = str(data.get("analysis", result.text))
            return {
                "analysis": analysis,
                "suggestions": list(data.get("suggestions", [])),
                "history": [
                    {"role": "user", "content": summary_request.prompt},
                    {"role": "assistant", "content": analysis},
                ],
                "providerUsed": result.provider_used.value,
                "usedFallback": result.used_fallback,
                **({"timeout": True} if result.timeout else {}),
            }

        if not body.message.strip():
            raise HTTPException(status_code=422, detail="message must not be empty")

        chat_request = build_chat_request(
            body.history, body.message, provider_type, stream=body.stream
        )
        if not body.stream:
            result = await gateway.complete(chat_request)
            return result.to_dict()

        async def event_source():
            async for frame in gateway.stream(
                chat_request, is_disconnected=request.is_disconnected
            ):
                yield frame.to_sse()

        return StreamingResponse(
            event_source(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    # ── Activity Parsing ─────────────────────────────────

    @app.post("/api/ai/parse", tags=["AI"])
    async def parse_activity(
        body: ParseRequest,
        provider: Optional[str] = Query(default=None),
    ):
        """Classify a staff report into category, subcategory, location and notes."""
        provider_type = _parse_provider(provider)
        try:
            parse_request = build_activity_parse_request(
                body.message,
                body.categories,
                provider_type,
                has_photo=bool(body.photo),
                audio_filename=body.audioFileName,
            )
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))

        result = await gateway.complete(parse_request)
        activity = normalize_parsed_activity(result.data, body.categories, body.message)
        return {
            **activity,
            "providerUsed": result.provider_used.value,
            "usedFallback": result.used_fallback,
            **({"timeout": True} if result.timeout else {}),
        }

    # ── Introspection ────────────────────────────────────

    @app.get("/api/ai/providers", tags=["AI"])
    async def list_providers():
        return {"providers": await gateway.list_providers()}

    @app.get("/api/diagnostics", tags=["Diagnostics"])
    async def diagnostics():
        return await gateway.get_diagnostics()

    return app
