"""
Workload analysis requests built on top of the gateway.

The dashboard sends raw activities, users and categories; this module
turns them into compact JSON for the prompt and builds the
GenerationRequests for the initial summary and the follow-up chat.

Usage:
    if not activities:
        return empty_summary()
    request = build_initial_summary_request(activities, users, categories)
    result = await gateway.complete(request)
"""

from __future__ import annotations

import json
from typing import Any, Optional

from ai_gateway.llm.types import (
    ChatMessage,
    GenerationMode,
    GenerationOptions,
    GenerationRequest,
    ProviderType,
)
from ai_gateway.workload.prompts import (
    ANALYSIS_SCHEMA,
    CHAT_SYSTEM_INSTRUCTION,
    EMPTY_DATASET_ANALYSIS,
    EMPTY_DATASET_SUGGESTIONS,
    INITIAL_ANALYSIS_PROMPT,
)

MAX_ACTIVITIES = 75
MAX_NOTES_LENGTH = 150


def serialize_activities_for_ai(
    activities: list[dict[str, Any]],
    users: list[dict[str, Any]],
    categories: list[dict[str, Any]],
) -> str:
    """
    Compact JSON view of at most 75 activities, with staff and category
    names resolved and notes trimmed to 150 characters.
    """
    if not activities:
        return "[]"

    user_names = {u.get("id"): u.get("name") for u in users}
    category_names = {c.get("id"): c.get("name") for c in categories}

    serialized = []
    for activity in activities[:MAX_ACTIVITIES]:
        entry: dict[str, Any] = {
            "id": activity.get("id"),
            "staff": user_names.get(activity.get("user_id")) or "Unknown",
            "category": (
                category_names.get(activity.get("category_id"))
                or activity.get("category_id")
            ),
            "details": activity.get("subcategory"),
            "location": activity.get("location"),
        }
        if activity.get("notes"):
            entry["notes"] = str(activity["notes"])[:MAX_NOTES_LENGTH]
        entry["has_photo"] = bool(activity.get("photo_url"))
        serialized.append(entry)
    return json.dumps(serialized, indent=2)


def build_analysis_prompt(
    activities: list[dict[str, Any]],
    users: list[dict[str, Any]],
    categories: list[dict[str, Any]],
) -> str:
    data = serialize_activities_for_ai(activities, users, categories)
    if data == "[]":
        return INITIAL_ANALYSIS_PROMPT
    return f"{INITIAL_ANALYSIS_PROMPT}\n\nData:\n{data}"


def empty_summary() -> dict[str, Any]:
    """Deterministic answer when there is nothing to analyze."""
    return {
        "analysis": EMPTY_DATASET_ANALYSIS,
        "suggestions": list(EMPTY_DATASET_SUGGESTIONS),
        "history": [],
    }


def build_initial_summary_request(
    activities: list[dict[str, Any]],
    users: list[dict[str, Any]],
    categories: list[dict[str, Any]],
    provider: Optional[ProviderType] = None,
) -> GenerationRequest:
    return GenerationRequest(
        prompt=build_analysis_prompt(activities, users, categories),
        provider=provider,
        mode=GenerationMode.STRUCTURED,
        options=GenerationOptions(max_tokens=2048, schema=ANALYSIS_SCHEMA),
    )


def build_chat_request(
    history: list[dict[str, Any]],
    message: str,
    provider: Optional[ProviderType] = None,
    stream: bool = True,
) -> GenerationRequest:
    return GenerationRequest(
        prompt=message,
        messages=[ChatMessage.from_dict(m) for m in history],
        provider=provider,
        mode=GenerationMode.STREAM if stream else GenerationMode.SYNC,
        options=GenerationOptions(system_instruction=CHAT_SYSTEM_INSTRUCTION),
    )
