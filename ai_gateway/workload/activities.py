"""
Activity parsing: free-text staff reports → a loggable activity.

A staff member describes an incident ("Broken window in classroom 4B")
and the model picks one of the school's categories plus a subcategory,
location and notes. The category id is constrained by a JSON-schema
`enum`; anything the model invents anyway is replaced with the
`unplanned` category before it reaches the dashboard.

Usage:
    request = build_activity_parse_request(message, categories)
    result = await gateway.complete(request)
    activity = normalize_parsed_activity(result.data, categories, message)
"""

from __future__ import annotations

from typing import Any, Optional

from ai_gateway.llm.types import (
    GenerationMode,
    GenerationOptions,
    GenerationRequest,
    ProviderType,
)
from ai_gateway.workload.prompts import ACTIVITY_PARSER_PROMPT, UNPLANNED_CATEGORY_ID

PARSE_MAX_TOKENS = 512

DEFAULT_SUBCATEGORY = "General Task"
DEFAULT_LOCATION = "Unknown Location"


def category_ids(categories: list[dict[str, Any]]) -> list[str]:
    return [str(c["id"]) for c in categories if c.get("id") is not None]


def activity_parse_schema(categories: list[dict[str, Any]]) -> dict[str, Any]:
    """JSON schema for one parsed activity, category ids as an enum."""
    category: dict[str, Any] = {"type": "string"}
    ids = category_ids(categories)
    if ids:
        category["enum"] = ids
    return {
        "type": "object",
        "properties": {
            "category_id": category,
            "subcategory": {"type": "string"},
            "location": {"type": "string"},
            "notes": {"type": "string"},
        },
        "required": ["category_id", "subcategory", "location", "notes"],
    }


def build_activity_parse_prompt(
    message: str,
    categories: list[dict[str, Any]],
    has_photo: bool = False,
    audio_filename: Optional[str] = None,
) -> str:
    options = ", ".join(f"{c.get('id')} ({c.get('name')})" for c in categories)
    prompt = f"{ACTIVITY_PARSER_PROMPT}\n\nAvailable categories: {options}"
    if audio_filename:
        prompt += f"\n\nAudio file provided: {audio_filename}"
    elif message:
        prompt += f'\n\nUser message: "{message}"'
    if has_photo:
        prompt += "\n\nPhoto provided - please analyze the image content."
    return prompt


def build_activity_parse_request(
    message: str,
    categories: list[dict[str, Any]],
    provider: Optional[ProviderType] = None,
    has_photo: bool = False,
    audio_filename: Optional[str] = None,
) -> GenerationRequest:
    """
    Structured request that classifies one staff report.

    Raises:
        ValueError: If there is no message, photo or audio to parse.
    """
    if not (message and message.strip()) and not has_photo and not audio_filename:
        raise ValueError("Nothing to parse: provide a message, photo or audio")
    schema = activity_parse_schema(categories)
    return GenerationRequest(
        prompt=build_activity_parse_prompt(
            message.strip() if message else "", categories, has_photo, audio_filename
        ),
        provider=provider,
        mode=GenerationMode.STRUCTURED,
        options=GenerationOptions(
            max_tokens=PARSE_MAX_TOKENS, temperature=0.2, schema=schema
        ),
    )


def normalize_parsed_activity(
    data: Any,
    categories: list[dict[str, Any]],
    message: str = "",
) -> dict[str, str]:
    """
    Coerce model output into the activity shape the dashboard stores.

    Unknown or missing category ids become `unplanned`; missing text
    fields get neutral defaults.
    """
    data = data if isinstance(data, dict) else {}
    category_id = str(data.get("category_id") or "")
    if category_id not in category_ids(categories):
        category_id = UNPLANNED_CATEGORY_ID
    return {
        "category_id": category_id,
        "subcategory": str(data.get("subcategory") or DEFAULT_SUBCATEGORY),
        "location": str(data.get("location") or DEFAULT_LOCATION),
        "notes": str(data.get("notes") or message),
    }
