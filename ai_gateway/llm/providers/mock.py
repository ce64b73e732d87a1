"""
Mock adapter — deterministic, offline, and never fails.

The terminal fallback for the orchestrator. Responses are canned
workload-analysis texts selected by keywords in the prompt, so the
application stays useful (and demoable) with no provider configured.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, AsyncIterator, Optional

from ai_gateway.llm.providers.base import ProviderAdapter, StreamHandle
from ai_gateway.llm.types import (
    ChatMessage,
    GenerationOptions,
    GenerationResult,
    ProviderType,
    TokenUsage,
)

WORKLOAD_ANALYSIS_TEXT = (
    "**Mock AI Analysis**: Your school management system shows active data "
    "collection with maintenance (60%), discipline (25%), and sports (15%) "
    "activities. Peak usage 8AM-12PM and 2PM-4PM.\n\n"
    "**Key Recommendations**: \n"
    "• Schedule preventive maintenance\n"
    "• Support peak periods with additional staff\n"
    "• Continue WhatsApp integration\n\n"
    "*Configure real AI keys for detailed analysis.*"
)

MAINTENANCE_TEXT = (
    "**Maintenance Analysis**: Window repairs and door issues are most common. "
    "Lab equipment installations progressing well.\n\n"
    "**Recommendations**: Schedule monthly inspections, create maintenance "
    "schedules, train staff on troubleshooting.\n\n"
    "*Configure real AI keys for detailed analysis.*"
)

JSON_ANALYSIS = {
    "analysis": (
        "Mock AI analysis of your school workload data shows balanced distribution "
        "across maintenance, discipline, and sports activities with good staff "
        "participation."
    ),
    "suggestions": [
        "Implement preventive maintenance scheduling to reduce urgent repairs",
        "Review peak activity periods for optimal staff allocation",
        "Set up automated escalation for high-priority incidents",
        "Create custom categories for school-specific activities",
        "Establish regular review meetings for continuous improvement",
    ],
}

GENERIC_STRUCTURED_ANALYSIS = {
    "analysis": (
        "Mock AI analysis: Your school workload data shows good distribution "
        "across team members with opportunities for optimization."
    ),
    "suggestions": [
        "Implement automated reporting workflows",
        "Review task categorization system",
        "Schedule regular team productivity reviews",
        "Consider workload balancing strategies",
    ],
}

SCHOOL_STRUCTURED_ANALYSIS = {
    "analysis": (
        "**Mock AI Analysis**: Your school management system shows good activity "
        "tracking across maintenance, discipline, and sports categories. Active "
        "staff participation with structured workflows is evident.\n\n"
        "**Key Patterns**: Maintenance activities dominate, good geographic "
        "distribution, WhatsApp integration working well.\n\n"
        "**Note**: This is a mock response. Configure real AI keys for detailed analysis."
    ),
    "suggestions": [
        "Implement preventive maintenance scheduling",
        "Set up automated escalation for priority incidents",
        "Create location-based activity clustering",
        "Configure advanced WhatsApp message processing",
    ],
}

_MAINTENANCE_WORDS = ("broken", "repair", "fix", "maintenance", "leak", "install")
_DISCIPLINE_WORDS = ("misbehav", "fight", "discipline", "bullying")
_SUBCATEGORIES = (
    (("window",), "Window Repair"),
    (("door",), "Door Repair"),
    (("desk", "furniture"), "Furniture Repair"),
    (("light", "bulb"), "Lighting Issue"),
    (("water", "leak", "tap"), "Plumbing Issue"),
)


def _contains(text: str, words: tuple[str, ...]) -> bool:
    return any(word in text for word in words)


def _pick_category(categories: list[str], hints: tuple[str, ...]) -> str:
    for category in categories:
        if any(hint in category for hint in hints):
            return category
    return categories[0]


def _mock_text(prompt: str) -> str:
    lowered = prompt.lower()
    if _contains(lowered, ("workload", "summary", "school")):
        return WORKLOAD_ANALYSIS_TEXT
    if "json" in lowered:
        return json.dumps(JSON_ANALYSIS)
    if "maintenance" in lowered:
        return MAINTENANCE_TEXT
    preview = prompt[:50] + ("..." if len(prompt) > 50 else "")
    return (
        f"**Mock AI Response**: \"{preview}\"\n\n"
        "This is a mock response. Configure CLAUDE_API_KEY or GEMINI_API_KEY for "
        "real AI analysis.\n\n"
        "**Quick suggestions**: Review processes, automate logging, gather staff feedback."
    )


_USER_MESSAGE_RE = re.compile(r'User message: "(.*)"', re.DOTALL)


def _activity_text(prompt: str) -> str:
    """The quoted user message of a parser prompt, or the whole prompt."""
    match = _USER_MESSAGE_RE.search(prompt)
    return match.group(1) if match else prompt


def classify_activity_message(prompt: str, schema: dict[str, Any]) -> dict[str, str]:
    """Keyword classification for the activity-parsing schema."""
    text = _activity_text(prompt)
    message = text.lower()
    category_id = "default"
    subcategory = "General Task"
    location = "Unknown Location"

    categories = schema["properties"]["category_id"].get("enum")
    if isinstance(categories, list) and categories:
        if _contains(message, _MAINTENANCE_WORDS):
            category_id = _pick_category(categories, ("maintenance", "repair"))
            subcategory = "General Maintenance"
            for words, label in _SUBCATEGORIES:
                if _contains(message, words):
                    subcategory = label
                    break
        elif _contains(message, _DISCIPLINE_WORDS):
            category_id = _pick_category(categories, ("discipline", "behavior"))
            subcategory = "Behavioral Issue"
        elif _contains(message, ("clean", "washing")):
            category_id = _pick_category(categories, ("maintenance", "repair"))
            subcategory = "Cleaning Task"
        elif _contains(message, ("sport", "game", "training")):
            category_id = _pick_category(categories, ("sport", "athletic"))
            subcategory = "Sports Activity"
        else:
            category_id = categories[0]
            subcategory = "General Issue"

    if "classroom" in message:
        match = re.search(r"classroom\s*([a-z0-9]+)", message)
        location = f"Classroom {match.group(1).upper()}" if match else "Classroom"
    elif "room" in message:
        match = re.search(r"room\s*([a-z0-9]+)", message)
        location = f"Room {match.group(1).upper()}" if match else "Room"
    elif "lab" in message:
        location = "Laboratory"
    elif _contains(message, ("playground", "field")):
        location = "Playground"
    elif "office" in message:
        location = "Office"
    elif _contains(message, ("corridor", "hallway")):
        location = "Corridor"
    elif "grade" in message:
        match = re.search(r"grade\s*([0-9]+)", message)
        location = f"Grade {match.group(1)} Area" if match else "Grade Area"

    return {
        "category_id": category_id,
        "subcategory": subcategory,
        "location": location,
        "notes": f"Mock AI parsed: {text}",
    }


class MockAdapter(ProviderAdapter):
    provider = ProviderType.MOCK
    default_model = "mock"

    def __init__(self, word_delay: float = 0.05, model: Optional[str] = None):
        super().__init__(model=model)
        self.word_delay = word_delay

    async def generate_content(
        self, prompt: str, options: Optional[GenerationOptions] = None
    ) -> GenerationResult:
        options = options or GenerationOptions()
        text = _mock_text(prompt)

        if options.response_format == "json" and not text.startswith("{"):
            text = json.dumps({"response": text})

        limit = options.max_tokens * 4
        truncated = len(text) > limit
        if truncated:
            text = text[:limit] + "... [truncated]"

        usage = TokenUsage(prompt_tokens=len(prompt) // 4, completion_tokens=len(text) // 4)
        return self._result(text, usage, truncated=truncated)

    async def generate_content_stream(
        self, messages: list[ChatMessage], options: Optional[GenerationOptions] = None
    ) -> StreamHandle:
        prompt = messages[-1].content if messages else ""
        result = await self.generate_content(prompt, options)
        return StreamHandle(self._iter_words(result.text), self.provider, usage=result.usage)

    async def _iter_words(self, text: str) -> AsyncIterator[bytes]:
        for word in text.split(" "):
            yield (word + " ").encode("utf-8")
            if self.word_delay:
                await asyncio.sleep(self.word_delay)

    async def generate_structured_content(
        self,
        prompt: str,
        schema: dict[str, Any],
        options: Optional[GenerationOptions] = None,
    ) -> Any:
        properties = schema.get("properties") or {}
        if all(key in properties for key in ("category_id", "subcategory", "location", "notes")):
            data: Any = classify_activity_message(prompt, schema)
        elif "analysis" in properties and "suggestions" in properties:
            lowered = prompt.lower()
            if _contains(lowered, ("school", "maintenance", "activity")):
                data = dict(SCHOOL_STRUCTURED_ANALYSIS)
            else:
                data = dict(GENERIC_STRUCTURED_ANALYSIS)
        else:
            options = self._json_options(options or GenerationOptions())
            result = await self.generate_content(prompt, options)
            try:
                data = json.loads(result.text)
            except json.JSONDecodeError:
                data = {"response": result.text}
        self.last_usage = TokenUsage(
            prompt_tokens=len(prompt) // 4,
            completion_tokens=len(json.dumps(data)) // 4,
        )
        return data
