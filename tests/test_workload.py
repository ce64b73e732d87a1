"""Tests for workload prompt building."""

from __future__ import annotations

import json

import pytest

from ai_gateway.llm.providers.mock import MockAdapter
from ai_gateway.llm.types import GenerationMode, ProviderType
from ai_gateway.workload.activities import (
    activity_parse_schema,
    build_activity_parse_prompt,
    build_activity_parse_request,
    normalize_parsed_activity,
)
from ai_gateway.workload.prompts import (
    ACTIVITY_PARSER_PROMPT,
    ANALYSIS_SCHEMA,
    CHAT_SYSTEM_INSTRUCTION,
    INITIAL_ANALYSIS_PROMPT,
    UNPLANNED_CATEGORY_ID,
)
from ai_gateway.workload.summary import (
    MAX_ACTIVITIES,
    build_analysis_prompt,
    build_chat_request,
    build_initial_summary_request,
    empty_summary,
    serialize_activities_for_ai,
)

USERS = [{"id": "u1", "name": "Sipho"}]
CATEGORIES = [{"id": "c1", "name": "Sports"}]


def _activity(i: int, **overrides) -> dict:
    activity = {
        "id": i,
        "user_id": "u1",
        "category_id": "c1",
        "subcategory": "Training",
        "location": "Field",
    }
    activity.update(overrides)
    return activity


class TestSerializeActivities:

    def test_names_resolved(self):
        data = json.loads(serialize_activities_for_ai([_activity(1)], USERS, CATEGORIES))
        assert data[0]["staff"] == "Sipho"
        assert data[0]["category"] == "Sports"
        assert data[0]["has_photo"] is False

    def test_unknown_references(self):
        activity = _activity(1, user_id="ghost", category_id="c9")
        data = json.loads(serialize_activities_for_ai([activity], USERS, CATEGORIES))
        assert data[0]["staff"] == "Unknown"
        assert data[0]["category"] == "c9"

    def test_notes_trimmed(self):
        activity = _activity(1, notes="n" * 400, photo_url="https://x/p.jpg")
        data = json.loads(serialize_activities_for_ai([activity], USERS, CATEGORIES))
        assert len(data[0]["notes"]) == 150
        assert data[0]["has_photo"] is True

    def test_capped(self):
        activities = [_activity(i) for i in range(200)]
        data = json.loads(serialize_activities_for_ai(activities, USERS, CATEGORIES))
        assert len(data) == MAX_ACTIVITIES

    def test_empty(self):
        assert serialize_activities_for_ai([], USERS, CATEGORIES) == "[]"
        assert build_analysis_prompt([], USERS, CATEGORIES) == INITIAL_ANALYSIS_PROMPT


class TestRequests:

    def test_initial_summary_request(self):
        request = build_initial_summary_request(
            [_activity(1)], USERS, CATEGORIES, ProviderType.GEMINI
        )
        assert request.mode == GenerationMode.STRUCTURED
        assert request.options.schema == ANALYSIS_SCHEMA
        assert request.options.max_tokens == 2048
        assert request.provider == ProviderType.GEMINI
        assert "Data:" in request.prompt

    def test_chat_request_history(self):
        request = build_chat_request(
            [
                {"role": "user", "content": "first"},
                {"role": "model", "parts": [{"text": "reply"}]},
            ],
            "follow-up",
        )
        assert request.mode == GenerationMode.STREAM
        assert request.options.system_instruction == CHAT_SYSTEM_INSTRUCTION
        assert [m.role for m in request.conversation] == ["user", "assistant", "user"]
        assert request.conversation[1].content == "reply"

    def test_chat_request_sync(self):
        assert build_chat_request([], "hi", stream=False).mode == GenerationMode.SYNC

    def test_empty_message_rejected(self):
        with pytest.raises(ValueError):
            build_chat_request([], "")

    def test_empty_summary(self):
        summary = empty_summary()
        assert summary["history"] == []
        assert "No activities recorded yet" in summary["analysis"]
        summary["suggestions"].append("mutated")
        assert "mutated" not in empty_summary()["suggestions"]


# ===========================================================================
# Activity parsing
# ===========================================================================

PARSE_CATEGORIES = [
    {"id": "maintenance", "name": "Maintenance"},
    {"id": "sports", "name": "Sports"},
    {"id": "discipline", "name": "Discipline"},
]


class TestActivityParseRequest:

    def test_schema_enumerates_category_ids(self):
        schema = activity_parse_schema(PARSE_CATEGORIES)
        assert schema["properties"]["category_id"]["enum"] == [
            "maintenance", "sports", "discipline",
        ]
        assert schema["required"] == ["category_id", "subcategory", "location", "notes"]

    def test_schema_without_categories_has_no_enum(self):
        assert "enum" not in activity_parse_schema([])["properties"]["category_id"]

    def test_request(self):
        request = build_activity_parse_request(
            "Broken window in classroom 4B", PARSE_CATEGORIES, ProviderType.CLAUDE
        )
        assert request.mode == GenerationMode.STRUCTURED
        assert request.provider == ProviderType.CLAUDE
        assert request.options.schema == activity_parse_schema(PARSE_CATEGORIES)
        assert request.prompt.startswith(ACTIVITY_PARSER_PROMPT)
        assert "maintenance (Maintenance), sports (Sports)" in request.prompt
        assert 'User message: "Broken window in classroom 4B"' in request.prompt

    def test_audio_replaces_message(self):
        prompt = build_activity_parse_prompt(
            "ignored", PARSE_CATEGORIES, audio_filename="report.m4a"
        )
        assert "Audio file provided: report.m4a" in prompt
        assert "User message" not in prompt

    def test_photo_noted(self):
        request = build_activity_parse_request("", PARSE_CATEGORIES, has_photo=True)
        assert "Photo provided" in request.prompt

    def test_nothing_to_parse(self):
        with pytest.raises(ValueError):
            build_activity_parse_request("   ", PARSE_CATEGORIES)


class TestNormalizeParsedActivity:

    def test_valid_category_kept(self):
        activity = normalize_parsed_activity(
            {
                "category_id": "sports",
                "subcategory": "Training",
                "location": "Field",
                "notes": "U14 practice",
            },
            PARSE_CATEGORIES,
        )
        assert activity == {
            "category_id": "sports",
            "subcategory": "Training",
            "location": "Field",
            "notes": "U14 practice",
        }

    def test_unknown_category_becomes_unplanned(self):
        activity = normalize_parsed_activity(
            {"category_id": "gardening", "subcategory": "x", "location": "y", "notes": "z"},
            PARSE_CATEGORIES,
        )
        assert activity["category_id"] == UNPLANNED_CATEGORY_ID

    def test_missing_fields_defaulted(self):
        activity = normalize_parsed_activity(None, PARSE_CATEGORIES, "Leaking tap")
        assert activity["category_id"] == UNPLANNED_CATEGORY_ID
        assert activity["subcategory"] == "General Task"
        assert activity["location"] == "Unknown Location"
        assert activity["notes"] == "Leaking tap"


class TestMockActivityParse:

    @pytest.mark.asyncio
    async def test_classifies_the_user_message(self):
        request = build_activity_parse_request(
            "Learners fighting near the office", PARSE_CATEGORIES
        )
        data = await MockAdapter(word_delay=0).generate_structured_content(
            request.prompt, request.options.schema
        )
        assert data["category_id"] == "discipline"
        assert data["subcategory"] == "Behavioral Issue"
        assert data["location"] == "Office"
        assert data["notes"] == "Mock AI parsed: Learners fighting near the office"
