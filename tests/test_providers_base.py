"""
Tests for providers/base.py — ContentClassification, payload mapping and
parse_json_response, plus the two concrete providers with mocked SDK clients.

Covers:
  - classification_from_payload(): nested model JSON → ContentClassification,
    score clamping, section aliases, missing blocks
  - to_dict() / from_dict() round trip used by the cache
  - content_types flags
  - build_user_prompt(): option lines, language hint
  - parse_json_response: plain JSON, markdown-fenced JSON, invalid JSON
  - OpenAIProvider / AnthropicProvider request shape
"""
from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from models import Section
from providers.base import (
    ContentClassification,
    build_user_prompt,
    classification_from_payload,
    parse_json_response,
)

PAYLOAD = {
    "productFocus": {"score": 0.9, "details": "centred"},
    "contentType": {"isProduct": True, "isLifestyle": False, "isInfographic": False, "isPerson": False},
    "objects": {"main": "leather handbag", "others": ["table"]},
    "colorScheme": {"primary": "#8B4513", "secondary": ["#FFFFFF"], "dominant": "#8B4513"},
    "mood": {"description": "warm", "tags": ["Warm", "premium"]},
    "commercialValue": {"score": 0.85, "details": "sells well"},
    "recommendedUse": {"section": "main", "reason": "clean product shot"},
}


# ── classification_from_payload ───────────────────────────────────────────────

class TestClassificationFromPayload:
    def test_full_payload(self):
        c = classification_from_payload(PAYLOAD, "openai/gpt-4o-mini")
        assert c.is_product
        assert not c.is_lifestyle
        assert c.dominant_color == "#8B4513"
        assert c.secondary_colors == ("#FFFFFF",)
        assert c.mood_tags == ("warm", "premium")
        assert c.recommended_section is Section.HERO
        assert c.commercial_value == pytest.approx(0.85)
        assert c.product_focus == pytest.approx(0.9)
        assert c.main_object == "leather handbag"
        assert c.recommendation_reason == "clean product shot"
        assert c.provider_name == "openai/gpt-4o-mini"

    def test_scores_clamped(self):
        c = classification_from_payload({"commercialValue": {"score": 7}, "productFocus": -2})
        assert c.commercial_value == 1.0
        assert c.product_focus == 0.0

    def test_garbage_score_is_zero(self):
        c = classification_from_payload({"commercialValue": {"score": "lots"}})
        assert c.commercial_value == 0.0

    def test_missing_blocks_neutral(self):
        c = classification_from_payload({})
        assert c.content_types == frozenset()
        assert c.recommended_section is None
        assert c.dominant_color is None
        assert c.recommendation_reason == ""

    @pytest.mark.parametrize("raw,expected", [
        ("details", Section.DETAILS),
        ("Detail", Section.DETAILS),
        ("specification", Section.SPECS),
        ("LIFESTYLE", Section.LIFESTYLE),
        ("other", None),
        (None, None),
    ])
    def test_section_parsing(self, raw, expected):
        c = classification_from_payload({"recommendedUse": {"section": raw}})
        assert c.recommended_section is expected

    def test_not_a_dict(self):
        with pytest.raises(ValueError, match="JSON object"):
            classification_from_payload(["nope"], "x")


# ── ContentClassification ─────────────────────────────────────────────────────

class TestContentClassification:
    def test_round_trip_through_dict(self):
        c = classification_from_payload(PAYLOAD, "openai/gpt-4o-mini")
        restored = ContentClassification.from_dict(json.loads(json.dumps(c.to_dict())))
        assert restored == c

    def test_to_dict_keys(self):
        d = ContentClassification(recommended_section=Section.GALLERY).to_dict()
        assert d["recommendedSection"] == "gallery"
        assert set(d) >= {"isProduct", "dominantColor", "moodTags", "commercialValue"}

    def test_content_types(self):
        c = ContentClassification(is_product=True, is_person=True)
        assert c.content_types == frozenset({"product", "person"})

    def test_immutable(self):
        c = ContentClassification()
        with pytest.raises(AttributeError):
            c.is_product = True


# ── build_user_prompt ─────────────────────────────────────────────────────────

class TestBuildUserPrompt:
    def test_no_options(self):
        assert build_user_prompt(None) == "Analyse this product image and return the JSON."

    def test_options_become_lines(self):
        prompt = build_user_prompt({"product_type": "sneakers", "brand_style": "sporty"})
        assert "Product type: sneakers" in prompt
        assert "Brand style: sporty" in prompt

    def test_language_hint_only_when_not_english(self):
        assert "language" not in build_user_prompt({"language": "en"})
        assert "'ko'" in build_user_prompt({"language": "ko"})


# ── parse_json_response ───────────────────────────────────────────────────────

class TestParseJsonResponse:
    def test_plain_json(self):
        assert parse_json_response('{"a": 1}', "test") == {"a": 1}

    def test_markdown_fenced(self):
        raw = '```json\n{"a": 1}\n```'
        assert parse_json_response(raw, "test") == {"a": 1}

    def test_unterminated_fence(self):
        raw = '```\n{"a": 1}'
        assert parse_json_response(raw, "test") == {"a": 1}

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError, match="JSON parse error"):
            parse_json_response("not json at all", "test")

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            parse_json_response("", "test")


# ── Concrete providers ────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestOpenAIProvider:
    async def test_request_and_mapping(self):
        from providers.openai_provider import OpenAIProvider

        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=json.dumps(PAYLOAD)))])
        provider = OpenAIProvider("sk-test", "gpt-4o-mini")
        with patch.object(provider._client.chat.completions, "create", AsyncMock(return_value=response)) as create:
            result = await provider.classify("https://img.example.com/a.jpg", {"detail_level": "detailed"})

        assert result.recommended_section is Section.HERO
        assert result.provider_name == "openai/gpt-4o-mini"
        kwargs = create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        image_part = kwargs["messages"][1]["content"][1]
        assert image_part["image_url"] == {"url": "https://img.example.com/a.jpg", "detail": "high"}


@pytest.mark.asyncio
class TestAnthropicProvider:
    async def test_request_and_mapping(self):
        from providers.anthropic_provider import AnthropicProvider

        message = SimpleNamespace(content=[SimpleNamespace(text="```json\n" + json.dumps(PAYLOAD) + "\n```")])
        provider = AnthropicProvider("sk-ant-test")
        with patch.object(provider._client.messages, "create", AsyncMock(return_value=message)) as create:
            result = await provider.classify("https://img.example.com/a.jpg")

        assert result.main_object == "leather handbag"
        image_part = create.await_args.kwargs["messages"][0]["content"][0]
        assert image_part["source"] == {"type": "url", "url": "https://img.example.com/a.jpg"}
