"""
Shared types and base class for all content-classification providers.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from models import Section

logger = logging.getLogger(__name__)

# ── Prompt (shared across all providers) ──────────────────────────────────────

SYSTEM_PROMPT = """You are an e-commerce image analyst preparing images for a product detail page.
Analyse the image and return ONLY a valid JSON object — no markdown, no prose.

JSON schema:
{
  "productFocus":          {"score": 0-1, "details": "how central the product is"},
  "backgroundSuitability": {"score": 0-1, "details": "does the background help the product"},
  "contentType": {
    "isProduct": bool, "isLifestyle": bool, "isInfographic": bool, "isPerson": bool,
    "details": "short note"
  },
  "objects":         {"main": "main object", "others": ["other objects"]},
  "colorScheme":     {"primary": "#RRGGBB", "secondary": ["#RRGGBB"], "dominant": "#RRGGBB"},
  "mood":            {"description": "short", "tags": ["up to 6 lowercase tags"]},
  "commercialValue": {"score": 0-1, "details": "how well it sells the product"},
  "recommendedUse":  {"section": "hero | features | details | usage | specs | gallery | lifestyle | accessories | comparison", "reason": "short"}
}

Rules:
- Colours MUST be hex codes.
- Pick exactly one recommendedUse.section.
"""


def build_user_prompt(options: Optional[dict] = None) -> str:
    """User turn: the classification options become context lines for the model."""
    opts = options or {}
    lines = ["Analyse this product image and return the JSON."]
    labels = [
        ("product_type",    "Product type"),
        ("target_audience", "Target audience"),
        ("brand_style",     "Brand style"),
        ("use_case",        "Use case"),
    ]
    for key, label in labels:
        if opts.get(key):
            lines.append(f"{label}: {opts[key]}")
    language = opts.get("language")
    if language and language != "en":
        lines.append(f"Write all free-text fields in language '{language}'.")
    return "\n".join(lines)


# ── Shared result type ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ContentClassification:
    """Semantic description of one image. Read-only once built."""
    is_product: bool = False
    is_lifestyle: bool = False
    is_infographic: bool = False
    is_person: bool = False
    dominant_color: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_colors: tuple[str, ...] = ()
    mood_tags: tuple[str, ...] = ()
    recommended_section: Optional[Section] = None
    commercial_value: float = 0.0
    product_focus: float = 0.0
    main_object: Optional[str] = None
    recommendation_reason: str = ""
    provider_name: str = field(default="", compare=False)

    @property
    def content_types(self) -> frozenset[str]:
        flags = {
            "product":     self.is_product,
            "lifestyle":   self.is_lifestyle,
            "infographic": self.is_infographic,
            "person":      self.is_person,
        }
        return frozenset(name for name, on in flags.items() if on)

    def to_dict(self) -> dict:
        return {
            "isProduct": self.is_product,
            "isLifestyle": self.is_lifestyle,
            "isInfographic": self.is_infographic,
            "isPerson": self.is_person,
            "dominantColor": self.dominant_color,
            "primaryColor": self.primary_color,
            "secondaryColors": list(self.secondary_colors),
            "moodTags": list(self.mood_tags),
            "recommendedSection": self.recommended_section.value if self.recommended_section else None,
            "commercialValue": self.commercial_value,
            "productFocus": self.product_focus,
            "mainObject": self.main_object,
            "reason": self.recommendation_reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ContentClassification":
        """Inverse of to_dict() — used when reading the cache."""
        return cls(
            is_product=bool(data.get("isProduct")),
            is_lifestyle=bool(data.get("isLifestyle")),
            is_infographic=bool(data.get("isInfographic")),
            is_person=bool(data.get("isPerson")),
            dominant_color=data.get("dominantColor"),
            primary_color=data.get("primaryColor"),
            secondary_colors=tuple(data.get("secondaryColors") or ()),
            mood_tags=tuple(data.get("moodTags") or ()),
            recommended_section=Section.parse(data.get("recommendedSection")),
            commercial_value=_score(data.get("commercialValue")),
            product_focus=_score(data.get("productFocus")),
            main_object=data.get("mainObject"),
            recommendation_reason=data.get("reason") or "",
        )


def _score(value: object) -> float:
    """Coerce a model-supplied score to [0, 1]; garbage becomes 0."""
    if isinstance(value, dict):
        value = value.get("score")
    if isinstance(value, bool):
        return 0.0
    try:
        f = float(value)
    except (TypeError, ValueError):
        return 0.0
    if f != f:   # NaN
        return 0.0
    return max(0.0, min(1.0, f))


def _str_or_none(value: object) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _str_list(value: object) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(v.strip() for v in value if isinstance(v, str) and v.strip())


def classification_from_payload(data: dict, provider_name: str = "") -> ContentClassification:
    """
    Map the model's nested JSON onto ContentClassification.
    Missing blocks fall back to neutral values; raises ValueError if data
    is not a JSON object at all.
    """
    if not isinstance(data, dict):
        raise ValueError(f"[{provider_name}] expected a JSON object, got {type(data).__name__}")

    content = data.get("contentType") or {}
    colors  = data.get("colorScheme") or {}
    mood    = data.get("mood") or {}
    objects = data.get("objects") or {}
    use     = data.get("recommendedUse") or {}

    return ContentClassification(
        is_product=bool(content.get("isProduct")),
        is_lifestyle=bool(content.get("isLifestyle")),
        is_infographic=bool(content.get("isInfographic")),
        is_person=bool(content.get("isPerson")),
        dominant_color=_str_or_none(colors.get("dominant")),
        primary_color=_str_or_none(colors.get("primary")),
        secondary_colors=_str_list(colors.get("secondary")),
        mood_tags=tuple(t.lower() for t in _str_list(mood.get("tags"))),
        recommended_section=Section.parse(use.get("section")),
        commercial_value=_score(data.get("commercialValue")),
        product_focus=_score(data.get("productFocus")),
        main_object=_str_or_none(objects.get("main")),
        recommendation_reason=_str_or_none(use.get("reason")) or "",
        provider_name=provider_name,
    )


def parse_json_response(raw: str, provider_name: str) -> dict:
    """
    Parse JSON from a model response, handling markdown fences gracefully.
    Raises ValueError on parse failure.
    """
    text = (raw or "").strip()
    # Strip ```json ... ``` or ``` ... ``` fences if present
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        logger.error("[%s] Non-JSON response: %s", provider_name, (raw or "")[:300])
        raise ValueError(f"[{provider_name}] JSON parse error: {exc}") from exc


# ── Abstract base ──────────────────────────────────────────────────────────────

class ClassifierProvider(ABC):
    """Base class all classification providers must implement."""

    name: str           # e.g. "openai"
    model_id: str       # e.g. "gpt-4o-mini"

    @abstractmethod
    async def classify(self, image_url: str, options: Optional[dict] = None) -> ContentClassification:
        """Classify the image at image_url. Raises on any failure."""
        ...

    @property
    def full_name(self) -> str:
        return f"{self.name}/{self.model_id}"
