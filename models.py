"""
models.py — shared types used across the selection pipeline.

Section, ImageCandidate and Diagnostic are imported by the scorer, the
clusterer, the allocator and the pipeline. Keep them free of any logic that
pulls in other project modules.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from providers.base import ContentClassification
    from quality import QualityScore, RawMetrics


class InputError(ValueError):
    """Malformed selection request. The only condition that aborts a batch."""


# ── Diagnostic kinds ──────────────────────────────────────────────────────────

METRIC_GAP             = "MetricGap"
METRICS_UNPARSEABLE    = "MetricsUnparseable"
BELOW_QUALITY          = "BelowQualityThreshold"
CLASSIFICATION_FAILURE = "ClassificationFailure"
ALLOCATION_SHORTFALL   = "AllocationShortfall"
ALWAYS_INCLUDE_SKIPPED = "AlwaysIncludeSkipped"


@dataclass(frozen=True)
class Diagnostic:
    """One degradation notice. url is None for batch-level notices."""
    url: Optional[str]
    kind: str
    warning: str

    def to_dict(self) -> dict:
        return {"url": self.url, "kind": self.kind, "warning": self.warning}


# ── Page sections ─────────────────────────────────────────────────────────────

class Section(str, Enum):
    HERO        = "hero"          # top-of-page key visual
    FEATURES    = "features"      # selling points
    DETAILS     = "details"       # close-ups, materials
    USAGE       = "usage"         # how-to / in use
    SPECS       = "specs"         # dimensions, technical
    GALLERY     = "gallery"       # extra angles
    LIFESTYLE   = "lifestyle"     # real-world context
    ACCESSORIES = "accessories"   # add-ons, bundles
    COMPARISON  = "comparison"    # side-by-side

    @classmethod
    def parse(cls, value: object) -> Optional["Section"]:
        """
        Lenient parse for values coming from a vision model.
        Returns None for "other" or anything unrecognised.
        """
        if isinstance(value, Section):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        key = _SECTION_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return None

    @classmethod
    def from_request(cls, value: object) -> "Section":
        """Strict parse for section names in a request. Raises InputError."""
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        valid = ", ".join(s.value for s in cls)
        raise InputError(f"Unknown section {value!r}. Valid sections: {valid}")


# The classifier prompt asks for the nine section names, but older prompts and
# some models still answer with the coarse main/detail/specification labels.
_SECTION_ALIASES = {
    "main":          "hero",
    "cover":         "hero",
    "detail":        "details",
    "feature":       "features",
    "spec":          "specs",
    "specification": "specs",
    "accessory":     "accessories",
    "compare":       "comparison",
}


# ── Candidates ────────────────────────────────────────────────────────────────

@dataclass
class ImageCandidate:
    """
    One input image. Identity is the URL (unique within a request); index is
    the position in the request and is the final tie-break everywhere.
    """
    url: str
    index: int
    metrics: Optional["RawMetrics"] = None
    quality: Optional["QualityScore"] = None
    classification: Optional["ContentClassification"] = None

    @property
    def quality_score(self) -> float:
        return self.quality.score if self.quality else 0.0

    @property
    def commercial_value(self) -> float:
        return self.classification.commercial_value if self.classification else 0.0

    @property
    def recommended_section(self) -> Optional[Section]:
        return self.classification.recommended_section if self.classification else None

    @property
    def aspect_ratio(self) -> Optional[float]:
        if self.metrics is None:
            return None
        return self.metrics.aspect_ratio

    def rank_key(self) -> tuple:
        """Sort key: quality desc, commercial value desc, input order asc."""
        return (-self.quality_score, -self.commercial_value, self.index)
