"""
quality.py — technical quality scoring.

Turns per-metric measurements into a single 0–1 score and a letter grade.
Pixel-level analysis (sharpness, noise, …) happens upstream: every metric
except resolution arrives pre-normalised to [0, 1], higher = better.

  resolution   from width/height; saturates at MIN_WIDTH × MIN_HEIGHT,
               linear to 0 below
  sharpness    0 = blurry,     1 = crisp
  noise        0 = very noisy, 1 = clean
  color        0 = washed out, 1 = accurate / vivid
  lighting     0 = dark/harsh, 1 = even
  compression  0 = heavy artefacts, 1 = lossless
               (estimated from the file format when not measured)

Scoring is fail-soft: a missing metric contributes 0 and is listed in
QualityScore.missing instead of raising, so every image can still be ranked.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Mapping, Optional

import config
from models import InputError

METRIC_NAMES = ("resolution", "sharpness", "noise", "color", "lighting", "compression")

# (lower bound inclusive, grade, recommendation)
GRADE_THRESHOLDS = [
    (0.90, "A", "Excellent quality — use as-is."),
    (0.75, "B", "Good quality — minor improvements possible."),
    (0.60, "C", "Acceptable — consider a sharper or higher-resolution source."),
    (0.40, "D", "Needs improvement — replace with a better image if available."),
    (0.0,  "F", "Poor quality — replace this image."),
]

# Lossless/vector formats compress best; GIF is palette-limited.
_FORMAT_COMPRESSION = {
    "svg":  1.0,
    "png":  0.9,
    "avif": 0.9,
    "webp": 0.85,
    "jpg":  0.75,
    "jpeg": 0.75,
    "gif":  0.7,
}
_UNKNOWN_FORMAT_COMPRESSION = 0.6


# ── Inputs ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RawMetrics:
    width: Optional[float] = None
    height: Optional[float] = None
    sharpness: Optional[float] = None
    noise: Optional[float] = None
    color: Optional[float] = None
    lighting: Optional[float] = None
    compression: Optional[float] = None
    format: Optional[str] = None

    @property
    def aspect_ratio(self) -> Optional[float]:
        if self.width and self.height and self.width > 0 and self.height > 0:
            return self.width / self.height
        return None


_NUMERIC_FIELDS = ("width", "height", "sharpness", "noise", "color", "lighting", "compression")
# camelCase names some image-quality APIs use for the same measurement
_FIELD_ALIASES = {"colorQuality": "color", "color_quality": "color"}


def parse_metrics(raw: object) -> RawMetrics:
    """
    Build RawMetrics from a request dict.
    Missing keys are fine (they become gaps); a non-mapping payload or a
    non-numeric value raises ValueError.
    """
    if not isinstance(raw, Mapping):
        raise ValueError(f"metrics must be an object, got {type(raw).__name__}")

    values: dict = {}
    for key, value in raw.items():
        name = _FIELD_ALIASES.get(key, key)
        if name in _NUMERIC_FIELDS:
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"metric '{key}' must be a number, got {value!r}")
            if math.isnan(value) or math.isinf(value):
                raise ValueError(f"metric '{key}' must be finite")
            values[name] = float(value)
        elif name == "format":
            if value is not None and not isinstance(value, str):
                raise ValueError(f"metric 'format' must be a string, got {value!r}")
            values["format"] = value
    return RawMetrics(**values)


@dataclass(frozen=True)
class WeightFactors:
    """Per-metric weights. Always sum to 1.0 once built via from_dict()."""
    resolution: float = 0.20
    sharpness: float = 0.20
    noise: float = 0.16
    color: float = 0.18
    lighting: float = 0.14
    compression: float = 0.12

    @classmethod
    def from_dict(cls, raw: Optional[Mapping]) -> "WeightFactors":
        """
        Merge overrides onto the defaults, validate, and re-normalise.
        Raises InputError on unknown keys, negative or non-numeric weights,
        or an all-zero set.
        """
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise InputError("weightFactors must be an object")

        merged = cls().as_dict()
        for key, value in raw.items():
            name = _FIELD_ALIASES.get(key, key)
            if name not in merged:
                raise InputError(f"Unknown weight factor '{key}'")
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InputError(f"Weight factor '{key}' must be a number")
            if value < 0 or math.isnan(value) or math.isinf(value):
                raise InputError(f"Weight factor '{key}' must be a finite non-negative number")
            merged[name] = float(value)

        total = sum(merged.values())
        if total <= 0:
            raise InputError("At least one weight factor must be positive")
        return cls(**{k: v / total for k, v in merged.items()})

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in METRIC_NAMES}


# ── Result ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class QualityScore:
    score: float                     # 0–1 weighted sum
    grade: str                       # A | B | C | D | F
    recommendation: str
    components: dict[str, float] = field(default_factory=dict)
    missing: tuple[str, ...] = ()    # metric names that contributed 0

    @property
    def has_gaps(self) -> bool:
        return bool(self.missing)


# ── Scoring ───────────────────────────────────────────────────────────────────

def resolution_score(
    width: float,
    height: float,
    min_width: int,
    min_height: int,
) -> float:
    """1.0 at or above the minimum size, linear to 0 below it (limited by the worse side)."""
    if width <= 0 or height <= 0:
        return 0.0
    # a zero or negative floor means "any size is enough"
    min_width = max(1, min_width)
    min_height = max(1, min_height)
    return max(0.0, min(1.0, width / min_width, height / min_height))


def compression_score_for_format(fmt: str) -> float:
    return _FORMAT_COMPRESSION.get(fmt.strip().lower().lstrip("."), _UNKNOWN_FORMAT_COMPRESSION)


def grade_for(score: float) -> tuple[str, str]:
    for lower, grade, recommendation in GRADE_THRESHOLDS:
        if score >= lower:
            return grade, recommendation
    return GRADE_THRESHOLDS[-1][1], GRADE_THRESHOLDS[-1][2]


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def score(
    metrics: RawMetrics,
    weights: Optional[WeightFactors] = None,
    min_width: Optional[int] = None,
    min_height: Optional[int] = None,
) -> QualityScore:
    """Score one image. Pure; never raises for missing metrics."""
    weights = weights or WeightFactors()
    min_width = min_width or config.MIN_WIDTH
    min_height = min_height or config.MIN_HEIGHT

    components: dict[str, float] = {}
    missing: list[str] = []

    if metrics.width is not None and metrics.height is not None:
        components["resolution"] = resolution_score(
            metrics.width, metrics.height, min_width, min_height,
        )
    else:
        missing.append("resolution")

    for name in ("sharpness", "noise", "color", "lighting"):
        value = getattr(metrics, name)
        if value is None:
            missing.append(name)
        else:
            components[name] = _clamp(value)

    if metrics.compression is not None:
        components["compression"] = _clamp(metrics.compression)
    elif metrics.format:
        components["compression"] = compression_score_for_format(metrics.format)
    else:
        missing.append("compression")

    w = weights.as_dict()
    total = sum(w[name] * components.get(name, 0.0) for name in METRIC_NAMES)
    total = round(_clamp(total), 4)
    grade, recommendation = grade_for(total)

    return QualityScore(
        score=total,
        grade=grade,
        recommendation=recommendation,
        components=components,
        missing=tuple(missing),
    )
