"""
layout.py — display layout suggestion per populated section.

  1 image      single      1 column
  2 images     comparison  2 columns
  3–4 images   grid        one column per image
  5+ images    slider      3 columns
               mosaic      3 columns, when the section is mosaic-eligible and
                           the aspect ratios vary enough to make a uniform
                           slider look ragged
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import config
from models import ImageCandidate, Section

DEFAULT_MOSAIC_SECTIONS = frozenset({Section.DETAILS, Section.LIFESTYLE, Section.GALLERY})


@dataclass(frozen=True)
class LayoutRecommendation:
    layout: str
    columns: int

    def to_dict(self) -> dict:
        return {"layout": self.layout, "columns": self.columns}


def aspect_variance(images: Sequence[ImageCandidate]) -> float:
    """Population variance of the known aspect ratios (0.0 with fewer than two)."""
    ratios = [r for r in (img.aspect_ratio for img in images) if r is not None]
    if len(ratios) < 2:
        return 0.0
    mean = sum(ratios) / len(ratios)
    return sum((r - mean) ** 2 for r in ratios) / len(ratios)


def recommend(
    images: Sequence[ImageCandidate],
    section: Section,
    mosaic_sections: Iterable[Section] = DEFAULT_MOSAIC_SECTIONS,
    variance_threshold: Optional[float] = None,
) -> LayoutRecommendation:
    count = len(images)
    if count == 0:
        raise ValueError(f"Cannot recommend a layout for empty section '{section.value}'")
    if count == 1:
        return LayoutRecommendation("single", 1)
    if count == 2:
        return LayoutRecommendation("comparison", 2)
    if count <= 4:
        return LayoutRecommendation("grid", count)

    if variance_threshold is None:
        variance_threshold = config.MOSAIC_ASPECT_VARIANCE
    if section in set(mosaic_sections) and aspect_variance(images) >= variance_threshold:
        return LayoutRecommendation("mosaic", 3)
    return LayoutRecommendation("slider", 3)
