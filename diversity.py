"""
diversity.py — near-duplicate grouping.

Similarity between two images (0–1, higher = more alike):

  both classified   0.45 × dominant-colour closeness (RGB distance)
                  + 0.35 × content-type overlap (product/lifestyle/…)
                  + 0.10 × mood-tag overlap
                  + 0.10 × metadata closeness (resolution + aspect ratio)
  otherwise         0.50 × metadata closeness

Two images belong together when similarity > 1 − min_diversity_score.
Unclassified images can reach at most 0.5, so with the default
min_diversity_score (0.3) they are never merged on metadata alone.

Clustering is greedy and deterministic: candidates are visited best-first
(quality, then commercial value, then input order) and each one joins the
most similar non-full group or opens a new one. The first member of each
group is therefore its representative.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from models import ImageCandidate, InputError

logger = logging.getLogger(__name__)

DEFAULT_MIN_DIVERSITY_SCORE = 0.3
DEFAULT_MAX_GROUP_SIZE = 3

W_COLOR    = 0.45
W_CONTENT  = 0.35
W_TAGS     = 0.10
W_METADATA = 0.10
METADATA_ONLY_CAP = 0.5

_MAX_RGB_DISTANCE = math.sqrt(3 * 255 ** 2)
_HEX_RE = re.compile(r"^#?([0-9a-f]{6}|[0-9a-f]{3})$", re.IGNORECASE)


@dataclass
class DiversityGroup:
    group_id: str
    members: list[ImageCandidate] = field(default_factory=list)

    @property
    def representative(self) -> ImageCandidate:
        return self.members[0]

    @property
    def urls(self) -> list[str]:
        return [m.url for m in self.members]

    def __len__(self) -> int:
        return len(self.members)


# ── Pairwise signals ──────────────────────────────────────────────────────────

def hex_to_rgb(value: Optional[str]) -> Optional[tuple[int, int, int]]:
    if not value:
        return None
    match = _HEX_RE.match(value.strip())
    if not match:
        return None
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)


def color_similarity(a: Optional[str], b: Optional[str]) -> float:
    """1 − normalised RGB distance for hex colours; exact name match otherwise."""
    if not a or not b:
        return 0.0
    rgb_a, rgb_b = hex_to_rgb(a), hex_to_rgb(b)
    if rgb_a is None or rgb_b is None:
        return 1.0 if a.strip().lower() == b.strip().lower() else 0.0
    return 1.0 - math.dist(rgb_a, rgb_b) / _MAX_RGB_DISTANCE


def _jaccard(a: frozenset, b: frozenset) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def tag_similarity(a: Sequence[str], b: Sequence[str]) -> float:
    """Shared tags relative to the smaller tag set."""
    set_a, set_b = set(a), set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / min(len(set_a), len(set_b))


def _ratio(x: Optional[float], y: Optional[float]) -> float:
    if not x or not y or x <= 0 or y <= 0:
        return 0.5   # unknown: neither alike nor different
    return min(x, y) / max(x, y)


def metadata_similarity(a: ImageCandidate, b: ImageCandidate) -> float:
    area_a = area_b = None
    if a.metrics and a.metrics.width and a.metrics.height:
        area_a = a.metrics.width * a.metrics.height
    if b.metrics and b.metrics.width and b.metrics.height:
        area_b = b.metrics.width * b.metrics.height
    return (_ratio(area_a, area_b) + _ratio(a.aspect_ratio, b.aspect_ratio)) / 2


def similarity(a: ImageCandidate, b: ImageCandidate) -> float:
    meta = metadata_similarity(a, b)
    ca, cb = a.classification, b.classification
    if ca is None or cb is None:
        return METADATA_ONLY_CAP * meta
    total = (
        W_COLOR * color_similarity(ca.dominant_color, cb.dominant_color)
        + W_CONTENT * _jaccard(ca.content_types, cb.content_types)
        + W_TAGS * tag_similarity(ca.mood_tags, cb.mood_tags)
        + W_METADATA * meta
    )
    return min(1.0, total)


def diversity_scores(candidates: Sequence[ImageCandidate]) -> dict[str, float]:
    """Per URL: 1 − mean similarity to every other candidate (1.0 when alone)."""
    n = len(candidates)
    if n == 1:
        return {candidates[0].url: 1.0}
    totals = [0.0] * n
    for i in range(n):
        for j in range(i + 1, n):
            s = similarity(candidates[i], candidates[j])
            totals[i] += s
            totals[j] += s
    return {c.url: round(1.0 - totals[i] / (n - 1), 4) for i, c in enumerate(candidates)}


# ── Clustering ────────────────────────────────────────────────────────────────

def validate_options(min_diversity_score: float, max_group_size: int) -> None:
    if isinstance(min_diversity_score, bool) or not isinstance(min_diversity_score, (int, float)):
        raise InputError("minDiversityScore must be a number")
    if not 0.0 <= min_diversity_score <= 1.0:
        raise InputError("minDiversityScore must be between 0 and 1")
    if isinstance(max_group_size, bool) or not isinstance(max_group_size, int) or max_group_size < 1:
        raise InputError("maxGroupSize must be a positive integer")


def cluster(
    candidates: Sequence[ImageCandidate],
    min_diversity_score: float = DEFAULT_MIN_DIVERSITY_SCORE,
    max_group_size: int = DEFAULT_MAX_GROUP_SIZE,
) -> list[DiversityGroup]:
    """Partition candidates into near-duplicate groups."""
    validate_options(min_diversity_score, max_group_size)
    threshold = 1.0 - min_diversity_score

    groups: list[DiversityGroup] = []
    for candidate in sorted(candidates, key=lambda c: c.rank_key()):
        best: Optional[DiversityGroup] = None
        best_sim = threshold
        for group in groups:
            if len(group) >= max_group_size:
                continue
            s = similarity(candidate, group.representative)
            if s > best_sim:
                best, best_sim = group, s

        if best is None:
            groups.append(DiversityGroup(group_id=f"group-{len(groups) + 1}", members=[candidate]))
        else:
            best.members.append(candidate)

    merged = sum(1 for g in groups if len(g) > 1)
    logger.info(
        "Clustered %d candidate(s) into %d group(s), %d with near-duplicates",
        len(candidates), len(groups), merged,
    )
    return groups
