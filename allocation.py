"""
allocation.py — assigns diversity-group representatives to page sections.

Sections are filled in a fixed priority order (HERO first, GALLERY last).
For each open slot the allocator takes the best remaining candidate whose
classification recommends that section; when none is left it takes the best
remaining candidate regardless of recommendation.

"Best" is:
  HERO         commercial value → quality → input order
  all others   quality → commercial value → input order

In sections listed in prefer_large (default HERO and FEATURES) images above
1 MP win ties before input order is consulted, the larger the better.

Optional per-section floors (minimums) are satisfied in a first pass across
all sections before any section is filled up to its full target, so a
high-priority section cannot starve a later section's floor.

Running out of candidates is not an error: the result records a shortfall
per section and everything unassigned comes back in `unused`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional, Sequence

from diversity import DiversityGroup
from models import ImageCandidate, InputError, Section

logger = logging.getLogger(__name__)

SECTION_PRIORITY: tuple[Section, ...] = (
    Section.HERO,
    Section.FEATURES,
    Section.DETAILS,
    Section.USAGE,
    Section.SPECS,
    Section.LIFESTYLE,
    Section.ACCESSORIES,
    Section.COMPARISON,
    Section.GALLERY,
)

DEFAULT_TARGETS: dict[Section, int] = {
    Section.HERO:      1,
    Section.FEATURES:  3,
    Section.DETAILS:   4,
    Section.USAGE:     2,
    Section.SPECS:     1,
    Section.GALLERY:   6,
    Section.LIFESTYLE: 2,
}

DEFAULT_PREFER_LARGE = frozenset({Section.HERO, Section.FEATURES})

LARGE_IMAGE_PIXELS = 1_000_000


@dataclass(frozen=True)
class SectionTarget:
    section: Section
    count: int
    minimum: int = 0


def _non_negative_int(value: object, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InputError(f"{what} must be an integer, got {value!r}")
    if value < 0:
        raise InputError(f"{what} must not be negative, got {value}")
    return value


def parse_targets(
    raw_targets: Optional[Mapping],
    raw_minimums: Optional[Mapping] = None,
) -> list[SectionTarget]:
    """
    Validate request targets/minimums into SectionTargets (priority order).
    Missing targets fall back to DEFAULT_TARGETS. Raises InputError.
    """
    if raw_targets is None:
        counts = dict(DEFAULT_TARGETS)
    else:
        if not isinstance(raw_targets, Mapping):
            raise InputError("targets must be an object of section → count")
        counts = {}
        for key, value in raw_targets.items():
            section = Section.from_request(key)
            counts[section] = _non_negative_int(value, f"Target for '{key}'")

    if not any(counts.values()):
        raise InputError("At least one section target must be positive")

    minimums: dict[Section, int] = {}
    if raw_minimums is not None:
        if not isinstance(raw_minimums, Mapping):
            raise InputError("minimums must be an object of section → count")
        for key, value in raw_minimums.items():
            section = Section.from_request(key)
            floor = _non_negative_int(value, f"Minimum for '{key}'")
            if floor > counts.get(section, 0):
                raise InputError(
                    f"Minimum for '{key}' ({floor}) exceeds its target ({counts.get(section, 0)})"
                )
            minimums[section] = floor

    return [
        SectionTarget(section=s, count=counts[s], minimum=minimums.get(s, 0))
        for s in SECTION_PRIORITY
        if s in counts
    ]


@dataclass
class AllocationResult:
    assignments: dict[Section, list[ImageCandidate]] = field(default_factory=dict)
    unused: list[ImageCandidate] = field(default_factory=list)
    # section → (assigned, requested), only for sections that fell short
    shortfalls: dict[Section, tuple[int, int]] = field(default_factory=dict)

    @property
    def assigned_count(self) -> int:
        return sum(len(v) for v in self.assignments.values())

    def section_of(self, url: str) -> Optional[Section]:
        for section, images in self.assignments.items():
            if any(c.url == url for c in images):
                return section
        return None


def size_bonus(candidate: ImageCandidate) -> float:
    """0 up to 1 MP, then rising linearly to 0.1 at 11 MP."""
    m = candidate.metrics
    if m is None or not m.width or not m.height:
        return 0.0
    area = m.width * m.height
    if area <= LARGE_IMAGE_PIXELS:
        return 0.0
    return min(0.1, (area - LARGE_IMAGE_PIXELS) / 10_000_000 * 0.1)


def section_rank_key(
    section: Section,
    prefer_large: Iterable[Section] = (),
) -> Callable[[ImageCandidate], tuple]:
    large = section in set(prefer_large)

    def bonus(c: ImageCandidate) -> float:
        return size_bonus(c) if large else 0.0

    if section is Section.HERO:
        return lambda c: (-c.commercial_value, -c.quality_score, -bonus(c), c.index)
    return lambda c: (-c.quality_score, -c.commercial_value, -bonus(c), c.index)


def _fill(
    section: Section,
    slots: list[ImageCandidate],
    goal: int,
    pool: list[ImageCandidate],
    prefer_large: frozenset[Section],
) -> None:
    key = section_rank_key(section, prefer_large)
    while len(slots) < goal and pool:
        matches = [c for c in pool if c.recommended_section is section]
        pick = min(matches or pool, key=key)
        pool.remove(pick)
        slots.append(pick)


def allocate(
    groups: Sequence[DiversityGroup],
    targets: Sequence[SectionTarget],
    always_include: Iterable[str] = (),
    prefer_large: Iterable[Section] = DEFAULT_PREFER_LARGE,
) -> AllocationResult:
    """
    Assign representatives (plus always_include members) to sections.
    No candidate lands in two sections. Deterministic for identical input.
    """
    by_section = {t.section: t for t in targets}
    large = frozenset(prefer_large)
    ordered = [s for s in SECTION_PRIORITY if s in by_section and by_section[s].count > 0]

    forced = set(always_include)
    pool: list[ImageCandidate] = []
    for group in groups:
        pool.append(group.representative)
        pool.extend(m for m in group.members[1:] if m.url in forced)

    eligible = len(pool)
    assignments: dict[Section, list[ImageCandidate]] = {s: [] for s in ordered}

    if any(by_section[s].minimum for s in ordered):
        for section in ordered:
            t = by_section[section]
            _fill(section, assignments[section], min(t.minimum, t.count), pool, large)
    for section in ordered:
        _fill(section, assignments[section], by_section[section].count, pool, large)

    assigned = {c.url for images in assignments.values() for c in images}
    unused = sorted(
        (m for group in groups for m in group.members if m.url not in assigned),
        key=lambda c: (-c.quality_score, c.index),
    )

    shortfalls = {
        s: (len(assignments[s]), by_section[s].count)
        for s in ordered
        if len(assignments[s]) < by_section[s].count
    }

    result = AllocationResult(assignments=assignments, unused=unused, shortfalls=shortfalls)
    logger.info(
        "Allocated %d of %d eligible image(s) across %d section(s); %d shortfall(s)",
        result.assigned_count, eligible, len(ordered), len(shortfalls),
    )
    return result
