"""
pipeline.py — one /selection request, end to end.

  parse_request(body)        validate the JSON body → SelectionRequest
                             (raises InputError, the only fatal condition)
  run_selection(request)     score + classify → cluster → allocate → layout
                             → SelectionReport

Everything after validation degrades instead of failing: bad metrics exclude
one image, a failed classification leaves one image unclassified, a section
that cannot be filled gets fewer images. Each degradation is reported as a
Diagnostic so the caller can see exactly what happened.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Mapping, Optional

import config
import database as db
import diversity
import layout
import quality
from allocation import (
    DEFAULT_PREFER_LARGE,
    AllocationResult,
    SectionTarget,
    allocate,
    parse_targets,
)
from classifier import ClassificationOptions, ContentClassifier
from models import (
    ALLOCATION_SHORTFALL,
    ALWAYS_INCLUDE_SKIPPED,
    BELOW_QUALITY,
    CLASSIFICATION_FAILURE,
    METRIC_GAP,
    METRICS_UNPARSEABLE,
    Diagnostic,
    ImageCandidate,
    InputError,
    Section,
)

logger = logging.getLogger(__name__)

ALL_FAILED_WARNING = "classification service unreachable for every candidate"

_OPTION_NAMES = frozenset({
    "weightFactors",
    "minDiversityScore",
    "maxGroupSize",
    "targets",
    "minimums",
    "alwaysInclude",
    "minQualityScore",
    "mosaicSections",
    "preferLargeImages",
    "classificationOptions",
})


# ── Request ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ImageInput:
    url: str
    metrics: object     # raw JSON or None; parsed per image so one bad entry only excludes itself


@dataclass(frozen=True)
class SelectionRequest:
    images: tuple[ImageInput, ...]
    weights: quality.WeightFactors = field(default_factory=quality.WeightFactors)
    min_diversity_score: float = diversity.DEFAULT_MIN_DIVERSITY_SCORE
    max_group_size: int = diversity.DEFAULT_MAX_GROUP_SIZE
    targets: tuple[SectionTarget, ...] = field(default_factory=lambda: tuple(parse_targets(None)))
    always_include: tuple[str, ...] = ()
    min_quality_score: float = 0.0
    mosaic_sections: frozenset[Section] = layout.DEFAULT_MOSAIC_SECTIONS
    prefer_large_sections: frozenset[Section] = DEFAULT_PREFER_LARGE
    classification_options: ClassificationOptions = field(default_factory=ClassificationOptions)


def _parse_images(raw: object) -> tuple[ImageInput, ...]:
    if not isinstance(raw, list) or not raw:
        raise InputError("'images' must be a non-empty list")
    if len(raw) > config.MAX_IMAGES_PER_REQUEST:
        raise InputError(
            f"Too many images: {len(raw)} (limit {config.MAX_IMAGES_PER_REQUEST})"
        )

    images: list[ImageInput] = []
    seen: set[str] = set()
    for position, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            raise InputError(f"images[{position}] must be an object")
        url = entry.get("url")
        if not isinstance(url, str) or not url.strip():
            raise InputError(f"images[{position}] needs a non-empty string 'url'")
        url = url.strip()
        if url in seen:
            raise InputError(f"Duplicate image URL: {url}")
        seen.add(url)
        images.append(ImageInput(url=url, metrics=entry.get("metrics")))
    return tuple(images)


def _number(value: object, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InputError(f"{name} must be a finite number")
    return float(value)


def _section_list(raw: object, name: str) -> list[Section]:
    if not isinstance(raw, list):
        raise InputError(f"{name} must be a list of section names")
    return [Section.from_request(v) for v in raw]


def parse_request(body: object) -> SelectionRequest:
    """Validate a /selection body. Raises InputError with a client-facing message."""
    if not isinstance(body, Mapping):
        raise InputError("Request body must be a JSON object")

    images = _parse_images(body.get("images"))

    options = body.get("options")
    if options is None:
        options = {}
    if not isinstance(options, Mapping):
        raise InputError("'options' must be an object")
    unknown = sorted(set(options) - _OPTION_NAMES)
    if unknown:
        raise InputError(f"Unknown option(s): {', '.join(unknown)}")

    min_div = options.get("minDiversityScore", diversity.DEFAULT_MIN_DIVERSITY_SCORE)
    max_group = options.get("maxGroupSize", diversity.DEFAULT_MAX_GROUP_SIZE)
    diversity.validate_options(min_div, max_group)

    min_quality = _number(options.get("minQualityScore", 0.0), "minQualityScore")
    if not 0.0 <= min_quality <= 1.0:
        raise InputError("minQualityScore must be between 0 and 1")

    urls = {img.url for img in images}
    always = options.get("alwaysInclude") or []
    if not isinstance(always, list) or not all(isinstance(u, str) for u in always):
        raise InputError("alwaysInclude must be a list of image URLs")
    for url in always:
        if url.strip() not in urls:
            raise InputError(f"alwaysInclude URL is not among the images: {url}")

    mosaic = options.get("mosaicSections")
    mosaic_sections = (
        layout.DEFAULT_MOSAIC_SECTIONS if mosaic is None
        else frozenset(_section_list(mosaic, "mosaicSections"))
    )

    prefer_large = options.get("preferLargeImages")
    prefer_large_sections = (
        DEFAULT_PREFER_LARGE if prefer_large is None
        else frozenset(_section_list(prefer_large, "preferLargeImages"))
    )

    return SelectionRequest(
        images=images,
        weights=quality.WeightFactors.from_dict(options.get("weightFactors")),
        min_diversity_score=float(min_div),
        max_group_size=max_group,
        targets=tuple(parse_targets(options.get("targets"), options.get("minimums"))),
        always_include=tuple(dict.fromkeys(u.strip() for u in always)),
        min_quality_score=min_quality,
        mosaic_sections=mosaic_sections,
        prefer_large_sections=prefer_large_sections,
        classification_options=ClassificationOptions.from_dict(options.get("classificationOptions")),
    )


# ── Report ────────────────────────────────────────────────────────────────────

@dataclass
class SectionPlacement:
    section: Section
    layout: layout.LayoutRecommendation
    images: list[ImageCandidate]


@dataclass
class SelectionReport:
    sections: list[SectionPlacement] = field(default_factory=list)
    unused: list[ImageCandidate] = field(default_factory=list)
    excluded: list[ImageCandidate] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    warning: Optional[str] = None
    group_ids: dict[str, str] = field(default_factory=dict)
    diversity_scores: dict[str, float] = field(default_factory=dict)
    classification_failures: int = 0

    @property
    def assigned_count(self) -> int:
        return sum(len(p.images) for p in self.sections)

    def image_report(self, candidate: ImageCandidate) -> dict:
        q = candidate.quality
        c = candidate.classification
        return {
            "url": candidate.url,
            "qualityScore": q.score if q else None,
            "grade": q.grade if q else None,
            "classification": c.to_dict() if c else None,
            "diversityGroupId": self.group_ids.get(candidate.url),
            "diversityScore": self.diversity_scores.get(candidate.url),
        }

    def to_dict(self) -> dict:
        return {
            "sections": {
                p.section.value: {
                    **p.layout.to_dict(),
                    "images": [self.image_report(c) for c in p.images],
                }
                for p in self.sections
            },
            "unused": [self.image_report(c) for c in self.unused],
            "excluded": [self.image_report(c) for c in self.excluded],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "warning": self.warning,
        }


# ── Run ───────────────────────────────────────────────────────────────────────

def _score_candidate(
    candidate: ImageCandidate,
    image: ImageInput,
    request: SelectionRequest,
    notes: list[Diagnostic],
) -> bool:
    """Fill in metrics and quality. Returns False when the image is excluded."""
    if image.metrics is None:
        notes.append(Diagnostic(candidate.url, METRICS_UNPARSEABLE, "no metrics supplied; image cannot be scored"))
        return False
    try:
        candidate.metrics = quality.parse_metrics(image.metrics)
    except ValueError as exc:
        notes.append(Diagnostic(candidate.url, METRICS_UNPARSEABLE, f"metrics could not be parsed: {exc}"))
        return False

    candidate.quality = quality.score(candidate.metrics, request.weights)
    if candidate.quality.missing:
        notes.append(Diagnostic(
            candidate.url, METRIC_GAP,
            f"missing metric(s) scored as 0: {', '.join(candidate.quality.missing)}",
        ))
    if candidate.quality.score < request.min_quality_score:
        notes.append(Diagnostic(
            candidate.url, BELOW_QUALITY,
            f"quality score {candidate.quality.score:.4f} is below the minimum "
            f"{request.min_quality_score:g}",
        ))
        return False
    return True


async def _record_run(report: SelectionReport, image_count: int, duration_ms: int) -> None:
    try:
        await db.log_selection(
            image_count=image_count,
            assigned_count=report.assigned_count,
            unused_count=len(report.unused),
            excluded_count=len(report.excluded),
            classification_failures=report.classification_failures,
            duration_ms=duration_ms,
        )
    except Exception as exc:
        logger.warning("Could not record selection run: %s", exc)


async def run_selection(
    request: SelectionRequest,
    classifier: Optional[ContentClassifier] = None,
) -> SelectionReport:
    started = time.monotonic()
    classifier = classifier or ContentClassifier()
    candidates = [ImageCandidate(url=img.url, index=i) for i, img in enumerate(request.images)]

    classify_task = asyncio.create_task(classifier.classify_many(
        [c.url for c in candidates],
        request.classification_options,
        deadline_secs=config.BATCH_DEADLINE_SECS,
    ))
    await asyncio.sleep(0)   # let the provider calls start before scoring

    notes: dict[str, list[Diagnostic]] = {c.url: [] for c in candidates}
    forced = set(request.always_include)
    eligible: list[ImageCandidate] = []
    excluded: list[ImageCandidate] = []
    for candidate, image in zip(candidates, request.images):
        if _score_candidate(candidate, image, request, notes[candidate.url]):
            eligible.append(candidate)
        else:
            excluded.append(candidate)
            if candidate.url in forced:
                notes[candidate.url].append(Diagnostic(
                    candidate.url, ALWAYS_INCLUDE_SKIPPED,
                    "alwaysInclude could not apply: the image was excluded",
                ))

    outcomes = await classify_task
    failures = 0
    for candidate in candidates:
        outcome = outcomes.get(candidate.url)
        if outcome is not None and outcome.ok:
            candidate.classification = outcome.classification
        else:
            failures += 1
            reason = outcome.error if outcome is not None else "no result"
            notes[candidate.url].append(Diagnostic(
                candidate.url, CLASSIFICATION_FAILURE,
                f"classification unavailable, ranked on quality only: {reason}",
            ))

    groups = diversity.cluster(eligible, request.min_diversity_score, request.max_group_size)
    allocation: AllocationResult = allocate(
        groups, request.targets, request.always_include, request.prefer_large_sections,
    )

    report = SelectionReport(
        unused=allocation.unused,
        excluded=excluded,
        group_ids={m.url: g.group_id for g in groups for m in g.members},
        diversity_scores=diversity.diversity_scores(eligible),
        classification_failures=failures,
    )
    for section, images in allocation.assignments.items():
        if images:
            report.sections.append(SectionPlacement(
                section=section,
                layout=layout.recommend(images, section, request.mosaic_sections),
                images=images,
            ))

    report.diagnostics = [d for c in candidates for d in notes[c.url]]
    for section, (got, wanted) in allocation.shortfalls.items():
        report.diagnostics.append(Diagnostic(
            None, ALLOCATION_SHORTFALL,
            f"section '{section.value}' received {got} of {wanted} requested image(s)",
        ))

    if candidates and failures == len(candidates):
        report.warning = ALL_FAILED_WARNING
        logger.warning("Every classification failed for a batch of %d image(s)", len(candidates))

    duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Selection finished in %dms: %d image(s), %d assigned, %d unused, %d excluded, "
        "%d classification failure(s)",
        duration_ms, len(candidates), report.assigned_count, len(report.unused),
        len(report.excluded), failures,
    )
    await _record_run(report, len(candidates), duration_ms)
    return report
