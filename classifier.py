"""
classifier.py — cached, concurrency-limited wrapper around the external
content-classification provider.

Flow per image:
  1. cache key = sha256(url | canonical options JSON)
  2. cache hit  → return immediately, no provider call
  3. cache miss → wait for a concurrency slot → provider call (with timeout)
              → store in cache for CACHE_TTL_SECS → return

classify_many() never raises: every URL gets a ClassificationOutcome, failed
ones with classification=None and an error message. A batch deadline cancels
whatever is still in flight and reports those URLs as failures.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from dataclasses import asdict, dataclass
from typing import Iterable, Mapping, Optional

import config
from cache_store import CacheStore, get_cache_store
from models import InputError
from providers.base import ClassifierProvider, ContentClassification

logger = logging.getLogger(__name__)

DETAIL_LEVELS = ("basic", "standard", "detailed")

# request key → dataclass field
_OPTION_KEYS = {
    "productType":    "product_type",
    "targetAudience": "target_audience",
    "brandStyle":     "brand_style",
    "useCase":        "use_case",
    "detailLevel":    "detail_level",
    "language":       "language",
}


@dataclass(frozen=True)
class ClassificationOptions:
    product_type: Optional[str] = None
    target_audience: Optional[str] = None
    brand_style: Optional[str] = None
    use_case: Optional[str] = None
    detail_level: str = "standard"
    language: str = "en"

    @classmethod
    def from_dict(cls, raw: Optional[Mapping]) -> "ClassificationOptions":
        """Build from request JSON (camelCase or snake_case keys). Raises InputError."""
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise InputError("classificationOptions must be an object")

        values: dict = {}
        for key, value in raw.items():
            name = _OPTION_KEYS.get(key, key)
            if name not in _OPTION_KEYS.values():
                raise InputError(f"Unknown classification option '{key}'")
            if value is None:
                continue
            if not isinstance(value, str):
                raise InputError(f"Classification option '{key}' must be a string")
            values[name] = value.strip()

        level = values.get("detail_level") or "standard"
        if level not in DETAIL_LEVELS:
            raise InputError(f"detailLevel must be one of {', '.join(DETAIL_LEVELS)}")
        values["detail_level"] = level
        values["language"] = values.get("language") or "en"
        return cls(**values)

    def normalized(self) -> dict:
        """Empty values dropped, keys sorted. This is the form hashed into the cache key."""
        return {k: v for k, v in sorted(asdict(self).items()) if v}


def cache_key(image_url: str, options: Mapping) -> str:
    canonical = json.dumps(dict(options), sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(f"{image_url}|{canonical}".encode("utf-8")).hexdigest()
    return f"image_content:{digest}"


@dataclass(frozen=True)
class ClassificationOutcome:
    url: str
    classification: Optional[ContentClassification]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.classification is not None


class ContentClassifier:
    """
    provider — explicit provider, or None to resolve providers.manager lazily
               on the first cache miss (a missing key then fails each miss,
               while cache hits still succeed).
    cache    — CacheStore; defaults to the configured module-level store.
    """

    def __init__(
        self,
        provider: Optional[ClassifierProvider] = None,
        cache: Optional[CacheStore] = None,
        concurrency: Optional[int] = None,
        timeout_secs: Optional[float] = None,
    ):
        self._provider = provider
        self._cache = cache if cache is not None else get_cache_store()
        self.concurrency = max(1, concurrency or config.CLASSIFY_CONCURRENCY)
        self.timeout_secs = timeout_secs if timeout_secs is not None else config.CLASSIFY_TIMEOUT_SECS
        self._semaphore = asyncio.Semaphore(self.concurrency)

    def _get_provider(self) -> ClassifierProvider:
        if self._provider is None:
            from providers import manager
            self._provider = manager.get_provider()
        return self._provider

    async def classify(
        self,
        image_url: str,
        options: Optional[ClassificationOptions] = None,
    ) -> ContentClassification:
        """Classify one image. Raises on provider failure or timeout."""
        opts = (options or ClassificationOptions()).normalized()
        key = cache_key(image_url, opts)

        cached = await self._cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", image_url[:80])
            return ContentClassification.from_dict(cached)

        provider = self._get_provider()
        async with self._semaphore:
            result = await asyncio.wait_for(
                provider.classify(image_url, opts),
                timeout=self.timeout_secs or None,
            )

        await self._cache.set(key, result.to_dict(), config.CACHE_TTL_SECS)
        return result

    async def classify_many(
        self,
        image_urls: Iterable[str],
        options: Optional[ClassificationOptions] = None,
        deadline_secs: Optional[float] = None,
    ) -> dict[str, ClassificationOutcome]:
        """
        Classify a batch with bounded parallelism. Results are buffered and
        returned together, keyed by URL in input order.
        """
        async def _safe_run(url: str) -> ClassificationOutcome:
            try:
                return ClassificationOutcome(url, await self.classify(url, options))
            except asyncio.TimeoutError:
                logger.warning("Classification timed out for %s", url)
                return ClassificationOutcome(url, None, f"timed out after {self.timeout_secs:g}s")
            except Exception as exc:
                logger.warning("Classification failed for %s: %s", url, exc)
                return ClassificationOutcome(url, None, str(exc) or type(exc).__name__)

        tasks = {url: asyncio.create_task(_safe_run(url)) for url in dict.fromkeys(image_urls)}
        if not tasks:
            return {}

        done, pending = await asyncio.wait(tasks.values(), timeout=deadline_secs or None)
        if pending:
            logger.warning(
                "Batch deadline of %.1fs exceeded, cancelling %d classification(s)",
                deadline_secs, len(pending),
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        outcomes: dict[str, ClassificationOutcome] = {}
        for url, task in tasks.items():
            if task in done:
                outcomes[url] = task.result()
            else:
                outcomes[url] = ClassificationOutcome(url, None, "batch deadline exceeded")
        return outcomes
