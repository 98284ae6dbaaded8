"""
Tests for classifier.py.

Covers:
  - ClassificationOptions.from_dict(): camel/snake keys, validation, normalisation
  - cache_key(): stable, option-order independent, URL/option sensitive
  - classify(): cache hit skips the provider, miss stores with TTL
  - classify_many(): concurrency cap, per-call timeout isolates one URL,
    provider errors become outcomes, batch deadline cancels stragglers,
    no provider configured, input order preserved
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

import config
from cache_store import MemoryCacheStore
from classifier import (
    ClassificationOptions,
    ClassificationOutcome,
    ContentClassifier,
    cache_key,
)
from models import InputError, Section
from providers.base import ClassifierProvider, ContentClassification


def make_classification(**kwargs) -> ContentClassification:
    defaults = dict(
        is_product=True,
        dominant_color="#336699",
        mood_tags=("clean",),
        recommended_section=Section.DETAILS,
        commercial_value=0.7,
    )
    defaults.update(kwargs)
    return ContentClassification(**defaults)


def make_provider(side_effect=None, return_value=None) -> ClassifierProvider:
    p = MagicMock(spec=ClassifierProvider)
    p.name = "fake"
    p.model_id = "fake-1"
    p.full_name = "fake/fake-1"
    p.classify = AsyncMock(side_effect=side_effect, return_value=return_value or make_classification())
    return p


class TrackingProvider(ClassifierProvider):
    """Records how many calls are in flight at once."""
    name = "tracking"
    model_id = "t-1"

    def __init__(self, delay: float = 0.01, slow_urls: tuple = (), slow_delay: float = 1.0):
        self.delay = delay
        self.slow_urls = set(slow_urls)
        self.slow_delay = slow_delay
        self.in_flight = 0
        self.peak = 0
        self.calls = 0

    async def classify(self, image_url, options=None):
        self.calls += 1
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.slow_delay if image_url in self.slow_urls else self.delay)
        finally:
            self.in_flight -= 1
        return make_classification(main_object=image_url)


URLS = [f"https://img.example.com/{i}.jpg" for i in range(8)]


# ── ClassificationOptions ─────────────────────────────────────────────────────

class TestClassificationOptions:
    def test_defaults(self):
        opts = ClassificationOptions.from_dict(None)
        assert opts.detail_level == "standard"
        assert opts.language == "en"

    def test_camel_case_keys(self):
        opts = ClassificationOptions.from_dict({"productType": " shoes ", "detailLevel": "detailed"})
        assert opts.product_type == "shoes"
        assert opts.detail_level == "detailed"

    def test_snake_case_keys(self):
        assert ClassificationOptions.from_dict({"brand_style": "minimal"}).brand_style == "minimal"

    def test_unknown_key(self):
        with pytest.raises(InputError, match="Unknown classification option"):
            ClassificationOptions.from_dict({"colour": "red"})

    def test_bad_detail_level(self):
        with pytest.raises(InputError, match="detailLevel"):
            ClassificationOptions.from_dict({"detailLevel": "ultra"})

    def test_non_string_value(self):
        with pytest.raises(InputError):
            ClassificationOptions.from_dict({"productType": 3})

    def test_not_a_mapping(self):
        with pytest.raises(InputError):
            ClassificationOptions.from_dict(["shoes"])

    def test_normalized_drops_empty_and_sorts(self):
        opts = ClassificationOptions.from_dict({"useCase": "", "productType": "bag"})
        normalized = opts.normalized()
        assert normalized == {"detail_level": "standard", "language": "en", "product_type": "bag"}
        assert list(normalized) == sorted(normalized)


# ── cache_key ─────────────────────────────────────────────────────────────────

class TestCacheKey:
    def test_prefix_and_stability(self):
        key = cache_key("u", {"a": 1})
        assert key.startswith("image_content:")
        assert key == cache_key("u", {"a": 1})

    def test_option_order_irrelevant(self):
        assert cache_key("u", {"a": 1, "b": 2}) == cache_key("u", {"b": 2, "a": 1})

    def test_url_and_options_matter(self):
        assert cache_key("u1", {}) != cache_key("u2", {})
        assert cache_key("u", {"a": 1}) != cache_key("u", {"a": 2})


# ── classify ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestClassify:
    async def test_miss_calls_provider_and_caches(self):
        provider = make_provider()
        cache = MemoryCacheStore()
        clf = ContentClassifier(provider=provider, cache=cache)
        result = await clf.classify(URLS[0])
        assert result.recommended_section is Section.DETAILS
        provider.classify.assert_awaited_once()
        assert len(cache) == 1

    async def test_hit_skips_provider(self):
        provider = make_provider()
        clf = ContentClassifier(provider=provider, cache=MemoryCacheStore())
        first = await clf.classify(URLS[0])
        second = await clf.classify(URLS[0])
        assert first == second
        assert provider.classify.await_count == 1

    async def test_different_options_miss(self):
        provider = make_provider()
        clf = ContentClassifier(provider=provider, cache=MemoryCacheStore())
        await clf.classify(URLS[0])
        await clf.classify(URLS[0], ClassificationOptions(product_type="lamp"))
        assert provider.classify.await_count == 2

    async def test_stored_with_configured_ttl(self, monkeypatch):
        monkeypatch.setattr(config, "CACHE_TTL_SECS", 123)
        cache = MagicMock()
        cache.get = AsyncMock(return_value=None)
        cache.set = AsyncMock()
        clf = ContentClassifier(provider=make_provider(), cache=cache)
        await clf.classify(URLS[0])
        assert cache.set.await_args.args[2] == 123

    async def test_provider_receives_normalized_options(self):
        provider = make_provider()
        clf = ContentClassifier(provider=provider, cache=MemoryCacheStore())
        await clf.classify(URLS[0], ClassificationOptions(product_type="lamp"))
        _, opts = provider.classify.await_args.args
        assert opts["product_type"] == "lamp"
        assert "use_case" not in opts

    async def test_provider_error_propagates(self):
        clf = ContentClassifier(provider=make_provider(side_effect=RuntimeError("boom")),
                                cache=MemoryCacheStore())
        with pytest.raises(RuntimeError, match="boom"):
            await clf.classify(URLS[0])

    async def test_failures_not_cached(self):
        cache = MemoryCacheStore()
        clf = ContentClassifier(provider=make_provider(side_effect=RuntimeError("boom")), cache=cache)
        with pytest.raises(RuntimeError):
            await clf.classify(URLS[0])
        assert len(cache) == 0


# ── classify_many ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestClassifyMany:
    async def test_concurrency_never_exceeds_cap(self):
        provider = TrackingProvider(delay=0.02)
        clf = ContentClassifier(provider=provider, cache=MemoryCacheStore(), concurrency=3)
        outcomes = await clf.classify_many(URLS)
        assert provider.calls == len(URLS)
        assert provider.peak <= 3
        assert all(o.ok for o in outcomes.values())

    async def test_input_order_preserved(self):
        clf = ContentClassifier(provider=TrackingProvider(), cache=MemoryCacheStore())
        outcomes = await clf.classify_many(list(reversed(URLS)))
        assert list(outcomes) == list(reversed(URLS))

    async def test_timeout_isolated_to_one_url(self):
        provider = TrackingProvider(delay=0.01, slow_urls=(URLS[1],), slow_delay=5)
        clf = ContentClassifier(provider=provider, cache=MemoryCacheStore(), timeout_secs=0.2)
        outcomes = await clf.classify_many(URLS[:3])
        assert outcomes[URLS[0]].ok
        assert not outcomes[URLS[1]].ok
        assert "timed out" in outcomes[URLS[1]].error
        assert outcomes[URLS[2]].ok

    async def test_provider_errors_become_outcomes(self):
        async def flaky(url, options=None):
            if url == URLS[0]:
                raise ValueError("bad json")
            return make_classification()

        clf = ContentClassifier(provider=make_provider(side_effect=flaky), cache=MemoryCacheStore())
        outcomes = await clf.classify_many(URLS[:2])
        assert outcomes[URLS[0]] == ClassificationOutcome(URLS[0], None, "bad json")
        assert outcomes[URLS[1]].ok

    async def test_batch_deadline_cancels_pending(self):
        provider = TrackingProvider(delay=0.01, slow_urls=(URLS[2],), slow_delay=5)
        clf = ContentClassifier(provider=provider, cache=MemoryCacheStore(), timeout_secs=0)
        outcomes = await clf.classify_many(URLS[:3], deadline_secs=0.2)
        assert outcomes[URLS[0]].ok
        assert outcomes[URLS[2]].error == "batch deadline exceeded"
        assert provider.in_flight == 0

    async def test_no_provider_configured(self):
        clf = ContentClassifier(cache=MemoryCacheStore())
        outcomes = await clf.classify_many(URLS[:2])
        assert not any(o.ok for o in outcomes.values())
        assert "No classification provider" in outcomes[URLS[0]].error

    async def test_cache_hits_succeed_without_provider(self):
        cache = MemoryCacheStore()
        warm = ContentClassifier(provider=make_provider(), cache=cache)
        await warm.classify(URLS[0])

        cold = ContentClassifier(cache=cache)
        outcomes = await cold.classify_many(URLS[:2])
        assert outcomes[URLS[0]].ok
        assert not outcomes[URLS[1]].ok

    async def test_empty_batch(self):
        clf = ContentClassifier(provider=make_provider(), cache=MemoryCacheStore())
        assert await clf.classify_many([]) == {}

    async def test_duplicate_urls_classified_once(self):
        provider = make_provider()
        clf = ContentClassifier(provider=provider, cache=MemoryCacheStore())
        outcomes = await clf.classify_many([URLS[0], URLS[0]])
        assert list(outcomes) == [URLS[0]]
        assert provider.classify.await_count == 1
