import asyncio
from decimal import Decimal

import pytest

from packages.common.classification_cache import (
    InMemoryClassificationCache,
    cache_key,
    rounded_amount,
)
from packages.domain.categorization.schemas import CategorizationSource

from tests.factories import meal_result

pytestmark = pytest.mark.anyio


def test_rounded_amount_is_absolute_and_half_up():
    assert rounded_amount(Decimal("-6.75")) == 7
    assert rounded_amount(Decimal("6.49")) == 6
    assert rounded_amount(Decimal("2.50")) == 3


def test_key_ignores_sign_and_cents_below_rounding():
    assert cache_key("starbucks", Decimal("-6.75"), "expense") == cache_key("starbucks", Decimal("7.20"), "expense")


def test_key_separates_kind_and_amount():
    base = cache_key("starbucks", Decimal("6.75"), "expense")
    assert base != cache_key("starbucks", Decimal("6.75"), "income")
    assert base != cache_key("starbucks", Decimal("12.00"), "expense")
    assert len(base) == 64


async def test_get_marks_source_as_cache():
    cache = InMemoryClassificationCache()
    key = cache_key("starbucks", Decimal("6.75"), "expense")
    assert await cache.get(key) is None

    await cache.put(key, "starbucks", "expense", meal_result())
    hit = await cache.get(key)

    assert hit.category == "Meals"
    assert hit.source == CategorizationSource.CACHE
    stats = await cache.get_cache_stats()
    assert (stats["entries"], stats["hits"], stats["misses"]) == (1, 1, 1)
    assert stats["hit_rate_pct"] == 50.0


async def test_concurrent_writers_leave_one_entry():
    cache = InMemoryClassificationCache()
    key = cache_key("starbucks", Decimal("6.75"), "expense")
    await asyncio.gather(*[
        cache.put(key, "starbucks", "expense", meal_result(confidence=c))
        for c in (0.5, 0.6, 0.7)
    ])
    assert await cache.size() == 1
    assert (await cache.get(key)).confidence in (0.5, 0.6, 0.7)
