"""Tests for feature vector caches."""

import pytest

from nixbit.reliability_engine.feature_cache import (
    InMemoryFeatureCache,
    NullFeatureCache,
)
from nixbit.reliability_engine.models.static_risk import StaticRiskFeatures


def test_in_memory_cache_get_and_set() -> None:
    """Stored features are returned for their key."""
    cache = InMemoryFeatureCache()
    features = StaticRiskFeatures(lines_of_code=10)

    cache.set("a", features)

    assert cache.get("a") is features
    assert cache.get("b") is None


def test_in_memory_cache_evicts_least_recently_used() -> None:
    """The least recently used entry is evicted when full."""
    cache = InMemoryFeatureCache(max_size=2)
    cache.set("a", StaticRiskFeatures(lines_of_code=1))
    cache.set("b", StaticRiskFeatures(lines_of_code=2))
    cache.get("a")

    cache.set("c", StaticRiskFeatures(lines_of_code=3))

    assert len(cache) == 2
    assert cache.get("b") is None
    assert cache.get("a") is not None
    assert cache.get("c") is not None


def test_in_memory_cache_rejects_non_positive_size() -> None:
    """max_size must be positive."""
    with pytest.raises(ValueError, match="max_size"):
        InMemoryFeatureCache(max_size=0)


def test_null_cache_never_stores() -> None:
    """NullFeatureCache always misses."""
    cache = NullFeatureCache()

    cache.set("a", StaticRiskFeatures())

    assert cache.get("a") is None
