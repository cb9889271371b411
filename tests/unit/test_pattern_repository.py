"""Tests for the pattern repository."""

from datetime import datetime, timedelta, timezone

import pytest

from nixbit.reliability_engine.errors import NotFoundError
from nixbit.reliability_engine.models.patterns import (
    DetectedPattern,
    ImpactMetrics,
    PatternAnalysis,
    RootCause,
)
from nixbit.reliability_engine.pattern_repository import PatternRepository

NOW = datetime(2024, 5, 11, 12, tzinfo=timezone.utc)


def _pattern(pattern_id: str = "database-abc") -> DetectedPattern:
    return DetectedPattern(
        id=pattern_id,
        organization_id="acme",
        pattern_type="database",
        severity="high",
        confidence=0.8,
        affected_repositories=["acme/api", "acme/web"],
        root_cause=RootCause(primary_cause="Deadlocks", evidence_strength=0.9),
        impact=ImpactMetrics(
            total_failures=12,
            affected_projects_count=2,
            estimated_cost_impact=600.0,
            time_to_resolution_days=3,
        ),
        detected_at=NOW,
    )


def _analysis(*patterns: DetectedPattern) -> PatternAnalysis:
    return PatternAnalysis(
        organization_id="acme",
        analysis_date=NOW,
        time_window_days=30,
        patterns=list(patterns),
    )


def test_save_and_get() -> None:
    """Saved analyses and their patterns can be read back."""
    repository = PatternRepository()

    stored = repository.save_analysis(_analysis(_pattern()))

    assert repository.latest_analysis("acme") is stored
    assert repository.get_pattern("database-abc").id == "database-abc"
    assert repository.latest_analysis("other") is None


def test_get_unknown_pattern() -> None:
    """Unknown ids raise NotFoundError."""
    with pytest.raises(NotFoundError, match="missing"):
        PatternRepository().get_pattern("missing")


def test_resolve_updates_pattern_and_analysis() -> None:
    """Resolution is visible through the pattern and the stored analysis."""
    repository = PatternRepository()
    repository.save_analysis(_analysis(_pattern(), _pattern("temporal-def")))

    resolved = repository.resolve("database-abc", "Fixed pool size", NOW)

    assert resolved.status == "resolved"
    assert resolved.resolution_notes == "Fixed pool size"
    assert resolved.resolved_at == NOW
    analysis = repository.latest_analysis("acme")
    assert analysis is not None
    assert [p.status for p in analysis.patterns] == ["resolved", "active"]


def test_resolve_twice_keeps_first_resolution() -> None:
    """A second resolve returns the pattern unchanged."""
    repository = PatternRepository()
    repository.save_analysis(_analysis(_pattern()))

    first = repository.resolve("database-abc", "first", NOW)
    second = repository.resolve("database-abc", "second", NOW + timedelta(days=1))

    assert second == first


def test_resolution_survives_new_analysis() -> None:
    """A resolved id stays resolved when detected again."""
    repository = PatternRepository()
    repository.save_analysis(_analysis(_pattern()))
    repository.resolve("database-abc", None, NOW)

    stored = repository.save_analysis(_analysis(_pattern(), _pattern("other-1")))

    assert [p.status for p in stored.patterns] == ["resolved", "active"]
    assert repository.with_resolutions([_pattern()])[0].status == "resolved"


def test_resolve_unknown_pattern() -> None:
    """Resolving an unknown id raises NotFoundError."""
    with pytest.raises(NotFoundError):
        PatternRepository().resolve("missing", None, NOW)
