"""Tests for pattern and configuration models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from nixbit.reliability_engine.models.engine_config import EngineConfig
from nixbit.reliability_engine.models.patterns import (
    DetectedPattern,
    ImpactMetrics,
    PatternAnalysis,
    RootCause,
)

NOW = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)


def _pattern(**overrides: object) -> DetectedPattern:
    values: dict[str, object] = {
        "id": "database-abc",
        "organization_id": "acme",
        "pattern_type": "database",
        "severity": "high",
        "confidence": 0.6,
        "affected_repositories": ["acme/web", "acme/api"],
        "root_cause": RootCause(primary_cause="Deadlocks", evidence_strength=0.5),
        "impact": ImpactMetrics(
            total_failures=6,
            affected_projects_count=2,
            estimated_cost_impact=300.0,
            time_to_resolution_days=3,
        ),
        "detected_at": NOW,
    }
    values.update(overrides)
    return DetectedPattern(**values)  # type: ignore[arg-type]


def test_detected_pattern_defaults() -> None:
    """DetectedPattern starts active and unresolved."""
    pattern = _pattern()

    assert pattern.status == "active"
    assert pattern.resolution_notes is None
    assert pattern.resolved_at is None
    assert pattern.severity_rank == 3


def test_detected_pattern_requires_repositories() -> None:
    """affected_repositories is never empty."""
    with pytest.raises(ValidationError):
        _pattern(affected_repositories=[])


def test_detected_pattern_accepts_grouping_types() -> None:
    """Temporal and environmental groupings are valid pattern types."""
    assert _pattern(pattern_type="temporal").pattern_type == "temporal"
    assert _pattern(pattern_type="environmental").pattern_type == "environmental"


def test_detected_pattern_rejects_unknown_type() -> None:
    """Pattern types come from the risk category vocabulary."""
    with pytest.raises(ValidationError):
        _pattern(pattern_type="framework")


def test_detected_pattern_confidence_bounds() -> None:
    """Confidence is bounded to [0, 1]."""
    with pytest.raises(ValidationError):
        _pattern(confidence=1.5)


def test_pattern_analysis_staleness() -> None:
    """is_stale compares the analysis age with the maximum age."""
    analysis = PatternAnalysis(
        organization_id="acme", analysis_date=NOW, time_window_days=30
    )

    assert not analysis.is_stale(NOW + timedelta(hours=23), timedelta(hours=24))
    assert analysis.is_stale(NOW + timedelta(hours=25), timedelta(hours=24))
    assert analysis.summary.most_common_pattern_type == "none"


def test_engine_config_defaults() -> None:
    """EngineConfig carries the documented defaults."""
    config = EngineConfig()

    assert config.scoring.window_days == 30
    assert config.patterns.min_repositories == 2
    assert config.patterns.incident_cost == 50.0
    assert config.patterns.confidence_floor == 0.3
    assert config.patterns.stale_after_hours == 24.0
    assert config.normalizer.coverage_file_name == "coverage-summary.json"


def test_engine_config_partial_sections() -> None:
    """Sections missing from the input keep their defaults."""
    config = EngineConfig.model_validate({"patterns": {"incident_cost": 75}})

    assert config.patterns.incident_cost == 75.0
    assert config.patterns.min_failures == 3
    assert config.scoring.top_unstable_limit == 10
