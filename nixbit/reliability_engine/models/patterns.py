"""Models for cross-repository failure patterns."""

from datetime import datetime, timedelta
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from nixbit.reliability_engine.models.static_risk import RiskCategory
from nixbit.reliability_engine.models.stability import RiskTier

PatternType = RiskCategory | Literal["temporal", "environmental"]
Severity = RiskTier

SEVERITY_RANK: dict[Severity, int] = {"low": 1, "medium": 2, "high": 3, "critical": 4}


class ProjectRef(BaseModel):
    """Project membership entry of an organization."""

    id: str = Field(..., description="Project identifier")
    name: str = Field(..., description="Display name")
    repository: str = Field(..., description="Repository identifier (org/repo)")
    organization_id: str = Field(..., description="Owning organization")


class AffectedTest(BaseModel):
    """A test contributing failures to a pattern."""

    project_id: str
    repository: str
    test_name: str
    test_suite: str | None = None
    failure_count: int = Field(..., ge=1)
    last_failure: datetime
    stability_confidence: float = Field(default=0.1, ge=0, le=1)


class PatternFactor(BaseModel):
    """Typed evidence shared by the failures of a pattern."""

    category: Literal["time", "error", "environment", "dependency", "repository"]
    detail: str


class RootCause(BaseModel):
    """Probable cause and suggested remediations."""

    primary_cause: str
    secondary_causes: list[str] = Field(default_factory=list)
    evidence_strength: float = Field(..., ge=0, le=1)
    suggested_fixes: list[str] = Field(default_factory=list)


class ImpactMetrics(BaseModel):
    """Estimated cost of a pattern."""

    total_failures: int = Field(..., ge=0)
    affected_projects_count: int = Field(..., ge=0)
    estimated_cost_impact: float = Field(..., ge=0)
    time_to_resolution_days: int = Field(..., ge=0)


class DetectedPattern(BaseModel):
    """Failure pattern recurring across repositories of one organization."""

    model_config = ConfigDict(frozen=True)

    id: str
    organization_id: str
    pattern_type: PatternType
    severity: Severity
    confidence: float = Field(..., ge=0, le=1)
    affected_repositories: list[str] = Field(..., min_length=1)
    affected_tests: list[AffectedTest] = Field(default_factory=list)
    common_factors: list[PatternFactor] = Field(default_factory=list)
    root_cause: RootCause
    impact: ImpactMetrics
    detected_at: datetime
    status: Literal["active", "resolved"] = "active"
    resolution_notes: str | None = None
    resolved_at: datetime | None = None

    @property
    def severity_rank(self) -> int:
        """Numeric rank of the severity, higher is worse."""
        return SEVERITY_RANK[self.severity]


class PatternSummary(BaseModel):
    """Aggregate figures over the patterns of one analysis."""

    total_patterns: int = 0
    critical_patterns: int = 0
    high_impact_patterns: int = 0
    most_common_pattern_type: str = "none"
    total_affected_repositories: int = 0
    total_estimated_cost: float = 0.0


class PatternRecommendations(BaseModel):
    """Remediation advice grouped by horizon."""

    immediate: list[str] = Field(default_factory=list)
    short_term: list[str] = Field(default_factory=list)
    long_term: list[str] = Field(default_factory=list)


class PatternAnalysis(BaseModel):
    """Result of one cross-repository analysis pass."""

    organization_id: str
    analysis_date: datetime
    time_window_days: int
    patterns: list[DetectedPattern] = Field(default_factory=list)
    summary: PatternSummary = Field(default_factory=PatternSummary)
    recommendations: PatternRecommendations = Field(
        default_factory=PatternRecommendations
    )
    analyzed_projects: list[str] = Field(default_factory=list)
    excluded_projects: list[str] = Field(
        default_factory=list, description="Projects that could not be read"
    )

    def is_stale(self, now: datetime, max_age: timedelta) -> bool:
        """Check whether the analysis is older than max_age."""
        return now - self.analysis_date > max_age
