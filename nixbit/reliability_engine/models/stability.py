"""Models for stability scores, trends, and project reports."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Trend = Literal["improving", "degrading", "stable", "volatile"]
TrendDirection = Literal["improving", "degrading", "stable"]
RiskTier = Literal["low", "medium", "high", "critical"]
TrendPeriod = Literal["daily", "weekly", "monthly"]


class Annotation(BaseModel):
    """Advisory text attached to a report, tagged with a severity."""

    severity: Literal["info", "warning", "critical"] = Field(
        ..., description="How urgently the annotation should be read"
    )
    category: Literal[
        "health",
        "trend",
        "volatility",
        "critical_tests",
        "seasonality",
        "data",
        "action",
    ] = Field(..., description="What the annotation is about")
    message: str = Field(..., description="Human-readable text")


class StabilityMetrics(BaseModel):
    """Raw time-series statistics behind a stability score."""

    success_rate: float = Field(..., ge=0, le=1)
    failure_rate: float = Field(..., ge=0, le=1)
    volatility_index: float = Field(
        ..., ge=0, description="Standard deviation of daily success rate"
    )
    consecutive_failures: int = Field(..., ge=0)
    consecutive_successes: int = Field(..., ge=0)
    time_to_stabilize_days: int = Field(
        ..., description="Days since the latest 7-pass run began, -1 if none"
    )
    recovery_time_hours: float = Field(
        ..., ge=0, description="Mean hours from a failure to the next pass"
    )


class StabilityScore(BaseModel):
    """Stability judgment for one test identity over a window."""

    model_config = ConfigDict(frozen=True)

    test_id: str = Field(..., description="Stable identifier of the test")
    test_name: str
    test_suite: str | None = None
    project_id: str | None = None
    current_score: float = Field(..., ge=0, le=100)
    trend: Trend
    confidence: float = Field(..., ge=0, le=1)
    risk_tier: RiskTier
    sample_size: int = Field(default=0, ge=0)
    metrics: StabilityMetrics | None = None
    last_calculated: datetime


class TrendPoint(BaseModel):
    """One calendar bucket of a trend curve."""

    date: datetime
    score: float
    success_rate: float
    run_count: int


class Seasonality(BaseModel):
    """Weekday and hour-of-day failure peaks."""

    has_pattern: bool = False
    peak_days: list[str] = Field(default_factory=list)
    peak_hours: list[int] = Field(default_factory=list)


class TrendAnalysis(BaseModel):
    """Trend over explicit calendar buckets."""

    period: TrendPeriod
    data_points: list[TrendPoint] = Field(default_factory=list)
    trend_direction: TrendDirection = "stable"
    change_rate: float = Field(default=0.0, description="Score change per bucket")
    volatility: float = Field(
        default=0.0, description="Standard deviation of bucket scores"
    )
    seasonality: Seasonality = Field(default_factory=Seasonality)


class StabilityDistribution(BaseModel):
    """Test counts per score band."""

    excellent: int = 0
    good: int = 0
    fair: int = 0
    poor: int = 0
    critical: int = 0


class ReportTrends(BaseModel):
    """Project trend curves at the three standard resolutions."""

    daily: TrendAnalysis
    weekly: TrendAnalysis
    monthly: TrendAnalysis


class StabilityReport(BaseModel):
    """Point-in-time stability snapshot for a project."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    generated_at: datetime
    overall_stability: float = Field(..., ge=0, le=100)
    confidence: float = Field(..., ge=0, le=1)
    degraded: bool = Field(
        default=False, description="True when history was too sparse to analyze"
    )
    total_tests: int = 0
    stable_tests: int = 0
    unstable_tests: int = 0
    critical_tests: int = 0
    tier_counts: dict[RiskTier, int] = Field(default_factory=dict)
    top_unstable_tests: list[StabilityScore] = Field(default_factory=list)
    stability_distribution: StabilityDistribution = Field(
        default_factory=StabilityDistribution
    )
    trends: ReportTrends | None = None
    insights: list[Annotation] = Field(default_factory=list)
    recommendations: list[Annotation] = Field(default_factory=list)
