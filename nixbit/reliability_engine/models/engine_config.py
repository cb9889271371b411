"""Tunable settings of the reliability engine."""

from pydantic import BaseModel, Field


class NormalizerConfig(BaseModel):
    """Settings for artifact normalization."""

    report_file_patterns: list[str] = Field(
        default_factory=lambda: [
            r".*\.xml$",
            r".*test.*\.json$",
            r".*junit.*\.xml$",
            r".*results?\.xml$",
            r".*report\.xml$",
            r".*\.tap$",
        ],
        description="Case-insensitive regexes matched against archive file names",
    )
    coverage_file_name: str = Field(
        default="coverage-summary.json",
        description="Istanbul json-summary file picked up from archives",
    )
    artifact_name_patterns: list[str] = Field(
        default_factory=lambda: [
            r"test.*results?",
            r"junit",
            r"coverage",
            r"reports?",
            r"artifacts?",
        ],
        description="Case-insensitive regexes selecting CI artifacts to download",
    )


class ScoringConfig(BaseModel):
    """Settings for stability scoring."""

    window_days: int = Field(default=30, ge=1, description="Scoring window")
    top_unstable_limit: int = Field(
        default=10, ge=0, description="Tests listed in a report's top unstable list"
    )
    daily_buckets: int = Field(default=30, ge=1)
    weekly_buckets: int = Field(default=12, ge=1)
    monthly_buckets: int = Field(default=6, ge=1)


class PatternConfig(BaseModel):
    """Settings for cross-repository pattern detection."""

    time_window_days: int = Field(default=30, ge=1)
    min_repositories: int = Field(
        default=2, ge=1, description="Repositories a pattern must span"
    )
    min_failures: int = Field(
        default=3, ge=1, description="Failures a category pattern needs"
    )
    incident_cost: float = Field(
        default=50.0, ge=0, description="Cost proxy charged per failure"
    )
    high_cost_threshold: float = Field(
        default=1000.0, ge=0, description="Cost that raises severity one rank"
    )
    confidence_floor: float = Field(
        default=0.3, ge=0, le=1, description="Patterns at or below are dropped"
    )
    stale_after_hours: float = Field(default=24.0, gt=0)
    chunk_size: int = Field(
        default=10, ge=1, description="Projects fetched per analysis chunk"
    )


class StaticAnalysisConfig(BaseModel):
    """Settings for static risk analysis."""

    cache_size: int = Field(
        default=1024, ge=0, description="Feature vectors kept in memory, 0 disables"
    )


class EngineConfig(BaseModel):
    """Complete engine configuration, usually loaded from YAML."""

    normalizer: NormalizerConfig = Field(default_factory=NormalizerConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    patterns: PatternConfig = Field(default_factory=PatternConfig)
    static_analysis: StaticAnalysisConfig = Field(
        default_factory=StaticAnalysisConfig
    )
