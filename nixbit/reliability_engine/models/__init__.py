"""Data models for test records, stability judgments, patterns, and settings."""

from nixbit.reliability_engine.models.engine_config import (
    EngineConfig,
    NormalizerConfig,
    PatternConfig,
    ScoringConfig,
    StaticAnalysisConfig,
)
from nixbit.reliability_engine.models.patterns import (
    AffectedTest,
    DetectedPattern,
    ImpactMetrics,
    PatternAnalysis,
    PatternFactor,
    PatternRecommendations,
    PatternSummary,
    ProjectRef,
    RootCause,
)
from nixbit.reliability_engine.models.source_config import (
    ArtifactFetchResult,
    ArtifactRef,
    GitHubConfig,
    GitLabConfig,
)
from nixbit.reliability_engine.models.stability import (
    Annotation,
    StabilityDistribution,
    StabilityMetrics,
    StabilityReport,
    StabilityScore,
    TrendAnalysis,
    TrendPoint,
)
from nixbit.reliability_engine.models.static_risk import StaticRiskFeatures
from nixbit.reliability_engine.models.test_record import (
    CoverageSummary,
    ParsedArtifact,
    TestResultRecord,
)

__all__ = [
    "AffectedTest",
    "Annotation",
    "ArtifactFetchResult",
    "ArtifactRef",
    "CoverageSummary",
    "DetectedPattern",
    "EngineConfig",
    "GitHubConfig",
    "GitLabConfig",
    "ImpactMetrics",
    "NormalizerConfig",
    "ParsedArtifact",
    "PatternAnalysis",
    "PatternConfig",
    "PatternFactor",
    "PatternRecommendations",
    "PatternSummary",
    "ProjectRef",
    "RootCause",
    "ScoringConfig",
    "StabilityDistribution",
    "StabilityMetrics",
    "StabilityReport",
    "StabilityScore",
    "StaticAnalysisConfig",
    "StaticRiskFeatures",
    "TestResultRecord",
    "TrendAnalysis",
    "TrendPoint",
]
