"""Models for static flakiness risk features."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

RiskCategory = Literal[
    "timing_dependency",
    "external_service",
    "file_system",
    "async_race_condition",
    "shared_state",
    "hardcoded_delay",
    "database",
    "resource_leak",
]
SourceLanguage = Literal["javascript", "typescript", "python"]


class StaticRiskFeatures(BaseModel):
    """Feature vector describing flakiness-prone code in one test file."""

    model_config = ConfigDict(frozen=True)

    # Complexity
    cyclomatic_complexity: int = 0
    cognitive_complexity: int = 0
    nesting_depth: int = 0
    lines_of_code: int = 0

    # Async patterns
    async_await_count: int = 0
    promise_chain_count: int = 0
    timeout_count: int = 0
    set_interval_count: int = 0

    # External dependencies
    http_call_count: int = 0
    file_system_count: int = 0
    database_query_count: int = 0
    external_service_count: int = 0

    # Test structure
    setup_teardown_complexity: int = 0
    shared_state_usage: int = 0
    test_isolation_score: float = Field(default=1.0, ge=0, le=1)

    # Risk patterns
    hardcoded_delays: int = 0
    race_condition_patterns: int = 0
    timing_sensitivity: float = Field(default=0.0, ge=0)
    resource_leak_risk: float = Field(default=0.0, ge=0)
