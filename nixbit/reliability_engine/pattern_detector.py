"""Cross-repository failure pattern detection for an organization."""

import asyncio
import hashlib
import logging
import statistics
from collections import Counter, defaultdict
from collections.abc import AsyncIterator, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import get_args

from nixbit.reliability_engine.models.engine_config import PatternConfig
from nixbit.reliability_engine.models.patterns import (
    SEVERITY_RANK,
    AffectedTest,
    DetectedPattern,
    ImpactMetrics,
    PatternAnalysis,
    PatternFactor,
    PatternRecommendations,
    PatternSummary,
    PatternType,
    ProjectRef,
    RootCause,
    Severity,
)
from nixbit.reliability_engine.models.static_risk import RiskCategory
from nixbit.reliability_engine.models.test_record import TestResultRecord
from nixbit.reliability_engine.pattern_repository import PatternRepository
from nixbit.reliability_engine.result_store import ResultStore
from nixbit.reliability_engine.risk_patterns import categorize_failure
from nixbit.reliability_engine.stability_scoring import (
    DEFAULT_CONFIDENCE,
    StabilityScoringEngine,
    TestIdentity,
    group_by_test,
)
from nixbit.reliability_engine.trend_analysis import WEEKDAYS, as_utc

logger = logging.getLogger(__name__)

MIN_PROJECTS = 2
GROUPED_MIN_FAILURES = 5
LOW_CONFIDENCE = 0.5

RISK_CATEGORIES: tuple[RiskCategory, ...] = get_args(RiskCategory)
RANK_SEVERITY: dict[int, Severity] = {rank: s for s, rank in SEVERITY_RANK.items()}

BRANCH_PREFIXES = (
    (("feature/", "feat/"), "feature-branch"),
    (("hotfix/", "fix/"), "hotfix-branch"),
    (("release/", "rel/"), "release-branch"),
)


@dataclass(frozen=True)
class PatternProfile:
    """Confidence model and root-cause texts of one pattern type."""

    confidence_cap: float
    confidence_divisor: float
    evidence_cap: float
    evidence_divisor: float
    resolution_days: int
    primary_cause: str
    secondary_causes: tuple[str, ...]
    suggested_fixes: tuple[str, ...]


PROFILES: dict[PatternType, PatternProfile] = {
    "temporal": PatternProfile(
        confidence_cap=0.8,
        confidence_divisor=10,
        evidence_cap=0.9,
        evidence_divisor=15,
        resolution_days=3,
        primary_cause="Time-based infrastructure or deployment pattern",
        secondary_causes=(
            "Scheduled maintenance windows",
            "Peak traffic periods",
            "Automated deployment processes",
            "Resource contention during peak hours",
        ),
        suggested_fixes=(
            "Investigate infrastructure scheduling",
            "Check for automated processes at this time",
            "Monitor resource usage patterns",
            "Consider distributing deployments across time windows",
        ),
    ),
    "environmental": PatternProfile(
        confidence_cap=0.7,
        confidence_divisor=8,
        evidence_cap=0.75,
        evidence_divisor=10,
        resolution_days=3,
        primary_cause="Environment-specific issue on {label} branches",
        secondary_causes=(
            "CI/CD pipeline configuration",
            "Environment-specific variables",
            "Branch-specific workflows",
            "Deployment environment differences",
        ),
        suggested_fixes=(
            "Review CI/CD pipeline configuration",
            "Check environment variable consistency",
            "Validate branch-specific workflows",
            "Ensure environment parity",
        ),
    ),
    "external_service": PatternProfile(
        confidence_cap=0.9,
        confidence_divisor=8,
        evidence_cap=0.95,
        evidence_divisor=10,
        resolution_days=5,
        primary_cause="Infrastructure reliability issue",
        secondary_causes=(
            "Network connectivity problems",
            "Service dependencies",
            "Package registry availability",
            "Infrastructure configuration",
        ),
        suggested_fixes=(
            "Review infrastructure monitoring",
            "Check service health and dependencies",
            "Implement circuit breakers and retries",
            "Pin dependency versions and cache packages",
        ),
    ),
    "timing_dependency": PatternProfile(
        confidence_cap=0.8,
        confidence_divisor=8,
        evidence_cap=0.85,
        evidence_divisor=10,
        resolution_days=3,
        primary_cause="Timing-dependent test logic",
        secondary_causes=(
            "Slow or overloaded CI runners",
            "Tight timeout thresholds",
            "Clock or timezone assumptions",
        ),
        suggested_fixes=(
            "Increase timeout thresholds",
            "Optimize slow operations",
            "Implement retry mechanisms",
            "Use fake timers instead of wall-clock time",
        ),
    ),
    "hardcoded_delay": PatternProfile(
        confidence_cap=0.8,
        confidence_divisor=8,
        evidence_cap=0.85,
        evidence_divisor=10,
        resolution_days=2,
        primary_cause="Hard-coded delays in tests",
        secondary_causes=(
            "Sleeps standing in for synchronization",
            "Delays tuned to developer machines",
        ),
        suggested_fixes=(
            "Replace sleeps with explicit waits on conditions",
            "Use fake timers in unit tests",
        ),
    ),
    "async_race_condition": PatternProfile(
        confidence_cap=0.85,
        confidence_divisor=8,
        evidence_cap=0.9,
        evidence_divisor=10,
        resolution_days=4,
        primary_cause="Asynchronous race condition",
        secondary_causes=(
            "Unawaited promises or coroutines",
            "Assertions running before async work settles",
            "Concurrent tests touching the same resources",
        ),
        suggested_fixes=(
            "Await every asynchronous operation under test",
            "Wait for observable state instead of elapsed time",
            "Run contended tests serially",
        ),
    ),
    "shared_state": PatternProfile(
        confidence_cap=0.85,
        confidence_divisor=8,
        evidence_cap=0.9,
        evidence_divisor=10,
        resolution_days=3,
        primary_cause="Shared state leaking between tests",
        secondary_causes=(
            "Global variables mutated by tests",
            "Environment variables left behind",
            "Mocks not restored after use",
        ),
        suggested_fixes=(
            "Reset global state in teardown hooks",
            "Restore mocks and environment variables after each test",
            "Implement consistent test isolation patterns",
        ),
    ),
    "database": PatternProfile(
        confidence_cap=0.85,
        confidence_divisor=8,
        evidence_cap=0.9,
        evidence_divisor=10,
        resolution_days=3,
        primary_cause="Database contention or connectivity issue",
        secondary_causes=(
            "Connection pool exhaustion",
            "Deadlocks between concurrent tests",
            "Test data shared across runs",
        ),
        suggested_fixes=(
            "Review connection pool settings",
            "Implement connection retry logic",
            "Isolate test data per run",
        ),
    ),
    "file_system": PatternProfile(
        confidence_cap=0.8,
        confidence_divisor=8,
        evidence_cap=0.85,
        evidence_divisor=10,
        resolution_days=2,
        primary_cause="File system state shared between runs",
        secondary_causes=(
            "Fixed paths reused by parallel jobs",
            "Missing cleanup of generated files",
            "Permission differences between runners",
        ),
        suggested_fixes=(
            "Use unique temporary directories per test",
            "Clean up generated files in teardown hooks",
        ),
    ),
    "resource_leak": PatternProfile(
        confidence_cap=0.85,
        confidence_divisor=8,
        evidence_cap=0.9,
        evidence_divisor=10,
        resolution_days=4,
        primary_cause="Resource exhaustion",
        secondary_causes=(
            "Servers or sockets left open",
            "Memory growth across test files",
            "Ports reused before release",
        ),
        suggested_fixes=(
            "Review memory allocation patterns",
            "Check for memory leaks",
            "Close servers and handles after each test",
        ),
    ),
}


@dataclass
class ProjectHistory:
    """Failures of one project within the analysis window."""

    project: ProjectRef
    failures: list[TestResultRecord] = field(default_factory=list)
    confidences: dict[TestIdentity, float] = field(default_factory=dict)


@dataclass(frozen=True)
class _Failure:
    project: ProjectRef
    record: TestResultRecord
    moment: datetime


def normalize_branch(branch: str) -> str:
    """Collapse a branch name into its branch family."""
    for prefixes, family in BRANCH_PREFIXES:
        if branch.startswith(prefixes):
            return family
    if branch in ("main", "master"):
        return "main-branch"
    if branch.startswith(("develop", "dev")):
        return "dev-branch"
    return "other-branch"


def pattern_id(organization_id: str, pattern_type: PatternType, key: str) -> str:
    """Stable identifier of a pattern, equal across analyses."""
    digest = hashlib.sha256(f"{organization_id}:{pattern_type}:{key}".encode())
    return f"{pattern_type}-{digest.hexdigest()[:12]}"


def pattern_severity(
    repository_count: int,
    failure_count: int,
    estimated_cost: float,
    confidence: float,
    config: PatternConfig,
) -> Severity:
    """Rank a pattern by spread, volume, cost and confidence."""
    if repository_count >= 5 or failure_count >= 20:
        rank = 4
    elif repository_count >= 3 or failure_count >= 10:
        rank = 3
    elif repository_count >= 2 or failure_count >= 5:
        rank = 2
    else:
        rank = 1

    if estimated_cost >= config.high_cost_threshold:
        rank += 1
    if confidence < LOW_CONFIDENCE:
        rank -= 1
    return RANK_SEVERITY[max(1, min(4, rank))]


def sort_patterns(patterns: Iterable[DetectedPattern]) -> list[DetectedPattern]:
    """Order patterns by severity rank, then confidence, both descending."""
    return sorted(patterns, key=lambda p: (-p.severity_rank, -p.confidence, p.id))


class PatternDetector:
    """Correlate test failures across the repositories of an organization."""

    def __init__(
        self,
        store: ResultStore,
        repository: PatternRepository | None = None,
        config: PatternConfig | None = None,
        scoring_engine: StabilityScoringEngine | None = None,
    ) -> None:
        """Initialize detector with its read path and pattern storage."""
        self.store = store
        self.repository = repository or PatternRepository()
        self.config = config or PatternConfig()
        self.scoring_engine = scoring_engine or StabilityScoringEngine()

    async def analyze(
        self,
        organization_id: str,
        time_window_days: int | None = None,
        *,
        now: datetime | None = None,
    ) -> PatternAnalysis:
        """Detect cross-repository patterns over a trailing window.

        Projects whose history cannot be read are listed in
        ``excluded_projects`` instead of failing the analysis.

        Args:
            organization_id: Organization to analyze
            time_window_days: Trailing window length, defaults to the configured one
            now: End of the window, defaults to the current time

        Returns:
            Stored analysis with patterns, summary and recommendations

        Raises:
            NotFoundError: If the organization does not exist

        """
        analyses = [
            analysis
            async for analysis in self.analyze_in_chunks(
                organization_id, time_window_days, now=now
            )
        ]
        return analyses[-1]

    async def analyze_in_chunks(
        self,
        organization_id: str,
        time_window_days: int | None = None,
        *,
        chunk_size: int | None = None,
        now: datetime | None = None,
    ) -> AsyncIterator[PatternAnalysis]:
        """Analyze projects chunk by chunk, yielding cumulative results.

        Every yielded analysis covers all projects read so far; the last one
        covers the whole organization and is stored.

        Raises:
            NotFoundError: If the organization does not exist

        """
        window = time_window_days or self.config.time_window_days
        chunk_size = chunk_size or self.config.chunk_size
        now = as_utc(now) if now is not None else datetime.now(timezone.utc)
        since = now - timedelta(days=window)

        logger.info(f"Analyzing cross-repository patterns for {organization_id}")
        projects = await self.store.get_organization_projects(organization_id)
        chunks = [
            projects[i : i + chunk_size] for i in range(0, len(projects), chunk_size)
        ] or [[]]

        histories: list[ProjectHistory] = []
        excluded: list[str] = []
        for index, chunk in enumerate(chunks, start=1):
            tasks = [self._fetch_history(p, since, window, now) for p in chunk]
            results = await asyncio.gather(*tasks, return_exceptions=True)
            chunk_histories, chunk_excluded = self._process_results(
                chunk, list(results)
            )
            histories.extend(chunk_histories)
            excluded.extend(chunk_excluded)

            analysis = self._build_analysis(
                organization_id, window, now, histories, excluded
            )
            if index == len(chunks):
                analysis = self.repository.save_analysis(analysis)
                logger.info(
                    f"Detected {len(analysis.patterns)} patterns for "
                    f"{organization_id} across {len(histories)} projects",
                    extra={
                        "organization_id": organization_id,
                        "excluded_projects": excluded,
                    },
                )
            yield analysis

    async def latest(
        self, organization_id: str, *, now: datetime | None = None
    ) -> PatternAnalysis:
        """Return the stored analysis, recomputing it once it is stale."""
        now = as_utc(now) if now is not None else datetime.now(timezone.utc)
        cached = self.repository.latest_analysis(organization_id)
        max_age = timedelta(hours=self.config.stale_after_hours)
        if cached is not None and not cached.is_stale(now, max_age):
            return cached

        if cached is not None:
            logger.info(f"Pattern analysis for {organization_id} is stale")
        return await self.analyze(organization_id, now=now)

    async def critical_patterns(
        self, organization_id: str, *, now: datetime | None = None
    ) -> list[DetectedPattern]:
        """Active critical and high severity patterns, worst first."""
        analysis = await self.latest(organization_id, now=now)
        return sort_patterns(
            p
            for p in analysis.patterns
            if p.status == "active" and p.severity in ("critical", "high")
        )

    def get_pattern(self, pattern_id: str) -> DetectedPattern:
        """Return a detected pattern by id.

        Raises:
            NotFoundError: If the pattern is unknown

        """
        return self.repository.get_pattern(pattern_id)

    def resolve(
        self,
        pattern_id: str,
        resolution_notes: str | None = None,
        *,
        now: datetime | None = None,
    ) -> DetectedPattern:
        """Mark a pattern resolved; repeated calls are no-ops.

        Raises:
            NotFoundError: If the pattern is unknown

        """
        now = as_utc(now) if now is not None else datetime.now(timezone.utc)
        return self.repository.resolve(pattern_id, resolution_notes, now)

    async def _fetch_history(
        self, project: ProjectRef, since: datetime, window: int, now: datetime
    ) -> ProjectHistory:
        """Read a project's failures and score the tests that failed."""
        records = await self.store.get_test_results(project.id, since)
        failures = [
            r for r in records if r.status == "failed" and r.timestamp is not None
        ]
        failing = {r.identity for r in failures}

        confidences = {
            identity: self.scoring_engine.score(tests, window, now=now).confidence
            for identity, tests in group_by_test(records).items()
            if identity in failing
        }
        logger.debug(
            f"Project {project.id}: {len(records)} results, {len(failures)} failures"
        )
        return ProjectHistory(project, failures, confidences)

    def _process_results(
        self,
        projects: Sequence[ProjectRef],
        results: list[ProjectHistory | BaseException],
    ) -> tuple[list[ProjectHistory], list[str]]:
        """Split fetch results into histories and excluded project ids."""
        histories: list[ProjectHistory] = []
        excluded: list[str] = []
        for project, result in zip(projects, results):
            if isinstance(result, ProjectHistory):
                histories.append(result)
            elif isinstance(result, Exception):
                logger.error(
                    f"Excluding project {project.id}: "
                    f"{type(result).__name__}: {result}",
                    exc_info=result,
                )
                excluded.append(project.id)
            else:
                raise result
        return histories, excluded

    def _build_analysis(
        self,
        organization_id: str,
        window: int,
        now: datetime,
        histories: Sequence[ProjectHistory],
        excluded: list[str],
    ) -> PatternAnalysis:
        analyzed = [h.project.id for h in histories]
        if len(histories) < MIN_PROJECTS:
            return PatternAnalysis(
                organization_id=organization_id,
                analysis_date=now,
                time_window_days=window,
                recommendations=PatternRecommendations(
                    immediate=[
                        "Add more repositories to enable cross-repo pattern detection"
                    ],
                    short_term=[
                        "Ensure consistent test data collection across projects"
                    ],
                    long_term=["Build organization-wide testing practices"],
                ),
                analyzed_projects=analyzed,
                excluded_projects=list(excluded),
            )

        confidences = {
            identity: confidence
            for h in histories
            for identity, confidence in h.confidences.items()
        }
        detected: list[DetectedPattern] = []
        for (pattern_type, key), failures in _group_failures(histories).items():
            pattern = self._build_pattern(
                organization_id, pattern_type, key, failures, now, confidences
            )
            if pattern is not None:
                detected.append(pattern)
        patterns = self.repository.with_resolutions(sort_patterns(detected))

        return PatternAnalysis(
            organization_id=organization_id,
            analysis_date=now,
            time_window_days=window,
            patterns=patterns,
            summary=summarize(patterns),
            recommendations=recommend(patterns),
            analyzed_projects=analyzed,
            excluded_projects=list(excluded),
        )

    def _build_pattern(
        self,
        organization_id: str,
        pattern_type: PatternType,
        key: str,
        failures: Sequence[_Failure],
        now: datetime,
        confidences: dict[TestIdentity, float],
    ) -> DetectedPattern | None:
        repositories = sorted({f.project.repository for f in failures})
        min_failures = (
            self.config.min_failures
            if pattern_type in RISK_CATEGORIES
            else GROUPED_MIN_FAILURES
        )
        if (
            len(repositories) < self.config.min_repositories
            or len(failures) < min_failures
        ):
            return None

        profile = PROFILES[pattern_type]
        affected = _affected_tests(failures, confidences)
        signal = statistics.fmean(t.stability_confidence for t in affected)
        confidence = min(
            profile.confidence_cap, len(failures) / profile.confidence_divisor
        ) * (0.5 + 0.5 * signal)

        if confidence <= self.config.confidence_floor:
            logger.debug(
                f"Dropping {pattern_type} pattern {key}: confidence {confidence:.2f}"
            )
            return None

        estimated_cost = len(failures) * self.config.incident_cost
        label = key.removesuffix("-branch")

        return DetectedPattern(
            id=pattern_id(organization_id, pattern_type, key),
            organization_id=organization_id,
            pattern_type=pattern_type,
            severity=pattern_severity(
                len(repositories),
                len(failures),
                estimated_cost,
                confidence,
                self.config,
            ),
            confidence=round(confidence, 2),
            affected_repositories=repositories,
            affected_tests=affected,
            common_factors=_common_factors(pattern_type, key, failures, repositories),
            root_cause=RootCause(
                primary_cause=profile.primary_cause.format(label=label),
                secondary_causes=list(profile.secondary_causes),
                evidence_strength=round(
                    min(profile.evidence_cap, len(failures) / profile.evidence_divisor),
                    2,
                ),
                suggested_fixes=list(profile.suggested_fixes),
            ),
            impact=ImpactMetrics(
                total_failures=len(failures),
                affected_projects_count=len({f.project.id for f in failures}),
                estimated_cost_impact=estimated_cost,
                time_to_resolution_days=profile.resolution_days,
            ),
            detected_at=now,
        )


def _group_failures(
    histories: Iterable[ProjectHistory],
) -> dict[tuple[PatternType, str], list[_Failure]]:
    """Group failures by risk category, UTC weekday and hour, and branch family."""
    groups: dict[tuple[PatternType, str], list[_Failure]] = defaultdict(list)
    for history in histories:
        for record in history.failures:
            if record.timestamp is None:
                continue
            moment = record.timestamp.astimezone(timezone.utc)
            failure = _Failure(history.project, record, moment)

            category = categorize_failure(record.error_message, record.stack_trace)
            if category is not None:
                groups[(category, category)].append(failure)

            groups[("temporal", f"{moment.weekday()}-{moment.hour:02d}")].append(
                failure
            )

            if record.branch:
                groups[("environmental", normalize_branch(record.branch))].append(
                    failure
                )
    return dict(groups)


def _affected_tests(
    failures: Iterable[_Failure], confidences: dict[TestIdentity, float]
) -> list[AffectedTest]:
    by_test: dict[TestIdentity, list[_Failure]] = defaultdict(list)
    for failure in failures:
        by_test[failure.record.identity].append(failure)

    affected = [
        AffectedTest(
            project_id=group[0].project.id,
            repository=group[0].project.repository,
            test_name=group[0].record.test_name,
            test_suite=group[0].record.test_suite,
            failure_count=len(group),
            last_failure=max(f.moment for f in group),
            stability_confidence=confidences.get(identity, DEFAULT_CONFIDENCE),
        )
        for identity, group in by_test.items()
    ]
    return sorted(
        affected, key=lambda t: (-t.failure_count, t.project_id, t.test_name)
    )


def _common_factors(
    pattern_type: PatternType,
    key: str,
    failures: Sequence[_Failure],
    repositories: list[str],
) -> list[PatternFactor]:
    factors: list[PatternFactor] = []
    if pattern_type == "temporal":
        day, hour = key.split("-")
        factors.append(
            PatternFactor(
                category="time", detail=f"{WEEKDAYS[int(day)]} at {hour}:00 UTC"
            )
        )
    elif pattern_type == "environmental":
        factors.append(
            PatternFactor(category="environment", detail=f"Branch pattern: {key}")
        )
    else:
        latest = max(failures, key=lambda f: f.moment)
        message = (latest.record.error_message or "").strip().splitlines()
        factors.append(
            PatternFactor(
                category="error",
                detail=message[0][:200] if message else pattern_type,
            )
        )

    factors.append(
        PatternFactor(
            category="repository",
            detail=f"{len(repositories)} repositories: {', '.join(repositories)}",
        )
    )
    return factors


def summarize(patterns: Sequence[DetectedPattern]) -> PatternSummary:
    """Aggregate figures over a list of patterns."""
    if not patterns:
        return PatternSummary()

    active = [p for p in patterns if p.status == "active"]
    counts = Counter(p.pattern_type for p in patterns)
    return PatternSummary(
        total_patterns=len(patterns),
        critical_patterns=sum(1 for p in active if p.severity == "critical"),
        high_impact_patterns=sum(
            1 for p in active if p.severity in ("critical", "high")
        ),
        most_common_pattern_type=counts.most_common(1)[0][0],
        total_affected_repositories=len(
            {r for p in patterns for r in p.affected_repositories}
        ),
        total_estimated_cost=sum(p.impact.estimated_cost_impact for p in patterns),
    )


def recommend(patterns: Sequence[DetectedPattern]) -> PatternRecommendations:
    """Remediation advice for a list of patterns."""
    recommendations = PatternRecommendations()
    active = [p for p in patterns if p.status == "active"]
    types = {p.pattern_type for p in active}

    critical = sum(1 for p in active if p.severity == "critical")
    if critical:
        recommendations.immediate.append(
            f"Address {critical} critical cross-repo patterns immediately"
        )
        recommendations.immediate.append(
            "Investigate highest-confidence patterns first"
        )
    if "external_service" in types:
        recommendations.immediate.append("Review infrastructure health and monitoring")

    if "external_service" in types or "database" in types:
        recommendations.short_term.append(
            "Standardize dependency and service configuration across repositories"
        )
    if "temporal" in types:
        recommendations.short_term.append("Investigate time-based failure patterns")
        recommendations.short_term.append(
            "Review automated processes and maintenance windows"
        )
    if "environmental" in types:
        recommendations.short_term.append(
            "Align CI/CD pipeline configuration across branch types"
        )
    if types & {"shared_state", "async_race_condition", "resource_leak", "file_system"}:
        recommendations.short_term.append(
            "Standardize test isolation and cleanup across repositories"
        )
    recommendations.short_term.append(
        "Implement cross-repository monitoring and alerting"
    )

    recommendations.long_term.extend(
        [
            "Establish consistent CI/CD patterns across repositories",
            "Implement organization-wide testing standards",
            "Create shared infrastructure and tooling",
            "Develop cross-team collaboration on testing practices",
        ]
    )
    return recommendations
