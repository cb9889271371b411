"""Per-test stability scores and project stability reports."""

import logging
import statistics
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime, timedelta, timezone
from operator import attrgetter

from nixbit.reliability_engine.errors import AnalysisUnavailableError
from nixbit.reliability_engine.models.engine_config import ScoringConfig
from nixbit.reliability_engine.models.stability import (
    Annotation,
    ReportTrends,
    RiskTier,
    StabilityDistribution,
    StabilityMetrics,
    StabilityReport,
    StabilityScore,
    Trend,
    TrendAnalysis,
)
from nixbit.reliability_engine.models.test_record import TestResultRecord
from nixbit.reliability_engine.trend_analysis import TrendAnalyzer, as_utc

logger = logging.getLogger(__name__)

TestIdentity = tuple[str | None, str, str | None]

STABILITY_THRESHOLD = 7
STABLE_SCORE = 80
CRITICAL_SCORE = 60
MIN_TREND_SAMPLE = 10
DEFAULT_CONFIDENCE = 0.1


def group_by_test(
    records: Iterable[TestResultRecord],
) -> dict[TestIdentity, list[TestResultRecord]]:
    """Group records by test identity, preserving input order."""
    groups: dict[TestIdentity, list[TestResultRecord]] = defaultdict(list)
    for record in records:
        groups[record.identity].append(record)
    return dict(groups)


def risk_tier(score: float) -> RiskTier:
    """Map a stability score to its risk tier."""
    if score >= 90:
        return "low"
    if score >= 75:
        return "medium"
    if score >= 50:
        return "high"
    return "critical"


def confidence_for(sample_size: int, window_days: int) -> float:
    """Confidence in a score given its sample size and window length."""
    confidence = min(sample_size / 50, 1.0)
    if window_days < 7:
        confidence *= 0.8
    if window_days > 60:
        confidence *= 0.9
    return max(DEFAULT_CONFIDENCE, confidence)


def daily_success_rates(records: Sequence[TestResultRecord]) -> list[float]:
    """Success rate of each UTC calendar day, oldest first."""
    days: dict[date, list[TestResultRecord]] = defaultdict(list)
    for record in records:
        if record.timestamp is not None:
            days[record.timestamp.astimezone(timezone.utc).date()].append(record)

    return [
        sum(1 for r in day if r.status == "passed") / len(day)
        for _, day in sorted(days.items())
    ]


def volatility_index(records: Sequence[TestResultRecord]) -> float:
    """Population standard deviation of daily success rates."""
    rates = daily_success_rates(records)
    if len(rates) < 2:
        return 0.0
    return statistics.pstdev(rates)


def compute_metrics(
    records: Sequence[TestResultRecord], now: datetime
) -> StabilityMetrics:
    """Compute the raw statistics of a chronologically ordered series."""
    total = len(records)
    passed = sum(1 for r in records if r.status == "passed")
    failed = sum(1 for r in records if r.status == "failed")
    consecutive_failures, consecutive_successes = _streaks(records)

    return StabilityMetrics(
        success_rate=passed / total,
        failure_rate=failed / total,
        volatility_index=volatility_index(records),
        consecutive_failures=consecutive_failures,
        consecutive_successes=consecutive_successes,
        time_to_stabilize_days=_time_to_stabilize(records, now),
        recovery_time_hours=_recovery_time(records),
    )


def _streaks(records: Sequence[TestResultRecord]) -> tuple[int, int]:
    """Longest failure and success streaks; skipped runs break neither."""
    longest_failures = longest_successes = 0
    failures = successes = 0
    for record in records:
        if record.status == "failed":
            failures += 1
            successes = 0
            longest_failures = max(longest_failures, failures)
        elif record.status == "passed":
            successes += 1
            failures = 0
            longest_successes = max(longest_successes, successes)
    return longest_failures, longest_successes


def _time_to_stabilize(records: Sequence[TestResultRecord], now: datetime) -> int:
    """Days since the most recent run of seven passes began, or -1."""
    for end in range(len(records), STABILITY_THRESHOLD - 1, -1):
        window = records[end - STABILITY_THRESHOLD : end]
        if all(r.status == "passed" for r in window):
            elapsed = now - window[0].timestamp  # type: ignore[operator]
            return max(0, elapsed // timedelta(days=1))
    return -1


def _recovery_time(records: Sequence[TestResultRecord]) -> float:
    """Mean hours from each failure to the next later pass."""
    hours: list[float] = []
    for i, record in enumerate(records[:-1]):
        if record.status != "failed":
            continue
        recovery = next((r for r in records[i + 1 :] if r.status == "passed"), None)
        if recovery is not None:
            elapsed = recovery.timestamp - record.timestamp  # type: ignore[operator]
            hours.append(elapsed / timedelta(hours=1))
    return statistics.fmean(hours) if hours else 0.0


def weighted_score(metrics: StabilityMetrics, sample_size: int) -> float:
    """Success rate in points minus capped instability penalties, in [0, 100]."""
    score = 100 * metrics.success_rate
    score -= min(metrics.volatility_index * 40, 30)
    if metrics.consecutive_failures > 0:
        score -= min(metrics.consecutive_failures * 5, 15)
    if sample_size < 10:
        score *= 0.9
    if metrics.recovery_time_hours > 24:
        score -= 10
    return max(0.0, min(100.0, score))


def _trend(records: Sequence[TestResultRecord]) -> Trend:
    """Compare success rates of the first and second half of the series."""
    if len(records) < MIN_TREND_SAMPLE:
        return "stable"

    middle = len(records) // 2
    early, recent = records[:middle], records[middle:]
    early_rate = sum(1 for r in early if r.status == "passed") / len(early)
    recent_rate = sum(1 for r in recent if r.status == "passed") / len(recent)
    change = recent_rate - early_rate

    if volatility_index(records) > 0.3:
        return "volatile"
    if change > 0.15:
        return "improving"
    if change < -0.15:
        return "degrading"
    return "stable"


class StabilityScoringEngine:
    """Score test stability from historical results."""

    def __init__(
        self,
        config: ScoringConfig | None = None,
        trend_analyzer: TrendAnalyzer | None = None,
    ) -> None:
        """Initialize engine with scoring settings."""
        self.config = config or ScoringConfig()
        self.trend_analyzer = trend_analyzer or TrendAnalyzer()

    def score(
        self,
        records: Sequence[TestResultRecord],
        window_days: int | None = None,
        *,
        test_name: str | None = None,
        test_suite: str | None = None,
        now: datetime | None = None,
    ) -> StabilityScore:
        """Compute the stability score of one test identity.

        Records outside the trailing window and undated records are ignored.
        An empty window yields score 100 with confidence 0.1.

        Args:
            records: Results of a single test, in any order
            window_days: Trailing window length, defaults to the configured one
            test_name: Test name, taken from the records when omitted
            test_suite: Suite qualifier, taken from the records when omitted
            now: End of the window, defaults to the current time

        Returns:
            Stability score

        Raises:
            ValueError: If records is empty and no test name is given

        """
        window_days = window_days or self.config.window_days
        now = as_utc(now) if now is not None else datetime.now(timezone.utc)

        if test_name is None:
            if not records:
                raise ValueError("test_name is required when records is empty")
            test_name = records[0].test_name
            test_suite = records[0].test_suite
        project_id = records[0].project_id if records else None

        windowed = self._window(records, window_days, now)
        test_id = f"{test_name}-{test_suite or 'default'}"

        if not windowed:
            return StabilityScore(
                test_id=test_id,
                test_name=test_name,
                test_suite=test_suite,
                project_id=project_id,
                current_score=100.0,
                trend="stable",
                confidence=DEFAULT_CONFIDENCE,
                risk_tier="low",
                sample_size=0,
                last_calculated=now,
            )

        metrics = compute_metrics(windowed, now)
        score = round(weighted_score(metrics, len(windowed)), 2)

        return StabilityScore(
            test_id=test_id,
            test_name=test_name,
            test_suite=test_suite,
            project_id=project_id,
            current_score=score,
            trend=_trend(windowed),
            confidence=round(confidence_for(len(windowed), window_days), 2),
            risk_tier=risk_tier(score),
            sample_size=len(windowed),
            metrics=metrics,
            last_calculated=now,
        )

    def report(
        self,
        project_records_by_test: Mapping[TestIdentity, Sequence[TestResultRecord]],
        window_days: int | None = None,
        *,
        project_id: str,
        now: datetime | None = None,
    ) -> StabilityReport:
        """Roll per-test scores up into a project stability report.

        A project without any dated result in the window yields a degraded
        report instead of an error.

        Args:
            project_records_by_test: Records of each test, keyed by identity
            window_days: Trailing window length, defaults to the configured one
            project_id: Project the report describes
            now: Report time, defaults to the current time

        Returns:
            Stability report

        """
        window_days = window_days or self.config.window_days
        now = as_utc(now) if now is not None else datetime.now(timezone.utc)

        try:
            return self._build_report(
                project_records_by_test, window_days, project_id, now
            )
        except AnalysisUnavailableError as e:
            logger.info(
                f"Returning degraded report for project {project_id}: {e}",
                extra={"project_id": project_id},
            )
            return StabilityReport(
                project_id=project_id,
                generated_at=now,
                overall_stability=100.0,
                confidence=DEFAULT_CONFIDENCE,
                degraded=True,
                total_tests=len(project_records_by_test),
                insights=[Annotation(severity="info", category="data", message=str(e))],
                recommendations=[
                    Annotation(
                        severity="info",
                        category="data",
                        message="Upload test results from CI to enable stability "
                        "analysis",
                    )
                ],
            )

    def _build_report(
        self,
        project_records_by_test: Mapping[TestIdentity, Sequence[TestResultRecord]],
        window_days: int,
        project_id: str,
        now: datetime,
    ) -> StabilityReport:
        all_records = [r for rs in project_records_by_test.values() for r in rs]
        if not self._window(all_records, window_days, now):
            raise AnalysisUnavailableError(
                f"No dated test results in the last {window_days} days"
            )

        scores = [
            self.score(
                records,
                window_days,
                test_name=name,
                test_suite=suite,
                now=now,
            )
            for (_, name, suite), records in project_records_by_test.items()
        ]
        logger.info(
            f"Scored {len(scores)} tests for project {project_id}",
            extra={"project_id": project_id},
        )

        trends = ReportTrends(
            daily=self.trend_analyzer.analyze(
                all_records, "daily", self.config.daily_buckets, now=now
            ),
            weekly=self.trend_analyzer.analyze(
                all_records, "weekly", self.config.weekly_buckets, now=now
            ),
            monthly=self.trend_analyzer.analyze(
                all_records, "monthly", self.config.monthly_buckets, now=now
            ),
        )

        tier_counts: dict[RiskTier, int] = {
            "low": 0,
            "medium": 0,
            "high": 0,
            "critical": 0,
        }
        for s in scores:
            tier_counts[s.risk_tier] += 1

        insights = generate_insights(scores, trends.daily)
        unstable = sorted(
            (s for s in scores if s.current_score < STABLE_SCORE),
            key=lambda s: s.current_score,
        )

        return StabilityReport(
            project_id=project_id,
            generated_at=now,
            overall_stability=round(overall_stability(scores), 2),
            confidence=round(statistics.fmean(s.confidence for s in scores), 2),
            total_tests=len(scores),
            stable_tests=sum(1 for s in scores if s.current_score >= STABLE_SCORE),
            unstable_tests=sum(
                1 for s in scores if CRITICAL_SCORE <= s.current_score < STABLE_SCORE
            ),
            critical_tests=sum(1 for s in scores if s.current_score < CRITICAL_SCORE),
            tier_counts=tier_counts,
            top_unstable_tests=unstable[: self.config.top_unstable_limit],
            stability_distribution=stability_distribution(scores),
            trends=trends,
            insights=insights,
            recommendations=generate_recommendations(scores, insights),
        )

    def _window(
        self, records: Iterable[TestResultRecord], window_days: int, now: datetime
    ) -> list[TestResultRecord]:
        """Dated records since the window start, oldest first."""
        since = now - timedelta(days=window_days)
        windowed = [
            r for r in records if r.timestamp is not None and r.timestamp >= since
        ]
        return sorted(windowed, key=attrgetter("timestamp"))


def overall_stability(scores: Sequence[StabilityScore]) -> float:
    """Confidence-weighted mean score, 100 when there is nothing to weigh."""
    total_weight = sum(s.confidence for s in scores)
    if total_weight <= 0:
        return 100.0
    return sum(s.current_score * s.confidence for s in scores) / total_weight


def stability_distribution(scores: Iterable[StabilityScore]) -> StabilityDistribution:
    """Count tests per score band."""
    distribution = StabilityDistribution()
    for s in scores:
        if s.current_score >= 90:
            distribution.excellent += 1
        elif s.current_score >= 75:
            distribution.good += 1
        elif s.current_score >= 60:
            distribution.fair += 1
        elif s.current_score >= 40:
            distribution.poor += 1
        else:
            distribution.critical += 1
    return distribution


def generate_insights(
    scores: Sequence[StabilityScore], daily: TrendAnalysis
) -> list[Annotation]:
    """Advisory observations about a project's stability."""
    insights: list[Annotation] = []

    mean_score = statistics.fmean(s.current_score for s in scores) if scores else 100
    if mean_score >= 85:
        insights.append(
            Annotation(
                severity="info",
                category="health",
                message="Overall test stability is excellent",
            )
        )
    elif mean_score >= 70:
        insights.append(
            Annotation(
                severity="warning",
                category="health",
                message="Test stability is good but has room for improvement",
            )
        )
    else:
        insights.append(
            Annotation(
                severity="critical",
                category="health",
                message="Test stability needs immediate attention",
            )
        )

    if daily.trend_direction == "improving":
        insights.append(
            Annotation(
                severity="info",
                category="trend",
                message="Test stability is improving over time",
            )
        )
    elif daily.trend_direction == "degrading":
        insights.append(
            Annotation(
                severity="warning",
                category="trend",
                message="Test stability is degrading, investigate recent changes",
            )
        )

    if daily.volatility > 15:
        insights.append(
            Annotation(
                severity="warning",
                category="volatility",
                message="High volatility detected, tests are inconsistent",
            )
        )

    critical = sum(1 for s in scores if s.risk_tier == "critical")
    if critical:
        insights.append(
            Annotation(
                severity="critical",
                category="critical_tests",
                message=f"{critical} tests require immediate attention",
            )
        )

    seasonality = daily.seasonality
    if seasonality.peak_days:
        insights.append(
            Annotation(
                severity="warning",
                category="seasonality",
                message="Higher failure rates detected on "
                f"{', '.join(seasonality.peak_days)}",
            )
        )
    if seasonality.peak_hours:
        hours = ", ".join(str(h) for h in seasonality.peak_hours)
        insights.append(
            Annotation(
                severity="warning",
                category="seasonality",
                message=f"Higher failure rates during hours {hours} (UTC)",
            )
        )

    return insights


def generate_recommendations(
    scores: Sequence[StabilityScore], insights: Sequence[Annotation]
) -> list[Annotation]:
    """Suggested actions derived from scores and insights."""
    recommendations: list[Annotation] = []
    categories = {i.category for i in insights}

    critical = sum(1 for s in scores if s.risk_tier == "critical")
    if critical:
        recommendations.append(
            Annotation(
                severity="critical",
                category="critical_tests",
                message=f"Priority: Stabilize {critical} critical tests starting "
                "with lowest scores",
            )
        )

    volatile = sum(1 for s in scores if s.trend == "volatile")
    if volatile:
        recommendations.append(
            Annotation(
                severity="warning",
                category="volatility",
                message=f"Investigate {volatile} volatile tests for intermittent "
                "issues",
            )
        )

    degrading = sum(1 for s in scores if s.trend == "degrading")
    if degrading:
        recommendations.append(
            Annotation(
                severity="warning",
                category="trend",
                message=f"Review recent changes affecting {degrading} degrading "
                "tests",
            )
        )

    if "volatility" in categories:
        recommendations.append(
            Annotation(
                severity="info",
                category="action",
                message="Consider implementing test isolation and cleanup "
                "procedures",
            )
        )

    if "seasonality" in categories:
        recommendations.append(
            Annotation(
                severity="info",
                category="action",
                message="Investigate infrastructure or load patterns causing "
                "time-based failures",
            )
        )

    return recommendations
