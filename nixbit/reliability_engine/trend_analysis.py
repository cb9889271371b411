"""Calendar-bucketed stability trends and failure seasonality."""

import calendar
import logging
import statistics
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

from nixbit.reliability_engine.models.stability import (
    Seasonality,
    TrendAnalysis,
    TrendDirection,
    TrendPeriod,
    TrendPoint,
)
from nixbit.reliability_engine.models.test_record import TestResultRecord

logger = logging.getLogger(__name__)

WEEKDAYS = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)
SEASONALITY_WINDOW = timedelta(days=30)
PEAK_FACTOR = 1.5
DIRECTION_THRESHOLD = 5.0
DIRECTION_SPAN = 3


def as_utc(moment: datetime) -> datetime:
    """Interpret a naive datetime as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def shift_months(moment: datetime, months: int) -> datetime:
    """Move a datetime by whole calendar months, clamping the day."""
    index = moment.month - 1 + months
    year, month = moment.year + index // 12, index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def bucket_bounds(
    period: TrendPeriod, bucket_count: int, now: datetime
) -> list[tuple[datetime, datetime]]:
    """Return oldest-first [start, end) intervals, the newest ending at now."""
    bounds = []
    for i in range(bucket_count - 1, -1, -1):
        if period == "monthly":
            start, end = shift_months(now, -(i + 1)), shift_months(now, -i)
        else:
            span = timedelta(days=1 if period == "daily" else 7)
            start, end = now - span * (i + 1), now - span * i
        bounds.append((start, end))
    return bounds


class TrendAnalyzer:
    """Build trend curves over explicit calendar buckets."""

    def analyze(
        self,
        records: Sequence[TestResultRecord],
        period: TrendPeriod,
        bucket_count: int,
        *,
        now: datetime,
    ) -> TrendAnalysis:
        """Compute a trend curve, its direction, and failure seasonality.

        Args:
            records: Test results of a project, in any order
            period: Bucket resolution
            bucket_count: Number of buckets ending at now
            now: Anchor of the newest bucket

        Returns:
            Trend analysis with one point per bucket

        """
        now = as_utc(now)
        dated = [r for r in records if r.timestamp is not None]
        points = [
            self._bucket_point(dated, start, end)
            for start, end in bucket_bounds(period, bucket_count, now)
        ]
        scores = [p.score for p in points]

        return TrendAnalysis(
            period=period,
            data_points=points,
            trend_direction=trend_direction(scores),
            change_rate=change_rate(scores),
            volatility=statistics.pstdev(scores) if len(scores) >= 2 else 0.0,
            seasonality=self.seasonality(dated, now=now),
        )

    def seasonality(
        self, records: Sequence[TestResultRecord], *, now: datetime
    ) -> Seasonality:
        """Flag weekdays and UTC hours whose failure rate is a peak.

        A peak is a failure rate above 1.5 times the mean rate across the
        observed weekdays (or hours) of the last 30 days.
        """
        now = as_utc(now)
        by_day: dict[int, list[bool]] = defaultdict(list)
        by_hour: dict[int, list[bool]] = defaultdict(list)

        since = now - SEASONALITY_WINDOW
        for record in records:
            if record.timestamp is None or record.timestamp < since:
                continue
            moment = record.timestamp.astimezone(timezone.utc)
            failed = record.status == "failed"
            by_day[moment.weekday()].append(failed)
            by_hour[moment.hour].append(failed)

        peak_days = [WEEKDAYS[day] for day in _peaks(by_day)]
        peak_hours = _peaks(by_hour)

        if peak_days or peak_hours:
            logger.debug(f"Failure peaks on days {peak_days} and hours {peak_hours}")

        return Seasonality(
            has_pattern=bool(peak_days or peak_hours),
            peak_days=peak_days,
            peak_hours=peak_hours,
        )

    def _bucket_point(
        self, records: Sequence[TestResultRecord], start: datetime, end: datetime
    ) -> TrendPoint:
        in_bucket = [
            r for r in records if r.timestamp is not None and start <= r.timestamp < end
        ]
        if in_bucket:
            passed = sum(1 for r in in_bucket if r.status == "passed")
            success_rate = passed / len(in_bucket)
        else:
            success_rate = 1.0

        return TrendPoint(
            date=start,
            score=success_rate * 100,
            success_rate=success_rate,
            run_count=len(in_bucket),
        )


def trend_direction(scores: Sequence[float]) -> TrendDirection:
    """Compare the mean of the last three buckets with the first three."""
    if len(scores) < DIRECTION_SPAN:
        return "stable"

    change = statistics.fmean(scores[-DIRECTION_SPAN:]) - statistics.fmean(
        scores[:DIRECTION_SPAN]
    )
    if change > DIRECTION_THRESHOLD:
        return "improving"
    if change < -DIRECTION_THRESHOLD:
        return "degrading"
    return "stable"


def change_rate(scores: Sequence[float]) -> float:
    """Last-bucket score minus first-bucket score, per bucket."""
    if len(scores) < 2:
        return 0.0
    return (scores[-1] - scores[0]) / len(scores)


def _peaks(groups: dict[int, list[bool]]) -> list[int]:
    """Keys whose failure rate exceeds PEAK_FACTOR times the mean rate."""
    if not groups:
        return []

    rates = {key: sum(values) / len(values) for key, values in groups.items()}
    threshold = statistics.fmean(rates.values()) * PEAK_FACTOR
    return sorted(key for key, rate in rates.items() if rate > threshold)
