"""Tests for test record models."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from nixbit.reliability_engine.models.test_record import (
    ParsedArtifact,
    TestResultRecord,
)


def test_record_minimal() -> None:
    """TestResultRecord accepts a name and a status."""
    record = TestResultRecord(test_name="renders", status="passed")

    assert record.project_id is None
    assert record.test_suite is None
    assert record.duration_ms is None
    assert record.retry_attempt == 0
    assert record.timestamp is None


def test_record_naive_timestamp_is_utc() -> None:
    """Naive timestamps are interpreted as UTC."""
    record = TestResultRecord(
        test_name="renders", status="passed", timestamp=datetime(2024, 5, 1, 12, 0)
    )

    assert record.timestamp == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_record_drops_error_details_unless_failed() -> None:
    """Error message and stack trace are only kept on failed records."""
    skipped = TestResultRecord(
        test_name="later", status="skipped", error_message="pending", stack_trace="x"
    )
    failed = TestResultRecord(
        test_name="boom", status="failed", error_message="expected 1", stack_trace="x"
    )

    assert skipped.error_message is None
    assert skipped.stack_trace is None
    assert failed.error_message == "expected 1"
    assert failed.stack_trace == "x"


def test_record_rejects_unknown_status() -> None:
    """TestResultRecord rejects statuses outside the canonical set."""
    with pytest.raises(ValidationError):
        TestResultRecord(test_name="renders", status="flaky")


def test_record_rejects_empty_name() -> None:
    """TestResultRecord requires a non-empty name."""
    with pytest.raises(ValidationError):
        TestResultRecord(test_name="", status="passed")


def test_record_rejects_negative_duration() -> None:
    """Durations are never negative."""
    with pytest.raises(ValidationError):
        TestResultRecord(test_name="renders", status="passed", duration_ms=-1)


def test_record_is_frozen() -> None:
    """Records cannot be mutated after creation."""
    record = TestResultRecord(test_name="renders", status="passed")

    with pytest.raises(ValidationError):
        record.status = "failed"  # type: ignore[misc]


def test_record_identity() -> None:
    """identity is the (project, name, suite) triple."""
    record = TestResultRecord(
        project_id="web", test_name="renders", test_suite="App", status="passed"
    )

    assert record.identity == ("web", "renders", "App")


def test_parsed_artifact_from_tests_counts() -> None:
    """from_tests derives aggregate counts from the records."""
    tests = [
        TestResultRecord(test_name="a", status="passed"),
        TestResultRecord(test_name="b", status="passed"),
        TestResultRecord(test_name="c", status="failed"),
        TestResultRecord(test_name="d", status="skipped"),
    ]

    artifact = ParsedArtifact.from_tests("junit", tests, duration_ms=1200)

    assert artifact.format == "junit"
    assert artifact.total_tests == 4
    assert artifact.passed_tests == 2
    assert artifact.failed_tests == 1
    assert artifact.skipped_tests == 1
    assert artifact.duration_ms == 1200
    assert artifact.coverage is None


def test_record_serialization_round_trip() -> None:
    """Records survive a JSON round trip field for field."""
    record = TestResultRecord(
        project_id="web",
        test_name="submits form",
        test_suite="Form",
        status="failed",
        duration_ms=35,
        error_message="timeout",
        retry_attempt=1,
        timestamp=datetime(2024, 5, 1, tzinfo=timezone.utc),
        branch="main",
    )

    restored = TestResultRecord.model_validate_json(record.model_dump_json())

    assert restored == record
