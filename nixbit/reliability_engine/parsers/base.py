"""Abstract base class for test report parsers."""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from datetime import datetime
from functools import cached_property
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from nixbit.reliability_engine.errors import MalformedRecordError
from nixbit.reliability_engine.models.test_record import (
    ParsedArtifact,
    ReportFormat,
    TestResultRecord,
    TestStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATUS_SYNONYMS: dict[str, TestStatus] = {
    "passed": "passed",
    "pass": "passed",
    "success": "passed",
    "ok": "passed",
    "failed": "failed",
    "fail": "failed",
    "failure": "failed",
    "error": "failed",
    "skipped": "skipped",
    "skip": "skipped",
    "ignored": "skipped",
    "disabled": "skipped",
}


class ParseContext(BaseModel):
    """Run-level facts stamped onto every record of a report."""

    project_id: str | None = None
    run_timestamp: datetime | None = None
    branch: str | None = None


def normalize_status(value: object) -> TestStatus:
    """Map a free-form status string onto the canonical statuses.

    Unknown values map to "failed" so anomalies surface instead of hiding.
    """
    normalized = str(value).strip().lower() if value is not None else ""
    status = _STATUS_SYNONYMS.get(normalized)
    if status is None:
        logger.debug(f"Unrecognized test status {value!r}, treating as failed")
        return "failed"
    return status


def seconds_to_ms(value: object) -> int | None:
    """Convert a seconds value to whole milliseconds.

    Returns None for missing, unparseable, or non-positive values.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(str(value).replace(",", ""))
    except ValueError:
        return None
    if seconds <= 0:
        return None
    return round(seconds * 1000)


def as_ms(value: object) -> int | None:
    """Coerce a millisecond value to an int, or None if unusable."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if value < 0:
        return None
    return round(value)


class ReportText(str):
    """Decoded report text shared by the parsers probing one artifact.

    The JSON form is decoded at most once per instance, so create one
    instance per parse call.
    """

    @cached_property
    def json_document(self) -> Any | None:
        """The decoded JSON document, or None when the text is not JSON."""
        stripped = self.strip()
        if not stripped.startswith(("{", "[")):
            return None
        try:
            return json.loads(stripped)
        except (json.JSONDecodeError, RecursionError) as e:
            logger.debug(f"Report text is not decodable JSON: {e}")
            return None


def decode_json(content: str) -> Any | None:
    """Decode report text as JSON, reusing the ReportText cache if present."""
    report = content if isinstance(content, ReportText) else ReportText(content)
    return report.json_document


class ReportParser(ABC):
    """Abstract base for one test report format variant."""

    format: ReportFormat
    name: str

    @abstractmethod
    def load(self, content: str) -> Any | None:
        """Probe content structure and return the loaded document.

        Args:
            content: Decoded report text

        Returns:
            Loaded document when the content has this variant's shape,
            otherwise None

        """

    @abstractmethod
    def parse(self, document: Any, context: ParseContext) -> ParsedArtifact:
        """Convert a loaded document into normalized records.

        Args:
            document: Document returned by load()
            context: Run-level facts for the records

        Returns:
            Parsed artifact, possibly with zero tests

        """

    def _collect(
        self,
        cases: Iterable[T],
        build: Callable[[T], TestResultRecord],
    ) -> tuple[list[TestResultRecord], int]:
        """Build a record per case, skipping malformed cases.

        Returns:
            Tuple of (records, number of malformed cases)

        """
        records: list[TestResultRecord] = []
        malformed = 0
        for case in cases:
            try:
                records.append(build(case))
            except (MalformedRecordError, ValidationError) as e:
                malformed += 1
                logger.warning(
                    f"Skipping malformed {self.name} test case: {e}",
                    extra={"parser": self.name},
                )
        return records, malformed
