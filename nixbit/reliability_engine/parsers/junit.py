"""JUnit XML report parser."""

import logging
from datetime import datetime
from functools import partial
from xml.etree import ElementTree as ET  # nosec B405

from nixbit.reliability_engine.errors import MalformedRecordError
from nixbit.reliability_engine.models.test_record import (
    ParsedArtifact,
    TestResultRecord,
)
from nixbit.reliability_engine.parsers.base import (
    ParseContext,
    ReportParser,
    seconds_to_ms,
)

logger = logging.getLogger(__name__)


class JUnitParser(ReportParser):
    """Parser for the JUnit XML family (Surefire, pytest, jest-junit, ...)."""

    format = "junit"
    name = "junit"

    def load(self, content: str) -> ET.Element | None:
        """Return the XML root when it holds testsuite/testcase elements."""
        stripped = content.lstrip()
        if not stripped.startswith("<"):
            return None

        try:
            root = ET.fromstring(stripped)  # nosec B314
        except (ET.ParseError, ValueError):
            return None

        if root.tag in {"testsuites", "testsuite"}:
            return root
        if root.find(".//testsuite") is not None:
            return root
        if root.find(".//testcase") is not None:
            return root
        return None

    def parse(self, document: ET.Element, context: ParseContext) -> ParsedArtifact:
        """Parse every testcase of every testsuite."""
        suites = list(document.iter("testsuite")) or [document]

        tests: list[TestResultRecord] = []
        malformed = 0
        total_duration = 0

        for suite in suites:
            cases = suite.findall("testcase")
            if not cases:
                continue

            suite_name = suite.get("name") or "unknown"
            total_duration += seconds_to_ms(suite.get("time")) or 0
            timestamp = (
                _parse_timestamp(suite.get("timestamp")) or context.run_timestamp
            )

            records, skipped = self._collect(
                cases,
                partial(
                    self._parse_case,
                    suite_name=suite_name,
                    timestamp=timestamp,
                    context=context,
                ),
            )
            tests.extend(records)
            malformed += skipped

        logger.debug(f"Parsed {len(tests)} JUnit test cases from {len(suites)} suites")

        return ParsedArtifact.from_tests(
            "junit",
            tests,
            duration_ms=total_duration or None,
            malformed_cases=malformed,
        )

    def _parse_case(
        self,
        case: ET.Element,
        suite_name: str,
        timestamp: datetime | None,
        context: ParseContext,
    ) -> TestResultRecord:
        """Build one record from a testcase element."""
        name = (case.get("name") or "").strip()
        if not name:
            raise MalformedRecordError(f"testcase without a name in suite {suite_name}")

        status = "passed"
        error_message: str | None = None
        stack_trace: str | None = None

        failure = case.find("failure")
        if failure is None:
            failure = case.find("error")

        if failure is not None:
            status = "failed"
            default = "Test failed" if failure.tag == "failure" else "Test error"
            error_message = failure.get("message") or default
            stack_trace = (failure.text or "").strip() or None
        elif case.find("skipped") is not None:
            status = "skipped"

        return TestResultRecord(
            project_id=context.project_id,
            test_name=name,
            test_suite=case.get("classname") or suite_name,
            status=status,
            duration_ms=seconds_to_ms(case.get("time")),
            error_message=error_message,
            stack_trace=stack_trace,
            timestamp=timestamp,
            branch=context.branch,
        )


def _parse_timestamp(value: str | None) -> datetime | None:
    """Parse a JUnit ISO 8601 suite timestamp."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Ignoring unparseable suite timestamp {value!r}")
        return None
