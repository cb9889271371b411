"""JSON test report parsers."""

import logging
from collections.abc import Iterator, Mapping
from typing import Any

from nixbit.reliability_engine.errors import MalformedRecordError
from nixbit.reliability_engine.models.test_record import (
    ParsedArtifact,
    TestResultRecord,
    TestStatus,
)
from nixbit.reliability_engine.parsers.base import (
    ParseContext,
    ReportParser,
    as_ms,
    decode_json,
    normalize_status,
    seconds_to_ms,
)

logger = logging.getLogger(__name__)


class JsonReportParser(ReportParser):
    """Shared decoding for JSON report variants."""

    format = "json"

    def load(self, content: str) -> Any | None:
        """Decode JSON and return it when it has this variant's shape."""
        data = decode_json(content)
        if data is None:
            return None
        return data if self.matches(data) else None

    def matches(self, data: Any) -> bool:
        """Check the decoded document's shape."""
        raise NotImplementedError


def _name_of(item: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    raise MalformedRecordError(f"test entry without a name: {sorted(item)}")


def _require_mapping(item: object) -> Mapping[str, Any]:
    if not isinstance(item, Mapping):
        raise MalformedRecordError(f"expected an object, got {type(item).__name__}")
    return item


def _text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class StructuredJsonParser(JsonReportParser):
    """Parser for test-runner output shaped like Jest's --json report."""

    name = "structured-json"

    def matches(self, data: Any) -> bool:
        """Look for testResults[].assertionResults[]."""
        if not isinstance(data, dict):
            return False
        results = data.get("testResults")
        if not isinstance(results, list):
            return False
        return any(
            isinstance(r, dict) and isinstance(r.get("assertionResults"), list)
            for r in results
        )

    def parse(self, document: Any, context: ParseContext) -> ParsedArtifact:
        """One record per assertion result."""
        records, malformed = self._collect(
            self._assertions(document),
            lambda pair: self._parse_assertion(pair[0], pair[1], context),
        )
        return ParsedArtifact.from_tests("json", records, malformed_cases=malformed)

    def _assertions(self, document: Any) -> Iterator[tuple[str, object]]:
        for test_file in document["testResults"]:
            if not isinstance(test_file, dict):
                continue
            suite = test_file.get("name") or "unknown"
            for assertion in test_file.get("assertionResults") or []:
                yield suite, assertion

    def _parse_assertion(
        self, suite: str, raw: object, context: ParseContext
    ) -> TestResultRecord:
        assertion = _require_mapping(raw)
        status = self._map_status(assertion.get("status"))

        failure_messages = assertion.get("failureMessages") or []
        error_message = None
        if status == "failed" and isinstance(failure_messages, list):
            error_message = "\n".join(str(m) for m in failure_messages) or None

        invocations = assertion.get("invocations")
        retry_attempt = invocations - 1 if isinstance(invocations, int) else 0

        return TestResultRecord(
            project_id=context.project_id,
            test_name=_name_of(assertion, "title", "fullName"),
            test_suite=suite,
            status=status,
            duration_ms=as_ms(assertion.get("duration")),
            error_message=error_message,
            retry_attempt=max(retry_attempt, 0),
            timestamp=context.run_timestamp,
            branch=context.branch,
        )

    def _map_status(self, status: object) -> TestStatus:
        """Map Jest assertion status to test status."""
        if status == "passed":
            return "passed"
        if status == "pending":
            return "skipped"
        return "failed"


class GenericJsonParser(JsonReportParser):
    """Parser for a flat array of {name, status} objects."""

    name = "generic-json"

    def matches(self, data: Any) -> bool:
        """Look for a list of objects carrying a name and a status."""
        if not isinstance(data, list) or not data:
            return False
        return any(
            isinstance(item, dict)
            and "status" in item
            and ("name" in item or "title" in item)
            for item in data
        )

    def parse(self, document: Any, context: ParseContext) -> ParsedArtifact:
        """One record per array entry."""
        records, malformed = self._collect(
            document, lambda item: self._parse_item(item, context)
        )
        return ParsedArtifact.from_tests("json", records, malformed_cases=malformed)

    def _parse_item(self, raw: object, context: ParseContext) -> TestResultRecord:
        item = _require_mapping(raw)
        if "status" not in item:
            raise MalformedRecordError("test entry without a status")

        duration_ms = as_ms(item.get("duration"))
        if duration_ms is None:
            duration_ms = seconds_to_ms(item.get("time"))

        error = item.get("error")
        stack = item.get("stack")
        if isinstance(error, dict):
            stack = stack or error.get("stack")
            error = error.get("message")

        return TestResultRecord(
            project_id=context.project_id,
            test_name=_name_of(item, "name", "title"),
            test_suite=_text(
                item.get("suite") or item.get("file") or item.get("classname")
            ),
            status=normalize_status(item.get("status")),
            duration_ms=duration_ms,
            error_message=_text(error or item.get("message")),
            stack_trace=_text(stack),
            retry_attempt=_retry_of(item),
            timestamp=context.run_timestamp,
            branch=context.branch,
        )


def _retry_of(item: Mapping[str, Any]) -> int:
    value = item.get("retry_attempt", item.get("retries", 0))
    return value if isinstance(value, int) and value >= 0 else 0


class JenkinsJsonParser(JsonReportParser):
    """Parser for the Jenkins testReport JSON API."""

    name = "jenkins-json"

    _STATUS: dict[str, TestStatus] = {
        "passed": "passed",
        "fixed": "passed",
        "failed": "failed",
        "regression": "failed",
        "skipped": "skipped",
    }

    def matches(self, data: Any) -> bool:
        """Look for suites[].cases[]."""
        if not isinstance(data, dict) or not isinstance(data.get("suites"), list):
            return False
        return any(
            isinstance(s, dict) and isinstance(s.get("cases"), list)
            for s in data["suites"]
        )

    def parse(self, document: Any, context: ParseContext) -> ParsedArtifact:
        """One record per suite case."""
        pairs = [
            (suite.get("name") or "unknown", case)
            for suite in document["suites"]
            if isinstance(suite, dict)
            for case in suite.get("cases") or []
        ]
        records, malformed = self._collect(
            pairs, lambda pair: self._parse_case(pair[0], pair[1], context)
        )
        return ParsedArtifact.from_tests(
            "json",
            records,
            duration_ms=seconds_to_ms(document.get("duration")),
            malformed_cases=malformed,
        )

    def _parse_case(
        self, suite: str, raw: object, context: ParseContext
    ) -> TestResultRecord:
        case = _require_mapping(raw)
        status = self._STATUS.get(str(case.get("status", "")).lower(), "failed")
        if case.get("skipped") is True:
            status = "skipped"

        return TestResultRecord(
            project_id=context.project_id,
            test_name=_name_of(case, "name"),
            test_suite=_text(case.get("className")) or suite,
            status=status,
            duration_ms=seconds_to_ms(case.get("duration")),
            error_message=_text(case.get("errorDetails")),
            stack_trace=_text(case.get("errorStackTrace")),
            timestamp=context.run_timestamp,
            branch=context.branch,
        )


class GitLabJsonParser(JsonReportParser):
    """Parser for the GitLab pipeline test report JSON."""

    name = "gitlab-json"

    def matches(self, data: Any) -> bool:
        """Look for test_suites[].test_cases[]."""
        if not isinstance(data, dict) or not isinstance(data.get("test_suites"), list):
            return False
        return any(
            isinstance(s, dict) and isinstance(s.get("test_cases"), list)
            for s in data["test_suites"]
        )

    def parse(self, document: Any, context: ParseContext) -> ParsedArtifact:
        """One record per test case."""
        pairs = [
            (suite.get("name") or "unknown", case)
            for suite in document["test_suites"]
            if isinstance(suite, dict)
            for case in suite.get("test_cases") or []
        ]
        records, malformed = self._collect(
            pairs, lambda pair: self._parse_case(pair[0], pair[1], context)
        )
        return ParsedArtifact.from_tests(
            "json",
            records,
            duration_ms=seconds_to_ms(document.get("total_time")),
            malformed_cases=malformed,
        )

    def _parse_case(
        self, suite: str, raw: object, context: ParseContext
    ) -> TestResultRecord:
        case = _require_mapping(raw)
        return TestResultRecord(
            project_id=context.project_id,
            test_name=_name_of(case, "name"),
            test_suite=_text(case.get("classname")) or suite,
            status=normalize_status(case.get("status")),
            duration_ms=seconds_to_ms(case.get("execution_time")),
            error_message=_text(case.get("system_output")),
            stack_trace=_text(case.get("stack_trace")),
            timestamp=context.run_timestamp,
            branch=context.branch,
        )
