"""TAP (Test Anything Protocol) report parser."""

import logging
import re
import textwrap
from dataclasses import dataclass, field

import yaml

from nixbit.reliability_engine.models.test_record import (
    ParsedArtifact,
    TestResultRecord,
)
from nixbit.reliability_engine.parsers.base import ParseContext, ReportParser

logger = logging.getLogger(__name__)

PLAN_RE = re.compile(r"^\d+\.\.\d+$")
TEST_LINE_RE = re.compile(r"^(ok|not ok)\s+(\d+)(?:\s+(.*))?$")
SKIP_RE = re.compile(r"#\s*SKIP", re.IGNORECASE)
COMMENT_RE = re.compile(r"\s*#.*$")


@dataclass
class TapLine:
    """A test line together with its optional YAML diagnostic block."""

    ok: bool
    number: int
    description: str
    diagnostics: list[str] = field(default_factory=list)


class TapParser(ReportParser):
    """Parser for TAP and TAP13 output."""

    format = "tap"
    name = "tap"

    def load(self, content: str) -> list[TapLine] | None:
        """Return the test lines when the content carries a plan and tests."""
        lines = content.splitlines()
        if not any(PLAN_RE.match(line.strip()) for line in lines):
            return None

        tests: list[TapLine] = []
        in_yaml = False
        for raw in lines:
            line = raw.strip()

            if in_yaml:
                if line == "...":
                    in_yaml = False
                else:
                    tests[-1].diagnostics.append(raw)
                continue

            if line == "---" and tests and raw[:1].isspace():
                in_yaml = True
                continue

            match = TEST_LINE_RE.match(line)
            if match:
                tests.append(
                    TapLine(
                        ok=match.group(1) == "ok",
                        number=int(match.group(2)),
                        description=match.group(3) or "",
                    )
                )

        return tests or None

    def parse(self, document: list[TapLine], context: ParseContext) -> ParsedArtifact:
        """One record per test line."""
        records, malformed = self._collect(
            document, lambda line: self._parse_line(line, context)
        )
        return ParsedArtifact.from_tests("tap", records, malformed_cases=malformed)

    def _parse_line(self, line: TapLine, context: ParseContext) -> TestResultRecord:
        description = line.description.strip()
        if description.startswith("- "):
            description = description[2:]

        status = "passed" if line.ok else "failed"
        if SKIP_RE.search(description):
            status = "skipped"

        name = COMMENT_RE.sub("", description).strip() or f"test {line.number}"

        message: str | None = None
        stack: str | None = None
        if status == "failed":
            message, stack = _read_diagnostics(line)

        return TestResultRecord(
            project_id=context.project_id,
            test_name=name,
            test_suite="TAP",
            status=status,
            error_message=message,
            stack_trace=stack,
            timestamp=context.run_timestamp,
            branch=context.branch,
        )


def _read_diagnostics(line: TapLine) -> tuple[str | None, str | None]:
    """Extract message and stack from a TAP13 YAML block."""
    if not line.diagnostics:
        return None, None

    try:
        data = yaml.safe_load(textwrap.dedent("\n".join(line.diagnostics)))
    except yaml.YAMLError as e:
        logger.warning(
            f"Ignoring unreadable YAML diagnostics for test {line.number}: {e}"
        )
        return None, None

    if not isinstance(data, dict):
        return None, None

    message = data.get("message")
    stack = data.get("stack")
    return (
        str(message).strip() if message is not None else None,
        str(stack).strip() if stack is not None else None,
    )
