"""Tests for JSON report parsers."""

import json
from unittest.mock import patch

import pytest

from nixbit.reliability_engine.parsers import (
    GenericJsonParser,
    GitLabJsonParser,
    JenkinsJsonParser,
    ParseContext,
    ReportParser,
    ReportText,
    StructuredJsonParser,
)

DEEPLY_NESTED = "[" * 100_000 + "]" * 100_000

JEST_REPORT = {
    "numTotalTests": 3,
    "testResults": [
        {
            "name": "/app/src/App.test.js",
            "assertionResults": [
                {"title": "renders", "status": "passed", "duration": 12},
                {
                    "title": "submits",
                    "status": "failed",
                    "duration": 30,
                    "failureMessages": ["Error: timeout"],
                    "invocations": 3,
                },
                {"title": "later", "status": "pending"},
            ],
        }
    ],
}


def test_structured_json_parses_assertions() -> None:
    """Jest-style reports produce one record per assertion."""
    parser = StructuredJsonParser()
    document = parser.load(json.dumps(JEST_REPORT))
    assert document is not None

    artifact = parser.parse(document, ParseContext(project_id="web"))
    renders, submits, later = artifact.tests

    assert artifact.format == "json"
    assert renders.status == "passed"
    assert renders.duration_ms == 12
    assert renders.test_suite == "/app/src/App.test.js"
    assert submits.status == "failed"
    assert submits.error_message == "Error: timeout"
    assert submits.retry_attempt == 2
    assert later.status == "skipped"
    assert all(t.project_id == "web" for t in artifact.tests)


def test_structured_json_rejects_other_shapes() -> None:
    """load returns None without testResults[].assertionResults[]."""
    parser = StructuredJsonParser()

    assert parser.load('{"testResults": [{"name": "x"}]}') is None
    assert parser.load("[1, 2]") is None
    assert parser.load("not json") is None


def test_generic_json_parses_array() -> None:
    """Generic arrays map status synonyms and both duration units."""
    content = json.dumps(
        [
            {"name": "a", "status": "ok", "duration": 40},
            {"name": "b", "status": "FAIL", "time": 1.5, "error": {"message": "x"}},
            {"title": "c", "status": "ignored"},
            {"name": "d", "status": "weird"},
        ]
    )
    parser = GenericJsonParser()
    document = parser.load(content)
    assert document is not None

    a, b, c, d = parser.parse(document, ParseContext()).tests

    assert (a.status, a.duration_ms) == ("passed", 40)
    assert (b.status, b.duration_ms, b.error_message) == ("failed", 1500, "x")
    assert c.status == "skipped"
    assert d.status == "failed"


def test_generic_json_skips_malformed_entries() -> None:
    """Entries without a name or not being objects are skipped."""
    content = json.dumps(
        [{"name": "a", "status": "passed"}, {"status": "passed"}, "oops"]
    )
    parser = GenericJsonParser()
    document = parser.load(content)
    assert document is not None

    artifact = parser.parse(document, ParseContext())

    assert artifact.total_tests == 1
    assert artifact.malformed_cases == 2


def test_jenkins_json_parses_suites() -> None:
    """Jenkins test reports map case statuses and error details."""
    content = json.dumps(
        {
            "duration": 2.0,
            "suites": [
                {
                    "name": "unit",
                    "cases": [
                        {"name": "a", "className": "pkg.A", "status": "FIXED"},
                        {
                            "name": "b",
                            "status": "REGRESSION",
                            "duration": 0.25,
                            "errorDetails": "assert failed",
                            "errorStackTrace": "trace",
                        },
                        {"name": "c", "status": "PASSED", "skipped": True},
                    ],
                }
            ],
        }
    )
    parser = JenkinsJsonParser()
    document = parser.load(content)
    assert document is not None

    artifact = parser.parse(document, ParseContext())
    a, b, c = artifact.tests

    assert (a.status, a.test_suite) == ("passed", "pkg.A")
    assert (b.status, b.test_suite, b.duration_ms) == ("failed", "unit", 250)
    assert b.error_message == "assert failed"
    assert b.stack_trace == "trace"
    assert c.status == "skipped"
    assert artifact.duration_ms == 2000


def test_gitlab_json_parses_test_suites() -> None:
    """GitLab pipeline test reports produce one record per test case."""
    content = json.dumps(
        {
            "total_time": 1.5,
            "test_suites": [
                {
                    "name": "rspec",
                    "test_cases": [
                        {"name": "a", "classname": "spec.a", "status": "success"},
                        {
                            "name": "b",
                            "status": "failed",
                            "execution_time": 0.5,
                            "system_output": "expected true",
                            "stack_trace": "spec.rb:3",
                        },
                    ],
                }
            ],
        }
    )
    parser = GitLabJsonParser()
    document = parser.load(content)
    assert document is not None

    artifact = parser.parse(document, ParseContext())
    a, b = artifact.tests

    assert (a.status, a.test_suite) == ("passed", "spec.a")
    assert (b.status, b.test_suite, b.duration_ms) == ("failed", "rspec", 500)
    assert b.error_message == "expected true"
    assert artifact.duration_ms == 1500


@pytest.mark.parametrize(
    "parser",
    [
        StructuredJsonParser(),
        GenericJsonParser(),
        JenkinsJsonParser(),
        GitLabJsonParser(),
    ],
    ids=lambda parser: parser.name,
)
def test_json_parsers_reject_deeply_nested_documents(parser: ReportParser) -> None:
    """Documents nested beyond the decoder's recursion limit are not reports."""
    assert parser.load(DEEPLY_NESTED) is None


def test_report_text_decodes_once() -> None:
    """Parsers probing the same ReportText share one decode."""
    report = ReportText('[{"name": "a", "status": "passed"}]')

    with patch(
        "nixbit.reliability_engine.parsers.base.json.loads", wraps=json.loads
    ) as loads:
        assert StructuredJsonParser().load(report) is None
        assert GenericJsonParser().load(report) is not None
        assert JenkinsJsonParser().load(report) is None

    assert loads.call_count == 1
