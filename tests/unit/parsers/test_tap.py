"""Tests for the TAP parser."""

from nixbit.reliability_engine.parsers import ParseContext, TapParser


def test_tap_plan_and_two_tests() -> None:
    """A plan with two results yields a passed and a failed record."""
    parser = TapParser()
    document = parser.load("1..2\nok 1 renders\nnot ok 2 submits form\n")
    assert document is not None

    artifact = parser.parse(document, ParseContext())

    assert artifact.format == "tap"
    assert [(t.test_name, t.status) for t in artifact.tests] == [
        ("renders", "passed"),
        ("submits form", "failed"),
    ]


def test_tap_skip_directive_and_dash() -> None:
    """SKIP directives mark tests skipped; description dashes are dropped."""
    parser = TapParser()
    document = parser.load(
        "TAP version 13\n"
        "ok 1 - loads config\n"
        "ok 2 - uploads # SKIP no network\n"
        "not ok 3\n"
        "1..3\n"
    )
    assert document is not None

    tests = parser.parse(document, ParseContext()).tests

    assert [(t.test_name, t.status) for t in tests] == [
        ("loads config", "passed"),
        ("uploads", "skipped"),
        ("test 3", "failed"),
    ]


def test_tap13_yaml_diagnostics() -> None:
    """TAP13 YAML blocks provide the failure message and stack."""
    parser = TapParser()
    document = parser.load(
        "1..1\n"
        "not ok 1 - saves draft\n"
        "  ---\n"
        "  message: 'expected 200, got 503'\n"
        "  stack: |\n"
        "    at save (draft.js:4)\n"
        "  ...\n"
    )
    assert document is not None

    record = parser.parse(document, ParseContext()).tests[0]

    assert record.error_message == "expected 200, got 503"
    assert record.stack_trace == "at save (draft.js:4)"


def test_tap_unreadable_yaml_is_ignored() -> None:
    """Broken diagnostics leave the failure without a message."""
    parser = TapParser()
    document = parser.load(
        "1..1\nnot ok 1 broken\n  ---\n  message: [unclosed\n  ...\n"
    )
    assert document is not None

    record = parser.parse(document, ParseContext()).tests[0]

    assert record.status == "failed"
    assert record.error_message is None


def test_tap_load_requires_plan_and_tests() -> None:
    """load returns None without a plan or without test lines."""
    parser = TapParser()

    assert parser.load("ok 1 renders\n") is None
    assert parser.load("1..0\n# no tests\n") is None
    assert parser.load("<testsuite/>") is None
