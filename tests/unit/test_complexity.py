"""Tests for syntax tree complexity metrics."""

import ast

import esprima

from nixbit.reliability_engine.complexity import (
    ComplexityMetrics,
    javascript_complexity,
    python_complexity,
)

PYTHON_SOURCE = """
def check(items):
    if items:
        for item in items:
            if item and items:
                pass
    else:
        pass
"""


def test_python_complexity() -> None:
    """Decisions, nesting-weighted cognitive score and depth for Python."""
    metrics = python_complexity(ast.parse(PYTHON_SOURCE))

    assert metrics == ComplexityMetrics(cyclomatic=5, cognitive=6, nesting_depth=4)


def test_python_complexity_of_flat_code() -> None:
    """Straight-line code has the minimum complexity."""
    metrics = python_complexity(ast.parse("x = 1\ny = x + 1\n"))

    assert metrics == ComplexityMetrics(cyclomatic=1, cognitive=0, nesting_depth=0)


def test_javascript_complexity() -> None:
    """Decisions, nesting-weighted cognitive score and depth for JavaScript."""
    tree = esprima.parseScript("if (a) { while (b) { c(); } }")

    metrics = javascript_complexity(tree)

    assert metrics == ComplexityMetrics(cyclomatic=3, cognitive=3, nesting_depth=4)


def test_javascript_logical_operators_are_decisions() -> None:
    """&& and || each add a decision point."""
    tree = esprima.parseScript("if (a && b || c) { d(); }")

    assert javascript_complexity(tree).cyclomatic == 4


def test_javascript_for_of_is_a_loop() -> None:
    """for...of loops count as decisions and nest their body."""
    tree = esprima.parseScript("for (const x of xs) { if (x) { y(); } }")

    metrics = javascript_complexity(tree)

    assert metrics.cyclomatic == 3
    assert metrics.cognitive == 3


def test_javascript_else_branch_does_not_nest() -> None:
    """An else branch stays at the nesting level of its if."""
    nested = javascript_complexity(esprima.parseScript("if (a) { if (b) {} }"))
    chained = javascript_complexity(
        esprima.parseScript("if (a) {} else if (b) {}")
    )

    assert nested.cognitive == 3
    assert chained.cognitive == 2
