"""Complexity metrics over JavaScript (esprima) and Python (ast) syntax trees."""

import ast
from collections.abc import Iterator
from typing import NamedTuple

from esprima.nodes import Node

JS_LOOPS = frozenset(
    {
        "WhileStatement",
        "ForStatement",
        "ForInStatement",
        "ForOfStatement",
        "DoWhileStatement",
    }
)
JS_DECISIONS = JS_LOOPS | {
    "IfStatement",
    "SwitchCase",
    "ConditionalExpression",
    "CatchClause",
}
JS_NESTING = JS_LOOPS | {"BlockStatement", "IfStatement", "SwitchStatement"}

PY_LOOPS = (ast.For, ast.AsyncFor, ast.While)
PY_NESTING = (
    ast.FunctionDef,
    ast.AsyncFunctionDef,
    ast.If,
    ast.For,
    ast.AsyncFor,
    ast.While,
    ast.With,
    ast.AsyncWith,
    ast.Try,
    ast.Match,
)


class ComplexityMetrics(NamedTuple):
    """Cyclomatic, cognitive, and nesting figures of one tree."""

    cyclomatic: int
    cognitive: int
    nesting_depth: int


def javascript_complexity(tree: Node) -> ComplexityMetrics:
    """Measure an esprima syntax tree."""
    return ComplexityMetrics(
        cyclomatic=1 + sum(1 for node in _js_walk(tree) if _is_js_decision(node)),
        cognitive=_js_cognitive(tree, 0),
        nesting_depth=_js_nesting(tree, 0),
    )


def python_complexity(tree: ast.AST) -> ComplexityMetrics:
    """Measure a Python syntax tree."""
    return ComplexityMetrics(
        cyclomatic=1 + sum(_py_decisions(node) for node in ast.walk(tree)),
        cognitive=_py_cognitive(tree, 0),
        nesting_depth=_py_nesting(tree, 0),
    )


def _js_children(node: Node) -> Iterator[Node]:
    """Child nodes in attribute order."""
    for value in vars(node).values():
        if isinstance(value, Node):
            yield value
        elif isinstance(value, list):
            yield from (item for item in value if isinstance(item, Node))


def _js_walk(node: Node) -> Iterator[Node]:
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(_js_children(current))


def _is_js_decision(node: Node) -> bool:
    if node.type == "LogicalExpression":
        return node.operator in ("&&", "||")
    return node.type in JS_DECISIONS


def _js_cognitive(node: Node, nesting: int) -> int:
    """Decision points weighted by nesting.

    Only if-consequents and loop bodies nest deeper; an else branch stays at
    the level of its if, and case or catch bodies are not descended into.
    """
    kind = node.type
    if kind == "IfStatement":
        score = 1 + nesting + _js_cognitive(node.consequent, nesting + 1)
        if node.alternate is not None:
            score += _js_cognitive(node.alternate, nesting)
        return score
    if kind in ("SwitchCase", "CatchClause"):
        return 1 + nesting
    if kind in JS_LOOPS:
        return 1 + nesting + _js_cognitive(node.body, nesting + 1)
    return sum(_js_cognitive(child, nesting) for child in _js_children(node))


def _js_nesting(node: Node, depth: int) -> int:
    if node.type in JS_NESTING:
        depth += 1
    return max([depth, *(_js_nesting(c, depth) for c in _js_children(node))])


def _py_decisions(node: ast.AST) -> int:
    if isinstance(node, ast.BoolOp):
        return len(node.values) - 1
    if isinstance(node, ast.comprehension):
        return 1 + len(node.ifs)
    if isinstance(node, ast.If | ast.IfExp | ast.ExceptHandler | ast.match_case):
        return 1
    if isinstance(node, PY_LOOPS):
        return 1
    return 0


def _py_cognitive(node: ast.AST, nesting: int) -> int:
    if isinstance(node, ast.If):
        score = 1 + nesting + _py_block(node.body, nesting + 1)
        return score + _py_block(node.orelse, nesting)
    if isinstance(node, ast.ExceptHandler | ast.match_case):
        return 1 + nesting
    if isinstance(node, PY_LOOPS):
        return 1 + nesting + _py_block(node.body, nesting + 1)
    return sum(_py_cognitive(child, nesting) for child in ast.iter_child_nodes(node))


def _py_block(statements: list[ast.stmt], nesting: int) -> int:
    return sum(_py_cognitive(statement, nesting) for statement in statements)


def _py_nesting(node: ast.AST, depth: int) -> int:
    if isinstance(node, PY_NESTING):
        depth += 1
    children = (_py_nesting(c, depth) for c in ast.iter_child_nodes(node))
    return max([depth, *children])
