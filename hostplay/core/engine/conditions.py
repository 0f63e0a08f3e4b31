"""
Condition evaluator: decides whether a guarded task runs.

Guards are small Python-syntax expressions (``os_family == "Debian"``,
``cert_check.stat.exists``) parsed with ``ast`` and interpreted over a
whitelist of node types. A list of guards is a conjunction.

Name resolution order: registered results, then facts, then variables
(play vars and the loop ``item``). An unknown top-level name raises
``UnresolvedReferenceError``; a missing attribute *inside* a known name
is simply falsy. Every operand is evaluated (no short-circuit), so a
misspelled name is reported even when an earlier guard is already false.
"""

from __future__ import annotations

import ast
import operator
from collections import ChainMap
from collections.abc import Mapping, Sequence
from typing import Any

from hostplay.core.engine.templating import has_markers, render_expression
from hostplay.core.errors import ConditionSyntaxError, UnresolvedReferenceError
from hostplay.core.models.facts import Facts

Condition = str | bool | Sequence[str | bool]

_COMPARATORS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

# Lowercase spellings common in YAML-minded guards.
_LITERAL_NAMES = {"true": True, "false": False, "none": None, "null": None}


def evaluate(
    expr: Condition,
    facts: Facts | Mapping[str, Any],
    registered: Mapping[str, Any],
    variables: Mapping[str, Any] | None = None,
) -> bool:
    """Evaluate a guard (or list of guards) to a boolean."""
    fact_vars = facts.variables() if isinstance(facts, Facts) else facts
    scope = ChainMap(registered, fact_vars, variables or {})
    return _evaluate(expr, scope)


def _evaluate(expr: Condition, scope: Mapping[str, Any]) -> bool:
    if isinstance(expr, bool):
        return expr
    if isinstance(expr, str):
        return bool(_Interpreter(expr, scope).run())
    results = [_evaluate(sub, scope) for sub in expr]
    return all(results)


class _Interpreter:
    def __init__(self, expr: str, scope: Mapping[str, Any]):
        self.source = expr
        self.scope = scope

    def run(self) -> Any:
        text = self.source.strip()
        if has_markers(text):
            text = render_expression(text, self.scope)
        if not text:
            raise ConditionSyntaxError("Empty condition")
        try:
            tree = ast.parse(text, mode="eval")
        except SyntaxError as e:
            raise ConditionSyntaxError(f"Invalid condition '{self.source}': {e.msg}") from e
        return self.visit(tree.body)

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise ConditionSyntaxError(
                f"Unsupported expression '{ast.unparse(node)}' in '{self.source}'"
            )
        return method(node)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_List(self, node: ast.List) -> list[Any]:
        return [self.visit(elt) for elt in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> tuple[Any, ...]:
        return tuple(self.visit(elt) for elt in node.elts)

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.scope:
            return self.scope[node.id]
        if node.id in _LITERAL_NAMES:
            return _LITERAL_NAMES[node.id]
        raise UnresolvedReferenceError(node.id, self.source)

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        return _child(self.visit(node.value), node.attr)

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        key = self.visit(node.slice)
        return _child(self.visit(node.value), key)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        if not isinstance(node.op, ast.Not):
            raise ConditionSyntaxError(f"Unsupported operator in '{self.source}'")
        return not self.visit(node.operand)

    def visit_BoolOp(self, node: ast.BoolOp) -> bool:
        values = [bool(self.visit(v)) for v in node.values]
        if isinstance(node.op, ast.And):
            return all(values)
        return any(values)

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        outcome = True
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            func = _COMPARATORS.get(type(op))
            if func is None:
                raise ConditionSyntaxError(f"Unsupported comparison in '{self.source}'")
            try:
                outcome = outcome and bool(func(left, right))
            except TypeError:
                outcome = False
            left = right
        return outcome


def _child(value: Any, key: Any) -> Any:
    """Soft lookup: a missing path is ``None`` rather than an error."""
    if value is None:
        return None
    if isinstance(value, Mapping):
        return value.get(key)
    if isinstance(value, (list, tuple)) and isinstance(key, int):
        return value[key] if -len(value) <= key < len(value) else None
    if isinstance(key, str) and not key.startswith("_"):
        return getattr(value, key, None)
    return None
