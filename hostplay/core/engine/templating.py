"""
Template substitution: ``{{ dotted.path }}`` markers in task fields.

This is deliberately not a template engine. The only construct is a
variable reference, optionally dotted (``item.cert_src``). A string that
consists of a single marker evaluates to the referenced value itself, so
``loop: "{{ ca_certificates }}"`` yields the list, not its repr.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from hostplay.core.errors import UnresolvedReferenceError

_MARKER = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}")

_MISSING = object()


def lookup(path: str, variables: Mapping[str, Any], *, strict: bool = True) -> Any:
    """Resolve ``a.b.c`` against ``variables``.

    The first segment must exist (else ``UnresolvedReferenceError``).
    Deeper segments that are missing raise too when ``strict``; otherwise
    they resolve to ``None``.
    """
    head, *rest = path.split(".")
    if head not in variables:
        raise UnresolvedReferenceError(head, path)

    value = variables[head]
    for segment in rest:
        value = _child(value, segment)
        if value is _MISSING:
            if strict:
                raise UnresolvedReferenceError(path)
            return None
    return value


def _child(value: Any, key: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(key, _MISSING)
    if isinstance(value, (list, tuple)) and key.isdigit():
        index = int(key)
        return value[index] if index < len(value) else _MISSING
    return getattr(value, key, _MISSING)


def has_markers(value: Any) -> bool:
    return isinstance(value, str) and _MARKER.search(value) is not None


def render(value: Any, variables: Mapping[str, Any]) -> Any:
    """Substitute markers in ``value`` (recursing into lists and dicts)."""
    if isinstance(value, str):
        return _render_str(value, variables)
    if isinstance(value, list):
        return [render(v, variables) for v in value]
    if isinstance(value, dict):
        return {k: render(v, variables) for k, v in value.items()}
    return value


def render_expression(expr: str, variables: Mapping[str, Any]) -> str:
    """Substitute markers in a guard as Python literals.

    ``{{ item.name }} == "CA1"`` becomes ``'CA1' == "CA1"``, which the
    condition evaluator can parse. As in bare guards, a missing path below
    a known name renders as ``None``.
    """
    return _MARKER.sub(
        lambda m: _to_literal(lookup(m.group(1), variables, strict=False)), expr
    )


def _render_str(text: str, variables: Mapping[str, Any]) -> Any:
    whole = _MARKER.fullmatch(text.strip())
    if whole:
        return lookup(whole.group(1), variables)
    return _MARKER.sub(lambda m: _to_text(lookup(m.group(1), variables)), text)


def _to_literal(value: Any) -> str:
    # str subclasses (OSFamily) would repr as enum members
    if isinstance(value, str):
        return repr(str(value))
    return repr(value)


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
