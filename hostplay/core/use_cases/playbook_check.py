"""
Playbook check use case: validate a playbook without running it.
"""

from __future__ import annotations

import ast
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hostplay.adapters import AdapterRegistry, default_registry
from hostplay.core.config.loader import ConfigError, load_playbooks
from hostplay.core.engine.templating import has_markers
from hostplay.core.models.facts import FACT_NAMES
from hostplay.core.models.playbook import Playbook

_LOOP_VAR = re.compile(r"^\s*\{\{\s*([A-Za-z_]\w*)[\w.]*\s*\}\}\s*$")


@dataclass
class PlaybookCheckResult:
    """Result of playbook validation."""

    valid: bool = False
    playbook_path: Path | None = None
    plays: list[Playbook] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "playbook_path": str(self.playbook_path) if self.playbook_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "play_count": len(self.plays),
            "task_count": sum(len(p.tasks) for p in self.plays),
            "handler_count": sum(len(p.handlers) for p in self.plays),
        }


def check_playbook(
    playbook_path: Path,
    registry: AdapterRegistry | None = None,
) -> PlaybookCheckResult:
    """Validate a playbook file and report issues.

    Schema problems (unknown keys, undefined handlers, duplicate handler
    names) are load errors. On top of that this checks capability kinds
    against the registry, loop sources and guard syntax.
    """
    result = PlaybookCheckResult(playbook_path=playbook_path)

    try:
        result.plays = load_playbooks(playbook_path)
    except ConfigError as e:
        result.errors.append(str(e))
        return result

    registry = registry or default_registry()
    for index, play in enumerate(result.plays, start=1):
        _check_play(play, index, registry, result)

    result.valid = not result.errors
    return result


def _check_play(
    play: Playbook,
    index: int,
    registry: AdapterRegistry,
    result: PlaybookCheckResult,
) -> None:
    label = f"play {index} ('{play.name}')" if play.name else f"play {index}"

    if not play.tasks:
        result.warnings.append(f"{label}: no tasks")

    known = set(play.vars) | FACT_NAMES
    notified: set[str] = set()

    for task in [*play.tasks, *play.handlers]:
        where = f"{label}, task '{task.name}'"

        if not registry.has(task.kind):
            result.errors.append(f"{where}: no adapter for '{task.kind}'")

        if isinstance(task.loop, str):
            match = _LOOP_VAR.match(task.loop)
            if match is None:
                result.errors.append(f"{where}: loop must be a list or '{{{{ var }}}}'")
            elif match.group(1) not in known:
                result.errors.append(f"{where}: loop variable '{match.group(1)}' is not defined")

        for guard in task.when:
            error = _guard_syntax_error(guard)
            if error:
                result.errors.append(f"{where}: invalid condition '{guard}': {error}")

        if task.register_as:
            known.add(task.register_as)
        notified.update(task.notify)

    for handler in play.handlers:
        if handler.name not in notified:
            result.warnings.append(f"{label}: handler '{handler.name}' is never notified")


def _guard_syntax_error(guard: str) -> str | None:
    if has_markers(guard):
        return None
    try:
        ast.parse(guard.strip(), mode="eval")
    except SyntaxError as e:
        return e.msg
    return None

