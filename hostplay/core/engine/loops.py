"""
Loop expander: one task template, N task instances.

A looped task is equivalent to one task per item, in source order. Each
instance gets the item substituted into its name, parameters, guard and
register key, and remembers its item index so that registration and
guard lookups stay scoped to that iteration.

Guards and parameters are rendered lazily by the executor (they may
reference results registered by earlier instances), so instances keep
the variables needed to render them.
"""

from __future__ import annotations

from collections import ChainMap
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from hostplay.core.config.loader import LoopSourceError
from hostplay.core.engine.templating import render
from hostplay.core.models.playbook import Task


@dataclass(frozen=True)
class TaskInstance:
    """A task with its loop item bound (or a plain, unlooped task)."""

    task: Task
    name: str
    when: list[str]
    register: str | None
    variables: Mapping[str, Any] = field(default_factory=dict)
    item: Any = None
    item_index: int | None = None
    item_label: str | None = None

    @property
    def kind(self) -> str:
        return self.task.kind

    @property
    def looped(self) -> bool:
        return self.item_index is not None

    def render_params(self, registered: Mapping[str, Any]) -> dict[str, Any]:
        """Parameters with item, vars, facts and registered results substituted."""
        return render(self.task.params, ChainMap(registered, self.variables))


def resolve_items(task: Task, variables: Mapping[str, Any]) -> list[Any]:
    """Resolve a task's loop source to a concrete list."""
    source = render(task.loop, variables)
    if isinstance(source, tuple):
        source = list(source)
    if not isinstance(source, list):
        raise LoopSourceError(
            f"Loop of task '{task.name}' must resolve to a list, "
            f"got {type(source).__name__}"
        )
    return source


def expand(
    task: Task,
    items: list[Any] | None,
    variables: Mapping[str, Any],
) -> list[TaskInstance]:
    """Expand ``task`` over ``items`` (``None`` = not looped).

    Name and register key are rendered here. Guard and parameters are
    rendered at execution time, when earlier registrations are visible.
    """
    if items is None:
        return [
            TaskInstance(
                task=task,
                name=str(render(task.name, variables)),
                when=task.when,
                register=task.register_as,
                variables=variables,
            )
        ]

    instances: list[TaskInstance] = []
    seen_labels: dict[str, int] = {}
    for index, item in enumerate(items):
        scope = {**variables, "item": item}
        label = _unique_label(_label_for(task, item, index, scope), seen_labels)
        instances.append(
            TaskInstance(
                task=task,
                name=str(render(task.name, scope)),
                when=task.when,
                register=render(task.register_as, scope) if task.register_as else None,
                variables=scope,
                item=item,
                item_index=index,
                item_label=label,
            )
        )
    return instances


def _label_for(task: Task, item: Any, index: int, scope: Mapping[str, Any]) -> str:
    if task.loop_control.label:
        return str(render(task.loop_control.label, scope))
    if isinstance(item, (str, int, float, bool)):
        return str(item)
    if isinstance(item, Mapping) and "name" in item:
        return str(item["name"])
    return f"item {index}"


def _unique_label(label: str, seen: dict[str, int]) -> str:
    count = seen.get(label, 0) + 1
    seen[label] = count
    if count == 1:
        return label
    return f"{label} [{count}]"
