"""
Playbook model: plays, tasks, handlers, loops.

The YAML form mirrors the familiar playbook layout: each task has one
capability key (``package:``, ``command:``, ``copy:``...) next to the
reserved task keywords. Validation normalizes that into an explicit
``kind`` + ``params`` pair so the engine never has to guess.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hostplay.core.models.settings import ItemFailurePolicy

# Keys that configure the task itself rather than the capability.
TASK_KEYWORDS = frozenset({
    "name",
    "kind",
    "params",
    "args",
    "when",
    "register",
    "notify",
    "loop",
    "loop_control",
    "ignore_errors",
    "timeout",
})


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


class LoopControl(BaseModel):
    """Per-loop options: item label and item-failure policy."""

    model_config = ConfigDict(extra="forbid")

    label: str | None = None
    on_failure: ItemFailurePolicy | None = None   # None = engine default


class Task(BaseModel):
    """A declared unit of work: one capability call plus its guards."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    kind: str
    params: dict[str, Any] = Field(default_factory=dict)
    when: list[str] = Field(default_factory=list)
    # ``register`` would shadow ABCMeta.register inherited by every model
    register_as: str | None = Field(default=None, alias="register")
    notify: list[str] = Field(default_factory=list)
    loop: list[Any] | str | None = None
    loop_control: LoopControl = Field(default_factory=LoopControl)
    ignore_errors: bool = False
    timeout: float | None = Field(default=None, gt=0)

    @model_validator(mode="before")
    @classmethod
    def _split_capability(cls, data: Any) -> Any:
        """Turn ``{name, package: {...}}`` into ``{name, kind, params}``."""
        if not isinstance(data, dict) or "kind" in data:
            return data

        data = dict(data)
        kinds = [key for key in data if key not in TASK_KEYWORDS]
        if not kinds:
            raise ValueError("task declares no capability (e.g. 'package:', 'command:')")
        if len(kinds) > 1:
            raise ValueError(f"task declares more than one capability: {', '.join(kinds)}")

        kind = kinds[0]
        raw = data.pop(kind)
        if isinstance(raw, dict):
            params = dict(raw)
        elif raw is None:
            params = {}
        else:
            # Free-form argument, e.g. ``command: update-ca-certificates``
            params = {"cmd": raw}

        args = data.pop("args", None) or {}
        if not isinstance(args, dict):
            raise ValueError("'args' must be a mapping")
        params.update(args)

        data["kind"] = kind
        data["params"] = params
        return data

    @field_validator("when", "notify", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> list[str]:
        return _as_str_list(value)

    @model_validator(mode="after")
    def _default_name(self) -> Task:
        if not self.name:
            self.name = self.kind
        return self

    @property
    def looped(self) -> bool:
        return self.loop is not None


class Playbook(BaseModel):
    """One play: a host selector, variables, tasks and handlers."""

    model_config = ConfigDict(extra="forbid")

    name: str = ""
    hosts: list[str] | Literal["all"] = "all"
    become: bool = False            # accepted for compatibility; privilege is the caller's
    vars: dict[str, Any] = Field(default_factory=dict)
    tasks: list[Task] = Field(default_factory=list)
    handlers: list[Task] = Field(default_factory=list)

    # Directory relative paths resolve against; set by the loader.
    base_dir: str = "."

    @field_validator("hosts", mode="before")
    @classmethod
    def _normalize_hosts(cls, value: Any) -> Any:
        if value is None or value == "all":
            return "all"
        if isinstance(value, str):
            return [h.strip() for h in value.split(",") if h.strip()]
        return value

    @model_validator(mode="after")
    def _check_handlers(self) -> Playbook:
        names = [h.name for h in self.handlers]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate handler names: {', '.join(dupes)}")

        for handler in self.handlers:
            if handler.notify:
                raise ValueError(f"handler '{handler.name}' may not notify other handlers")

        known = set(names)
        for task in self.tasks:
            for target in task.notify:
                if target not in known:
                    raise ValueError(
                        f"task '{task.name}' notifies undefined handler '{target}'"
                    )
        return self

    @property
    def handler_names(self) -> list[str]:
        """Handler names in declaration order."""
        return [h.name for h in self.handlers]

    def get_handler(self, name: str) -> Task | None:
        for handler in self.handlers:
            if handler.name == name:
                return handler
        return None

    def targets_all(self) -> bool:
        return self.hosts == "all"
