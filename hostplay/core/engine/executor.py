"""
Task executor: guard, execute, register, notify.

One task instance at a time, on one host:

    guard → render params → adapter (via registry) → record → register → notify

``HostRun`` drives a host's whole task stream for one play: it expands
loops, runs instances strictly in order (an item's guard sees the
results registered by earlier items), stops at the first fatal failure
and finally flushes the notified handlers.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping
from typing import Any

from hostplay.adapters.registry import AdapterRegistry
from hostplay.core.config.loader import ConfigError
from hostplay.core.engine.conditions import evaluate
from hostplay.core.engine.loops import TaskInstance, expand, resolve_items
from hostplay.core.engine.notify import NotificationQueue
from hostplay.core.errors import EngineError
from hostplay.core.models.action import Action, Receipt
from hostplay.core.models.facts import Facts
from hostplay.core.models.playbook import Playbook, Task
from hostplay.core.models.result import TaskRecord, TaskStatus
from hostplay.core.models.settings import ItemFailurePolicy

logger = logging.getLogger(__name__)

_MARKERS = {
    TaskStatus.CHANGED: "✓",
    TaskStatus.UNCHANGED: "✓",
    TaskStatus.SKIPPED: "⊘",
    TaskStatus.FAILED: "✗",
}


# ── Registered results ──────────────────────────────────────────


class RegisteredResults(Mapping[str, Any]):
    """Host-scoped store of registered task results.

    Looped tasks store one value per item under ``(name, index)`` and
    also overwrite the plain ``name`` (last item wins). ``scoped(i)``
    gives the view a guard for item ``i`` sees: an item that registered
    nothing (its guard was false) sees an empty mapping under that name.
    """

    def __init__(self) -> None:
        self._values: dict[str, dict[str, Any]] = {}
        self._items: dict[str, dict[int, dict[str, Any]]] = {}

    def set(self, name: str, value: dict[str, Any], item_index: int | None = None) -> None:
        if item_index is None:
            self._items.pop(name, None)
        else:
            self._items.setdefault(name, {})[item_index] = value
        self._values[name] = value

    def start_loop(self, name: str) -> None:
        """Forget per-item values a previous loop left under ``name``."""
        self._items[name] = {}

    def get_item(self, name: str, item_index: int) -> dict[str, Any] | None:
        return self._items.get(name, {}).get(item_index)

    def looped(self, name: str) -> bool:
        return name in self._items

    def scoped(self, item_index: int | None) -> Mapping[str, Any]:
        if item_index is None:
            return self
        return _ScopedView(self, item_index)

    def __getitem__(self, name: str) -> dict[str, Any]:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)


class _ScopedView(Mapping[str, Any]):
    def __init__(self, results: RegisteredResults, item_index: int):
        self._results = results
        self._index = item_index

    def __getitem__(self, name: str) -> dict[str, Any]:
        if self._results.looped(name):
            # An item that registered nothing reads empty, never another item's value
            return self._results.get_item(name, self._index) or {}
        return self._results[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)


# ── Task executor ───────────────────────────────────────────────


class TaskExecutor:
    """Executes task instances through the adapter registry.

    Args:
        registry: Adapter dispatch.
        base_dir: Directory relative paths resolve against.
        dry_run: Mutating adapters are validated but not run.
        default_timeout: Per-task timeout when the task sets none.
        item_failure_policy: What a failed loop item does when the loop
            sets no ``on_failure``: ``abort`` the host or ``continue``.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        *,
        base_dir: str = ".",
        dry_run: bool = False,
        default_timeout: float | None = None,
        item_failure_policy: ItemFailurePolicy = "abort",
    ):
        self.registry = registry
        self.base_dir = base_dir
        self.dry_run = dry_run
        self.default_timeout = default_timeout
        self.item_failure_policy = item_failure_policy

    def execute(
        self,
        instance: TaskInstance,
        facts: Facts,
        registered: RegisteredResults,
        queue: NotificationQueue | None = None,
        *,
        handler: bool = False,
    ) -> TaskRecord:
        """Run one task instance and return its record (never raises)."""
        view = registered.scoped(instance.item_index)

        try:
            if instance.when and not evaluate(instance.when, facts, view, instance.variables):
                record = self._record(instance, facts, TaskStatus.SKIPPED, handler=handler)
                self._log(record)
                return record
            params = instance.render_params(view)
        except EngineError as e:
            # Guard and template errors are never ignorable
            record = self._record(
                instance,
                facts,
                TaskStatus.FAILED,
                handler=handler,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._log(record)
            return record

        action = Action(
            id=self._action_id(instance, facts),
            name=instance.name,
            adapter=instance.kind,
            params=params,
            host=facts.host,
            label=instance.item_label,
        )
        receipt = self.registry.execute_action(
            action,
            facts=facts,
            base_dir=self.base_dir,
            dry_run=self.dry_run,
            timeout=instance.task.timeout or self.default_timeout,
        )

        status = TaskStatus(receipt.status)
        record = self._record(
            instance,
            facts,
            status,
            handler=handler,
            error=receipt.error,
            error_type=receipt.error_type,
            ignored=status == TaskStatus.FAILED and self._ignorable(instance),
            duration_ms=receipt.duration_ms,
            data=receipt.data,
        )

        if instance.register:
            registered.set(instance.register, _registered_value(receipt), instance.item_index)

        if record.changed and queue is not None:
            for name in instance.task.notify:
                queue.notify(name)

        self._log(record)
        return record

    def _ignorable(self, instance: TaskInstance) -> bool:
        if instance.task.ignore_errors:
            return True
        if not instance.looped:
            return False
        policy = instance.task.loop_control.on_failure or self.item_failure_policy
        return policy == "continue"

    @staticmethod
    def _action_id(instance: TaskInstance, facts: Facts) -> str:
        action_id = f"{facts.host}:{instance.name}"
        if instance.item_index is not None:
            action_id += f"[{instance.item_index}]"
        return action_id

    @staticmethod
    def _record(
        instance: TaskInstance,
        facts: Facts,
        status: TaskStatus,
        *,
        handler: bool,
        **kwargs: Any,
    ) -> TaskRecord:
        return TaskRecord(
            host=facts.host,
            task=instance.name,
            item=instance.item_label,
            status=status,
            handler=handler,
            **kwargs,
        )

    @staticmethod
    def _log(record: TaskRecord) -> None:
        label = f" ({record.item})" if record.item else ""
        suffix = ""
        if record.failed:
            suffix = f": {record.error}" + (" [ignored]" if record.ignored else "")
        logger.info(
            "%s %s | %s%s → %s%s",
            _MARKERS[record.status],
            record.host,
            record.task,
            label,
            record.status.value,
            suffix,
        )


def _registered_value(receipt: Receipt) -> dict[str, Any]:
    """What ``register:`` stores: adapter data plus outcome flags."""
    value = dict(receipt.data)
    value.update(
        changed=receipt.changed,
        failed=receipt.failed,
        skipped=receipt.skipped,
    )
    if receipt.failed:
        value.setdefault("msg", receipt.error)
    return value


# ── Host run ────────────────────────────────────────────────────


class HostRun:
    """One host's pass through one play.

    Registered results and the notification queue live here, so
    nothing is shared between hosts.
    """

    def __init__(
        self,
        playbook: Playbook,
        facts: Facts,
        executor: TaskExecutor,
        cancel_event: threading.Event | None = None,
    ):
        self.playbook = playbook
        self.facts = facts
        self.executor = executor
        self.cancel_event = cancel_event or threading.Event()
        self.registered = RegisteredResults()
        self.queue = NotificationQueue(playbook.handlers)
        self.records: list[TaskRecord] = []
        self.cancelled = False

    @property
    def failed(self) -> bool:
        return any(r.fatal for r in self.records)

    def variables(self) -> dict[str, Any]:
        """Play vars overlaid with host facts."""
        return {**self.playbook.vars, **self.facts.variables()}

    def run(self) -> list[TaskRecord]:
        """Run every task, then the notified handlers.

        Handlers are flushed when the task stream completes or aborts on
        a failure, but not when the run was cancelled.
        """
        variables = self.variables()
        for task in self.playbook.tasks:
            records = self._run_task(task, variables)
            self.records.extend(records)
            if self.cancelled or any(r.fatal for r in records):
                break

        if self.cancelled:
            logger.warning("%s: cancelled, handlers not run", self.facts.host)
            return self.records

        if len(self.queue):
            logger.debug("%s: running handlers %s", self.facts.host, self.queue.pending)
        self.records.extend(self.queue.flush(lambda h: self._run_task(h, variables, handler=True)))
        return self.records

    def _run_task(
        self,
        task: Task,
        variables: Mapping[str, Any],
        handler: bool = False,
    ) -> list[TaskRecord]:
        try:
            items = resolve_items(task, variables) if task.looped else None
            instances = expand(task, items, variables)
            if task.looped:
                for name in {i.register for i in instances if i.register}:
                    self.registered.start_loop(name)
        except (EngineError, ConfigError) as e:
            record = TaskRecord(
                host=self.facts.host,
                task=task.name,
                status=TaskStatus.FAILED,
                error=str(e),
                error_type=type(e).__name__,
                handler=handler,
            )
            TaskExecutor._log(record)
            return [record]

        records: list[TaskRecord] = []
        for instance in instances:
            if self.cancel_event.is_set():
                self.cancelled = True
                break
            record = self.executor.execute(
                instance,
                self.facts,
                self.registered,
                None if handler else self.queue,
                handler=handler,
            )
            records.append(record)
            if record.fatal:
                break
        return records
