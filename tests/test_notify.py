"""
Tests for the notification queue.
"""

import pytest

from hostplay.core.engine.notify import NotificationQueue
from hostplay.core.models.playbook import Task
from hostplay.core.models.result import TaskRecord, TaskStatus


def _handlers(*names: str) -> list[Task]:
    return [Task.model_validate({"name": n, "command": f"run {n}"}) for n in names]


def _runner(calls: list[str], failing: set[str] | None = None):
    failing = failing or set()

    def run(handler: Task) -> list[TaskRecord]:
        calls.append(handler.name)
        status = TaskStatus.FAILED if handler.name in failing else TaskStatus.CHANGED
        return [TaskRecord(host="h", task=handler.name, status=status, handler=True)]

    return run


class TestNotificationQueue:
    def test_dedup(self):
        q = NotificationQueue(_handlers("update_ca"))
        for _ in range(3):
            q.notify("update_ca")
        assert len(q) == 1

        calls: list[str] = []
        records = q.flush(_runner(calls))
        assert calls == ["update_ca"]
        assert len(records) == 1

    def test_declaration_order(self):
        q = NotificationQueue(_handlers("first", "second", "third"))
        q.notify("third")
        q.notify("first")
        assert q.pending == ["first", "third"]

        calls: list[str] = []
        q.flush(_runner(calls))
        assert calls == ["first", "third"]

    def test_unnotified_never_run(self):
        q = NotificationQueue(_handlers("a", "b"))
        calls: list[str] = []
        assert q.flush(_runner(calls)) == []
        assert calls == []

    def test_unknown_handler(self):
        q = NotificationQueue(_handlers("a"))
        with pytest.raises(KeyError):
            q.notify("b")

    def test_flush_clears(self):
        q = NotificationQueue(_handlers("a"))
        q.notify("a")
        q.flush(_runner([]))
        assert len(q) == 0
        calls: list[str] = []
        q.flush(_runner(calls))
        assert calls == []

    def test_failure_stops_flush(self):
        q = NotificationQueue(_handlers("a", "b"))
        q.notify("a")
        q.notify("b")
        calls: list[str] = []
        records = q.flush(_runner(calls, failing={"a"}))
        assert calls == ["a"]
        assert records[0].fatal
        assert len(q) == 0
