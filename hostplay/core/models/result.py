"""
Run result models: per-task records and the status vocabulary.

A TaskRecord is one line of the run report. The field names and status
strings are consumed by tooling and CI; keep them stable.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class TaskStatus(StrEnum):
    """Outcome of one task instance on one host."""

    CHANGED = "changed"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


class TaskRecord(BaseModel):
    """Outcome of one task instance (or handler) on one host."""

    host: str
    task: str
    item: str | None = None
    status: TaskStatus
    error: str | None = None
    error_type: str | None = None
    ignored: bool = False           # failure recorded but not fatal
    handler: bool = False
    duration_ms: int = 0
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return self.status == TaskStatus.CHANGED

    @property
    def failed(self) -> bool:
        return self.status == TaskStatus.FAILED

    @property
    def fatal(self) -> bool:
        """A failure that counts against the host."""
        return self.failed and not self.ignored

    def to_report(self) -> dict[str, Any]:
        """The externally visible report row."""
        return {
            "host": self.host,
            "task": self.task,
            "item": self.item,
            "status": self.status.value,
            "error": self.error,
            "ignored": self.ignored,
            "handler": self.handler,
        }
