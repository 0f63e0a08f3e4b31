"""
Notification queue: change-triggered handlers, each at most once.

Tasks that report ``changed`` enqueue handler names. The queue is a set,
so N notifications of the same handler run it once. Flushing walks the
handlers in *declaration* order, not notification order, and stops at
the first fatal handler failure. One queue per host per play.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from hostplay.core.models.playbook import Task
from hostplay.core.models.result import TaskRecord

logger = logging.getLogger(__name__)


class NotificationQueue:
    """Set-backed, deduplicating queue of handler names."""

    def __init__(self, handlers: list[Task]):
        self._handlers = list(handlers)
        self._known = {h.name for h in self._handlers}
        self._pending: set[str] = set()

    def notify(self, name: str) -> None:
        """Mark a handler to run at flush time."""
        if name not in self._known:
            raise KeyError(f"Unknown handler '{name}'")
        if name not in self._pending:
            logger.debug("Handler notified: %s", name)
        self._pending.add(name)

    @property
    def pending(self) -> list[str]:
        """Notified handlers, in the order they would run."""
        return [h.name for h in self._handlers if h.name in self._pending]

    def __len__(self) -> int:
        return len(self._pending)

    def flush(self, run_handler: Callable[[Task], list[TaskRecord]]) -> list[TaskRecord]:
        """Run every notified handler once, in declaration order.

        Args:
            run_handler: Executes one handler and returns its records
                (one per loop item, if the handler loops).

        Returns:
            Records of the handlers that ran. Un-notified handlers never
            appear.
        """
        records: list[TaskRecord] = []
        for handler in self._handlers:
            if handler.name not in self._pending:
                continue
            self._pending.discard(handler.name)
            handler_records = run_handler(handler)
            records.extend(handler_records)
            if any(r.fatal for r in handler_records):
                logger.warning("Handler '%s' failed; remaining handlers not run", handler.name)
                break
        self._pending.clear()
        return records
