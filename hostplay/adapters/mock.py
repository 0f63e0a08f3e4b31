"""
Mock adapter: universal test double for capability calls.

Used in mock mode and in tests to simulate adapter behavior without
touching the host. Configurable per action ID (or per task name) to
report changed, unchanged, or fail with a typed error.
"""

from __future__ import annotations

from typing import Any

from hostplay.adapters.base import Adapter, ExecutionContext
from hostplay.core.errors import AdapterError, EngineError
from hostplay.core.models.action import Receipt


class MockAdapter(Adapter):
    """Universal mock adapter for testing.

    By default, reports every action as ``unchanged``. Responses can be
    keyed by action ID or by action name; the name form is handy for
    looped tasks whose IDs carry an item index.
    """

    def __init__(
        self,
        adapter_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
        changed: bool = False,
        read_only: bool = False,
    ):
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._changed = changed
        self.read_only = read_only
        self._responses: dict[str, Receipt] = {}
        self._errors: dict[str, EngineError] = {}
        self._data: dict[str, dict[str, Any]] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        """Number of times execute has been called."""
        return len(self._call_log)

    def is_available(self) -> bool:
        return self._available

    def set_response(self, key: str, receipt: Receipt) -> None:
        """Set a custom response for an action ID or name."""
        self._responses[key] = receipt

    def set_changed(self, key: str, changed: bool = True, **data: Any) -> None:
        """Configure an action to report changed (or unchanged) with ``data``."""
        self._responses[key] = Receipt.success(
            adapter=self._name,
            action_id=key,
            changed=changed,
            output=self._default_output,
            data=dict(data),
        )

    def set_failure(self, key: str, error: str | EngineError = "Mock failure") -> None:
        """Configure an action to fail by raising ``error``."""
        self._errors[key] = error if isinstance(error, EngineError) else AdapterError(error)

    def set_data(self, key: str, **data: Any) -> None:
        """Structured data to return for an action (what a task registers)."""
        self._data[key] = dict(data)

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)
        action = context.action

        for key in (action.id, action.name):
            if key in self._errors:
                raise self._errors[key]
            if key in self._responses:
                return self._responses[key].model_copy(update={"action_id": action.id})

        data = self._data.get(action.id) or self._data.get(action.name) or {}
        return Receipt.success(
            adapter=self._name,
            action_id=action.id,
            changed=self._changed,
            output=self._default_output,
            data=dict(data),
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and custom responses."""
        self._call_log.clear()
        self._responses.clear()
        self._errors.clear()
        self._data.clear()
