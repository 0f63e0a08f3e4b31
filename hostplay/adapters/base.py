"""
Adapter base: the protocol contract between engine and host.

This defines the abstract interface that every capability adapter must
implement. The engine only talks to adapters through the registry,
never directly to package managers, files or service managers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from hostplay.core.models.action import Action, Receipt
from hostplay.core.models.facts import Facts


class ExecutionContext(BaseModel):
    """Everything an adapter needs to execute an action.

    This is the adapter's view of the world: the action to perform, the
    facts of the target host, where relative paths resolve, and whether
    this is a dry run.
    """

    action: Action
    facts: Facts = Field(default_factory=lambda: Facts(host="localhost"))
    base_dir: str = "."
    dry_run: bool = False
    timeout: float | None = None

    @property
    def params(self) -> dict[str, Any]:
        return self.action.params

    def resolve_path(self, raw: str | Path) -> Path:
        """Resolve a path parameter relative to the playbook directory."""
        path = Path(str(raw)).expanduser()
        if path.is_absolute():
            return path
        return Path(self.base_dir) / path


class Adapter(ABC):
    """Abstract base class for all capability adapters.

    ``execute`` ensures the desired state and returns a changed or
    unchanged Receipt. Failures are signalled by raising an
    ``EngineError`` subclass (``PackageManagerError``, ``CommandError``,
    ...); the registry turns those into failed receipts.

    To create a new adapter:
        1. Subclass Adapter
        2. Implement name, is_available, validate, execute
        3. Register it in the AdapterRegistry
    """

    #: Adapters that never mutate the host still run during dry runs.
    read_only: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """The capability kind this adapter serves (e.g. 'package')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this adapter's underlying tool is available.

        Should be fast and never raise.
        """

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the action can be executed.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Ensure the desired state and return a receipt."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
