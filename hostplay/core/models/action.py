"""
Action and Receipt models: the adapter execution contract.

An Action is one resolved capability call (a task instance with its
parameters rendered). A Receipt is what comes back through the adapter
registry. Adapters report failure by raising; the registry catches and
turns that into a failed Receipt, so the engine only ever sees Receipts.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


ReceiptStatus = Literal["changed", "unchanged", "skipped", "failed"]


class Action(BaseModel):
    """A requested capability invocation.

    ``params`` are already rendered: loop items and variables have been
    substituted by the time an adapter sees them.
    """

    id: str                         # unique action identifier
    name: str = ""                  # human-readable task name
    adapter: str                    # capability kind, e.g. "package"
    params: dict[str, Any] = Field(default_factory=dict)
    host: str = "localhost"
    label: str | None = None        # loop item label, if looped


class Receipt(BaseModel):
    """Result of an adapter execution.

    ``data`` is the structured value a task registers; for ``stat`` it
    carries ``{"stat": {"exists": ...}}``, for commands ``rc``/``stdout``.
    """

    adapter: str
    action_id: str
    status: ReceiptStatus = "unchanged"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    error_type: str | None = None

    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return self.status == "changed"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @classmethod
    def success(
        cls,
        adapter: str,
        action_id: str,
        changed: bool = False,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a changed/unchanged receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="changed" if changed else "unchanged",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        adapter: str,
        action_id: str,
        error: str,
        error_type: str | None = None,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="failed",
            error=error,
            error_type=error_type,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        adapter: str,
        action_id: str,
        reason: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="skipped",
            output=reason,
            **kwargs,
        )
