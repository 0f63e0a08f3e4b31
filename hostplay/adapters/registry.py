"""
Adapter registry: central dispatch for all capability calls.

The registry is the single point of adapter management. It handles
registration, lookup, mock mode, dry runs, per-call timeouts and the
conversion of adapter exceptions into failed receipts. The engine never
talks to adapters directly; always through the registry.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from typing import Any

from hostplay.adapters.base import Adapter, ExecutionContext
from hostplay.core.errors import CapabilityNotFoundError, EngineError, TaskTimeoutError
from hostplay.core.models.action import Action, Receipt
from hostplay.core.models.facts import Facts

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Central registry and dispatcher for adapters.

    Features:
        - Register adapters by capability kind
        - Mock mode: swap all adapters for a mock that always succeeds
        - Execute actions through the appropriate adapter
        - Optional timeout around each adapter call
    """

    def __init__(self, mock_mode: bool = False):
        self._adapters: dict[str, Adapter] = {}
        self._mock_mode = mock_mode
        self._mock_adapter: Adapter | None = None

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def set_mock_mode(self, enabled: bool, mock_adapter: Adapter | None = None) -> None:
        """Enable or disable mock mode.

        Args:
            enabled: Whether to use mock mode.
            mock_adapter: Optional custom mock adapter. If None, uses default.
        """
        self._mock_mode = enabled
        self._mock_adapter = mock_adapter

    def register(self, adapter: Adapter) -> None:
        """Register an adapter under its capability kind."""
        name = adapter.name
        if name in self._adapters:
            logger.warning("Overwriting existing adapter: %s", name)
        self._adapters[name] = adapter
        logger.debug("Registered adapter: %s", name)

    def get(self, name: str) -> Adapter | None:
        """Look up an adapter by capability kind."""
        return self._adapters.get(name)

    def has(self, name: str) -> bool:
        return self._mock_mode or name in self._adapters

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Get availability status of all registered adapters."""
        status = {}
        for name, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "read_only": adapter.read_only,
                "type": adapter.__class__.__name__,
            }
        return status

    def execute_action(
        self,
        action: Action,
        facts: Facts | None = None,
        base_dir: str = ".",
        dry_run: bool = False,
        timeout: float | None = None,
    ) -> Receipt:
        """Execute an action through the appropriate adapter.

        This is the main dispatch method. It:
        1. Resolves the adapter (or mock)
        2. Builds the execution context
        3. Validates the action
        4. Executes (or dry-runs), bounded by ``timeout``
        5. Returns a Receipt (never raises)
        """
        start_time = time.monotonic()

        context = ExecutionContext(
            action=action,
            facts=facts or Facts(host=action.host),
            base_dir=base_dir,
            dry_run=dry_run,
            timeout=timeout,
        )

        # Resolve adapter
        adapter: Adapter | None = None
        if self._mock_mode and self._mock_adapter:
            adapter = self._mock_adapter
        elif self._mock_mode:
            # Default mock behavior: report the desired state as already held
            return Receipt.success(
                adapter=action.adapter,
                action_id=action.id,
                output=f"[mock] {action.adapter}:{action.name or action.id} executed",
                metadata={"mock": True, "dry_run": dry_run},
            )
        else:
            adapter = self._adapters.get(action.adapter)

        if adapter is None:
            error = CapabilityNotFoundError(action.adapter)
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=str(error),
                error_type=type(error).__name__,
            )

        # Validate
        try:
            is_valid, error_msg = adapter.validate(context)
        except Exception as e:
            is_valid, error_msg = False, str(e)
        if not is_valid:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Validation failed: {error_msg}",
                error_type="ValidationError",
            )

        # Dry run: validated but not executed, unless the adapter only reads
        if dry_run and not adapter.read_only:
            return Receipt.skip(
                adapter=action.adapter,
                action_id=action.id,
                reason=f"[dry-run] Would execute {action.adapter}:{action.name or action.id}",
                data={"dry_run": True},
                metadata={"dry_run": True},
            )

        # Execute
        try:
            receipt = self._call(adapter, context, action, timeout)
        except EngineError as e:
            logger.debug("Adapter %s failed: %s", action.adapter, e)
            receipt = Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=str(e),
                error_type=type(e).__name__,
                data=_error_data(e),
            )
        except Exception as e:
            logger.error("Adapter %s raised unexpectedly: %s", action.adapter, e, exc_info=True)
            receipt = Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Unexpected error: {e}",
                error_type=type(e).__name__,
            )

        # Add timing
        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        receipt.duration_ms = elapsed_ms

        return receipt

    @staticmethod
    def _call(
        adapter: Adapter,
        context: ExecutionContext,
        action: Action,
        timeout: float | None,
    ) -> Receipt:
        if timeout is None:
            return adapter.execute(context)

        # The worker is not interrupted on expiry; it finishes in the background.
        pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"adapter-{action.adapter}"
        )
        try:
            future = pool.submit(adapter.execute, context)
            try:
                return future.result(timeout=timeout)
            except concurrent.futures.TimeoutError:
                raise TaskTimeoutError(action.name or action.id, timeout) from None
        finally:
            pool.shutdown(wait=False)


def _error_data(error: EngineError) -> dict[str, Any]:
    """Structured fields a failed task registers alongside ``failed``."""
    data: dict[str, Any] = {"msg": str(error)}
    for attr in ("returncode", "stdout", "stderr"):
        if hasattr(error, attr):
            key = "rc" if attr == "returncode" else attr
            data[key] = getattr(error, attr)
    return data
