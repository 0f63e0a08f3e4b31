"""
Service adapter: systemd unit state through systemctl.

Registered twice, as ``systemd`` and ``service``, with the same
behaviour. Only transitions count as changes: enabling a unit that is
already enabled, or starting one that is already active, is a no-op.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Callable
from typing import Any

from hostplay.adapters.base import Adapter, ExecutionContext
from hostplay.adapters.shell.command import run_command
from hostplay.core.errors import ServiceError
from hostplay.core.models.action import Receipt

logger = logging.getLogger(__name__)

CommandRunner = Callable[[list[str]], subprocess.CompletedProcess[str]]


class SystemCtl:
    """Thin systemctl wrapper over an injectable command runner."""

    executable = "systemctl"

    def __init__(self, run: CommandRunner):
        self._run = run

    def is_enabled(self, unit: str) -> bool:
        return self._run([self.executable, "is-enabled", unit]).returncode == 0

    def is_active(self, unit: str) -> bool:
        return self._run([self.executable, "is-active", unit]).returncode == 0

    def enable(self, unit: str) -> None:
        self._check("enable", unit)

    def disable(self, unit: str) -> None:
        self._check("disable", unit)

    def start(self, unit: str) -> None:
        self._check("start", unit)

    def stop(self, unit: str) -> None:
        self._check("stop", unit)

    def restart(self, unit: str) -> None:
        self._check("restart", unit)

    def daemon_reload(self) -> None:
        self._check("daemon-reload")

    def _check(self, *args: str) -> None:
        argv = [self.executable, *args]
        proc = self._run(argv)
        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout).strip().splitlines()
            raise ServiceError(
                f"'{' '.join(argv)}' exited with code {proc.returncode}"
                + (f": {detail[0]}" if detail else "")
            )


def coerce_bool(value: Any) -> bool | None:
    """YAML-ish booleans: ``yes``/``no``, ``true``/``false``, ``on``/``off``."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0"}:
            return False
        raise ValueError(f"Unable to interpret boolean value '{value}'")
    return bool(value)


class ServiceAdapter(Adapter):
    """Ensure a unit's enablement and run state.

    Action params:
        name (str): Unit name (required unless only ``daemon_reload``).
        enabled (bool): Enable or disable at boot.
        state (str): ``started``, ``stopped`` or ``restarted``.
        daemon_reload (bool): Run ``systemctl daemon-reload`` first.
    """

    STATES = {"started", "stopped", "restarted"}

    def __init__(
        self,
        kind: str = "systemd",
        systemctl_factory: Callable[[CommandRunner], SystemCtl] = SystemCtl,
    ):
        self._kind = kind
        self._systemctl_factory = systemctl_factory

    @property
    def name(self) -> str:
        return self._kind

    def is_available(self) -> bool:
        return shutil.which(SystemCtl.executable) is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        params = context.params
        try:
            enabled = coerce_bool(params.get("enabled"))
            reload = coerce_bool(params.get("daemon_reload"))
        except ValueError as e:
            return False, str(e)

        state = params.get("state")
        if state is not None and state not in self.STATES:
            return False, f"Unknown state '{state}'. Valid: {', '.join(sorted(self.STATES))}"
        if not params.get("name") and (enabled is not None or state is not None):
            return False, "Missing required param: 'name'"
        if not params.get("name") and not reload:
            return False, "Nothing to do: give 'name' or 'daemon_reload'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.params
        unit = str(params.get("name") or "")
        enabled = coerce_bool(params.get("enabled"))
        state = params.get("state")
        systemctl = self._systemctl_factory(
            lambda argv: run_command(argv, timeout=context.timeout)
        )
        changes: list[str] = []

        if coerce_bool(params.get("daemon_reload")):
            logger.debug("Reloading systemd manager configuration")
            systemctl.daemon_reload()

        if unit and enabled is not None:
            is_enabled = systemctl.is_enabled(unit)
            if enabled and not is_enabled:
                logger.debug("Enabling service %s", unit)
                systemctl.enable(unit)
                changes.append("enabled")
            elif not enabled and is_enabled:
                logger.debug("Disabling service %s", unit)
                systemctl.disable(unit)
                changes.append("disabled")

        if unit and state is not None:
            active = systemctl.is_active(unit)
            if state == "started" and not active:
                logger.debug("Starting service %s", unit)
                systemctl.start(unit)
                changes.append("started")
            elif state == "stopped" and active:
                logger.debug("Stopping service %s", unit)
                systemctl.stop(unit)
                changes.append("stopped")
            elif state == "restarted":
                logger.debug("Restarting service %s", unit)
                systemctl.restart(unit)
                changes.append("restarted")

        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            changed=bool(changes),
            output=", ".join(changes) if changes else "noop",
            data={"name": unit, "changes": changes},
        )
