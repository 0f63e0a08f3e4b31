"""
Package adapter: ensure OS packages are present or absent.

The package manager is picked from the host's OS family: Debian hosts
use apt (queried through dpkg-query), RedHat hosts use dnf, or yum where
dnf is missing (queried through rpm). Any other family is an error.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import Any

from hostplay.adapters.base import Adapter, ExecutionContext
from hostplay.adapters.shell.command import run_command
from hostplay.core.errors import PackageManagerError
from hostplay.core.models.action import Receipt
from hostplay.core.models.facts import OSFamily

logger = logging.getLogger(__name__)

CommandRunner = Callable[[list[str]], subprocess.CompletedProcess[str]]


class PackageManager(ABC):
    """Query/install/remove through one package manager.

    ``run`` executes an argv and returns the completed process; it is
    injected so tests can fake the manager's commands.
    """

    name = "generic"

    def __init__(self, run: CommandRunner):
        self._run = run

    def ensure_present(self, packages: Iterable[str]) -> list[str]:
        needed = [pkg for pkg in packages if not self.is_installed(pkg)]
        if needed:
            self.install(needed)
        return needed

    def ensure_absent(self, packages: Iterable[str]) -> list[str]:
        removable = [pkg for pkg in packages if self.is_installed(pkg)]
        if removable:
            self.remove(removable)
        return removable

    @abstractmethod
    def install(self, packages: list[str]) -> None:
        """Install ``packages`` in one transaction."""

    @abstractmethod
    def remove(self, packages: list[str]) -> None:
        """Remove ``packages`` in one transaction."""

    @abstractmethod
    def is_installed(self, package: str) -> bool:
        """Whether ``package`` is currently installed."""

    def _check(self, argv: list[str]) -> subprocess.CompletedProcess[str]:
        proc = self._run(argv)
        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout).strip().splitlines()
            raise PackageManagerError(
                f"{self.name}: '{' '.join(argv)}' exited with code {proc.returncode}"
                + (f": {detail[0]}" if detail else "")
            )
        return proc


class AptPackageManager(PackageManager):
    name = "apt"

    def install(self, packages: list[str]) -> None:
        self._check(["apt-get", "install", "-y", "-q", *packages])

    def remove(self, packages: list[str]) -> None:
        self._check(["apt-get", "remove", "-y", "-q", *packages])

    def is_installed(self, package: str) -> bool:
        proc = self._run(["dpkg-query", "-W", "-f", "${Status}", package])
        return proc.returncode == 0 and proc.stdout.strip().endswith(" installed")


class DnfPackageManager(PackageManager):
    name = "dnf"

    def install(self, packages: list[str]) -> None:
        self._check([self.name, "install", "-y", *packages])

    def remove(self, packages: list[str]) -> None:
        self._check([self.name, "remove", "-y", *packages])

    def is_installed(self, package: str) -> bool:
        return self._run(["rpm", "-q", package]).returncode == 0


class YumPackageManager(DnfPackageManager):
    name = "yum"


def manager_for(os_family: OSFamily, run: CommandRunner) -> PackageManager:
    """Pick the package manager for ``os_family``."""
    match os_family:
        case OSFamily.DEBIAN:
            return AptPackageManager(run)
        case OSFamily.REDHAT:
            if shutil.which("dnf") is None and shutil.which("yum") is not None:
                return YumPackageManager(run)
            return DnfPackageManager(run)
        case _:
            raise PackageManagerError(f"No package manager for OS family '{os_family}'")


class PackageAdapter(Adapter):
    """Ensure packages are installed (``present``) or removed (``absent``).

    Action params:
        name (str | list): One package or a list of packages.
        state (str): ``present`` (default) or ``absent``.
    """

    STATES = {"present", "absent"}

    def __init__(
        self,
        manager_factory: Callable[[OSFamily, CommandRunner], PackageManager] = manager_for,
    ):
        self._manager_factory = manager_factory

    @property
    def name(self) -> str:
        return "package"

    def is_available(self) -> bool:
        return any(shutil.which(tool) for tool in ("apt-get", "dnf", "yum"))

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        packages = _packages(context.params)
        if not packages:
            return False, "Missing required param: 'name'"
        state = context.params.get("state", "present")
        if state not in self.STATES:
            return False, f"Unknown state '{state}'. Valid: absent, present"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        packages = _packages(context.params)
        state = context.params.get("state", "present")

        def run(argv: list[str]) -> subprocess.CompletedProcess[str]:
            env = {"DEBIAN_FRONTEND": "noninteractive"} if argv[0] == "apt-get" else None
            return run_command(argv, timeout=context.timeout, env=env)

        manager = self._manager_factory(context.facts.os_family, run)
        logger.debug("package manager=%s packages=%s state=%s", manager.name, packages, state)

        if state == "present":
            touched = manager.ensure_present(packages)
            verb = "installed"
        else:
            touched = manager.ensure_absent(packages)
            verb = "removed"

        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            changed=bool(touched),
            output=f"{verb}={','.join(touched)}" if touched else f"already {state}",
            data={"manager": manager.name, "packages": packages, verb: touched},
        )


def _packages(params: dict[str, Any]) -> list[str]:
    raw = params.get("name") or params.get("pkg") or []
    if isinstance(raw, str):
        return [p.strip() for p in raw.split(",") if p.strip()]
    return [str(p) for p in raw]
