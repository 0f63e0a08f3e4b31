"""
Command adapters: run external commands and read-only checks.

``command`` runs an argv (no shell) and always reports ``changed``,
unless a ``creates``/``removes`` guard shows there is nothing to do.
``shell`` runs a read-only check through ``sh -c``; exit 0 means the
check passed (``unchanged``), anything else fails the task.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Any

from hostplay.adapters.base import Adapter, ExecutionContext
from hostplay.core.errors import CommandError, TaskTimeoutError
from hostplay.core.models.action import Receipt

logger = logging.getLogger(__name__)


def run_command(
    command: list[str] | str,
    *,
    shell: bool = False,
    cwd: str | Path | None = None,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run ``command`` and capture its output; never checks the exit code.

    A missing executable is reported as exit code 127, like a shell would.
    """
    display = command if isinstance(command, str) else shlex.join(command)
    exec_env = None
    if env:
        exec_env = os.environ.copy()
        exec_env.update(env)

    logger.debug("Executing: %s (cwd=%s)", display, cwd)
    try:
        return subprocess.run(
            command,
            shell=shell,
            cwd=str(cwd) if cwd is not None else None,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=exec_env,
            check=False,
        )
    except subprocess.TimeoutExpired:
        raise TaskTimeoutError(display, timeout or 0) from None
    except FileNotFoundError as e:
        return subprocess.CompletedProcess(command, 127, "", str(e))


def _command_data(proc: subprocess.CompletedProcess[str], display: str) -> dict[str, Any]:
    return {
        "cmd": display,
        "rc": proc.returncode,
        "stdout": proc.stdout.strip(),
        "stderr": proc.stderr.strip(),
    }


class CommandAdapter(Adapter):
    """Run a command; idempotent only through ``creates``/``removes``.

    Action params:
        cmd (str | list): The command; strings are split with shlex.
        creates (str): Skip (unchanged) if this path already exists.
        removes (str): Skip (unchanged) if this path does not exist.
        chdir (str): Working directory.
        env (dict): Extra environment variables.
    """

    @property
    def name(self) -> str:
        return "command"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        cmd = context.params.get("cmd")
        if not cmd:
            return False, "Missing required param: 'cmd'"
        if not isinstance(cmd, (str, list)):
            return False, "'cmd' must be a string or a list"

        chdir = context.params.get("chdir")
        if chdir and not context.resolve_path(chdir).is_dir():
            return False, f"Working directory does not exist: {chdir}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.params
        action_id = context.action.id

        creates = params.get("creates")
        if creates and context.resolve_path(creates).exists():
            return Receipt.success(
                adapter=self.name,
                action_id=action_id,
                output=f"skipped, since {creates} exists",
                data={"rc": 0, "stdout": "", "stderr": ""},
            )

        removes = params.get("removes")
        if removes and not context.resolve_path(removes).exists():
            return Receipt.success(
                adapter=self.name,
                action_id=action_id,
                output=f"skipped, since {removes} does not exist",
                data={"rc": 0, "stdout": "", "stderr": ""},
            )

        cmd = params["cmd"]
        argv = shlex.split(cmd) if isinstance(cmd, str) else [str(c) for c in cmd]
        display = shlex.join(argv)
        chdir = params.get("chdir")
        env = {str(k): str(v) for k, v in (params.get("env") or {}).items()}

        proc = run_command(
            argv,
            cwd=context.resolve_path(chdir) if chdir else None,
            timeout=context.timeout,
            env=env or None,
        )
        if proc.returncode != 0:
            raise CommandError(display, proc.returncode, proc.stderr, proc.stdout)

        return Receipt.success(
            adapter=self.name,
            action_id=action_id,
            changed=True,
            output=proc.stdout.strip(),
            data=_command_data(proc, display),
        )


class ShellCheckAdapter(Adapter):
    """Read-only check through the shell, e.g. a certificate expiry check.

    Action params:
        cmd (str): Shell snippet; exit code 0 means the check passed.
        chdir (str): Working directory.
    """

    read_only = True

    @property
    def name(self) -> str:
        return "shell"

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        cmd = context.params.get("cmd")
        if not cmd or not isinstance(cmd, str):
            return False, "Missing required param: 'cmd'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        cmd = context.params["cmd"]
        chdir = context.params.get("chdir")
        cwd = context.resolve_path(chdir) if chdir else Path(context.base_dir)

        proc = run_command(cmd, shell=True, cwd=cwd, timeout=context.timeout)
        if proc.returncode != 0:
            raise CommandError(cmd, proc.returncode, proc.stderr, proc.stdout)

        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            output=proc.stdout.strip(),
            data=_command_data(proc, cmd),
        )
