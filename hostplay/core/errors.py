"""
Engine errors: the failure taxonomy shared by adapters and the engine.

Adapters raise these from ``execute()``; the adapter registry turns them
into failed receipts, and the task executor turns those into ``failed``
records. Nothing here escapes a host worker.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every error the engine knows how to report."""


class FactGatherError(EngineError):
    """Facts for a host could not be collected (unknown or unreachable host)."""

    def __init__(self, host: str, reason: str):
        super().__init__(f"Cannot gather facts for '{host}': {reason}")
        self.host = host
        self.reason = reason


class UnresolvedReferenceError(EngineError):
    """A guard or template referenced a name that is not defined."""

    def __init__(self, name: str, expression: str = ""):
        message = f"Undefined reference '{name}'"
        if expression:
            message += f" in '{expression}'"
        super().__init__(message)
        self.name = name
        self.expression = expression


class ConditionSyntaxError(EngineError, ValueError):
    """A guard expression uses syntax outside the supported subset."""


class CapabilityNotFoundError(EngineError):
    """No adapter is registered for the requested task kind."""

    def __init__(self, kind: str):
        super().__init__(f"No adapter registered for '{kind}'")
        self.kind = kind


class AdapterError(EngineError):
    """Base class for failures reported by capability adapters."""


class PackageManagerError(AdapterError):
    """The package manager could not query or change a package."""


class CommandError(AdapterError):
    """An external command exited with a non-accepted return code."""

    def __init__(self, command: str, returncode: int, stderr: str = "", stdout: str = ""):
        detail = (stderr or stdout).strip().splitlines()
        summary = detail[0] if detail else ""
        message = f"'{command}' exited with code {returncode}"
        if summary:
            message += f": {summary}"
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout


class FileWriteError(AdapterError, OSError):
    """Writing or updating a file on the host failed."""


class ServiceError(AdapterError):
    """The service manager refused a state transition."""


class TaskTimeoutError(EngineError, TimeoutError):
    """An adapter call did not finish within the task timeout."""

    def __init__(self, task: str, timeout: float):
        super().__init__(f"Task '{task}' timed out after {timeout:g}s")
        self.task = task
        self.timeout = timeout
