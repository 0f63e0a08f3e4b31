"""Adapters: capability bindings for host state.

Public re-exports for convenient access.
"""

from hostplay.adapters.base import Adapter, ExecutionContext
from hostplay.adapters.mock import MockAdapter
from hostplay.adapters.registry import AdapterRegistry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "MockAdapter",
    "default_registry",
]


def default_registry(mock_mode: bool = False) -> AdapterRegistry:
    """A registry with every built-in capability adapter registered."""
    from hostplay.adapters.shell.command import CommandAdapter, ShellCheckAdapter
    from hostplay.adapters.shell.filesystem import CopyAdapter, FileAdapter, StatAdapter
    from hostplay.adapters.system.package import PackageAdapter
    from hostplay.adapters.system.service import ServiceAdapter

    registry = AdapterRegistry(mock_mode=mock_mode)
    registry.register(PackageAdapter())
    registry.register(CommandAdapter())
    registry.register(ShellCheckAdapter())
    registry.register(StatAdapter())
    registry.register(CopyAdapter())
    registry.register(FileAdapter())
    registry.register(ServiceAdapter("systemd"))
    registry.register(ServiceAdapter("service"))
    return registry
