"""
Shared test fixtures and configuration.
"""

import logging
import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest

from hostplay.adapters.mock import MockAdapter
from hostplay.adapters.registry import AdapterRegistry
from hostplay.core.models.facts import Facts, OSFamily
from hostplay.core.services.facts import StaticFactProvider

# Kinds the mock registry serves; read-only ones still run in dry runs
MOCK_KINDS = {
    "package": False,
    "command": False,
    "shell": True,
    "stat": True,
    "copy": False,
    "file": False,
    "systemd": False,
}


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the test fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def debian_facts() -> Facts:
    return Facts(
        host="web1",
        os_family=OSFamily.DEBIAN,
        distribution="ubuntu",
        user_id="deploy",
        user_gid=1000,
    )


@pytest.fixture
def redhat_facts() -> Facts:
    return Facts(
        host="db1",
        os_family=OSFamily.REDHAT,
        distribution="rocky",
        user_id="deploy",
        user_gid=1000,
    )


@pytest.fixture
def fact_provider() -> StaticFactProvider:
    """Three Debian hosts and one RedHat host."""
    return StaticFactProvider({
        "web1": {"os_family": "Debian"},
        "web2": {"os_family": "Debian"},
        "web3": {"os_family": "Debian"},
        "db1": {"os_family": "RedHat"},
    })


@pytest.fixture
def mocks() -> dict[str, MockAdapter]:
    """One MockAdapter per capability kind."""
    return {
        kind: MockAdapter(adapter_name=kind, read_only=read_only)
        for kind, read_only in MOCK_KINDS.items()
    }


@pytest.fixture
def registry(mocks: dict[str, MockAdapter]) -> AdapterRegistry:
    reg = AdapterRegistry()
    for adapter in mocks.values():
        reg.register(adapter)
    return reg


@pytest.fixture
def write_playbook(tmp_path: Path) -> Callable[[str], Path]:
    """Write dedented YAML to ``tmp_path/site.yml`` and return the path."""

    def _write(content: str, name: str = "site.yml") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(content))
        return path

    return _write


@pytest.fixture
def root_logger():
    """Restore the root logger after setup_logging replaces its handlers."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.raiseExceptions = True
