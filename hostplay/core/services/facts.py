"""
Fact providers: gather host facts once per run.

``LocalFactProvider`` inspects the machine the engine runs on and only
answers for its local names; there is no remote transport.
``StaticFactProvider`` serves facts supplied up front, e.g. from a
YAML facts file passed with ``--facts``.
"""

from __future__ import annotations

import logging
import os
import platform
import pwd
import socket
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from hostplay.core.errors import FactGatherError
from hostplay.core.models.facts import Facts, OSFamily

logger = logging.getLogger(__name__)

OS_RELEASE = Path("/etc/os-release")

LOCAL_NAMES = frozenset({"localhost", "127.0.0.1", "::1"})


class FactProvider(ABC):
    """Source of host facts."""

    @abstractmethod
    def gather(self, host: str) -> Facts:
        """Collect facts for ``host``.

        Raises:
            FactGatherError: If the host is unknown or unreachable.
        """


def parse_os_release(text: str) -> dict[str, str]:
    """Parse ``/etc/os-release`` ``KEY=value`` lines."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


class LocalFactProvider(FactProvider):
    """Facts of the local machine, for its local names only."""

    def __init__(self, os_release: Path = OS_RELEASE, hostname: str | None = None):
        self.os_release = os_release
        self.hostname = hostname or socket.gethostname()

    def is_local(self, host: str) -> bool:
        return host in LOCAL_NAMES or host in {self.hostname, self.hostname.split(".")[0]}

    def gather(self, host: str) -> Facts:
        if not self.is_local(host):
            raise FactGatherError(host, "not a local host and no facts were supplied")

        os_family, distribution = self._distribution(host)
        facts = Facts(
            host=host,
            os_family=os_family,
            distribution=distribution,
            hostname=self.hostname,
            user_id=_user_name(),
            user_gid=os.getgid(),
        )
        logger.debug("Gathered local facts for %s: %s", host, facts.os_family)
        return facts

    def _distribution(self, host: str) -> tuple[OSFamily, str]:
        if platform.system() != "Linux":
            return OSFamily.OTHER, platform.system()
        try:
            release = parse_os_release(self.os_release.read_text(encoding="utf-8"))
        except OSError as e:
            raise FactGatherError(host, f"cannot read {self.os_release}: {e}") from e
        family = OSFamily.classify(release.get("ID", ""), release.get("ID_LIKE", ""))
        return family, release.get("ID", "")


def _user_name() -> str:
    try:
        return pwd.getpwuid(os.getuid()).pw_name
    except KeyError:
        return os.environ.get("USER", "")


class StaticFactProvider(FactProvider):
    """Facts from a ``host -> facts`` mapping.

    Unknown keys in a host's mapping land in ``Facts.extra`` so they can
    be used in guards like any other fact.
    """

    def __init__(self, facts: Mapping[str, Mapping[str, Any]] | None = None):
        self._facts: dict[str, Facts] = {}
        for host, values in (facts or {}).items():
            self._facts[host] = _build_facts(host, values)

    @property
    def hosts(self) -> list[str]:
        return list(self._facts)

    def gather(self, host: str) -> Facts:
        try:
            return self._facts[host]
        except KeyError:
            raise FactGatherError(host, "no facts supplied for this host") from None


class ChainFactProvider(FactProvider):
    """Try providers in order; the first that knows the host wins."""

    def __init__(self, *providers: FactProvider):
        self.providers = providers

    def gather(self, host: str) -> Facts:
        errors: list[str] = []
        for provider in self.providers:
            try:
                return provider.gather(host)
            except FactGatherError as e:
                errors.append(e.reason)
        raise FactGatherError(host, "; ".join(errors) or "no fact providers")


def _build_facts(host: str, values: Mapping[str, Any]) -> Facts:
    known = set(Facts.model_fields) - {"host", "extra"}
    data = {k: v for k, v in values.items() if k in known}
    extra = {k: v for k, v in values.items() if k not in known}
    try:
        return Facts(host=host, extra=extra, **data)
    except ValidationError as e:
        raise FactGatherError(host, f"invalid facts: {e}") from e


def load_facts_file(path: Path) -> StaticFactProvider:
    """Load a YAML ``host -> facts`` mapping.

    Raises:
        FactGatherError: If the file cannot be read or is malformed.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise FactGatherError(str(path), f"cannot load facts file: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
        raise FactGatherError(str(path), "facts file must map host names to mappings")
    return StaticFactProvider({str(k): v for k, v in data.items()})
