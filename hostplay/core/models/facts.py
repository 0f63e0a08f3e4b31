"""
Facts model: what the engine knows about a target host.

Facts are gathered once per host at the start of a run and are frozen
afterwards, so they can be shared read-only across host workers.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OSFamily(StrEnum):
    """Packaging family of a host. Closed set; adapters match on it."""

    DEBIAN = "Debian"
    REDHAT = "RedHat"
    OTHER = "Other"

    @classmethod
    def classify(cls, *ids: str) -> OSFamily:
        """Map os-release ``ID``/``ID_LIKE`` tokens to a family."""
        tokens: set[str] = set()
        for value in ids:
            tokens.update(value.lower().replace('"', "").split())
        if tokens & _DEBIAN_IDS:
            return cls.DEBIAN
        if tokens & _REDHAT_IDS:
            return cls.REDHAT
        return cls.OTHER


_DEBIAN_IDS = {"debian", "ubuntu", "linuxmint", "raspbian", "pop"}
_REDHAT_IDS = {"rhel", "fedora", "centos", "rocky", "almalinux", "amzn", "ol"}

ALIAS_PREFIX = "ansible_"


class Facts(BaseModel):
    """Immutable per-run description of one host."""

    model_config = ConfigDict(frozen=True)

    host: str
    os_family: OSFamily = OSFamily.OTHER
    distribution: str = ""
    hostname: str = ""
    user_id: str = ""
    user_gid: int | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    def variables(self) -> dict[str, Any]:
        """Facts as guard/template variables.

        Each fact is also exposed as ``ansible_<name>``, so playbooks that
        guard on ``ansible_os_family`` run unchanged. Extra facts win over
        both spellings.
        """
        values: dict[str, Any] = {
            "os_family": self.os_family,
            "distribution": self.distribution,
            "hostname": self.hostname or self.host,
            "user_id": self.user_id,
            "user_gid": self.user_gid,
        }
        values.update({ALIAS_PREFIX + name: value for name, value in values.items()})
        values.update(self.extra)
        return values


FACT_NAMES = frozenset(Facts(host="").variables())
