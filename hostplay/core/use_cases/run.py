"""
Run use case: execute a playbook file against hosts.

This is the top-level orchestrator: it loads settings and plays, picks
fact providers and adapters, runs every play in order, and appends the
results to the audit ledger. The full vertical slice from a playbook
path to an audited run.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hostplay.adapters import AdapterRegistry, default_registry
from hostplay.core.config.loader import ConfigError, load_playbooks, load_settings
from hostplay.core.engine.runner import PlaybookRunner, RunReport, select_hosts
from hostplay.core.errors import FactGatherError
from hostplay.core.models.settings import EngineSettings
from hostplay.core.persistence.audit import (
    AuditEntry,
    AuditWriter,
    generate_run_id,
    resolve_audit_path,
)
from hostplay.core.services.facts import (
    ChainFactProvider,
    FactProvider,
    LocalFactProvider,
    load_facts_file,
)

__all__ = ["PlaybookRunResult", "build_fact_provider", "run_playbook", "select_hosts"]

logger = logging.getLogger(__name__)


@dataclass
class PlaybookRunResult:
    """Result of running a playbook file."""

    playbook_path: Path | None = None
    run_id: str = ""
    reports: list[RunReport] = field(default_factory=list)
    dry_run: bool = False
    audit_path: Path | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        """Loading failed, or some play has a non-ignored failure."""
        return self.error is not None or any(r.failed for r in self.reports)

    @property
    def cancelled(self) -> bool:
        return any(r.cancelled for r in self.reports)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "playbook_path": str(self.playbook_path) if self.playbook_path else None,
            "run_id": self.run_id,
        }
        if self.error:
            result["error"] = self.error
            return result
        result["dry_run"] = self.dry_run
        result["status"] = "failed" if self.failed else ("cancelled" if self.cancelled else "ok")
        result["plays"] = [r.to_dict() for r in self.reports]
        return result


def build_fact_provider(facts_file: Path | None = None) -> FactProvider:
    """Facts file first (if any), then the local machine."""
    local = LocalFactProvider()
    if facts_file is None:
        return local
    return ChainFactProvider(load_facts_file(facts_file), local)


def run_playbook(
    playbook_path: Path,
    hosts: list[str] | None = None,
    *,
    config_path: Path | None = None,
    facts_file: Path | None = None,
    fanout: int | None = None,
    task_timeout: float | None = None,
    dry_run: bool = False,
    mock_mode: bool = False,
    audit: bool | None = None,
    registry: AdapterRegistry | None = None,
    fact_provider: FactProvider | None = None,
    runner_hook: Callable[[PlaybookRunner], None] | None = None,
) -> PlaybookRunResult:
    """Run every play of a playbook file.

    Args:
        playbook_path: YAML playbook file.
        hosts: Requested hosts; ``None`` lets each play's selector decide
            (``all`` then means ``localhost``).
        config_path: Explicit settings file (default: discover hostplay.yml).
        facts_file: YAML ``host -> facts`` mapping for non-local hosts.
        fanout: Override ``EngineSettings.fanout``.
        task_timeout: Override ``EngineSettings.task_timeout``.
        dry_run: Validate mutating tasks without running them.
        mock_mode: Report every task as unchanged without touching the host.
        audit: Override ``EngineSettings.audit``.
        registry: Pre-configured adapter registry (default: all built-ins).
        fact_provider: Pre-configured fact provider (overrides ``facts_file``).
        runner_hook: Called with the ``PlaybookRunner`` before the run,
            e.g. to wire a signal handler to ``runner.cancel``.

    Returns:
        PlaybookRunResult with one RunReport per play.
    """
    result = PlaybookRunResult(playbook_path=playbook_path, run_id=generate_run_id(), dry_run=dry_run)

    # ── Load settings and plays ─────────────────────────────────
    try:
        settings = _effective_settings(load_settings(config_path), fanout, task_timeout)
        playbooks = load_playbooks(playbook_path)
        if fact_provider is None:
            fact_provider = build_fact_provider(facts_file)
    except (ConfigError, FactGatherError) as e:
        result.error = str(e)
        return result

    # ── Set up adapter registry ─────────────────────────────────
    if registry is None:
        registry = default_registry(mock_mode=mock_mode)
    elif mock_mode:
        registry.set_mock_mode(True)

    # ── Execute ─────────────────────────────────────────────────
    runner = PlaybookRunner(registry, fact_provider, settings, dry_run=dry_run)
    if runner_hook is not None:
        runner_hook(runner)

    started = time.monotonic()
    result.reports = runner.run_all(playbooks, hosts)
    duration_ms = int((time.monotonic() - started) * 1000)

    # ── Write audit log ─────────────────────────────────────────
    if settings.audit if audit is None else audit:
        result.audit_path = resolve_audit_path(playbook_path, settings.audit_path)
        writer = AuditWriter(result.audit_path)
        for report in result.reports:
            writer.write(
                AuditEntry.from_report(
                    report,
                    run_id=result.run_id,
                    playbook_file=str(playbook_path),
                    dry_run=dry_run,
                    duration_ms=duration_ms,
                )
            )

    return result


def _effective_settings(
    settings: EngineSettings,
    fanout: int | None,
    task_timeout: float | None,
) -> EngineSettings:
    overrides: dict[str, Any] = {}
    if fanout is not None:
        overrides["fanout"] = fanout
    if task_timeout is not None:
        overrides["task_timeout"] = task_timeout
    if not overrides:
        return settings
    try:
        return EngineSettings.model_validate({**settings.model_dump(), **overrides})
    except ValueError as e:
        raise ConfigError(f"Invalid option: {e}") from e
