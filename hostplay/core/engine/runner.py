"""
Playbook runner: plays × hosts, bounded fan-out.

For each play, the runner gathers facts (once per host per run), then
drives one ``HostRun`` per selected host on a thread pool limited to
``fanout`` workers. Hosts never share registered results or handler
queues. A failing host stops on its own; the other hosts carry on.

Flow:
    select hosts → gather facts → HostRun per host (parallel) → RunReport
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from hostplay.adapters.registry import AdapterRegistry
from hostplay.core.engine.executor import HostRun, TaskExecutor
from hostplay.core.errors import FactGatherError
from hostplay.core.models.facts import Facts
from hostplay.core.models.playbook import Playbook
from hostplay.core.models.result import TaskRecord, TaskStatus
from hostplay.core.models.settings import EngineSettings
from hostplay.core.services.facts import FactProvider

logger = logging.getLogger(__name__)

GATHER_FACTS_TASK = "Gathering facts"


@dataclass
class HostReport:
    """Outcome of one play on one host."""

    host: str
    records: list[TaskRecord] = field(default_factory=list)
    cancelled: bool = False

    @property
    def changed(self) -> int:
        return sum(1 for r in self.records if r.changed)

    @property
    def unchanged(self) -> int:
        return sum(1 for r in self.records if r.status == TaskStatus.UNCHANGED)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.records if r.status == TaskStatus.SKIPPED)

    @property
    def failed(self) -> int:
        """Fatal failures (ignored ones are counted in ``ignored``)."""
        return sum(1 for r in self.records if r.fatal)

    @property
    def ignored(self) -> int:
        return sum(1 for r in self.records if r.failed and r.ignored)

    @property
    def status(self) -> str:
        if self.failed:
            return "failed"
        if self.cancelled:
            return "cancelled"
        return "ok"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "changed": self.changed,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "failed": self.failed,
            "ignored": self.ignored,
        }


@dataclass
class RunReport:
    """Result of running one play across its hosts."""

    playbook: str = ""
    hosts: list[HostReport] = field(default_factory=list)

    @property
    def records(self) -> list[TaskRecord]:
        return [r for h in self.hosts for r in h.records]

    @property
    def failed_hosts(self) -> list[str]:
        return [h.host for h in self.hosts if h.status == "failed"]

    @property
    def cancelled(self) -> bool:
        return any(h.cancelled for h in self.hosts)

    @property
    def failed(self) -> bool:
        """Any non-ignored failure on any host."""
        return bool(self.failed_hosts)

    @property
    def status(self) -> str:
        failed = len(self.failed_hosts)
        if failed == 0:
            return "cancelled" if self.cancelled else "ok"
        if failed < len(self.hosts):
            return "partial"
        return "failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "playbook": self.playbook,
            "status": self.status,
            "hosts": {h.host: h.to_dict() for h in self.hosts},
            "records": [r.to_report() for r in self.records],
        }


def select_hosts(playbook: Playbook, hosts: list[str] | None) -> list[str]:
    """Resolve a play's host selector against the requested hosts.

    ``all`` takes every requested host (``localhost`` when none were
    given); a list keeps only the requested ones, in the play's order.
    """
    if playbook.targets_all():
        return list(hosts) if hosts else ["localhost"]
    if hosts is None:
        return list(playbook.hosts)
    wanted = set(hosts)
    return [h for h in playbook.hosts if h in wanted]


class PlaybookRunner:
    """Runs plays against hosts.

    Args:
        registry: Adapter dispatch shared by all hosts.
        fact_provider: Where host facts come from.
        settings: Fan-out, default task timeout, item-failure policy.
        dry_run: Validate mutating tasks without running them.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        fact_provider: FactProvider,
        settings: EngineSettings | None = None,
        *,
        dry_run: bool = False,
    ):
        self.registry = registry
        self.fact_provider = fact_provider
        self.settings = settings or EngineSettings()
        self.dry_run = dry_run
        self._cancel = threading.Event()
        self._facts: dict[str, Facts | FactGatherError] = {}
        self._facts_lock = threading.Lock()

    # ── Control ─────────────────────────────────────────────────

    def cancel(self) -> None:
        """Ask every host to stop before its next task instance."""
        logger.warning("Run cancelled")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ── Facts ───────────────────────────────────────────────────

    def gather(self, host: str) -> Facts:
        """Facts for ``host``, gathered at most once per runner.

        Raises:
            FactGatherError: If the provider cannot describe the host
                (the failure is cached as well).
        """
        with self._facts_lock:
            if host not in self._facts:
                try:
                    self._facts[host] = self.fact_provider.gather(host)
                except FactGatherError as e:
                    self._facts[host] = e
            cached = self._facts[host]
        if isinstance(cached, FactGatherError):
            raise cached
        return cached

    # ── Running ─────────────────────────────────────────────────

    def run(self, playbook: Playbook, hosts: list[str]) -> RunReport:
        """Run one play on ``hosts`` (already selected), in parallel."""
        report = RunReport(playbook=playbook.name)
        if not hosts:
            logger.warning("Play '%s' matched no hosts", playbook.name)
            return report

        executor = TaskExecutor(
            self.registry,
            base_dir=playbook.base_dir,
            dry_run=self.dry_run,
            default_timeout=self.settings.task_timeout,
            item_failure_policy=self.settings.item_failure_policy,
        )
        logger.info("Play '%s' on %d host(s)", playbook.name, len(hosts))

        workers = min(self.settings.fanout, len(hosts))
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="host"
        ) as pool:
            futures = {
                host: pool.submit(self._run_host, playbook, host, executor)
                for host in hosts
            }
            try:
                report.hosts = self._collect(playbook, futures)
            except KeyboardInterrupt:
                # Let in-flight tasks finish, then report what ran
                self.cancel()
                report.hosts = self._collect(playbook, futures)

        logger.info("Play '%s' finished: %s", playbook.name, report.status)
        return report

    def run_all(self, playbooks: list[Playbook], hosts: list[str] | None = None) -> list[RunReport]:
        """Run plays in order; a host that fails a play sits out the rest."""
        reports: list[RunReport] = []
        failed: set[str] = set()
        for playbook in playbooks:
            if self.cancelled:
                break
            selected = [h for h in select_hosts(playbook, hosts) if h not in failed]
            report = self.run(playbook, selected)
            failed.update(report.failed_hosts)
            reports.append(report)
        return reports

    def _run_host(self, playbook: Playbook, host: str, executor: TaskExecutor) -> HostReport:
        if self._cancel.is_set():
            return HostReport(host=host, cancelled=True)

        try:
            facts = self.gather(host)
        except FactGatherError as e:
            logger.error("✗ %s | %s: %s", host, GATHER_FACTS_TASK, e)
            return HostReport(
                host=host,
                records=[
                    TaskRecord(
                        host=host,
                        task=GATHER_FACTS_TASK,
                        status=TaskStatus.FAILED,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                ],
            )

        host_run = HostRun(playbook, facts, executor, self._cancel)
        records = host_run.run()
        return HostReport(host=host, records=records, cancelled=host_run.cancelled)

    @staticmethod
    def _collect(
        playbook: Playbook,
        futures: dict[str, concurrent.futures.Future[HostReport]],
    ) -> list[HostReport]:
        reports: list[HostReport] = []
        for host, future in futures.items():
            try:
                reports.append(future.result())
            except Exception as e:
                logger.exception("Host worker for %s crashed", host)
                reports.append(
                    HostReport(
                        host=host,
                        records=[
                            TaskRecord(
                                host=host,
                                task=playbook.name or "play",
                                status=TaskStatus.FAILED,
                                error=f"Unexpected error: {e}",
                                error_type=type(e).__name__,
                            )
                        ],
                    )
                )
        return reports
