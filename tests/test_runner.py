"""
Tests for the playbook runner: host selection, fan-out, fact gathering,
per-host isolation, cancellation and run reports.
"""

import threading
import time

import pytest

from hostplay.adapters.mock import MockAdapter
from hostplay.core.engine.runner import (
    GATHER_FACTS_TASK,
    HostReport,
    PlaybookRunner,
    RunReport,
    select_hosts,
)
from hostplay.core.errors import CommandError, FactGatherError
from hostplay.core.models.facts import Facts
from hostplay.core.models.playbook import Playbook
from hostplay.core.models.result import TaskRecord, TaskStatus
from hostplay.core.models.settings import EngineSettings
from hostplay.core.services.facts import FactProvider

HOSTS = ["web1", "web2", "web3", "db1"]


def _play(**overrides) -> Playbook:
    data = {
        "name": "Setup",
        "tasks": [
            {"name": "Install ca-certificates", "package": {"name": "ca-certificates"}},
            {"name": "Create base", "file": {"path": "/opt/app", "state": "directory"}},
        ],
    }
    data.update(overrides)
    return Playbook.model_validate(data)


class CountingProvider(FactProvider):
    def __init__(self, inner: FactProvider):
        self.inner = inner
        self.calls: list[str] = []

    def gather(self, host: str) -> Facts:
        self.calls.append(host)
        return self.inner.gather(host)


# ── Host selection ──────────────────────────────────────────────────


class TestSelectHosts:
    def test_all_takes_requested(self):
        assert select_hosts(_play(), ["web1", "db1"]) == ["web1", "db1"]

    def test_all_defaults_to_localhost(self):
        assert select_hosts(_play(), None) == ["localhost"]

    def test_list_intersects_in_play_order(self):
        play = _play(hosts=["db1", "web1", "web2"])
        assert select_hosts(play, ["web1", "db1", "other"]) == ["db1", "web1"]

    def test_list_without_request(self):
        assert select_hosts(_play(hosts="web1, web2"), None) == ["web1", "web2"]

    def test_no_overlap(self):
        assert select_hosts(_play(hosts=["db1"]), ["web1"]) == []


# ── Reports ─────────────────────────────────────────────────────────


def _record(host, status, ignored=False):
    return TaskRecord(host=host, task="t", status=status, ignored=ignored)


class TestReports:
    def test_host_counts(self):
        report = HostReport(host="web1", records=[
            _record("web1", TaskStatus.CHANGED),
            _record("web1", TaskStatus.UNCHANGED),
            _record("web1", TaskStatus.SKIPPED),
            _record("web1", TaskStatus.FAILED, ignored=True),
        ])
        assert report.to_dict() == {
            "status": "ok",
            "changed": 1,
            "unchanged": 1,
            "skipped": 1,
            "failed": 0,
            "ignored": 1,
        }

    def test_host_status(self):
        assert HostReport(host="a", cancelled=True).status == "cancelled"
        failed = HostReport(host="a", records=[_record("a", TaskStatus.FAILED)], cancelled=True)
        assert failed.status == "failed"

    def test_run_status(self):
        ok = HostReport(host="a", records=[_record("a", TaskStatus.CHANGED)])
        bad = HostReport(host="b", records=[_record("b", TaskStatus.FAILED)])

        assert RunReport(hosts=[ok]).status == "ok"
        assert RunReport(hosts=[ok, bad]).status == "partial"
        assert RunReport(hosts=[bad]).status == "failed"
        assert RunReport(hosts=[ok, HostReport(host="c", cancelled=True)]).status == "cancelled"

    def test_run_to_dict(self):
        report = RunReport(playbook="Setup", hosts=[
            HostReport(host="a", records=[_record("a", TaskStatus.CHANGED)]),
        ])
        data = report.to_dict()
        assert data["playbook"] == "Setup"
        assert data["hosts"]["a"]["changed"] == 1
        assert data["records"] == [{
            "host": "a", "task": "t", "item": None, "status": "changed",
            "error": None, "ignored": False, "handler": False,
        }]


# ── Runner ──────────────────────────────────────────────────────────


class TestPlaybookRunner:
    def test_runs_every_host(self, registry, fact_provider, mocks):
        runner = PlaybookRunner(registry, fact_provider)
        report = runner.run(_play(), HOSTS)

        assert [h.host for h in report.hosts] == HOSTS
        assert report.status == "ok"
        assert mocks["package"].call_count == 4
        assert {c.facts.host for c in mocks["file"].call_log} == set(HOSTS)

    def test_no_hosts(self, registry, fact_provider):
        report = PlaybookRunner(registry, fact_provider).run(_play(), [])
        assert report.hosts == []
        assert report.status == "ok"

    def test_fanout_bounds_concurrency(self, registry, fact_provider):
        lock = threading.Lock()
        state = {"active": 0, "peak": 0}

        class Tracking(MockAdapter):
            def execute(self, context):
                with lock:
                    state["active"] += 1
                    state["peak"] = max(state["peak"], state["active"])
                time.sleep(0.05)
                with lock:
                    state["active"] -= 1
                return super().execute(context)

        registry.register(Tracking(adapter_name="package"))
        runner = PlaybookRunner(registry, fact_provider, EngineSettings(fanout=2))
        report = runner.run(_play(), HOSTS)

        assert report.status == "ok"
        assert 1 <= state["peak"] <= 2

    def test_failing_host_is_isolated(self, registry, fact_provider, mocks):
        mocks["package"].set_failure("web2:Install ca-certificates", CommandError("apt-get", 100))
        report = PlaybookRunner(registry, fact_provider).run(_play(), HOSTS)

        assert report.failed_hosts == ["web2"]
        assert report.status == "partial"
        assert report.failed
        by_host = {h.host: h for h in report.hosts}
        assert [r.task for r in by_host["web2"].records] == ["Install ca-certificates"]
        assert len(by_host["web1"].records) == 2
        assert mocks["file"].call_count == 3

    def test_per_host_os_family(self, registry, fact_provider, mocks):
        play = _play(tasks=[
            {"name": "Debian only", "command": "update-ca-certificates",
             "when": 'os_family == "Debian"'},
        ])
        report = PlaybookRunner(registry, fact_provider).run(play, HOSTS)
        statuses = {h.host: h.records[0].status for h in report.hosts}
        assert statuses["db1"] == TaskStatus.SKIPPED
        assert statuses["web1"] == TaskStatus.UNCHANGED
        assert mocks["command"].call_count == 3

    def test_unknown_host_fails_fact_gathering(self, registry, fact_provider, mocks):
        report = PlaybookRunner(registry, fact_provider).run(_play(), ["web1", "ghost"])

        ghost = next(h for h in report.hosts if h.host == "ghost")
        assert ghost.records[0].task == GATHER_FACTS_TASK
        assert ghost.records[0].error_type == "FactGatherError"
        assert report.failed_hosts == ["ghost"]
        assert mocks["package"].call_count == 1

    def test_facts_gathered_once(self, registry, fact_provider):
        provider = CountingProvider(fact_provider)
        runner = PlaybookRunner(registry, provider)
        runner.run_all([_play(), _play(name="Second")], ["web1", "db1"])
        assert sorted(provider.calls) == ["db1", "web1"]

    def test_gather_failure_cached(self, registry, fact_provider):
        provider = CountingProvider(fact_provider)
        runner = PlaybookRunner(registry, provider)
        for _ in range(2):
            with pytest.raises(FactGatherError):
                runner.gather("ghost")
        assert provider.calls == ["ghost"]

    def test_failed_host_sits_out_later_plays(self, registry, fact_provider, mocks):
        mocks["package"].set_failure("db1:Install ca-certificates", "no repo")
        runner = PlaybookRunner(registry, fact_provider)
        reports = runner.run_all([_play(), _play(name="Second")], ["web1", "db1"])

        assert reports[0].failed_hosts == ["db1"]
        assert [h.host for h in reports[1].hosts] == ["web1"]

    def test_dry_run(self, registry, fact_provider, mocks):
        report = PlaybookRunner(registry, fact_provider, dry_run=True).run(_play(), ["web1"])
        assert mocks["package"].call_count == 0
        assert all(r.status == TaskStatus.SKIPPED for r in report.records)

    def test_settings_default_timeout(self, registry, fact_provider):
        release = threading.Event()

        class Hanging(MockAdapter):
            def execute(self, context):
                release.wait(5)
                return super().execute(context)

        registry.register(Hanging(adapter_name="package"))
        runner = PlaybookRunner(registry, fact_provider, EngineSettings(task_timeout=0.05))
        try:
            report = runner.run(_play(), ["web1"])
        finally:
            release.set()
        assert report.records[0].error_type == "TaskTimeoutError"
        assert report.failed


class TestCancellation:
    def test_cancel_stops_remaining_work(self, registry, fact_provider, mocks):
        runner = PlaybookRunner(registry, fact_provider, EngineSettings(fanout=1))

        class Cancelling(MockAdapter):
            def execute(self, context):
                runner.cancel()
                return super().execute(context)

        registry.register(Cancelling(adapter_name="package"))
        report = runner.run(_play(), HOSTS)

        assert runner.cancelled
        assert report.cancelled
        assert report.status == "cancelled"
        assert not report.failed
        # The in-flight task finished; nothing after it started
        assert len(report.records) == 1
        assert mocks["file"].call_count == 0

    def test_cancelled_runner_skips_later_plays(self, registry, fact_provider):
        runner = PlaybookRunner(registry, fact_provider)
        runner.cancel()
        assert runner.run_all([_play(), _play(name="Second")], ["web1"]) == []
