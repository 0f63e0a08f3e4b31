"""
Tests for domain models: task normalization, playbook validation, facts, records.
"""

import pytest
from pydantic import ValidationError

from hostplay.core.models import (
    Action,
    EngineSettings,
    Facts,
    OSFamily,
    Playbook,
    Receipt,
    Task,
    TaskRecord,
    TaskStatus,
)


class TestTask:
    """Capability key → kind + params."""

    def test_mapping_capability(self):
        t = Task.model_validate({
            "name": "Install",
            "package": {"name": "ca-certificates", "state": "present"},
        })
        assert t.kind == "package"
        assert t.params == {"name": "ca-certificates", "state": "present"}

    def test_register_key(self):
        t = Task.model_validate({"stat": {"path": "/tmp"}, "register": "chk"})
        assert t.register_as == "chk"
        assert "register" not in Task.model_fields
        assert Task(kind="stat", register_as="chk").register_as == "chk"

    def test_free_form_capability(self):
        t = Task.model_validate({"command": "update-ca-certificates"})
        assert t.kind == "command"
        assert t.params == {"cmd": "update-ca-certificates"}

    def test_args_merged_into_params(self):
        t = Task.model_validate({
            "command": "python3 -m venv /opt/app/venv",
            "args": {"creates": "/opt/app/venv/bin/activate"},
        })
        assert t.params["creates"] == "/opt/app/venv/bin/activate"
        assert t.params["cmd"].startswith("python3")

    def test_name_defaults_to_kind(self):
        assert Task.model_validate({"stat": {"path": "/etc"}}).name == "stat"

    def test_when_and_notify_listified(self):
        t = Task.model_validate({
            "copy": {"src": "a", "dest": "b"},
            "when": 'os_family == "Debian"',
            "notify": "reload",
        })
        assert t.when == ['os_family == "Debian"']
        assert t.notify == ["reload"]

    def test_no_capability_rejected(self):
        with pytest.raises(ValidationError, match="no capability"):
            Task.model_validate({"name": "nothing", "when": "true"})

    def test_two_capabilities_rejected(self):
        with pytest.raises(ValidationError, match="more than one capability"):
            Task.model_validate({"command": "ls", "shell": "ls"})

    def test_loop_control(self):
        t = Task.model_validate({
            "stat": {"path": "{{ item }}"},
            "loop": ["a", "b"],
            "loop_control": {"label": "{{ item }}", "on_failure": "continue"},
        })
        assert t.looped
        assert t.loop_control.on_failure == "continue"

    def test_bad_loop_control_policy(self):
        with pytest.raises(ValidationError):
            Task.model_validate({
                "stat": {"path": "x"},
                "loop": ["a"],
                "loop_control": {"on_failure": "retry"},
            })

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            Task.model_validate({"command": "sleep 1", "timeout": 0})


class TestPlaybook:
    def test_defaults(self):
        p = Playbook(name="empty")
        assert p.targets_all()
        assert p.tasks == []
        assert p.handlers == []

    def test_hosts_string_split(self):
        p = Playbook.model_validate({"hosts": "web1, web2"})
        assert p.hosts == ["web1", "web2"]

    def test_notify_must_name_handler(self):
        with pytest.raises(ValidationError, match="undefined handler 'missing'"):
            Playbook.model_validate({
                "tasks": [{"command": "true", "notify": "missing"}],
            })

    def test_duplicate_handlers_rejected(self):
        with pytest.raises(ValidationError, match="duplicate handler names"):
            Playbook.model_validate({
                "handlers": [
                    {"name": "reload", "command": "a"},
                    {"name": "reload", "command": "b"},
                ],
            })

    def test_handlers_cannot_notify(self):
        with pytest.raises(ValidationError, match="may not notify"):
            Playbook.model_validate({
                "handlers": [
                    {"name": "a", "command": "a", "notify": "b"},
                    {"name": "b", "command": "b"},
                ],
            })

    def test_unknown_play_key_rejected(self):
        with pytest.raises(ValidationError):
            Playbook.model_validate({"name": "x", "roles": ["web"]})

    def test_get_handler(self):
        p = Playbook.model_validate({
            "handlers": [{"name": "reload", "command": "systemctl daemon-reload"}],
        })
        assert p.handler_names == ["reload"]
        assert p.get_handler("reload").kind == "command"
        assert p.get_handler("nope") is None


class TestFacts:
    @pytest.mark.parametrize(
        ("ids", "expected"),
        [
            (("ubuntu", "debian"), OSFamily.DEBIAN),
            (("debian", ""), OSFamily.DEBIAN),
            (("rocky", '"rhel centos fedora"'), OSFamily.REDHAT),
            (("fedora", ""), OSFamily.REDHAT),
            (("alpine", ""), OSFamily.OTHER),
            (("arch", ""), OSFamily.OTHER),
        ],
    )
    def test_classify(self, ids, expected):
        assert OSFamily.classify(*ids) == expected

    def test_variables(self):
        f = Facts(host="web1", os_family=OSFamily.DEBIAN, user_id="deploy", extra={"dc": "fra1"})
        v = f.variables()
        assert v["os_family"] == "Debian"
        assert v["hostname"] == "web1"
        assert v["user_id"] == "deploy"
        assert v["dc"] == "fra1"
        assert v["ansible_os_family"] == "Debian"
        assert v["ansible_user_id"] == "deploy"

    def test_frozen(self):
        f = Facts(host="web1")
        with pytest.raises(ValidationError):
            f.host = "web2"

    def test_os_family_from_string(self):
        assert Facts(host="h", os_family="RedHat").os_family is OSFamily.REDHAT


class TestReceipt:
    def test_success_changed(self):
        r = Receipt.success(adapter="copy", action_id="a", changed=True)
        assert r.changed
        assert not r.failed

    def test_failure(self):
        r = Receipt.failure(adapter="command", action_id="a", error="boom", error_type="CommandError")
        assert r.failed
        assert not r.changed
        assert r.error_type == "CommandError"

    def test_skip(self):
        r = Receipt.skip(adapter="copy", action_id="a", reason="dry run")
        assert r.skipped
        assert r.output == "dry run"

    def test_action_defaults(self):
        a = Action(id="web1:Install", adapter="package")
        assert a.host == "localhost"
        assert a.params == {}


class TestTaskRecord:
    def test_fatal(self):
        failed = TaskRecord(host="h", task="t", status=TaskStatus.FAILED, error="x")
        ignored = TaskRecord(host="h", task="t", status=TaskStatus.FAILED, ignored=True)
        assert failed.fatal
        assert not ignored.fatal

    def test_to_report_fields(self):
        r = TaskRecord(host="h", task="t", item="CA1", status=TaskStatus.CHANGED)
        assert r.to_report() == {
            "host": "h",
            "task": "t",
            "item": "CA1",
            "status": "changed",
            "error": None,
            "ignored": False,
            "handler": False,
        }


class TestEngineSettings:
    def test_defaults(self):
        s = EngineSettings()
        assert s.fanout == 5
        assert s.task_timeout is None
        assert s.item_failure_policy == "abort"

    def test_fanout_minimum(self):
        with pytest.raises(ValidationError):
            EngineSettings(fanout=0)
