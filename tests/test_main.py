"""
Tests for the installer command line
====================================

Exit codes: 0 success, 1 phase or audit failure, 2 usage error,
3 preflight failure, 4 configuration or state error, 130 interrupted.
"""

import pytest

from gentoo_installer import main
from gentoo_installer.audit import AuditCheck, Environment
from gentoo_installer.lib.block import DiskInfo
from gentoo_installer.pipeline import TaskRegistry
from gentoo_installer.preflight import CheckOutcome, PreflightCheck
from gentoo_installer.state_store import StateStore

from .conftest import FakeStep, scripted_input


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(main, "configure_logging", lambda *a, **k: "install.log")


@pytest.fixture
def state_dir(tmp_path):
    return str(tmp_path / "state")


@pytest.fixture
def registry(monkeypatch):
    steps = [FakeStep("01-partition"), FakeStep("02-bootstrap")]
    monkeypatch.setattr(main, "build_registry", lambda: TaskRegistry(steps))
    return steps


def invoke(*argv, environ=None, replies=(), out=None):
    return main.main(
        list(argv),
        environ={} if environ is None else environ,
        input_fn=scripted_input(replies),
        out=(out.append if out is not None else lambda s: None),
    )


class TestStatus:
    def test_list_shows_completion_marks(self, state_dir):
        StateStore.in_dir(state_dir).mark_completed("01-partition")
        out = []

        assert invoke("--list", "--state-dir", state_dir, out=out) == 0
        assert out[0] == "Gentoo Installation Phases:"
        assert "  [✓] 01-partition" in out
        assert "  [ ] 02-bootstrap" in out
        assert "  [ ] 10-audit" in out

    def test_reset_requires_typed_yes(self, state_dir):
        store = StateStore.in_dir(state_dir)
        store.mark_completed("01-partition")

        assert invoke("--reset", "--state-dir", state_dir, replies=["y"]) == 0
        assert store.path.exists()

        assert invoke("--reset", "--state-dir", state_dir, replies=["yes"]) == 0
        assert not store.path.exists()

    def test_modes_are_exclusive(self, state_dir):
        with pytest.raises(SystemExit) as exc:
            invoke("--list", "--reset", "--state-dir", state_dir)
        assert exc.value.code == 2


class TestRun:
    def test_runs_all_pending_phases(self, state_dir, registry):
        assert invoke("--no-preflight", "--disk", "/dev/vda", "--state-dir", state_dir) == 0

        assert [s.calls for s in registry] == [1, 1]
        assert StateStore.in_dir(state_dir).completed() == {"01-partition", "02-bootstrap"}

    def test_run_single_phase(self, state_dir, registry):
        assert invoke("run", "02-bootstrap", "--disk", "/dev/vda", "--state-dir", state_dir) == 0

        assert [s.calls for s in registry] == [0, 1]

    def test_bare_phase_id(self, state_dir, registry):
        assert invoke("02-bootstrap", "--disk", "/dev/vda", "--state-dir", state_dir) == 0
        assert registry[1].calls == 1

    def test_unknown_phase_is_usage_error(self, state_dir, registry):
        assert invoke("99-nope", "--state-dir", state_dir) == 2

    def test_stray_argument_is_usage_error(self, state_dir, registry):
        assert invoke("01-partition", "02-bootstrap", "--state-dir", state_dir) == 2

    def test_failed_phase(self, state_dir, monkeypatch):
        failing = FakeStep("01-partition", result=False)
        monkeypatch.setattr(main, "build_registry", lambda: TaskRegistry([failing]))

        assert invoke("--no-preflight", "--disk", "/dev/vda", "--state-dir", state_dir) == 1
        assert StateStore.in_dir(state_dir).completed() == set()

    def test_interrupted_phase(self, state_dir, monkeypatch):
        step = FakeStep("01-partition", exc=KeyboardInterrupt())
        monkeypatch.setattr(main, "build_registry", lambda: TaskRegistry([step]))

        assert invoke("--no-preflight", "--disk", "/dev/vda", "--state-dir", state_dir) == 130

    def test_disk_prompted_when_missing(self, state_dir, registry, monkeypatch):
        monkeypatch.setattr(main, "list_disks", lambda: [DiskInfo("vda", "40G")])
        out = []

        assert invoke("--no-preflight", "--state-dir", state_dir, replies=[""], out=out) == 0
        assert "  Disk:          /dev/vda" in out

    def test_completed_disk_phases_skip_disk_prompt(self, state_dir, registry, monkeypatch):
        store = StateStore.in_dir(state_dir)
        store.mark_completed("01-partition")
        store.mark_completed("02-bootstrap")
        monkeypatch.setattr(main, "list_disks", lambda: pytest.fail("disk prompt not expected"))

        assert invoke("--state-dir", state_dir) == 0
        assert [s.calls for s in registry] == [0, 0]


class TestFailures:
    def test_bad_kernel_method_is_config_error(self, state_dir):
        assert invoke("--list", "--state-dir", state_dir, environ={"KERNEL_METHOD": "bogus"}) == 4

    def test_malformed_config_file(self, state_dir, tmp_path):
        path = tmp_path / "install.yaml"
        path.write_text("hostname: [unclosed\n")

        assert invoke("--list", "--config", str(path), "--state-dir", state_dir) == 4

    def test_preflight_failure(self, state_dir, registry, monkeypatch):
        checks = [PreflightCheck("root", lambda _: CheckOutcome(False, "This installer must be run as root"))]
        monkeypatch.setattr(main, "default_checks", lambda cfg: checks)

        assert invoke("--state-dir", state_dir, environ={"DISK": "/dev/vda"}) == 3
        assert registry[0].calls == 0


class TestAudit:
    @pytest.fixture(autouse=True)
    def live_environment(self, monkeypatch):
        monkeypatch.setattr(main, "detect_environment", lambda mount_root: Environment.LIVE)

    def _battery(self, monkeypatch, fn):
        monkeypatch.setattr(main, "DEFAULT_CHECKS", [AuditCheck("Disk", fn)])

    def test_failing_audit(self, state_dir, tmp_path, monkeypatch):
        self._battery(monkeypatch, lambda ctx, r: r.fail("Disk /dev/sda not found"))
        report = tmp_path / "report.txt"

        assert invoke("--audit", "--report", str(report), "--state-dir", state_dir) == 1
        assert "Disk /dev/sda not found" in report.read_text()

    def test_warnings_still_pass(self, state_dir, monkeypatch):
        self._battery(monkeypatch, lambda ctx, r: r.warn("Only a warning"))

        assert invoke("--audit", "--state-dir", state_dir) == 0
