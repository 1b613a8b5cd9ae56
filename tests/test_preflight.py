"""
Tests for pre-flight checks
===========================
"""

import pytest

from gentoo_installer import preflight
from gentoo_installer.config import InstallConfig
from gentoo_installer.errors import PreflightFailure
from gentoo_installer.preflight import (
    CheckOutcome,
    PreflightCheck,
    PreflightChecker,
    Severity,
    run_preflight_checks,
)


def passing(_=None):
    return CheckOutcome(True, "fine")


def failing(_=None):
    return CheckOutcome(False, "broken")


class TestChecker:
    def test_hard_fail_soft_declined_and_pass(self):
        """A hard-fails, B soft-fails and is declined, C passes: two failures, C still recorded."""
        checks = [
            PreflightCheck("A", failing),
            PreflightCheck("B", failing, Severity.SOFT),
            PreflightCheck("C", passing),
        ]
        asked = []

        def confirm(question):
            asked.append(question)
            return False

        report = PreflightChecker(checks, confirm).run()

        assert [cid for cid, _ in report.failures] == ["A", "B"]
        assert report.failures[1][1].endswith("(declined)")
        assert report.passed == ["C"]
        assert asked == ["Continue anyway?"]

        with pytest.raises(PreflightFailure) as exc:
            run_preflight_checks(checks, confirm)
        assert exc.value.exit_code == 3
        assert len(exc.value.failures) == 2

    def test_soft_failure_can_be_accepted(self):
        checks = [PreflightCheck("B", failing, Severity.SOFT), PreflightCheck("C", passing)]

        report = run_preflight_checks(checks, lambda q: True)

        assert report.ok
        assert report.passed == ["B", "C"]

    def test_hard_failure_never_prompts(self):
        asked = []
        PreflightChecker([PreflightCheck("A", failing)], lambda q: asked.append(q) or True).run()
        assert asked == []

    def test_raising_predicate_counts_as_failure(self):
        def explode(_=None):
            raise OSError("no /proc")

        report = PreflightChecker([PreflightCheck("X", explode), PreflightCheck("C", passing)], lambda q: False).run()

        assert report.failures[0][0] == "X"
        assert "OSError" in report.failures[0][1]
        assert report.passed == ["C"]

    def test_param_is_passed_to_predicate(self):
        seen = []

        def record(param):
            seen.append(param)
            return CheckOutcome(True)

        PreflightChecker([PreflightCheck("disk", record, param="/dev/vda")], lambda q: False).run()
        assert seen == ["/dev/vda"]


class TestPredicates:
    def test_disk_space_rejects_non_block_device(self, tmp_path):
        outcome = preflight.check_disk_space(str(tmp_path / "nope"))
        assert not outcome.passed
        assert "not found" in outcome.message

    def test_disk_space_requires_twenty_gib(self, monkeypatch):
        monkeypatch.setattr(preflight, "is_block_device", lambda d: True)
        monkeypatch.setattr(preflight, "get_size_bytes", lambda d: 10 * preflight.GIB)

        assert not preflight.check_disk_space("/dev/vda").passed

        monkeypatch.setattr(preflight, "get_size_bytes", lambda d: 40 * preflight.GIB)
        assert preflight.check_disk_space("/dev/vda").passed

    def test_existing_data_is_flagged(self, monkeypatch):
        monkeypatch.setattr(preflight, "has_partition_table", lambda d: True)
        assert not preflight.check_existing_data("/dev/vda").passed
        assert preflight.check_existing_data(None).passed

    def test_memory_threshold(self, monkeypatch):
        monkeypatch.setattr(preflight, "_mem_total_mb", lambda: 1024)
        assert not preflight.check_memory().passed
        monkeypatch.setattr(preflight, "_mem_total_mb", lambda: 8192)
        assert preflight.check_memory().passed

    def test_mem_total_parses_meminfo(self, tmp_path):
        meminfo = tmp_path / "meminfo"
        meminfo.write_text("MemTotal:        4194304 kB\nMemFree:  1 kB\n")
        assert preflight._mem_total_mb(str(meminfo)) == 4096

    def test_informational_checks_always_pass(self):
        assert preflight.check_cpu_cores().passed
        assert preflight.make_environment_check(InstallConfig())().passed

    def test_dependencies_already_present(self, monkeypatch):
        monkeypatch.setattr(preflight, "command_exists", lambda c: True)
        outcome = preflight.make_dependency_check(dry_run=True)()
        assert outcome.passed
        assert "already installed" in outcome.message

    def test_dependencies_installed_with_pacman(self, monkeypatch, caplog):
        monkeypatch.setattr(preflight, "command_exists", lambda c: c == "pacman")

        with caplog.at_level("INFO"):
            outcome = preflight.make_dependency_check(dry_run=True)()

        assert outcome.passed
        assert "CMD pacman -Sy --noconfirm --needed coreutils curl dosfstools e2fsprogs parted tar" in caplog.text


class TestDefaultBattery:
    def test_order_and_severity(self):
        checks = preflight.default_checks(InstallConfig(disk="/dev/vda"))

        assert [c.check_id for c in checks] == [
            "root",
            "dependencies",
            "required_commands",
            "boot_mode",
            "network",
            "memory",
            "cpu_cores",
            "disk_space",
            "existing_data",
            "environment",
        ]
        soft = {c.check_id for c in checks if c.severity is Severity.SOFT}
        assert soft == {"boot_mode", "network", "memory", "existing_data"}
        assert {c.check_id: c.param for c in checks}["disk_space"] == "/dev/vda"

    def test_auto_install_can_be_disabled(self):
        checks = preflight.default_checks(InstallConfig(auto_install_tools=False))
        assert "dependencies" not in [c.check_id for c in checks]
