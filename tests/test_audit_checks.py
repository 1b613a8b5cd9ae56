"""
Tests for the default audit battery
===================================

Checks run against a fake target tree in ``live`` mode.
"""

import pytest

from gentoo_installer import audit_checks
from gentoo_installer.audit import CATEGORY_ORDER, AuditContext, AuditStatus, Environment, FindingRecorder


@pytest.fixture
def root(tmp_path):
    (tmp_path / "etc").mkdir()
    return tmp_path


def run_check(fn, root, environment=Environment.LIVE):
    findings = []
    fn(AuditContext(environment, mount_root=str(root)), FindingRecorder("Test", findings))
    return [(f.status, f.message) for f in findings]


def statuses(results):
    return [s for s, _ in results]


def test_default_battery_covers_every_category_in_order():
    assert tuple(c.category for c in audit_checks.DEFAULT_CHECKS) == CATEGORY_ORDER


class TestLocale:
    def test_configured_system_passes(self, root):
        etc = root / "etc"
        etc.joinpath("locale.gen").write_text("# comment\nen_US.UTF-8 UTF-8\n")
        etc.joinpath("localtime").symlink_to("/usr/share/zoneinfo/America/Chicago")
        etc.joinpath("hostname").write_text("gentoo\n")
        etc.joinpath("hosts").write_text("127.0.0.1 localhost\n")

        results = run_check(audit_checks.audit_locale_timezone, root)

        assert statuses(results) == [AuditStatus.PASS] * 4

    def test_localhost_hostname_warns_and_missing_files_fail(self, root):
        (root / "etc/hostname").write_text("localhost\n")

        results = run_check(audit_checks.audit_locale_timezone, root)

        assert statuses(results) == [AuditStatus.FAIL, AuditStatus.WARN, AuditStatus.WARN, AuditStatus.FAIL]


class TestSystem:
    def test_empty_root_fails_every_directory(self, root):
        results = run_check(audit_checks.audit_base_system, root)

        fails = [m for s, m in results if s is AuditStatus.FAIL]
        # six missing directories plus gentoo-release
        assert len(fails) == 7
        assert (AuditStatus.FAIL, "/etc/gentoo-release missing") in results
        assert results[-1] == (AuditStatus.WARN, "/etc/os-release missing")


class TestBootloader:
    def test_missing_grub_dir_stops_early(self, root):
        assert statuses(run_check(audit_checks.audit_bootloader, root)) == [AuditStatus.FAIL]

    def test_grub_config_with_entries(self, root):
        grub = root / "boot/grub"
        grub.mkdir(parents=True)
        grub.joinpath("grub.cfg").write_text("menuentry 'Gentoo' {\n  linux /vmlinuz-6.6.0\n}\n")
        (root / "boot/efi/EFI/BOOT").mkdir(parents=True)
        (root / "boot/efi/EFI/gentoo-new").mkdir(parents=True)

        results = run_check(audit_checks.audit_bootloader, root)

        assert statuses(results) == [AuditStatus.PASS] * 5
        assert results[-1][1].endswith("gentoo-new")


class TestPackages:
    def test_package_count_and_missing_packages(self, root):
        pkg = root / "var/db/pkg/app-shells/bash-5.2_p15"
        pkg.mkdir(parents=True)

        results = run_check(audit_checks.audit_system_packages, root)

        assert (AuditStatus.PASS, "app-shells/bash installed") in results
        assert (AuditStatus.WARN, "sys-boot/grub not installed") in results
        assert (AuditStatus.PASS, "Total packages installed: 1") in results
        assert results[-1][0] is AuditStatus.WARN


class TestUsers:
    def test_fully_configured_users(self, root):
        etc = root / "etc"
        etc.joinpath("passwd").write_text(
            "root:x:0:0:root:/root:/bin/bash\n"
            "nobody:x:65534:65534:nobody:/var/empty:/sbin/nologin\n"
            "henninb:x:1000:1000::/home/henninb:/bin/bash\n"
        )
        etc.joinpath("shadow").write_text("root:$6$salt$hash:19000::::::\n")
        etc.joinpath("sudoers").write_text("%wheel ALL=(ALL:ALL) NOPASSWD: ALL\n")

        results = run_check(audit_checks.audit_users, root)

        assert statuses(results) == [AuditStatus.PASS] * 4
        assert (AuditStatus.PASS, "1 regular user(s) configured") in results

    def test_locked_root_and_no_privilege_tool(self, root):
        (root / "etc/passwd").write_text("root:x:0:0:root:/root:/bin/bash\n")
        (root / "etc/shadow").write_text("root:*:19000::::::\n")

        results = run_check(audit_checks.audit_users, root)

        assert (AuditStatus.WARN, "Root password may not be set") in results
        assert results[-1] == (AuditStatus.WARN, "Neither sudo nor doas configured")


class TestBootedOnly:
    def test_services_skipped_unless_booted(self, root):
        results = run_check(audit_checks.audit_services, root)
        assert results == [(AuditStatus.WARN, "Service audit skipped (not running in booted system)")]

    def test_network_offline_checks_only_resolv_conf(self, root):
        (root / "etc/resolv.conf").write_text("nameserver 1.1.1.1\n")
        assert statuses(run_check(audit_checks.audit_network, root)) == [AuditStatus.PASS]


class TestDesktop:
    def test_no_hyprland_is_a_single_warning(self, root):
        assert statuses(run_check(audit_checks.audit_desktop, root)) == [AuditStatus.WARN]

    def test_full_desktop(self, root):
        bin_dir = root / "usr/bin"
        bin_dir.mkdir(parents=True)
        for name in ("Hyprland", "waybar", "kitty", "wofi"):
            bin_dir.joinpath(name).touch()
        session = root / "usr/share/wayland-sessions"
        session.mkdir(parents=True)
        session.joinpath("hyprland.desktop").touch()

        assert statuses(run_check(audit_checks.audit_desktop, root)) == [AuditStatus.PASS] * 5
