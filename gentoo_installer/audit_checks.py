from __future__ import annotations

import logging
import platform
import re
from pathlib import Path
from typing import List

from .audit import AuditCheck, AuditContext, AuditStatus, FindingRecorder
from .lib.block import GIB, MIB, get_fstype, get_size_bytes, is_block_device, part_name
from .lib.chroot import is_mountpoint
from .lib.command import probe
from .lib.net import can_ping
from .lib.portage import installed_packages, package_installed

logger = logging.getLogger(__name__)

WARN = AuditStatus.WARN

CRITICAL_DIRS = ("bin", "etc", "usr", "var", "home", "root", "tmp")
AUDIT_PACKAGES = (
    "sys-apps/systemd",
    "sys-boot/grub",
    "app-admin/sudo",
    "net-misc/dhcpcd",
    "sys-apps/util-linux",
    "app-shells/bash",
)
AUDIT_SERVICES = ("sshd", "dhcpcd", "cronie")
DESKTOP_COMPONENTS = ("waybar", "kitty", "wofi")
MIN_PACKAGE_COUNT = 100


def _read(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="ignore")


def _has_line(path: Path, pattern: str) -> bool:
    rx = re.compile(pattern)
    return any(rx.search(line) for line in _read(path).splitlines())


def audit_disk(ctx: AuditContext, r: FindingRecorder) -> None:
    boot_part = part_name(ctx.disk, 1)
    root_part = part_name(ctx.disk, 2)

    if not r.check(is_block_device(boot_part), f"Boot partition exists: {boot_part}", f"Boot partition missing: {boot_part}"):
        return
    if not r.check(is_block_device(root_part), f"Root partition exists: {root_part}", f"Root partition missing: {root_part}"):
        return

    boot_fs = get_fstype(boot_part)
    r.check(boot_fs == "vfat", "Boot partition is FAT32", f"Boot partition is not FAT32 (found: {boot_fs})")
    root_fs = get_fstype(root_part)
    r.check(root_fs == "ext4", "Root partition is ext4", f"Root partition is not ext4 (found: {root_fs})", severity=WARN)

    boot_mb = get_size_bytes(boot_part) // MIB
    r.check(
        boot_mb >= 512,
        f"Boot partition size adequate: {boot_mb}MB",
        f"Boot partition small: {boot_mb}MB (512MB+ recommended)",
        severity=WARN,
    )
    root_gb = get_size_bytes(root_part) // GIB
    r.check(
        root_gb >= 20,
        f"Root partition size adequate: {root_gb}GB",
        f"Root partition small: {root_gb}GB (20GB+ recommended)",
        severity=WARN,
    )


def audit_mounts(ctx: AuditContext, r: FindingRecorder) -> None:
    root_mount = str(ctx.root)
    boot_mount = str(ctx.root / ctx.efi_dir.lstrip("/"))

    r.check(is_mountpoint(root_mount), f"Root filesystem mounted at {root_mount}", f"Root filesystem not mounted at {root_mount}")
    r.check(is_mountpoint(boot_mount), f"Boot partition mounted at {boot_mount}", f"Boot partition not mounted at {boot_mount}")

    fstab = ctx.root / "etc/fstab"
    if not fstab.is_file():
        r.fail("/etc/fstab does not exist")
        return
    r.check(ctx.efi_dir in _read(fstab), "/etc/fstab contains boot entry", "/etc/fstab missing boot entry", severity=WARN)
    r.check(
        _has_line(fstab, r"^(UUID=|/dev/)"),
        "/etc/fstab has root entry",
        "/etc/fstab may be missing root entry",
        severity=WARN,
    )


def audit_base_system(ctx: AuditContext, r: FindingRecorder) -> None:
    for d in CRITICAL_DIRS:
        path = ctx.root / d
        r.check(path.is_dir(), f"Critical directory exists: {path}", f"Critical directory missing: {path}")

    release = ctx.root / "etc/gentoo-release"
    if release.is_file():
        r.ok(f"Gentoo release: {_read(release).strip()}")
    else:
        r.fail("/etc/gentoo-release missing")

    r.check((ctx.root / "etc/os-release").is_file(), "/etc/os-release exists", "/etc/os-release missing", severity=WARN)


def audit_locale_timezone(ctx: AuditContext, r: FindingRecorder) -> None:
    locale_gen = ctx.root / "etc/locale.gen"
    if locale_gen.is_file():
        r.check(
            _has_line(locale_gen, "^" + re.escape(ctx.locale)),
            f"{ctx.locale} enabled in locale.gen",
            f"{ctx.locale} not enabled in locale.gen",
            severity=WARN,
        )
    else:
        r.fail("/etc/locale.gen missing")

    localtime = ctx.root / "etc/localtime"
    if localtime.is_symlink():
        r.ok(f"Timezone configured: {localtime.readlink()}")
    else:
        r.warn("Timezone not configured (no /etc/localtime symlink)")

    hostname_file = ctx.root / "etc/hostname"
    if hostname_file.is_file():
        hostname = _read(hostname_file).strip()
        r.check(
            bool(hostname) and hostname != "localhost",
            f"Hostname configured: {hostname}",
            "Hostname not configured or is localhost",
            severity=WARN,
        )
    else:
        r.fail("/etc/hostname missing")

    hosts = ctx.root / "etc/hosts"
    if hosts.is_file():
        r.check(
            _has_line(hosts, r"127\.0\.0\.1.*localhost"),
            "/etc/hosts has localhost entry",
            "/etc/hosts missing localhost entry",
            severity=WARN,
        )
    else:
        r.fail("/etc/hosts missing")


def audit_portage(ctx: AuditContext, r: FindingRecorder) -> None:
    tree = ctx.root / "var/db/repos/gentoo"
    if (tree / "profiles").is_dir():
        r.ok("Portage tree synced")
        r.ok(f"Portage tree contains {sum(1 for _ in tree.rglob('*.ebuild'))} ebuilds")
    else:
        r.fail("Portage tree not synced")

    make_conf = ctx.root / "etc/portage/make.conf"
    if make_conf.is_file():
        r.ok("make.conf exists")
        r.check(_has_line(make_conf, "^USE="), "USE flags configured", "No USE flags set in make.conf", severity=WARN)
        makeopts = [line for line in _read(make_conf).splitlines() if line.startswith("MAKEOPTS=")]
        if makeopts:
            r.ok(f"MAKEOPTS configured: {makeopts[0]}")
        else:
            r.warn("MAKEOPTS not configured")
    else:
        r.fail("make.conf missing")

    profile = ctx.root / "etc/portage/make.profile"
    if profile.is_symlink():
        r.ok(f"Profile selected: {profile.readlink()}")
    else:
        r.warn("No profile selected")


def audit_kernel(ctx: AuditContext, r: FindingRecorder) -> None:
    boot = ctx.root / "boot"
    kernels = sorted(boot.glob("vmlinuz-*"), key=lambda p: p.stat().st_mtime, reverse=True)
    if kernels:
        r.ok(f"Kernel installed: {kernels[0]}")
        if len(kernels) > 1:
            r.warn(f"Multiple kernels found ({len(kernels)})")
    else:
        r.fail("No kernel found in /boot")

    r.check(any(boot.glob("initramfs-*")), "Initramfs found", "No initramfs (may be intentional)", severity=WARN)

    src = ctx.root / "usr/src/linux"
    if src.is_dir():
        r.check(
            (src / ".config").is_file(),
            "Kernel sources configured",
            "Kernel sources present but not configured",
            severity=WARN,
        )

    if ctx.booted:
        running = platform.release()
        r.ok(f"Running kernel: {running}")
        r.check(
            (boot / f"vmlinuz-{running}").is_file(),
            "Running kernel matches installed kernel",
            "Running kernel differs from installed kernel",
            severity=WARN,
        )


def audit_bootloader(ctx: AuditContext, r: FindingRecorder) -> None:
    if not r.check((ctx.root / "boot/grub").is_dir(), "GRUB directory exists", "GRUB directory missing"):
        return

    grub_cfg = ctx.root / "boot/grub/grub.cfg"
    if grub_cfg.is_file():
        r.ok("GRUB configuration exists")
        text = _read(grub_cfg)
        r.check("vmlinuz" in text, "GRUB config has kernel entries", "GRUB config missing kernel entries")
        entries = sum(1 for line in text.splitlines() if line.startswith("menuentry"))
        r.check(entries > 0, f"GRUB has {entries} boot entries", "No menuentry found in grub.cfg", severity=WARN)
    else:
        r.fail("grub.cfg missing")

    efi = ctx.root / ctx.efi_dir.lstrip("/") / "EFI"
    if efi.is_dir():
        entries_dirs = sorted(p.name for p in efi.iterdir() if p.is_dir() and p.name.upper() != "BOOT")
        if entries_dirs:
            r.ok(f"GRUB EFI files installed: {entries_dirs[0]}")
        else:
            r.warn("No EFI boot entries found")
    else:
        r.warn("No EFI directory (may be BIOS boot)")


def audit_system_packages(ctx: AuditContext, r: FindingRecorder) -> None:
    root = str(ctx.root)
    for atom in AUDIT_PACKAGES:
        r.check(package_installed(root, atom), f"{atom} installed", f"{atom} not installed", severity=WARN)

    if (ctx.root / "var/db/pkg").is_dir():
        count = len(installed_packages(root))
        r.ok(f"Total packages installed: {count}")
        if count < MIN_PACKAGE_COUNT:
            r.warn(f"Low package count ({count}), installation may be incomplete")


def audit_users(ctx: AuditContext, r: FindingRecorder) -> None:
    passwd = ctx.root / "etc/passwd"
    if passwd.is_file():
        lines = _read(passwd).splitlines()
        r.check(any(line.startswith("root:") for line in lines), "Root user exists", "Root user missing")
        regular = [
            line
            for line in lines
            if line and not line.startswith("root:") and "nologin" not in line and "false" not in line
        ]
        r.check(bool(regular), f"{len(regular)} regular user(s) configured", "No regular users configured", severity=WARN)
    else:
        r.fail("/etc/passwd missing")

    shadow = ctx.root / "etc/shadow"
    if shadow.is_file():
        root_entry = next((line for line in _read(shadow).splitlines() if line.startswith("root:")), "")
        r.check(
            bool(root_entry) and not root_entry.startswith(("root:*", "root:!")),
            "Root password is set",
            "Root password may not be set",
            severity=WARN,
        )
    else:
        r.fail("/etc/shadow missing")

    sudoers = ctx.root / "etc/sudoers"
    doas = ctx.root / "etc/doas.conf"
    if sudoers.is_file():
        r.check(
            _has_line(sudoers, r"^%wheel.*ALL"),
            "sudo configured for wheel group",
            "sudo not configured for wheel group",
            severity=WARN,
        )
    if doas.is_file():
        r.ok("doas configured")
    if not sudoers.is_file() and not doas.is_file():
        r.warn("Neither sudo nor doas configured")


def audit_services(ctx: AuditContext, r: FindingRecorder) -> None:
    if not ctx.booted:
        r.warn("Service audit skipped (not running in booted system)")
        return

    for service in AUDIT_SERVICES:
        if probe(["systemctl", "is-enabled", service]).ok:
            r.ok(f"{service} is enabled")
            r.check(
                probe(["systemctl", "is-active", service]).ok,
                f"{service} is running",
                f"{service} is enabled but not running",
                severity=WARN,
            )
        else:
            r.warn(f"{service} is not enabled")


def audit_network(ctx: AuditContext, r: FindingRecorder) -> None:
    resolv = ctx.root / "etc/resolv.conf"
    if resolv.is_file():
        r.check(
            _has_line(resolv, "^nameserver"),
            "DNS configured in /etc/resolv.conf",
            "/etc/resolv.conf has no nameservers",
            severity=WARN,
        )
    else:
        r.warn("/etc/resolv.conf missing")

    if ctx.booted:
        r.check(can_ping(), "Internet connectivity working", "No internet connectivity")
        r.check(can_ping("gentoo.org"), "DNS resolution working", "DNS resolution not working", severity=WARN)


def audit_desktop(ctx: AuditContext, r: FindingRecorder) -> None:
    bin_dir = ctx.root / "usr/bin"
    if not r.check(
        (bin_dir / "Hyprland").is_file(),
        "Hyprland installed",
        "Hyprland not installed (desktop phase may not have run)",
        severity=WARN,
    ):
        return

    for component in DESKTOP_COMPONENTS:
        r.check((bin_dir / component).is_file(), f"{component} installed", f"{component} not installed", severity=WARN)

    r.check(
        (ctx.root / "usr/share/wayland-sessions/hyprland.desktop").is_file(),
        "Hyprland session file exists",
        "Hyprland session file missing",
        severity=WARN,
    )


DEFAULT_CHECKS: List[AuditCheck] = [
    AuditCheck("Disk", audit_disk),
    AuditCheck("Mounts", audit_mounts),
    AuditCheck("System", audit_base_system),
    AuditCheck("Locale", audit_locale_timezone),
    AuditCheck("Portage", audit_portage),
    AuditCheck("Kernel", audit_kernel),
    AuditCheck("Bootloader", audit_bootloader),
    AuditCheck("Packages", audit_system_packages),
    AuditCheck("Users", audit_users),
    AuditCheck("Services", audit_services),
    AuditCheck("Network", audit_network),
    AuditCheck("Desktop", audit_desktop),
]
