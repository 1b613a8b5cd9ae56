"""Pre-flight validation: system prerequisites checked before installation.

All checks run even when an early one fails, so the operator sees every
problem in one pass. HARD checks fail outright; SOFT checks ask the operator
whether to continue.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from .config import InstallConfig
from .errors import PreflightFailure
from .lib.block import GIB, get_size_bytes, has_partition_table, is_block_device
from .lib.command import command_exists, run_cmd
from .lib.firmware import detect_boot_mode
from .lib.net import can_fetch, can_ping

logger = logging.getLogger(__name__)

REQUIRED_COMMANDS = ("parted", "mkfs.fat", "mkfs.ext4", "mount", "curl", "tar", "sha256sum", "chroot")
MIN_DISK_GB = 20
MIN_MEMORY_MB = 2048

# pacman package names for tools whose command differs from the package
ARCH_PACKAGES = {
    "parted": "parted",
    "mkfs.fat": "dosfstools",
    "mkfs.ext4": "e2fsprogs",
    "curl": "curl",
    "tar": "tar",
    "sha256sum": "coreutils",
}


class Severity(Enum):
    HARD = "hard"
    SOFT = "soft"


@dataclass(frozen=True)
class CheckOutcome:
    passed: bool
    message: str = ""


@dataclass(frozen=True)
class PreflightCheck:
    check_id: str
    predicate: Callable[[Optional[str]], CheckOutcome]
    severity: Severity = Severity.HARD
    param: Optional[str] = None


@dataclass
class PreflightReport:
    passed: List[str] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class PreflightChecker:
    def __init__(self, checks: Sequence[PreflightCheck], confirm: Callable[[str], bool]):
        self.checks = list(checks)
        self.confirm = confirm

    def run(self) -> PreflightReport:
        report = PreflightReport()

        for check in self.checks:
            try:
                outcome = check.predicate(check.param)
            except Exception as e:
                logger.exception("Pre-flight check %s crashed", check.check_id)
                outcome = CheckOutcome(False, f"check raised {type(e).__name__}: {e}")

            if outcome.passed:
                if outcome.message:
                    logger.info("%s: %s", check.check_id, outcome.message)
                report.passed.append(check.check_id)
                continue

            if check.severity is Severity.SOFT:
                logger.warning("%s: %s", check.check_id, outcome.message)
                if self.confirm("Continue anyway?"):
                    report.passed.append(check.check_id)
                    continue
                report.failures.append((check.check_id, f"{outcome.message} (declined)"))
            else:
                logger.error("%s: %s", check.check_id, outcome.message)
                report.failures.append((check.check_id, outcome.message))

        if report.ok:
            logger.info("All pre-flight checks passed")
        else:
            logger.error("%d pre-flight check(s) failed", len(report.failures))
        return report


def run_preflight_checks(checks: Sequence[PreflightCheck], confirm: Callable[[str], bool]) -> PreflightReport:
    """Run every check; raise PreflightFailure listing all causes if any failed."""

    report = PreflightChecker(checks, confirm).run()
    if not report.ok:
        raise PreflightFailure(report.failures)
    return report


# --- predicates ---------------------------------------------------------------


def check_root(_: Optional[str] = None) -> CheckOutcome:
    if os.geteuid() != 0:
        return CheckOutcome(False, "This installer must be run as root")
    return CheckOutcome(True)


def _detect_host_package_manager() -> Optional[str]:
    for pm in ("pacman", "apt-get", "dnf", "zypper"):
        if command_exists(pm):
            return pm
    return None


def make_dependency_check(*, dry_run: bool = False) -> Callable[[Optional[str]], CheckOutcome]:
    def check_dependencies(_: Optional[str] = None) -> CheckOutcome:
        missing = [c for c in REQUIRED_COMMANDS if c in ARCH_PACKAGES and not command_exists(c)]
        if not missing:
            return CheckOutcome(True, "All required tools are already installed")

        pm = _detect_host_package_manager()
        if pm is None:
            logger.warning("Could not detect package manager for auto-install")
            return CheckOutcome(True, "auto-install skipped (no known package manager)")
        logger.info("Detected package manager: %s", pm)

        if pm == "pacman":
            pkgs = sorted({ARCH_PACKAGES[c] for c in missing})
        else:
            pkgs = sorted(set(missing))
        logger.info("Missing packages: %s", " ".join(pkgs))

        argv = {
            "pacman": ["pacman", "-Sy", "--noconfirm", "--needed"],
            "apt-get": ["apt-get", "install", "-y"],
            "dnf": ["dnf", "install", "-y"],
            "zypper": ["zypper", "install", "-y"],
        }[pm]
        try:
            if pm == "apt-get":
                run_cmd(["apt-get", "update"], dry_run=dry_run)
            run_cmd([*argv, *pkgs], dry_run=dry_run)
        except RuntimeError as e:
            return CheckOutcome(False, f"Failed to install dependencies: {e}")
        return CheckOutcome(True, "Dependencies installed successfully")

    return check_dependencies


def check_required_commands(_: Optional[str] = None) -> CheckOutcome:
    missing = [c for c in REQUIRED_COMMANDS if not command_exists(c)]
    if missing:
        return CheckOutcome(False, f"Missing required commands: {' '.join(missing)}")
    return CheckOutcome(True)


def check_boot_mode(_: Optional[str] = None) -> CheckOutcome:
    mode = detect_boot_mode()
    if mode == "UEFI":
        return CheckOutcome(True, "Boot mode: UEFI")
    return CheckOutcome(False, "Boot mode: BIOS (Legacy); this installer is configured for UEFI boot")


def check_network(_: Optional[str] = None) -> CheckOutcome:
    if not can_ping(timeout_s=5):
        return CheckOutcome(False, "No network connectivity detected")
    if not can_fetch("https://www.gentoo.org/"):
        return CheckOutcome(False, "Cannot reach gentoo.org; check DNS configuration or firewall")
    return CheckOutcome(True, "Network reachable")


def _mem_total_mb(meminfo: str = "/proc/meminfo") -> int:
    for line in Path(meminfo).read_text(encoding="utf-8").splitlines():
        if line.startswith("MemTotal:"):
            return int(line.split()[1]) // 1024
    return 0


def check_memory(_: Optional[str] = None) -> CheckOutcome:
    mem_mb = _mem_total_mb()
    if mem_mb < MIN_MEMORY_MB:
        return CheckOutcome(
            False,
            f"Low memory detected ({mem_mb}MB < {MIN_MEMORY_MB}MB recommended); compilation may be slow or fail",
        )
    return CheckOutcome(True, f"Available memory: {mem_mb}MB")


def check_cpu_cores(_: Optional[str] = None) -> CheckOutcome:
    cores = os.cpu_count() or 1
    if cores < 2:
        logger.warning("Single-core CPU detected - compilation will be very slow")
    return CheckOutcome(True, f"CPU cores detected: {cores}; recommended MAKEOPTS: -j{cores + 1}")


def check_disk_space(disk: Optional[str]) -> CheckOutcome:
    if not disk or not is_block_device(disk):
        return CheckOutcome(False, f"Disk {disk} not found")
    size_gb = get_size_bytes(disk) // GIB
    if size_gb < MIN_DISK_GB:
        return CheckOutcome(False, f"Disk is too small ({size_gb}GB < {MIN_DISK_GB}GB minimum)")
    return CheckOutcome(True, f"Disk {disk} size: {size_gb}GB")


def check_existing_data(disk: Optional[str]) -> CheckOutcome:
    if disk and has_partition_table(disk):
        return CheckOutcome(False, f"Disk {disk} has existing partitions; DATA WILL BE DESTROYED")
    return CheckOutcome(True)


def make_environment_check(config: InstallConfig) -> Callable[[Optional[str]], CheckOutcome]:
    def check_environment(_: Optional[str] = None) -> CheckOutcome:
        settings = {"DISK": config.disk, "HOSTNAME": config.hostname, "PRIMARY_USER": config.primary_user}
        for name, value in settings.items():
            if not value:
                logger.warning("%s not set", name)
        return CheckOutcome(True, "Environment configuration validated")

    return check_environment


def default_checks(config: InstallConfig) -> List[PreflightCheck]:
    disk = config.disk
    checks = [PreflightCheck("root", check_root)]
    if config.auto_install_tools:
        checks.append(PreflightCheck("dependencies", make_dependency_check(dry_run=config.dry_run)))
    checks += [
        PreflightCheck("required_commands", check_required_commands),
        PreflightCheck("boot_mode", check_boot_mode, Severity.SOFT),
        PreflightCheck("network", check_network, Severity.SOFT),
        PreflightCheck("memory", check_memory, Severity.SOFT),
        PreflightCheck("cpu_cores", check_cpu_cores),
        PreflightCheck("disk_space", check_disk_space, param=disk),
        PreflightCheck("existing_data", check_existing_data, Severity.SOFT, param=disk),
        PreflightCheck("environment", make_environment_check(config)),
    ]
    return checks
