"""Installation audit: a battery of independent checks over a finished install.

Checks record findings through a FindingRecorder; one finding per assertion.
A check that raises becomes a FAIL finding in its own category and the
remaining checks still run. The report is written under the state directory
and echoed to the operator.
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .lib.env import PATHS

logger = logging.getLogger(__name__)

CATEGORY_ORDER = (
    "Disk",
    "Mounts",
    "System",
    "Locale",
    "Portage",
    "Kernel",
    "Bootloader",
    "Packages",
    "Users",
    "Services",
    "Network",
    "Desktop",
)

# more warnings than this downgrades a clean pass to "pass with warnings"
WARN_THRESHOLD = 5


class AuditStatus(Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


class AuditOutcome(Enum):
    PASS = "PASS"
    PASS_WITH_WARNINGS = "PASS_WITH_WARNINGS"
    FAIL = "FAIL"

    @property
    def passed(self) -> bool:
        return self is not AuditOutcome.FAIL


class Environment(Enum):
    DOCKER = "docker"
    CHROOT = "chroot"
    LIVE = "live"
    BOOTED = "booted"


def detect_environment(
    mount_root: str = PATHS.mount_root,
    *,
    dockerenv: str = "/.dockerenv",
    init_root: str = "/proc/1/root/.",
) -> Environment:
    if Path(dockerenv).exists():
        env = Environment.DOCKER
    elif _differs_from(init_root):
        env = Environment.CHROOT
    elif (Path(mount_root) / "etc/gentoo-release").is_file():
        env = Environment.LIVE
    else:
        env = Environment.BOOTED
    logger.info("Environment: %s", env.value)
    return env


def _differs_from(init_root: str) -> bool:
    try:
        ours = os.stat("/")
        theirs = os.stat(init_root)
    except OSError:
        return False
    return (ours.st_dev, ours.st_ino) != (theirs.st_dev, theirs.st_ino)


@dataclass(frozen=True)
class AuditContext:
    environment: Environment
    disk: str = "/dev/sda"
    mount_root: str = PATHS.mount_root
    efi_dir: str = PATHS.efi_dir
    locale: str = "en_US.UTF-8"

    @property
    def root(self) -> Path:
        """Filesystem root of the system under audit."""

        if self.environment is Environment.LIVE:
            return Path(self.mount_root)
        return Path("/")

    @property
    def booted(self) -> bool:
        return self.environment is Environment.BOOTED


@dataclass(frozen=True)
class AuditFinding:
    category: str
    status: AuditStatus
    message: str


class FindingRecorder:
    """Collects findings for one category and echoes them to the log."""

    def __init__(self, category: str, sink: List[AuditFinding]):
        self.category = category
        self._sink = sink

    def _add(self, status: AuditStatus, message: str) -> None:
        self._sink.append(AuditFinding(self.category, status, message))
        level = {AuditStatus.PASS: logging.INFO, AuditStatus.WARN: logging.WARNING}.get(status, logging.ERROR)
        logger.log(level, "[%s] %s: %s", status.value, self.category, message)

    def ok(self, message: str) -> None:
        self._add(AuditStatus.PASS, message)

    def warn(self, message: str) -> None:
        self._add(AuditStatus.WARN, message)

    def fail(self, message: str) -> None:
        self._add(AuditStatus.FAIL, message)

    def check(self, condition: bool, passed: str, failed: str, *, severity: AuditStatus = AuditStatus.FAIL) -> bool:
        if condition:
            self.ok(passed)
        else:
            self._add(severity, failed)
        return condition


@dataclass(frozen=True)
class AuditCheck:
    category: str
    fn: Callable[[AuditContext, FindingRecorder], None]


@dataclass(frozen=True)
class AuditReport:
    timestamp: datetime
    environment: Environment
    hostname: str
    findings: Tuple[AuditFinding, ...] = field(default_factory=tuple)

    def count(self, status: AuditStatus) -> int:
        return sum(1 for f in self.findings if f.status is status)

    @property
    def passed_count(self) -> int:
        return self.count(AuditStatus.PASS)

    @property
    def warn_count(self) -> int:
        return self.count(AuditStatus.WARN)

    @property
    def fail_count(self) -> int:
        return self.count(AuditStatus.FAIL)

    @property
    def outcome(self) -> AuditOutcome:
        if self.fail_count:
            return AuditOutcome.FAIL
        if self.warn_count > WARN_THRESHOLD:
            return AuditOutcome.PASS_WITH_WARNINGS
        return AuditOutcome.PASS

    def by_category(self) -> Dict[str, List[AuditFinding]]:
        grouped: Dict[str, List[AuditFinding]] = {c: [] for c in CATEGORY_ORDER}
        for f in self.findings:
            grouped.setdefault(f.category, []).append(f)
        return {c: items for c, items in grouped.items() if items}

    def render(self) -> str:
        lines = [
            "======================================",
            "  Gentoo Installation Audit Report",
            "======================================",
            "",
            f"Date: {self.timestamp.strftime('%Y-%m-%d %H:%M:%S')}",
            f"Environment: {self.environment.value}",
            f"Hostname: {self.hostname}",
            "",
            "Summary:",
            f"  Passed:   {self.passed_count}",
            f"  Warnings: {self.warn_count}",
            f"  Failed:   {self.fail_count}",
            "",
            "======================================",
            "",
        ]
        for category, items in self.by_category().items():
            lines.append(f"=== {category} ===")
            lines.extend(f"{f.status.value} - {f.message}" for f in items)
            lines.append("")
        return "\n".join(lines)


class AuditEngine:
    def __init__(self, checks: Sequence[AuditCheck]):
        self.checks = list(checks)

    def run(self, ctx: AuditContext, *, now: Optional[datetime] = None) -> AuditReport:
        findings: List[AuditFinding] = []
        for check in self.checks:
            recorder = FindingRecorder(check.category, findings)
            try:
                check.fn(ctx, recorder)
            except Exception as e:
                logger.exception("Audit check for %s crashed", check.category)
                recorder.fail(f"Check could not complete: {e}")

        return AuditReport(
            timestamp=now or datetime.now(),
            environment=ctx.environment,
            hostname=socket.gethostname() or "unknown",
            findings=tuple(findings),
        )


def report_path_for(state_dir: str, *, now: Optional[datetime] = None) -> Path:
    """Timestamped report name that does not collide with an existing file."""

    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    base = Path(state_dir) / f"{PATHS.report_prefix}-{stamp}"
    candidate = Path(f"{base}.txt")
    n = 1
    while candidate.exists():
        candidate = Path(f"{base}-{n}.txt")
        n += 1
    return candidate


def write_report(report: AuditReport, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(report.render() + "\n", encoding="utf-8")
    logger.info("Audit report saved to: %s", path)
    return path


def run_complete_audit(
    ctx: AuditContext,
    checks: Sequence[AuditCheck],
    *,
    report_path: Optional[Path] = None,
    state_dir: str = PATHS.state_default,
    out: Callable[[str], None] = print,
) -> Tuple[bool, AuditReport]:
    """Run the battery, persist and echo the report; return (passed, report)."""

    logger.info("Running complete installation audit")
    report = AuditEngine(checks).run(ctx)

    out(report.render())
    try:
        write_report(report, report_path or report_path_for(state_dir, now=report.timestamp))
    except OSError as e:
        # the outcome stands even when the report cannot be persisted
        logger.error("Could not save audit report: %s", e)

    outcome = report.outcome
    if outcome is AuditOutcome.PASS:
        logger.info("Audit PASSED - Installation appears complete and correct")
    elif outcome is AuditOutcome.PASS_WITH_WARNINGS:
        logger.warning("Audit PASSED with WARNINGS - Review warnings above")
    else:
        logger.error("Audit FAILED - Critical issues found, installation incomplete")
    return outcome.passed, report
