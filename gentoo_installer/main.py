from __future__ import annotations

import argparse
import logging
import os
import signal
from pathlib import Path
from typing import Callable, List, Mapping, Optional

from .audit import AuditContext, detect_environment, run_complete_audit
from .audit_checks import DEFAULT_CHECKS
from .config import InstallConfig, load_config
from .errors import InstallerError, InstallInterrupted, PreflightFailure, UsageError
from .lib.block import list_disks
from .logging_utils import configure_logging, default_log_path
from .pipeline import Orchestrator, StepContext, TaskState
from .preflight import default_checks, run_preflight_checks
from .prompt import InputFn, confirm_typed, make_confirm, select_disk
from .state_store import StateStore
from .steps import build_registry

logger = logging.getLogger(__name__)

FIRST_PHASE = "01-partition"
# phases that touch the raw disk and so need one selected
DISK_PHASES = {"01-partition", "02-bootstrap"}

EPILOG = """\
If no phase is given, runs all incomplete phases in order.

Configuration defaults (override with environment variables or --config):
  HOSTNAME="gentoo"  PRIMARY_USER="henninb"  KERNEL_METHOD="bin"
  DISK=<prompted interactively>

Example:
  DISK=/dev/sda HOSTNAME=myhost gentoo-installer
"""


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="gentoo-installer",
        description="Phase-based, resumable Gentoo desktop installer",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("command", nargs="?", help="'run' or a phase id (e.g. 01-partition)")
    p.add_argument("phase", nargs="?", help="Phase id when the command is 'run'")

    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--list", action="store_true", help="Show all phases and completion status")
    mode.add_argument("--reset", action="store_true", help="Clear completion state and start over")
    mode.add_argument("--audit", action="store_true", help="Run comprehensive installation audit")

    p.add_argument("--disk", default=None, help="Target disk (e.g. /dev/sda)")
    p.add_argument("--report", default=None, help="Audit report path (with --audit)")
    p.add_argument("--config", default=None, help="Path to a YAML config file")
    p.add_argument("--state-dir", default=None, help="Directory for completion record, logs and reports")
    p.add_argument("--dry-run", action="store_true", help="Log commands without executing them")
    p.add_argument("--no-preflight", action="store_true", help="Skip pre-flight checks")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p


def _phase_arg(args: argparse.Namespace) -> Optional[str]:
    if args.command == "run":
        return args.phase
    if args.phase is not None:
        raise UsageError(f"Unexpected argument: {args.phase}")
    return args.command


def _print_status(orch: Orchestrator, out: Callable[[str], None]) -> None:
    out("Gentoo Installation Phases:")
    out("")
    for task_id, state in orch.list_status():
        mark = "✓" if state is TaskState.COMPLETED else " "
        out(f"  [{mark}] {task_id}")
    out("")


def _print_summary(cfg: InstallConfig, out: Callable[[str], None]) -> None:
    out("==========================================")
    out("Configuration Summary:")
    out("==========================================")
    out(f"  Disk:          {cfg.disk}")
    out(f"  Hostname:      {cfg.hostname}")
    out(f"  Primary User:  {cfg.primary_user}")
    out(f"  Kernel Method: {cfg.kernel_method.value}")
    out("==========================================")


def run_audit(cfg: InstallConfig, *, report: Optional[str], out: Callable[[str], None]) -> int:
    ctx = AuditContext(
        environment=detect_environment(cfg.mount_root),
        disk=cfg.disk or "/dev/sda",
        mount_root=cfg.mount_root,
        efi_dir=cfg.efi_dir,
        locale=cfg.locale,
    )
    passed, _ = run_complete_audit(
        ctx,
        DEFAULT_CHECKS,
        report_path=Path(report) if report else None,
        state_dir=cfg.state_dir,
        out=out,
    )
    return 0 if passed else 1


def run_install(
    cfg: InstallConfig,
    phase: Optional[str],
    *,
    preflight: bool,
    input_fn: InputFn,
    out: Callable[[str], None],
) -> int:
    confirm = make_confirm(input_fn)
    registry = build_registry()
    store = StateStore.in_dir(cfg.state_dir)

    if phase is not None and phase not in registry:
        raise UsageError(f"Unknown phase: {phase} (valid: {', '.join(registry.ids)})")

    wanted = [phase] if phase else registry.ids
    pending = [t for t in wanted if not store.is_completed(t)]

    if not cfg.disk and DISK_PHASES.intersection(pending):
        out("Detecting available disks...")
        cfg = cfg.with_disk(select_disk(list_disks(), input_fn=input_fn, out=out))
        _print_summary(cfg, out)

    if FIRST_PHASE in pending:
        if preflight:
            run_preflight_checks(default_checks(cfg), confirm)
        else:
            logger.warning("Pre-flight checks skipped")

    orch = Orchestrator(registry, store, StepContext(config=cfg, confirm=confirm))
    if phase:
        orch.run_single(phase)
    else:
        result = orch.run_all()
        logger.info("Ran %d phase(s), skipped %d", len(result.ran_steps), len(result.skipped_steps))
    return 0


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


def main(
    argv: Optional[List[str]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    input_fn: InputFn = input,
    out: Callable[[str], None] = print,
) -> int:
    args = build_parser().parse_args(argv)
    env = os.environ if environ is None else environ

    try:
        cfg = load_config(
            path=args.config,
            environ=env,
            state_dir=args.state_dir,
            disk=args.disk,
            dry_run=True if args.dry_run else None,
        )
    except InstallerError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error("%s", e)
        return e.exit_code

    log_path = configure_logging(
        default_log_path(cfg.state_dir),
        level=logging.DEBUG if args.verbose else logging.INFO,
    )
    logger.info("Gentoo Automated Installer started")
    logger.info("Log file: %s", log_path)
    logger.info("State directory: %s", Path(cfg.state_dir).resolve())
    logger.info("Config directory: %s", Path(cfg.config_dir).resolve())

    previous = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        if args.list:
            store = StateStore.in_dir(cfg.state_dir)
            _print_status(Orchestrator(build_registry(), store, StepContext(config=cfg)), out)
            return 0
        if args.reset:
            StateStore.in_dir(cfg.state_dir).reset(lambda q: confirm_typed(q, input_fn=input_fn))
            return 0
        if args.audit:
            return run_audit(cfg, report=args.report, out=out)

        return run_install(
            cfg,
            _phase_arg(args),
            preflight=not args.no_preflight,
            input_fn=input_fn,
            out=out,
        )
    except KeyboardInterrupt:
        e = InstallInterrupted()
        logger.warning("%s", e)
        return e.exit_code
    except InstallerError as e:
        logger.error("%s", e)
        if isinstance(e, PreflightFailure):
            for check_id, message in e.failures:
                logger.error("  %s: %s", check_id, message)
            logger.error("Please resolve the issues above before continuing")
        return e.exit_code
    except Exception:
        logger.exception("Installer failed")
        return 1
    finally:
        signal.signal(signal.SIGTERM, previous)


if __name__ == "__main__":
    raise SystemExit(main())
