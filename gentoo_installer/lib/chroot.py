from __future__ import annotations

import contextlib
import logging
import os
import shutil
from pathlib import Path
from typing import Iterator, Sequence

from .command import CmdResult, probe, run_cmd

logger = logging.getLogger(__name__)


def in_chroot() -> bool:
    """True when / is not the root of PID 1 (we are inside a chroot)."""

    try:
        ours = os.stat("/")
        init = os.stat("/proc/1/root/.")
    except OSError:
        return False
    return (ours.st_dev, ours.st_ino) != (init.st_dev, init.st_ino)


def is_mountpoint(path: str) -> bool:
    return probe(["mountpoint", "-q", path]).ok


def resolve_target_root(mount_root: str) -> str:
    """Phases after bootstrap operate on / inside the chroot, else on mount_root."""

    return "/" if in_chroot() else mount_root


def target_cmd(
    target_root: str,
    argv: Sequence[str],
    *,
    check: bool = True,
    capture: bool = True,
    dry_run: bool = False,
) -> CmdResult:
    """Run a command against the target system."""

    if target_root == "/":
        return run_cmd(argv, check=check, capture=capture, dry_run=dry_run)
    return run_cmd(["chroot", target_root, *argv], check=check, capture=capture, dry_run=dry_run)


def mount_chroot_binds(target_root: str, *, dry_run: bool = False) -> None:
    # proc as its own mount; sys and dev recursively bound and made slaves
    proc = f"{target_root}/proc"
    if not is_mountpoint(proc):
        run_cmd(["mount", "--types", "proc", "/proc", proc], dry_run=dry_run)
    for src in ("/sys", "/dev"):
        dst = f"{target_root}{src}"
        if is_mountpoint(dst):
            continue
        run_cmd(["mount", "--rbind", src, dst], dry_run=dry_run)
        run_cmd(["mount", "--make-rslave", dst], dry_run=dry_run)

    resolv = Path("/etc/resolv.conf")
    if resolv.exists() and not dry_run:
        dst = Path(target_root) / "etc/resolv.conf"
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy(str(resolv), str(dst), follow_symlinks=True)


def umount_chroot_binds(target_root: str, *, dry_run: bool = False) -> None:
    for p in [f"{target_root}/sys", f"{target_root}/proc", f"{target_root}/dev"]:
        run_cmd(["umount", "-lR", p], check=False, dry_run=dry_run)


@contextlib.contextmanager
def chroot_session(target_root: str, *, dry_run: bool = False) -> Iterator[str]:
    """Bind the pseudo filesystems for the duration of a block.

    A no-op when already running inside the target (target_root == "/").
    """

    if target_root == "/":
        yield target_root
        return

    mount_chroot_binds(target_root, dry_run=dry_run)
    try:
        yield target_root
    finally:
        umount_chroot_binds(target_root, dry_run=dry_run)
