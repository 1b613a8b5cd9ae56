from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Callable, Dict

from ..config import KernelMethod
from ..lib.chroot import chroot_session, resolve_target_root, target_cmd
from ..lib.net import wait_for_network
from ..lib.portage import emerge_missing
from ..lib.validators import validate_kernel
from ..pipeline import StepContext

logger = logging.getLogger(__name__)

FIRMWARE = "sys-kernel/linux-firmware"
SOURCES = "sys-kernel/gentoo-sources"


def _install(target_root: str, atoms, *, dry_run: bool) -> None:
    failed = emerge_missing(target_root, atoms, dry_run=dry_run)
    if failed:
        raise RuntimeError(f"Failed to install: {' '.join(failed)}")


def install_bin(ctx: StepContext, target_root: str) -> None:
    logger.info("Installing binary kernel (gentoo-kernel-bin)")
    _install(target_root, ["sys-kernel/gentoo-kernel-bin", FIRMWARE], dry_run=ctx.dry_run)


def install_genkernel(ctx: StepContext, target_root: str) -> None:
    logger.info("Installing kernel sources and building with genkernel")
    logger.warning("This will take a long time (30-60 minutes)")
    _install(target_root, [SOURCES, "sys-kernel/genkernel", FIRMWARE], dry_run=ctx.dry_run)

    target_cmd(target_root, ["eselect", "kernel", "list"], dry_run=ctx.dry_run)
    target_cmd(target_root, ["eselect", "kernel", "set", "1"], dry_run=ctx.dry_run)

    custom = ctx.config.config_path / "kernel.config"
    if custom.is_file():
        logger.info("Using custom kernel configuration")
        if not ctx.dry_run:
            shutil.copy2(str(custom), str(Path(target_root) / "usr/src/linux/.config"))
        argv = ["genkernel", "--kernel-config=/usr/src/linux/.config", "--install", "all"]
    else:
        logger.info("Building kernel with default configuration")
        argv = ["genkernel", "--install", "all"]
    target_cmd(target_root, argv, dry_run=ctx.dry_run)


def install_manual(ctx: StepContext, target_root: str) -> None:
    logger.warning("Manual kernel build mode: configure and build the kernel yourself")
    _install(target_root, [SOURCES], dry_run=ctx.dry_run)
    raise RuntimeError("Manual kernel build is not automated. Build your kernel and re-run this phase.")


KERNEL_INSTALLERS: Dict[KernelMethod, Callable[[StepContext, str], None]] = {
    KernelMethod.BIN: install_bin,
    KernelMethod.GENKERNEL: install_genkernel,
    KernelMethod.MANUAL: install_manual,
}


class KernelStep:
    step_id = "05-kernel"

    def run(self, ctx: StepContext) -> bool:
        target_root = resolve_target_root(ctx.config.mount_root)
        wait_for_network(dry_run=ctx.dry_run)

        with chroot_session(target_root, dry_run=ctx.dry_run):
            KERNEL_INSTALLERS[ctx.config.kernel_method](ctx, target_root)

        return ctx.dry_run or validate_kernel(target_root)
