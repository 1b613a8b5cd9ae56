from __future__ import annotations

import logging

from ..lib.bootloader import install_grub_efi
from ..lib.chroot import chroot_session, is_mountpoint, resolve_target_root
from ..lib.net import wait_for_network
from ..lib.portage import emerge, package_installed
from ..lib.validators import validate_bootloader
from ..pipeline import StepContext

logger = logging.getLogger(__name__)


class BootloaderStep:
    step_id = "06-bootloader"

    def run(self, ctx: StepContext) -> bool:
        cfg = ctx.config
        target_root = resolve_target_root(cfg.mount_root)
        wait_for_network(dry_run=ctx.dry_run)

        efi_mount = f"{target_root.rstrip('/')}/{cfg.efi_dir.lstrip('/')}"
        if not ctx.dry_run and not is_mountpoint(efi_mount):
            raise RuntimeError(f"EFI partition not mounted at {efi_mount}")

        with chroot_session(target_root, dry_run=ctx.dry_run):
            if not package_installed(target_root, "sys-boot/grub"):
                logger.info("Installing GRUB")
                emerge(target_root, ["sys-boot/grub:2"], dry_run=ctx.dry_run)

            install_grub_efi(
                target_root=target_root,
                efi_dir=cfg.efi_dir,
                bootloader_id=cfg.bootloader_id,
                dry_run=ctx.dry_run,
            )

        return ctx.dry_run or validate_bootloader(target_root, efi_dir=cfg.efi_dir, bootloader_id=cfg.bootloader_id)
