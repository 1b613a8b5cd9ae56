from __future__ import annotations

import logging
from pathlib import Path

from .chroot import target_cmd

logger = logging.getLogger(__name__)


def install_grub_efi(
    *,
    target_root: str,
    efi_dir: str,
    bootloader_id: str,
    dry_run: bool = False,
) -> None:
    """Install GRUB for x86_64 EFI targets and generate grub.cfg."""

    # efi_dir is the path as seen from inside the target.
    argv = [
        "grub-install",
        "--target=x86_64-efi",
        f"--efi-directory={efi_dir}",
        f"--bootloader-id={bootloader_id}",
    ]
    existing = Path(target_root) / efi_dir.lstrip("/") / "EFI" / bootloader_id
    if existing.is_dir():
        logger.warning("GRUB already installed, reinstalling")
        argv.append("--recheck")

    target_cmd(target_root, argv, dry_run=dry_run)
    target_cmd(target_root, ["grub-mkconfig", "-o", "/boot/grub/grub.cfg"], dry_run=dry_run)
    logger.info("GRUB EFI installed (id=%s)", bootloader_id)
