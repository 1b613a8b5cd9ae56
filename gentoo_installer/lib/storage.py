from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .block import part_name
from .chroot import is_mountpoint
from .command import run_cmd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartitionPlan:
    disk: str
    esp_end_mib: int = 1024
    root_fs: str = "ext4"

    @property
    def esp_part(self) -> str:
        return part_name(self.disk, 1)

    @property
    def root_part(self) -> str:
        return part_name(self.disk, 2)


def partition_and_format(plan: PartitionPlan, *, dry_run: bool = False) -> None:
    """Create a GPT table with an ESP and a root partition, then format both.

    Layout:
    - 1: ESP (FAT32), 1 MiB .. esp_end_mib
    - 2: root (ext4), rest of the disk
    """

    disk = plan.disk
    logger.info("Partitioning %s", disk)

    run_cmd(["parted", "-s", disk, "mklabel", "gpt"], dry_run=dry_run)
    run_cmd(["parted", "-s", disk, "mkpart", "primary", "1", str(plan.esp_end_mib)], dry_run=dry_run)
    run_cmd(["parted", "-s", disk, "set", "1", "esp", "on"], dry_run=dry_run)
    run_cmd(["parted", "-s", disk, "mkpart", "primary", str(plan.esp_end_mib), "100%"], dry_run=dry_run)
    run_cmd(["partprobe", disk], check=False, dry_run=dry_run)

    logger.info("Formatting boot partition (FAT32)")
    run_cmd(["mkfs.fat", "-F32", plan.esp_part], dry_run=dry_run)
    logger.info("Formatting root partition (%s)", plan.root_fs)
    run_cmd(["mkfs.ext4", "-F", "-j", "-b", "4096", plan.root_part], dry_run=dry_run)


def mount_target(plan: PartitionPlan, *, mount_root: str, efi_dir: str, dry_run: bool = False) -> None:
    """Mount root then ESP under mount_root; already-mounted points are left alone."""

    if is_mountpoint(mount_root):
        logger.info("%s already mounted", mount_root)
    else:
        if not dry_run:
            Path(mount_root).mkdir(parents=True, exist_ok=True)
        run_cmd(["mount", plan.root_part, mount_root], dry_run=dry_run)

    efi_mount = f"{mount_root.rstrip('/')}/{efi_dir.lstrip('/')}"
    if is_mountpoint(efi_mount):
        logger.info("%s already mounted", efi_mount)
    else:
        if not dry_run:
            Path(efi_mount).mkdir(parents=True, exist_ok=True)
        run_cmd(["mount", plan.esp_part, efi_mount], dry_run=dry_run)
