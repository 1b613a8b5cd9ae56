"""Post-condition predicates used by phases to verify their own work.

Each validator returns a bool and logs the reason for a negative answer.
They never raise for a failed condition.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from .block import get_fstype, is_block_device, part_name
from .chroot import is_mountpoint
from .portage import package_installed

logger = logging.getLogger(__name__)

STAGE3_DIRS = ("bin", "etc", "usr", "var", "home")
CRITICAL_PACKAGES = ("sys-apps/systemd", "sys-boot/grub", "net-misc/dhcpcd")


def validate_partitions(disk: str) -> bool:
    boot_part = part_name(disk, 1)
    root_part = part_name(disk, 2)

    for part in (boot_part, root_part):
        if not is_block_device(part):
            logger.error("Partition %s not found", part)
            return False

    if get_fstype(boot_part) != "vfat":
        logger.error("Boot partition %s is not FAT32", boot_part)
        return False
    if get_fstype(root_part) != "ext4":
        logger.error("Root partition %s is not ext4", root_part)
        return False

    logger.info("Disk partitions validated")
    return True


def validate_mounts(mount_root: str, efi_dir: str) -> bool:
    efi_mount = f"{mount_root.rstrip('/')}/{efi_dir.lstrip('/')}"
    for p in (mount_root, efi_mount):
        if not is_mountpoint(p):
            logger.error("%s is not mounted", p)
            return False
    logger.info("Mount points validated")
    return True


def validate_stage3(root: str) -> bool:
    base = Path(root)
    for d in STAGE3_DIRS:
        if not (base / d).is_dir():
            logger.error("Required directory missing: %s", base / d)
            return False
    if not (base / "etc/portage/make.conf").is_file():
        logger.error("Portage not found in stage3")
        return False
    logger.info("Stage3 installation validated")
    return True


def validate_portage_config(root: str) -> bool:
    base = Path(root)
    for rel in ("etc/portage/make.conf", "etc/portage/repos.conf/gentoo.conf"):
        if not (base / rel).is_file():
            logger.error("Required config file missing: %s", base / rel)
            return False
    if not (base / "var/db/repos/gentoo/profiles").is_dir():
        logger.error("Portage tree not synced")
        return False
    logger.info("Portage configuration validated")
    return True


def validate_kernel(root: str) -> bool:
    boot = Path(root) / "boot"
    if not any(boot.glob("vmlinuz-*")):
        logger.error("No kernel found in %s", boot)
        return False
    if not any(boot.glob("initramfs-*")):
        logger.warning("No initramfs found in %s (may be intentional)", boot)
    src = Path(root) / "usr/src/linux"
    if src.is_dir() and not (src / ".config").is_file():
        logger.warning("Kernel sources present but not configured")
    logger.info("Kernel installation validated")
    return True


def validate_bootloader(root: str, *, efi_dir: str, bootloader_id: str) -> bool:
    base = Path(root)
    if not (base / efi_dir.lstrip("/") / "EFI" / bootloader_id).is_dir():
        logger.error("GRUB not installed to EFI partition")
        return False
    cfg = base / "boot/grub/grub.cfg"
    if not cfg.is_file():
        logger.error("GRUB configuration not generated")
        return False
    if "vmlinuz" not in cfg.read_text(encoding="utf-8", errors="ignore"):
        logger.error("GRUB config does not contain kernel entry")
        return False
    logger.info("Bootloader installation validated")
    return True


def validate_system_packages(root: str, packages: Iterable[str] = CRITICAL_PACKAGES) -> bool:
    for atom in packages:
        if not package_installed(root, atom):
            logger.error("Critical package not installed: %s", atom)
            return False
    logger.info("System packages validated")
    return True


def user_groups(root: str, user: str) -> set[str]:
    groups: set[str] = set()
    group_file = Path(root) / "etc/group"
    if group_file.is_file():
        for line in group_file.read_text(encoding="utf-8", errors="ignore").splitlines():
            fields = line.split(":")
            if len(fields) >= 4 and user in fields[3].split(","):
                groups.add(fields[0])
    return groups


def validate_users(root: str, user: str) -> bool:
    passwd = Path(root) / "etc/passwd"
    lines = passwd.read_text(encoding="utf-8", errors="ignore").splitlines() if passwd.is_file() else []
    if not any(line.startswith(f"{user}:") for line in lines):
        logger.error("User %s not found", user)
        return False
    if "wheel" not in user_groups(root, user):
        logger.warning("User %s not in wheel group", user)
    base = Path(root)
    if not (base / "etc/sudoers").is_file() and not (base / "etc/doas.conf").is_file():
        logger.warning("Neither sudo nor doas is configured")
    logger.info("User configuration validated")
    return True


def validate_locale(root: str, locale: str = "en_US.UTF-8") -> bool:
    base = Path(root)
    locale_gen = base / "etc/locale.gen"
    if not locale_gen.is_file():
        logger.error("%s not found", locale_gen)
        return False
    enabled = [line for line in locale_gen.read_text(encoding="utf-8").splitlines() if line.startswith(locale)]
    if not enabled:
        logger.warning("%s locale not enabled", locale)
    if not (base / "etc/localtime").is_symlink():
        logger.warning("Timezone not configured")
    logger.info("Locale configuration validated")
    return True
