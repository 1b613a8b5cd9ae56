from __future__ import annotations

import logging
from typing import List

from ..lib.chroot import chroot_session, resolve_target_root, target_cmd
from ..lib.net import wait_for_network
from ..lib.portage import emerge_missing, read_package_list
from ..lib.validators import validate_system_packages
from ..pipeline import StepContext

logger = logging.getLogger(__name__)

ESSENTIAL_PACKAGES = [
    "app-admin/sudo",
    "app-admin/doas",
    "app-admin/sysklogd",
    "net-misc/dhcpcd",
    "sys-process/cronie",
    "sys-apps/mlocate",
    "app-portage/gentoolkit",
]
SERVICES = ["sshd", "dhcpcd", "cronie"]


def enable_services(target_root: str, services: List[str], *, dry_run: bool = False) -> None:
    for service in services:
        if not dry_run and target_cmd(target_root, ["systemctl", "is-enabled", service], check=False).ok:
            logger.info("%s already enabled", service)
            continue
        logger.info("Enabling %s", service)
        r = target_cmd(target_root, ["systemctl", "enable", service], check=False, dry_run=dry_run)
        if not r.ok:
            logger.warning("Failed to enable %s", service)


class SystemPackagesStep:
    step_id = "07-system-pkgs"

    def run(self, ctx: StepContext) -> bool:
        cfg = ctx.config
        target_root = resolve_target_root(cfg.mount_root)
        wait_for_network(dry_run=ctx.dry_run)

        with chroot_session(target_root, dry_run=ctx.dry_run):
            logger.info("Installing essential system packages")
            failures = emerge_missing(target_root, ESSENTIAL_PACKAGES, dry_run=ctx.dry_run)

            world = cfg.config_path / "world.txt"
            if world.is_file():
                logger.info("Installing packages from %s", world)
                failures += emerge_missing(target_root, read_package_list(world), dry_run=ctx.dry_run)
            else:
                logger.warning("No world.txt found at %s, skipping additional packages", world)

            logger.info("Enabling system services")
            enable_services(target_root, SERVICES, dry_run=ctx.dry_run)

        if failures:
            raise RuntimeError(f"The following packages failed to install: {' '.join(failures)}")

        return ctx.dry_run or validate_system_packages(target_root)
