from __future__ import annotations

import logging
from typing import List, Tuple

from ..lib.chroot import chroot_session, resolve_target_root, target_cmd
from ..lib.net import wait_for_network
from ..lib.portage import emerge, package_installed, read_package_list
from ..pipeline import StepContext

logger = logging.getLogger(__name__)

DISPLAY_MANAGERS = [("x11-misc/sddm", "sddm"), ("x11-misc/lightdm", "lightdm")]


def enable_guru(target_root: str, *, dry_run: bool = False) -> None:
    logger.info("Enabling GURU repository for Hyprland packages")
    if not package_installed(target_root, "app-eselect/eselect-repository"):
        emerge(target_root, ["app-eselect/eselect-repository"], dry_run=dry_run)

    listing = target_cmd(target_root, ["eselect", "repository", "list"], check=False, dry_run=dry_run)
    if any("guru" in line and "*" in line for line in listing.stdout.splitlines()):
        logger.info("GURU repository already enabled")
    else:
        target_cmd(target_root, ["eselect", "repository", "enable", "guru"], dry_run=dry_run)

    logger.info("Syncing GURU repository (this may take a few minutes)")
    target_cmd(target_root, ["emaint", "sync", "-r", "guru"], dry_run=dry_run)


def install_best_effort(target_root: str, atoms: List[str], *, dry_run: bool = False) -> Tuple[List[str], List[str]]:
    """Install each atom, tolerating failures; return (failed, not_found)."""

    failed: List[str] = []
    not_found: List[str] = []
    for atom in atoms:
        if package_installed(target_root, atom):
            logger.info("%s already installed", atom)
            continue
        logger.info("Installing %s...", atom)
        try:
            emerge(target_root, [atom], dry_run=dry_run)
        except RuntimeError:
            search = target_cmd(target_root, ["emerge", "--search", f"^{atom}$"], check=False)
            if "Latest version available" in search.stdout:
                logger.error("Failed to install %s", atom)
                failed.append(atom)
            else:
                logger.warning("%s not found in repositories (may need overlay or keyword)", atom)
                not_found.append(atom)
    return failed, not_found


class DesktopStep:
    """Hyprland desktop from the GURU overlay; individual package failures are tolerated."""

    step_id = "09-desktop"

    def run(self, ctx: StepContext) -> bool:
        cfg = ctx.config
        target_root = resolve_target_root(cfg.mount_root)

        packages_file = cfg.config_path / "desktop-packages.txt"
        if not packages_file.is_file():
            logger.warning("Desktop packages file not found: %s; skipping desktop installation", packages_file)
            return True

        wait_for_network(dry_run=ctx.dry_run)

        with chroot_session(target_root, dry_run=ctx.dry_run):
            enable_guru(target_root, dry_run=ctx.dry_run)

            logger.info("Installing desktop packages from %s (this will take a LONG time)", packages_file)
            failed, not_found = install_best_effort(
                target_root, read_package_list(packages_file), dry_run=ctx.dry_run
            )

            for atom, service in DISPLAY_MANAGERS:
                if package_installed(target_root, atom):
                    logger.info("Enabling %s display manager", service)
                    target_cmd(target_root, ["systemctl", "enable", service], dry_run=ctx.dry_run)
                    break
            else:
                logger.info("No display manager found; start Hyprland manually or add a login manager")

        if failed:
            logger.warning("The following packages failed to install: %s", " ".join(failed))
        if not_found:
            logger.warning("The following packages were skipped (not found): %s", " ".join(not_found))
        if failed or not_found:
            logger.warning("Desktop installation completed with some issues")
        else:
            logger.info("All desktop packages installed successfully")
        return True
