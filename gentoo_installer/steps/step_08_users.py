from __future__ import annotations

import logging
import os
import re
import shutil
from pathlib import Path

from ..lib.chroot import chroot_session, resolve_target_root, target_cmd
from ..lib.validators import user_groups, validate_users
from ..pipeline import StepContext

logger = logging.getLogger(__name__)

SUDOERS_RULE = "%wheel ALL=(ALL:ALL) NOPASSWD: ALL"


def user_exists(target_root: str, user: str) -> bool:
    passwd = Path(target_root) / "etc/passwd"
    if not passwd.is_file():
        return False
    return any(line.startswith(f"{user}:") for line in passwd.read_text(encoding="utf-8").splitlines())


def backup_file(path: Path) -> None:
    if path.is_file():
        shutil.copy2(str(path), f"{path}.bak")
        logger.info("Backed up %s", path)


def configure_sudo(etc: Path) -> None:
    sudoers = etc / "sudoers"
    if not sudoers.is_file():
        return
    if re.search("^" + re.escape(SUDOERS_RULE), sudoers.read_text(encoding="utf-8"), re.MULTILINE):
        logger.info("sudo already configured for wheel group")
        return
    logger.info("Configuring sudo for wheel group")
    backup_file(sudoers)
    with sudoers.open("a", encoding="utf-8") as f:
        f.write(f"\n# Added by Gentoo installer\n{SUDOERS_RULE}\n")


def configure_doas(etc: Path, user: str) -> None:
    doas = etc / "doas.conf"
    rule = f"permit nopass {user} as root"
    if doas.is_file():
        if re.search(f"^permit nopass {re.escape(user)}", doas.read_text(encoding="utf-8"), re.MULTILINE):
            logger.info("doas already configured for %s", user)
            return
        logger.info("Configuring doas for %s", user)
        backup_file(doas)
        with doas.open("a", encoding="utf-8") as f:
            f.write(f"\n# Added by Gentoo installer\n{rule}\n")
    else:
        logger.info("Creating doas configuration")
        doas.write_text(f"# doas configuration\n{rule}\n", encoding="utf-8")
    os.chmod(doas, 0o600)


class UsersStep:
    step_id = "08-users"

    def run(self, ctx: StepContext) -> bool:
        cfg = ctx.config
        user = cfg.primary_user
        target_root = resolve_target_root(cfg.mount_root)
        etc = Path(target_root) / "etc"

        with chroot_session(target_root, dry_run=ctx.dry_run):
            if user_exists(target_root, user):
                logger.info("User %s already exists", user)
            else:
                logger.info("Creating user %s", user)
                target_cmd(target_root, ["useradd", "-m", "-G", "users,wheel", user], dry_run=ctx.dry_run)
                logger.info("Setting password for %s", user)
                target_cmd(target_root, ["passwd", user], capture=False, dry_run=ctx.dry_run)

            if "wheel" not in user_groups(target_root, user):
                logger.info("Adding %s to wheel group", user)
                target_cmd(target_root, ["usermod", "-aG", "wheel", user], dry_run=ctx.dry_run)

            logger.info("Setting root password")
            target_cmd(target_root, ["passwd", "root"], capture=False, dry_run=ctx.dry_run)

            if ctx.dry_run:
                logger.info("Dry run: skipping sudo/doas configuration")
                return True

            configure_sudo(etc)
            if (Path(target_root) / "usr/bin/doas").exists():
                configure_doas(etc, user)

        return validate_users(target_root, user)
