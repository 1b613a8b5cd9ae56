from __future__ import annotations

import logging

from ..lib.chroot import chroot_session, resolve_target_root, target_cmd
from ..lib.command import retry
from ..lib.net import wait_for_network
from ..lib.portage import apply_portage_config, sync_tree
from ..lib.validators import validate_portage_config
from ..pipeline import StepContext

logger = logging.getLogger(__name__)


class PortageStep:
    step_id = "04-portage"

    def run(self, ctx: StepContext) -> bool:
        cfg = ctx.config
        target_root = resolve_target_root(cfg.mount_root)
        wait_for_network(dry_run=ctx.dry_run)

        with chroot_session(target_root, dry_run=ctx.dry_run):
            retry(lambda: sync_tree(target_root, dry_run=ctx.dry_run))

            logger.info("Checking Gentoo news")
            target_cmd(target_root, ["eselect", "news", "read", "--quiet", "new"], check=False, dry_run=ctx.dry_run)

            if cfg.config_path.is_dir():
                logger.info("Applying Portage configurations from %s", cfg.config_path)
                installed = apply_portage_config(target_root, cfg.config_path, dry_run=ctx.dry_run)
                logger.info("Installed %d portage config file(s)", len(installed))
            else:
                logger.warning("Config directory %s not found, using defaults", cfg.config_path)

            target_cmd(target_root, ["emerge", "--info"], dry_run=ctx.dry_run)
            target_cmd(target_root, ["etc-update", "--automode", "-5"], check=False, dry_run=ctx.dry_run)

        return ctx.dry_run or validate_portage_config(target_root)
