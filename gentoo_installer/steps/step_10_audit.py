from __future__ import annotations

import logging

from ..audit import AuditContext, detect_environment, run_complete_audit
from ..audit_checks import DEFAULT_CHECKS
from ..pipeline import StepContext

logger = logging.getLogger(__name__)


class AuditStep:
    step_id = "10-audit"

    def run(self, ctx: StepContext) -> bool:
        cfg = ctx.config
        actx = AuditContext(
            environment=detect_environment(cfg.mount_root),
            disk=cfg.disk or "/dev/sda",
            mount_root=cfg.mount_root,
            efi_dir=cfg.efi_dir,
            locale=cfg.locale,
        )
        passed, report = run_complete_audit(actx, DEFAULT_CHECKS, state_dir=cfg.state_dir)
        if passed:
            return True

        logger.warning("Installation audit found %d failure(s)", report.fail_count)
        if ctx.confirm("Continue anyway (mark audit phase as complete)?"):
            logger.warning("Audit phase marked complete despite issues")
            return True
        return False
