from __future__ import annotations

import logging
import re
from pathlib import Path

from ..lib.chroot import chroot_session, resolve_target_root, target_cmd
from ..lib.validators import validate_locale
from ..pipeline import StepContext

logger = logging.getLogger(__name__)


def _append_line(path: Path, line: str) -> None:
    with path.open("a", encoding="utf-8") as f:
        f.write(line + "\n")


class BaseConfigStep:
    """Locale, timezone, hostname, hosts and console keymap."""

    step_id = "03-base-config"

    def run(self, ctx: StepContext) -> bool:
        cfg = ctx.config
        target_root = resolve_target_root(cfg.mount_root)
        etc = Path(target_root) / "etc"

        if ctx.dry_run:
            logger.info(
                "Dry run: would configure locale=%s timezone=%s hostname=%s keymap=%s under %s",
                cfg.locale,
                cfg.timezone,
                cfg.hostname,
                cfg.keymap,
                etc,
            )
            return True

        with chroot_session(target_root):
            self._locale(target_root, etc, cfg.locale)

            logger.info("Setting timezone: %s", cfg.timezone)
            localtime = etc / "localtime"
            localtime.unlink(missing_ok=True)
            localtime.symlink_to(f"/usr/share/zoneinfo/{cfg.timezone}")
            (etc / "timezone").write_text(cfg.timezone + "\n", encoding="utf-8")

            logger.info("Setting hostname: %s", cfg.hostname)
            (etc / "hostname").write_text(cfg.hostname + "\n", encoding="utf-8")
            self._hosts(etc / "hosts", cfg.hostname)

            logger.info("Setting console keymap: %s", cfg.keymap)
            (etc / "vconsole.conf").write_text(f"KEYMAP={cfg.keymap}\n", encoding="utf-8")

        return validate_locale(target_root, cfg.locale)

    def _locale(self, target_root: str, etc: Path, locale: str) -> None:
        logger.info("Configuring locale: %s", locale)
        locale_gen = etc / "locale.gen"
        text = locale_gen.read_text(encoding="utf-8") if locale_gen.is_file() else ""
        if re.search("^" + re.escape(locale), text, re.MULTILINE):
            logger.info("Locale already configured")
        else:
            charset = locale.rsplit(".", 1)[-1] if "." in locale else "UTF-8"
            _append_line(locale_gen, f"{locale} {charset}")
            target_cmd(target_root, ["locale-gen"])
        (etc / "locale.conf").write_text(f'LANG="{locale}"\n', encoding="utf-8")

    def _hosts(self, hosts: Path, hostname: str) -> None:
        text = hosts.read_text(encoding="utf-8") if hosts.is_file() else ""
        if not re.search(r"127\.0\.0\.1.*localhost", text):
            _append_line(hosts, "127.0.0.1 localhost")
        if hostname not in text:
            logger.info("Adding %s to /etc/hosts", hostname)
            _append_line(hosts, f"127.0.0.1 {hostname}.lan {hostname}")
            _append_line(hosts, f"::1       {hostname}.lan {hostname}")
