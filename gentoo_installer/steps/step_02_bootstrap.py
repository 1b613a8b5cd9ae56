"""Mount the new partitions, fetch and unpack a stage3 tarball, write fstab."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import List, Optional

from ..lib.block import get_uuid
from ..lib.command import command_exists, probe, retry, run_cmd
from ..lib.net import wait_for_network
from ..lib.storage import PartitionPlan, mount_target
from ..lib.validators import validate_mounts, validate_stage3
from ..pipeline import StepContext

logger = logging.getLogger(__name__)


def autobuilds_url(mirror_base: str) -> str:
    return f"{mirror_base.rstrip('/')}/releases/amd64/autobuilds"


def parse_latest_stage3(text: str) -> Optional[str]:
    """First tarball path listed in a latest-stage3-*.txt index.

    The index may be PGP-signed; signature and comment lines are skipped.
    """

    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith(("#", "-")):
            continue
        path = line.split()[0]
        if ".tar." in path:
            return path
    return None


def latest_stage3_url(mirror_base: str, profile: str) -> str:
    base = autobuilds_url(mirror_base)
    index = f"{base}/latest-stage3-amd64-{profile}.txt"
    logger.info("Fetching latest stage3 information for profile: %s", profile)

    r = probe(["curl", "-sL", index])
    path = parse_latest_stage3(r.stdout) if r.ok else None
    if not path:
        raise RuntimeError(
            f"Failed to determine latest stage3 path from {index}; set STAGE3_URL to a tarball URL manually"
        )
    url = f"{base}/{path}"
    logger.info("Latest stage3 URL: %s", url)
    return url


def sha256_matches(tarball: Path, checksum_text: str) -> bool:
    """Check tarball against a .sha256 file listing '<hex>  <filename>' lines."""

    expected = None
    for line in checksum_text.splitlines():
        fields = line.split()
        if len(fields) >= 2 and fields[-1].lstrip("*") == tarball.name:
            expected = fields[0].lower()
            break
    if expected is None:
        return False

    h = hashlib.sha256()
    with tarball.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest() == expected


def render_fstab(root_uuid: str, esp_uuid: str, efi_dir: str) -> str:
    lines = [
        "# <fs>  <mountpoint>  <type>  <opts>  <dump>  <pass>",
        f"UUID={root_uuid}  /  ext4  defaults,noatime  0  1",
        f"UUID={esp_uuid}  {efi_dir}  vfat  umask=0077  0  2",
    ]
    return "\n".join(lines) + "\n"


class BootstrapStep:
    step_id = "02-bootstrap"

    def run(self, ctx: StepContext) -> bool:
        cfg = ctx.config
        if not cfg.disk:
            raise RuntimeError("config.disk is required to mount the target")

        wait_for_network(dry_run=ctx.dry_run)

        plan = PartitionPlan(disk=cfg.disk)
        mount_target(plan, mount_root=cfg.mount_root, efi_dir=cfg.efi_dir, dry_run=ctx.dry_run)
        if ctx.dry_run:
            logger.info("Dry run: skipping stage3 download and extraction")
            return True
        if not validate_mounts(cfg.mount_root, cfg.efi_dir):
            return False

        root = Path(cfg.mount_root)
        if validate_stage3(cfg.mount_root):
            logger.warning("Stage3 appears to already be extracted")
            if not ctx.confirm("Re-extract stage3? This will overwrite existing files"):
                logger.info("Skipping stage3 extraction")
                return True

        tarball = self._fetch(ctx, root)

        logger.info("Extracting stage3 tarball: %s (this may take several minutes)", tarball.name)
        run_cmd(["tar", "xJpf", str(tarball), "--xattrs", "--numeric-owner", "-C", str(root)])

        if ctx.confirm("Delete stage3 tarball to save space?"):
            for p in (tarball, Path(f"{tarball}.sha256")):
                p.unlink(missing_ok=True)
            logger.info("Stage3 tarball deleted")

        self._write_fstab(ctx, plan, root)
        return validate_stage3(cfg.mount_root)

    def _fetch(self, ctx: StepContext, root: Path) -> Path:
        cfg = ctx.config
        existing: List[Path] = sorted(root.glob(f"stage3-amd64-{cfg.stage3_profile}-*.tar.xz"))
        if existing:
            logger.info("Stage3 tarball already downloaded")
            return existing[0]

        if cfg.stage3_url:
            logger.info("Using provided STAGE3_URL: %s", cfg.stage3_url)
            url = cfg.stage3_url
        else:
            url = latest_stage3_url(cfg.mirror_base, cfg.stage3_profile)

        tarball = root / url.rsplit("/", 1)[-1]
        logger.info("Downloading: %s", tarball.name)
        retry(lambda: run_cmd(["curl", "-L", "-C", "-", url, "-o", str(tarball)]))

        checksum = Path(f"{tarball}.sha256")
        r = run_cmd(["curl", "-sfL", f"{url}.sha256", "-o", str(checksum)], check=False)
        if not r.ok:
            logger.warning("Checksum file not available, skipping verification")
        elif sha256_matches(tarball, checksum.read_text(encoding="utf-8", errors="ignore")):
            logger.info("Checksum verification passed")
        else:
            logger.warning("Checksum verification failed")
            if not ctx.confirm("Continue anyway?"):
                raise RuntimeError(f"Checksum mismatch for {tarball.name}")
        return tarball

    def _write_fstab(self, ctx: StepContext, plan: PartitionPlan, root: Path) -> None:
        cfg = ctx.config
        fstab = root / "etc/fstab"
        logger.info("Generating fstab")

        if command_exists("genfstab"):
            text = run_cmd(["genfstab", "-U", cfg.mount_root]).stdout
        else:
            root_uuid = get_uuid(plan.root_part)
            esp_uuid = get_uuid(plan.esp_part)
            if not root_uuid or not esp_uuid:
                logger.warning("Could not read partition UUIDs, you will need to create /etc/fstab manually")
                return
            text = render_fstab(root_uuid, esp_uuid, cfg.efi_dir)

        fstab.parent.mkdir(parents=True, exist_ok=True)
        with fstab.open("a", encoding="utf-8") as f:
            f.write(text)
