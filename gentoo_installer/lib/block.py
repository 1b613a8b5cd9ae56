from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .command import probe

logger = logging.getLogger(__name__)

GIB = 1024 * 1024 * 1024
MIB = 1024 * 1024


@dataclass(frozen=True)
class DiskInfo:
    name: str
    size: str

    @property
    def path(self) -> str:
        return f"/dev/{self.name}"


def part_name(disk: str, n: int) -> str:
    # nvme/mmcblk devices use p suffix
    if disk.endswith(tuple("0123456789")):
        return f"{disk}p{n}"
    return f"{disk}{n}"


def is_block_device(dev: str) -> bool:
    p = Path(dev)
    return p.exists() and p.is_block_device()


def get_fstype(dev: str) -> Optional[str]:
    """Return filesystem type for a block device, None if unknown."""

    r = probe(["blkid", "-s", "TYPE", "-o", "value", dev])
    fstype = (r.stdout or "").strip()
    return fstype or None


def get_uuid(dev: str) -> Optional[str]:
    r = probe(["blkid", "-s", "UUID", "-o", "value", dev])
    return (r.stdout or "").strip() or None


def get_size_bytes(dev: str) -> int:
    r = probe(["blockdev", "--getsize64", dev])
    try:
        return int((r.stdout or "").strip())
    except ValueError:
        return 0


def has_partition_table(disk: str) -> bool:
    r = probe(["parted", "-s", disk, "print"])
    return "Partition Table" in (r.stdout or "")


def list_disks(sys_block: str = "/sys/block") -> List[DiskInfo]:
    """Detect installable disks, via lsblk first then /sys/block."""

    disks: List[DiskInfo] = []
    r = probe(["lsblk", "-ndo", "NAME,SIZE,TYPE"])
    if r.ok:
        for line in r.stdout.splitlines():
            fields = line.split()
            if len(fields) == 3 and fields[2] == "disk":
                disks.append(DiskInfo(name=fields[0], size=fields[1]))
    if disks:
        return disks

    logger.info("lsblk unavailable, using fallback disk detection")
    root = Path(sys_block)
    if not root.is_dir():
        return disks
    for entry in sorted(root.iterdir()):
        name = entry.name
        if not name.startswith(("sd", "vd", "nvme")):
            continue
        size = ""
        try:
            sectors = int((entry / "size").read_text(encoding="utf-8").strip())
            size = f"{sectors * 512 // GIB}G"
        except (OSError, ValueError):
            pass
        disks.append(DiskInfo(name=name, size=size))
    return disks
