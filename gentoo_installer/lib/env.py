from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paths:
    mount_root: str = "/mnt/gentoo"
    efi_dir: str = "/boot/efi"
    state_default: str = "/var/lib/gentoo-installer"
    config_default: str = "/etc/gentoo-installer"
    completion_file: str = ".completed_phases"
    log_prefix: str = "install"
    report_prefix: str = "audit-report"


PATHS = Paths()
