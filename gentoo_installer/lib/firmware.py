from __future__ import annotations

from pathlib import Path


def detect_boot_mode(efi_path: str = "/sys/firmware/efi") -> str:
    """Detect how the *currently running* environment was booted.

    Returns: 'UEFI' or 'BIOS'.
    """

    if Path(efi_path).is_dir():
        return "UEFI"
    return "BIOS"
