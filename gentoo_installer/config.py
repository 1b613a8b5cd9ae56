from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError
from .lib.env import PATHS


class KernelMethod(Enum):
    BIN = "bin"  # sys-kernel/gentoo-kernel-bin
    GENKERNEL = "genkernel"  # gentoo-sources built with genkernel
    MANUAL = "manual"  # operator builds the kernel

    @classmethod
    def parse(cls, value: str) -> "KernelMethod":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ConfigError(f"Unknown KERNEL_METHOD: {value!r} (valid options: {valid})") from None


@dataclass(frozen=True)
class InstallConfig:
    disk: Optional[str] = None
    hostname: str = "gentoo"
    primary_user: str = "henninb"
    kernel_method: KernelMethod = KernelMethod.BIN
    locale: str = "en_US.UTF-8"
    timezone: str = "America/Chicago"
    keymap: str = "us"
    mirror_base: str = "https://mirror.bytemark.co.uk/gentoo"
    stage3_profile: str = "desktop-systemd"
    stage3_url: Optional[str] = None
    bootloader_id: str = "gentoo-new"
    efi_dir: str = PATHS.efi_dir
    mount_root: str = PATHS.mount_root
    state_dir: str = PATHS.state_default
    config_dir: str = PATHS.config_default
    dry_run: bool = False
    auto_install_tools: bool = True

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir)

    @property
    def config_path(self) -> Path:
        return Path(self.config_dir)

    def with_disk(self, disk: str) -> "InstallConfig":
        return dataclasses.replace(self, disk=disk)


# environment variable -> field name
ENV_FIELDS = {
    "DISK": "disk",
    "HOSTNAME": "hostname",
    "PRIMARY_USER": "primary_user",
    "KERNEL_METHOD": "kernel_method",
    "LOCALE": "locale",
    "TIMEZONE": "timezone",
    "KEYMAP": "keymap",
    "MIRROR_BASE": "mirror_base",
    "STAGE3_PROFILE": "stage3_profile",
    "STAGE3_URL": "stage3_url",
    "BOOTLOADER_ID": "bootloader_id",
    "EFI_DIR": "efi_dir",
    "MOUNT_ROOT": "mount_root",
    "GENTOO_INSTALLER_STATE_DIR": "state_dir",
    "GENTOO_INSTALLER_CONFIG_DIR": "config_dir",
    "DRY_RUN": "dry_run",
    "AUTO_INSTALL_TOOLS": "auto_install_tools",
}

_BOOL_FIELDS = {"dry_run", "auto_install_tools"}
_TRUE = {"1", "true", "yes", "on"}


def _coerce(name: str, value: Any) -> Any:
    if name == "kernel_method":
        return value if isinstance(value, KernelMethod) else KernelMethod.parse(value)
    if name in _BOOL_FIELDS:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUE
    if value is None:
        return None
    return str(value)


def load_config_file(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {path}")
    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ConfigError("config file must be YAML")

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping/object")
    return raw


def load_config(
    *,
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> InstallConfig:
    """Build the config once: defaults < YAML file < environment < explicit overrides.

    Empty environment values are ignored.
    """

    known = {f.name for f in dataclasses.fields(InstallConfig)}
    values: Dict[str, Any] = {}

    if path:
        for key, value in load_config_file(path).items():
            if key not in known:
                raise ConfigError(f"Unknown config key: {key}")
            values[key] = value

    for env_name, field_name in ENV_FIELDS.items():
        value = (environ or {}).get(env_name)
        if value:
            values[field_name] = value

    for key, value in overrides.items():
        if value is not None:
            values[key] = value

    return InstallConfig(**{k: _coerce(k, v) for k, v in values.items()})
