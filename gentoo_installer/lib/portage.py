from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable, List, Sequence

from .chroot import target_cmd

logger = logging.getLogger(__name__)


def package_installed(target_root: str, atom: str) -> bool:
    """Return True if category/name has an entry in the target's vdb.

    Reads /var/db/pkg directly so it works from outside the chroot too.
    """

    category, _, name = atom.partition("/")
    if not name:
        return False
    name = name.split(":", 1)[0]
    cat_dir = Path(target_root) / "var/db/pkg" / category
    if not cat_dir.is_dir():
        return False
    return any(p.is_dir() and p.name.startswith(f"{name}-") for p in cat_dir.iterdir())


def installed_packages(target_root: str) -> List[str]:
    root = Path(target_root) / "var/db/pkg"
    if not root.is_dir():
        return []
    return sorted(f"{c.name}/{p.name}" for c in root.iterdir() if c.is_dir() for p in c.iterdir() if p.is_dir())


def emerge(target_root: str, atoms: Sequence[str], *, dry_run: bool = False) -> None:
    if not atoms:
        return
    target_cmd(target_root, ["emerge", "--update", "--newuse", *atoms], dry_run=dry_run)


def emerge_missing(target_root: str, atoms: Iterable[str], *, dry_run: bool = False) -> List[str]:
    """Install each atom not already present; return the atoms that failed."""

    failures: List[str] = []
    for atom in atoms:
        if package_installed(target_root, atom):
            logger.info("%s already installed", atom)
            continue
        logger.info("Installing %s", atom)
        try:
            emerge(target_root, [atom], dry_run=dry_run)
        except RuntimeError as e:
            logger.error("Failed to install %s: %s", atom, e)
            failures.append(atom)
    return failures


def sync_tree(target_root: str, *, dry_run: bool = False) -> None:
    if (Path(target_root) / "var/db/repos/gentoo/profiles").is_dir():
        logger.info("Portage tree already synced, updating")
        target_cmd(target_root, ["emerge", "--sync"], dry_run=dry_run)
    else:
        logger.info("Syncing Portage tree (this may take several minutes)")
        target_cmd(target_root, ["emerge-webrsync"], dry_run=dry_run)


def read_package_list(path: Path) -> List[str]:
    """Read a declarative package list: one atom per line, # comments."""

    atoms: List[str] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        atoms.append(line)
    return atoms


# source file in the config dir -> destination under /etc/portage
PORTAGE_CONFIG_FILES = [
    ("make.conf", "make.conf"),
    ("package.accept_keywords", "package.accept_keywords/zzz-custom"),
    ("package.unmask", "package.unmask/zzz-custom"),
    ("package.mask", "package.mask/zzz-custom"),
    ("package.license", "package.license/zzz-custom"),
    ("package.env", "package.env/zzz-custom"),
]


def apply_portage_config(target_root: str, config_dir: Path, *, dry_run: bool = False) -> List[str]:
    """Copy portage overrides from config_dir into the target; return what was installed."""

    etc = Path(target_root) / "etc/portage"
    installed: List[str] = []

    for src_name, dst_rel in PORTAGE_CONFIG_FILES:
        src = config_dir / src_name
        if not src.is_file():
            continue
        dst = etc / dst_rel
        logger.info("Installing %s -> %s", src, dst)
        if not dry_run:
            dst.parent.mkdir(parents=True, exist_ok=True)
            if dst.exists() and src_name == "make.conf":
                shutil.copy2(str(dst), str(dst) + ".bak")
            shutil.copy2(str(src), str(dst))
        installed.append(dst_rel)

    use_dir = config_dir / "package.use"
    if use_dir.is_dir():
        for src in sorted(use_dir.iterdir()):
            if not src.is_file():
                continue
            dst = etc / "package.use" / src.name
            logger.info("Installing %s -> %s", src, dst)
            if not dry_run:
                dst.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(str(src), str(dst))
            installed.append(f"package.use/{src.name}")

    return installed
