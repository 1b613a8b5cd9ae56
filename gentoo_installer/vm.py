"""libvirt test VM harness for exercising the installer end to end.

``gentoo-vm create`` builds a UEFI qcow2 VM booting a live ISO;
``gentoo-vm destroy`` removes it with its snapshots and disk.
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Mapping, Optional

from .errors import InstallerError, UsageError
from .lib.command import command_exists, probe, run_cmd
from .prompt import InputFn, confirm_typed

logger = logging.getLogger(__name__)

SESSION_URI = "qemu:///session"
SYSTEM_URI = "qemu:///system"
DEFAULT_VM_NAME = "gentoo-test"
ARCH_ISO_MIRROR = "https://geo.mirror.pkgbuild.com/iso/latest"
ARCH_ISO_RE = re.compile(r"archlinux-\d{4}\.\d{2}\.\d{2}-x86_64\.iso(?!\.sig)")
MIN_ISO_BYTES = 500_000_000


def default_disk_path(name: str, home: str) -> str:
    return str(Path(home) / ".local/share/libvirt/images" / f"{name}.qcow2")


@dataclass(frozen=True)
class VmSpec:
    name: str = DEFAULT_VM_NAME
    memory_mb: int = 4096
    cpus: int = 4
    disk_size_gb: int = 40
    disk_path: str = ""
    iso_path: Optional[str] = None
    iso_download_dir: str = ""
    network: Optional[str] = None
    graphics: str = "spice"
    uri: str = SESSION_URI
    auto_download: bool = False

    def network_arg(self) -> str:
        if self.network:
            return f"network={self.network},model=virtio"
        if self.uri == SESSION_URI:
            # user-mode networking needs no libvirt network setup
            return "user,model=virtio"
        return "network=default,model=virtio"

    def virt_install_argv(self) -> List[str]:
        return [
            "virt-install",
            "--connect", self.uri,
            "--name", self.name,
            "--memory", str(self.memory_mb),
            "--vcpus", str(self.cpus),
            "--disk", f"path={self.disk_path},format=qcow2,bus=virtio",
            "--cdrom", str(self.iso_path),
            "--network", self.network_arg(),
            "--os-variant", "linux2022",
            "--boot", "uefi",
            "--graphics", self.graphics,
            "--video", "virtio",
            "--console", "pty,target_type=serial",
            "--noautoconsole",
        ]


def spec_from_args(args: argparse.Namespace, environ: Mapping[str, str]) -> VmSpec:
    """Command-line options win over VM_* environment variables."""

    home = environ.get("HOME") or str(Path.home())

    def pick(opt, env_name: str, default):
        if opt is not None:
            return opt
        return environ.get(env_name) or default

    name = pick(args.name, "VM_NAME", DEFAULT_VM_NAME)
    uri = pick(args.uri, "LIBVIRT_URI", SESSION_URI)
    disk_path = pick(args.disk_path, "VM_DISK_PATH", default_disk_path(name, home))
    try:
        if args.action == "destroy":
            return VmSpec(name=name, disk_path=disk_path, uri=uri)
        return VmSpec(
            name=name,
            memory_mb=int(pick(args.memory, "VM_MEMORY", 4096)),
            cpus=int(pick(args.cpus, "VM_CPUS", 4)),
            disk_size_gb=int(pick(args.disk_size, "VM_DISK_SIZE", 40)),
            disk_path=disk_path,
            iso_path=pick(args.iso, "ISO_PATH", None),
            iso_download_dir=pick(args.download_dir, "ISO_DOWNLOAD_DIR", str(Path(home) / "Downloads")),
            network=pick(args.network, "NETWORK", None),
            graphics=pick(args.graphics, "GRAPHICS", "spice"),
            uri=uri,
            auto_download=args.download or environ.get("AUTO_DOWNLOAD", "").strip().lower() == "true",
        )
    except ValueError as e:
        raise UsageError(f"Invalid numeric option: {e}") from None


def check_requirements(uri: str, commands: List[str]) -> None:
    missing = [c for c in commands if not command_exists(c)]
    if missing:
        raise InstallerError(f"Missing required commands: {' '.join(missing)}")
    if not probe(["virsh", "--connect", uri, "list"]).ok:
        hint = "add your user to the 'libvirt' group" if uri == SYSTEM_URI else "start libvirtd"
        raise InstallerError(f"Cannot connect to libvirt ({uri}); {hint}")
    logger.info("All requirements met")


def vm_exists(uri: str, name: str) -> bool:
    r = probe(["virsh", "--connect", uri, "list", "--all", "--name"])
    return name in {line.strip() for line in r.stdout.splitlines()}


def vm_running(uri: str, name: str) -> bool:
    r = probe(["virsh", "--connect", uri, "list", "--state-running", "--name"])
    return name in {line.strip() for line in r.stdout.splitlines()}


def latest_arch_iso_name(listing: str) -> Optional[str]:
    m = ARCH_ISO_RE.search(listing)
    return m.group(0) if m else None


def download_arch_iso(download_dir: str, *, min_bytes: int = MIN_ISO_BYTES) -> str:
    logger.info("Fetching latest ISO information from Arch Linux mirrors...")
    iso_name = latest_arch_iso_name(probe(["curl", "-s", f"{ARCH_ISO_MIRROR}/"]).stdout)
    if not iso_name:
        raise InstallerError(
            "Failed to determine latest Arch Linux ISO name; download manually from https://archlinux.org/download/"
        )

    target = Path(download_dir) / iso_name
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.is_file():
        if target.stat().st_size > min_bytes:
            logger.info("Using existing ISO: %s", target)
            return str(target)
        logger.warning("Existing ISO appears corrupted (too small), re-downloading")
        target.unlink()

    logger.info("Downloading %s to %s (this may take several minutes)", iso_name, target)
    try:
        run_cmd(["curl", "-L", "-o", str(target), f"{ARCH_ISO_MIRROR}/{iso_name}"], capture=False)
    except RuntimeError:
        target.unlink(missing_ok=True)
        raise

    size = target.stat().st_size
    if size < min_bytes:
        target.unlink()
        raise InstallerError(f"Downloaded ISO appears corrupted (too small: {size} bytes)")
    return str(target)


def undefine(uri: str, name: str) -> None:
    # --nvram for UEFI domains; older libvirt rejects it
    if not run_cmd(["virsh", "--connect", uri, "undefine", name, "--nvram"], check=False).ok:
        run_cmd(["virsh", "--connect", uri, "undefine", name])


def delete_vm(spec: VmSpec) -> None:
    if vm_exists(spec.uri, spec.name):
        logger.warning("VM %s already exists, deleting", spec.name)
        if vm_running(spec.uri, spec.name):
            run_cmd(["virsh", "--connect", spec.uri, "destroy", spec.name])
        undefine(spec.uri, spec.name)
    disk = Path(spec.disk_path)
    if disk.is_file():
        logger.warning("Removing existing disk: %s", disk)
        disk.unlink()


def create_vm(spec: VmSpec, *, delete_existing: bool = False) -> None:
    if delete_existing:
        delete_vm(spec)
    elif vm_exists(spec.uri, spec.name):
        raise UsageError(f"VM {spec.name} already exists; use --delete or choose a different name")

    logger.info(
        "Creating VM %s (memory=%sMB cpus=%s disk=%sGB iso=%s)",
        spec.name,
        spec.memory_mb,
        spec.cpus,
        spec.disk_size_gb,
        spec.iso_path,
    )
    Path(spec.disk_path).parent.mkdir(parents=True, exist_ok=True)
    run_cmd(["qemu-img", "create", "-f", "qcow2", spec.disk_path, f"{spec.disk_size_gb}G"])
    run_cmd(spec.virt_install_argv())
    logger.info("VM created successfully")


def destroy_vm(spec: VmSpec, *, delete_snapshots: bool = True, delete_disk: bool = True) -> None:
    disk = Path(spec.disk_path)
    if not vm_exists(spec.uri, spec.name):
        logger.warning("VM %s does not exist in %s", spec.name, spec.uri)
        if delete_disk and disk.is_file():
            logger.info("Removing orphaned disk file: %s", disk)
            disk.unlink()
        return

    if delete_snapshots:
        r = probe(["virsh", "--connect", spec.uri, "snapshot-list", spec.name, "--name"])
        snapshots = [s.strip() for s in r.stdout.splitlines() if s.strip()]
        for snap in snapshots:
            logger.info("Deleting snapshot: %s", snap)
            run_cmd(["virsh", "--connect", spec.uri, "snapshot-delete", spec.name, snap])
        if not snapshots:
            logger.info("No snapshots found")

    if vm_running(spec.uri, spec.name):
        logger.info("VM is running, destroying...")
        run_cmd(["virsh", "--connect", spec.uri, "destroy", spec.name])

    undefine(spec.uri, spec.name)
    logger.info("VM undefined successfully")

    if not delete_disk:
        logger.info("Keeping disk file: %s", disk)
    elif disk.is_file():
        disk.unlink()
        logger.info("Disk removed: %s", disk)


def _print_vm_info(spec: VmSpec, out: Callable[[str], None]) -> None:
    c = f"--connect {spec.uri}"
    out("")
    out("To connect to the VM console:")
    out(f"  virt-manager {c} --show-domain-console {spec.name}")
    out(f"  virsh {c} console {spec.name}")
    out("")
    out("Snapshots:")
    out(f"  virsh {c} snapshot-create-as {spec.name} snapshot1 'Description'")
    out(f"  virsh {c} snapshot-revert {spec.name} snapshot1")
    out("")
    out(f"Disk image: {spec.disk_path}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="gentoo-vm", description="Create or destroy a libvirt VM for installer testing")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="action", required=True)

    def common(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("-n", "--name", default=None, help=f"VM name (default: {DEFAULT_VM_NAME})")
        sp.add_argument("-p", "--disk-path", default=None, help="VM disk path")
        uri = sp.add_mutually_exclusive_group()
        uri.add_argument("--session", dest="uri", action="store_const", const=SESSION_URI, help="Use qemu:///session")
        uri.add_argument("--system", dest="uri", action="store_const", const=SYSTEM_URI, help="Use qemu:///system")

    create = sub.add_parser("create", help="Create a test VM")
    common(create)
    create.add_argument("-m", "--memory", default=None, help="Memory in MB (default: 4096)")
    create.add_argument("-c", "--cpus", default=None, help="CPU count (default: 4)")
    create.add_argument("-d", "--disk-size", default=None, help="Disk size in GB (default: 40)")
    create.add_argument("-i", "--iso", default=None, help="Path to installation ISO")
    create.add_argument("--network", default=None, help="libvirt network")
    create.add_argument("--graphics", default=None, choices=["spice", "vnc", "none"])
    create.add_argument("--download", action="store_true", help="Download the latest Arch Linux ISO")
    create.add_argument("--download-dir", default=None, help="Directory for ISO download")
    create.add_argument("--delete", action="store_true", help="Delete an existing VM with the same name")

    destroy = sub.add_parser("destroy", help="Destroy a test VM")
    common(destroy)
    destroy.add_argument("--keep-snapshots", action="store_true")
    destroy.add_argument("--keep-disk", action="store_true")
    destroy.add_argument("-f", "--force", action="store_true", help="Do not ask for confirmation")
    return p


def main(
    argv: Optional[List[str]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    input_fn: InputFn = input,
    out: Callable[[str], None] = print,
) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    env = os.environ if environ is None else environ

    try:
        spec = spec_from_args(args, env)
        if args.action == "create":
            tools = ["virt-install", "virsh", "qemu-img"] + (["curl"] if spec.auto_download else [])
            check_requirements(spec.uri, tools)
            if spec.auto_download:
                spec = dataclasses.replace(spec, iso_path=download_arch_iso(spec.iso_download_dir))
            elif not spec.iso_path:
                raise UsageError("ISO path is required (use --iso or --download)")
            elif not Path(spec.iso_path).is_file():
                raise UsageError(f"ISO file not found: {spec.iso_path}")
            create_vm(spec, delete_existing=args.delete)
            _print_vm_info(spec, out)
            return 0

        check_requirements(spec.uri, ["virsh"])
        if not args.force:
            out(f"About to destroy VM {spec.name} ({spec.uri}), disk {spec.disk_path}")
            if not confirm_typed("Are you sure you want to continue?", input_fn=input_fn):
                logger.info("Destruction cancelled")
                return 0
        destroy_vm(spec, delete_snapshots=not args.keep_snapshots, delete_disk=not args.keep_disk)
        return 0
    except InstallerError as e:
        logger.error("%s", e)
        return e.exit_code
    except RuntimeError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
