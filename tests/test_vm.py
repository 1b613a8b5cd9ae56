"""
Tests for the libvirt VM harness
================================

virsh and qemu-img are replaced by recorders; nothing touches libvirt.
"""

import pytest

from gentoo_installer import vm
from gentoo_installer.lib.command import CmdResult


def result(argv, stdout="", returncode=0):
    return CmdResult(list(argv), returncode, stdout, "")


class FakeVirsh:
    """Answers domain listing queries and records mutating commands."""

    def __init__(self, all_vms=(), running=(), snapshots=(), nvram_ok=True):
        self.all_vms = list(all_vms)
        self.running = list(running)
        self.snapshots = list(snapshots)
        self.nvram_ok = nvram_ok
        self.ran = []

    def probe(self, argv):
        if "--all" in argv:
            return result(argv, "\n".join(self.all_vms) + "\n")
        if "--state-running" in argv:
            return result(argv, "\n".join(self.running) + "\n")
        if "snapshot-list" in argv:
            return result(argv, "\n".join(self.snapshots) + "\n")
        return result(argv)

    def run_cmd(self, argv, check=True, **kwargs):
        self.ran.append(list(argv))
        if "--nvram" in argv and not self.nvram_ok:
            return result(argv, returncode=1)
        return result(argv)


@pytest.fixture
def virsh(monkeypatch):
    fake = FakeVirsh(all_vms=["gentoo-test"], running=["gentoo-test"], snapshots=["base", "post-install"])
    monkeypatch.setattr(vm, "probe", fake.probe)
    monkeypatch.setattr(vm, "run_cmd", fake.run_cmd)
    return fake


class TestVmSpec:
    def test_session_uses_user_networking(self):
        assert vm.VmSpec().network_arg() == "user,model=virtio"

    def test_system_uses_default_network(self):
        assert vm.VmSpec(uri=vm.SYSTEM_URI).network_arg() == "network=default,model=virtio"
        assert vm.VmSpec(network="br0").network_arg() == "network=br0,model=virtio"

    def test_virt_install_boots_uefi(self):
        argv = vm.VmSpec(disk_path="/tmp/g.qcow2", iso_path="/tmp/arch.iso").virt_install_argv()

        assert argv[argv.index("--boot") + 1] == "uefi"
        assert argv[argv.index("--cdrom") + 1] == "/tmp/arch.iso"
        assert "path=/tmp/g.qcow2,format=qcow2,bus=virtio" in argv


class TestSpecFromArgs:
    def parse(self, *argv, environ=None):
        args = vm.build_parser().parse_args(list(argv))
        return vm.spec_from_args(args, {"HOME": "/home/tester", **(environ or {})})

    def test_defaults(self):
        spec = self.parse("create")

        assert spec.name == "gentoo-test"
        assert spec.disk_path == "/home/tester/.local/share/libvirt/images/gentoo-test.qcow2"
        assert spec.iso_download_dir == "/home/tester/Downloads"
        assert spec.uri == vm.SESSION_URI

    def test_options_win_over_environment(self):
        spec = self.parse("create", "-m", "8192", "--system", environ={"VM_MEMORY": "2048", "VM_CPUS": "2"})

        assert spec.memory_mb == 8192
        assert spec.cpus == 2
        assert spec.uri == vm.SYSTEM_URI

    def test_auto_download_from_environment(self):
        assert self.parse("create", environ={"AUTO_DOWNLOAD": "true"}).auto_download
        assert self.parse("create", "--download").auto_download
        assert not self.parse("create", environ={"AUTO_DOWNLOAD": "false"}).auto_download

    def test_bad_number_is_usage_error(self):
        assert vm.main(["create", "-c", "many"], environ={"HOME": "/home/tester"}) == 2


class TestIsoListing:
    def test_picks_iso_not_signature(self):
        listing = (
            '<a href="archlinux-2024.06.01-x86_64.iso.sig">sig</a>\n'
            '<a href="archlinux-2024.06.01-x86_64.iso">iso</a>\n'
        )
        assert vm.latest_arch_iso_name(listing) == "archlinux-2024.06.01-x86_64.iso"

    def test_no_iso(self):
        assert vm.latest_arch_iso_name("<html></html>") is None


class TestLifecycle:
    def test_destroy_removes_snapshots_domain_and_disk(self, virsh, tmp_path):
        disk = tmp_path / "gentoo-test.qcow2"
        disk.write_bytes(b"qcow")

        vm.destroy_vm(vm.VmSpec(disk_path=str(disk)))

        uri = vm.SESSION_URI
        assert virsh.ran == [
            ["virsh", "--connect", uri, "snapshot-delete", "gentoo-test", "base"],
            ["virsh", "--connect", uri, "snapshot-delete", "gentoo-test", "post-install"],
            ["virsh", "--connect", uri, "destroy", "gentoo-test"],
            ["virsh", "--connect", uri, "undefine", "gentoo-test", "--nvram"],
        ]
        assert not disk.exists()

    def test_undefine_falls_back_without_nvram(self, virsh):
        virsh.nvram_ok = False

        vm.undefine(vm.SESSION_URI, "gentoo-test")

        assert virsh.ran[-1] == ["virsh", "--connect", vm.SESSION_URI, "undefine", "gentoo-test"]

    def test_keep_disk(self, virsh, tmp_path):
        disk = tmp_path / "gentoo-test.qcow2"
        disk.write_bytes(b"qcow")

        vm.destroy_vm(vm.VmSpec(disk_path=str(disk)), delete_snapshots=False, delete_disk=False)

        assert disk.exists()
        assert not any("snapshot-delete" in argv for argv in virsh.ran)

    def test_create_refuses_existing_vm(self, virsh, tmp_path):
        with pytest.raises(vm.UsageError):
            vm.create_vm(vm.VmSpec(disk_path=str(tmp_path / "d.qcow2"), iso_path="/tmp/arch.iso"))

    def test_create_new_vm(self, virsh, tmp_path):
        virsh.all_vms = []
        disk = tmp_path / "images/d.qcow2"

        vm.create_vm(vm.VmSpec(disk_path=str(disk), iso_path="/tmp/arch.iso", disk_size_gb=30))

        assert virsh.ran[0] == ["qemu-img", "create", "-f", "qcow2", str(disk), "30G"]
        assert virsh.ran[1][0] == "virt-install"
        assert disk.parent.is_dir()

    def test_destroy_cancelled_without_typed_yes(self, virsh, monkeypatch):
        monkeypatch.setattr(vm, "check_requirements", lambda uri, commands: None)

        assert vm.main(["destroy"], environ={"HOME": "/home/tester"}, input_fn=lambda p: "y", out=lambda s: None) == 0
        assert virsh.ran == []

    def test_create_needs_an_iso(self, virsh, monkeypatch):
        monkeypatch.setattr(vm, "check_requirements", lambda uri, commands: None)

        assert vm.main(["create"], environ={"HOME": "/home/tester"}, out=lambda s: None) == 2

    def test_auto_download_fetches_iso(self, virsh, monkeypatch, tmp_path):
        monkeypatch.setattr(vm, "check_requirements", lambda uri, commands: None)
        iso = tmp_path / "archlinux-2024.06.01-x86_64.iso"
        monkeypatch.setattr(vm, "download_arch_iso", lambda download_dir: str(iso))
        virsh.all_vms = []
        environ = {"HOME": str(tmp_path), "AUTO_DOWNLOAD": "true"}

        assert vm.main(["create"], environ=environ, out=lambda s: None) == 0
        assert virsh.ran[1][virsh.ran[1].index("--cdrom") + 1] == str(iso)
