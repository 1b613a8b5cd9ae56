from ..pipeline import TaskRegistry
from .step_01_partition import PartitionStep
from .step_02_bootstrap import BootstrapStep
from .step_03_base_config import BaseConfigStep
from .step_04_portage import PortageStep
from .step_05_kernel import KernelStep
from .step_06_bootloader import BootloaderStep
from .step_07_system_pkgs import SystemPackagesStep
from .step_08_users import UsersStep
from .step_09_desktop import DesktopStep
from .step_10_audit import AuditStep


def build_steps():
    return [
        PartitionStep(),
        BootstrapStep(),
        BaseConfigStep(),
        PortageStep(),
        KernelStep(),
        BootloaderStep(),
        SystemPackagesStep(),
        UsersStep(),
        DesktopStep(),
        AuditStep(),
    ]


def build_registry() -> TaskRegistry:
    return TaskRegistry(build_steps())


__all__ = [
    "PartitionStep",
    "BootstrapStep",
    "BaseConfigStep",
    "PortageStep",
    "KernelStep",
    "BootloaderStep",
    "SystemPackagesStep",
    "UsersStep",
    "DesktopStep",
    "AuditStep",
    "build_registry",
    "build_steps",
]
