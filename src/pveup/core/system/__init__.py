"""
External collaborators.

Narrow wrappers around the host's system utilities. The orchestrator core
depends only on the protocols in ``protocols``; the concrete classes here are
what a real Proxmox VE host plugs in.
"""

from pveup.core.system.apt import AptPackageManager
from pveup.core.system.bootloader import GrubBootloaderManager
from pveup.core.system.probe import SystemHostProbe, parse_pveversion
from pveup.core.system.protocols import (
    BootloaderManager,
    HostProbe,
    PackageManager,
    RepositoryRewriter,
    ServiceController,
)
from pveup.core.system.repositories import FileRepositoryRewriter, render_deb822
from pveup.core.system.runner import CommandResult, CommandRunner
from pveup.core.system.services import SystemdServiceController

__all__ = [
    # Protocols
    "BootloaderManager",
    "HostProbe",
    "PackageManager",
    "RepositoryRewriter",
    "ServiceController",
    # Implementations
    "AptPackageManager",
    "CommandResult",
    "CommandRunner",
    "FileRepositoryRewriter",
    "GrubBootloaderManager",
    "SystemHostProbe",
    "SystemdServiceController",
    # Helpers
    "parse_pveversion",
    "render_deb822",
]
