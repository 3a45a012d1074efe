"""
Collaborator protocols.

The orchestrator never embeds package-manager, bootloader or service logic.
It talks to these narrow interfaces, so a real host, a container test bed or
an in-memory fake can stand behind them interchangeably.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from pveup.core.models import HostState, Version


@runtime_checkable
class HostProbe(Protocol):
    """Version/state probe. Reads the host, never mutates it."""

    def probe_version(self) -> Version | None:
        """Installed Proxmox VE version, or None when unparseable."""
        ...

    def probe_kernel(self) -> str:
        """Running kernel release."""
        ...

    def probe_disk_free_gb(self, path: str = "/") -> int:
        """Free space at ``path`` in whole gigabytes."""
        ...

    def probe_network_reachable(self, host: str) -> bool:
        """Whether ``host`` answers a ping."""
        ...

    def sample(self) -> HostState:
        """Capture a fresh HostState."""
        ...


@runtime_checkable
class PackageManager(Protocol):
    """Package manager operations used by the upgrade steps."""

    def update_indexes(self) -> None:
        ...

    def dist_upgrade(self) -> int:
        """Run a full distribution upgrade and return its exit code."""
        ...

    def install_package(self, name: str, *, reinstall: bool = False) -> bool:
        """Install ``name``; False when it was already installed."""
        ...

    def remove_package(self, name: str) -> bool:
        """Remove ``name``; False when it was not installed."""
        ...

    def is_package_installed(self, name: str) -> bool:
        ...

    def autoremove(self) -> None:
        ...

    def autoclean(self) -> None:
        ...

    def set_debconf_selection(self, selection: str) -> None:
        ...


@runtime_checkable
class RepositoryRewriter(Protocol):
    """APT source and keyring maintenance."""

    def backup_file(self, path: Path) -> Path:
        ...

    def write_repository_config(self, content: str, path: Path) -> bool:
        """Write ``content`` to ``path``; False when it was already there."""
        ...

    def replace_suite(self, path: Path, old: str, new: str) -> bool:
        ...

    def find_files_mentioning(self, directory: Path, pattern: str, needle: str) -> list[Path]:
        ...

    def fetch_and_verify_keyring(self, url: str, expected_checksum: str, dest: Path) -> bool:
        """Download a keyring and verify it; False when ``dest`` already exists."""
        ...


@runtime_checkable
class BootloaderManager(Protocol):
    """Bootloader inspection and repair."""

    def update_boot_config(self) -> bool:
        ...

    def is_uefi(self) -> bool:
        ...

    def reinstall_boot_package(self) -> None:
        ...

    def has_removable_loader(self) -> bool:
        ...

    def esp_mounted(self) -> bool:
        ...

    def installed_kernels(self, series: str) -> list[str]:
        ...


@runtime_checkable
class ServiceController(Protocol):
    """systemd service control."""

    def restart_service(self, name: str) -> None:
        ...

    def reboot(self) -> None:
        ...
