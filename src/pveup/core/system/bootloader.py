"""
Bootloader inspection and repair (GRUB, UEFI).
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from pveup.core.system.protocols import PackageManager
from pveup.core.system.runner import CommandRunner

logger = logging.getLogger(__name__)

FORCE_EXTRA_REMOVABLE = "{package} grub2/force_efi_extra_removable boolean true"


class GrubBootloaderManager:
    """
    GRUB bootloader manager.

    Attributes:
        runner: Command runner
        packages: Package manager used for (re)installing GRUB
        boot_package: GRUB package for UEFI systems
        sysroot: Filesystem root (``/`` on a real host)
    """

    def __init__(
        self,
        runner: CommandRunner,
        packages: PackageManager,
        *,
        boot_package: str = "grub-efi-amd64",
        sysroot: Path = Path("/"),
    ) -> None:
        self.runner = runner
        self.packages = packages
        self.boot_package = boot_package
        self.sysroot = sysroot

    def is_uefi(self) -> bool:
        return (self.sysroot / "sys/firmware/efi").is_dir()

    def has_removable_loader(self) -> bool:
        """Whether the EFI fallback loader (removable media path) exists."""
        return (self.sysroot / "boot/efi/EFI/BOOT/BOOTX64.efi").exists()

    def esp_mounted(self) -> bool:
        result = self.runner.run(["mountpoint", "-q", str(self.sysroot / "boot/efi")])
        return result.ok

    def update_boot_config(self) -> bool:
        """
        Regenerate grub.cfg when GRUB is configured on this host.

        Returns:
            True if update-grub ran, False when /etc/default/grub is absent
        """
        if not (self.sysroot / "etc/default/grub").exists():
            logger.info("No /etc/default/grub, skipping update-grub")
            return False
        self.runner.run(["update-grub"], check=True)
        return True

    def reinstall_boot_package(self) -> None:
        """Preseed the removable-media answer and reinstall the GRUB EFI package."""
        self.packages.set_debconf_selection(
            FORCE_EXTRA_REMOVABLE.format(package=self.boot_package)
        )
        self.packages.install_package(self.boot_package, reinstall=True)

    def installed_kernels(self, series: str) -> list[str]:
        """
        Kernel releases under /boot for ``series`` (e.g. "6.14"), oldest first.
        """
        pattern = re.compile(rf"^vmlinuz-({re.escape(series)}\.\d+-\d+-pve)$")
        found = []
        for path in (self.sysroot / "boot").glob("vmlinuz-*"):
            if match := pattern.match(path.name):
                found.append(match.group(1))
        return sorted(found, key=_release_key)


def _release_key(release: str) -> tuple[int, ...]:
    return tuple(int(part) for part in re.findall(r"\d+", release))
