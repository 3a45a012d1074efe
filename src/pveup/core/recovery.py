"""
Error/recovery reporter.

Maps a failing step to a failure category, and a category to an ordered list
of human-actionable recovery steps. Both tables are static. The reporter
only prints guidance; it never remediates anything itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pveup.core.errors import ExitCode


class FailureCategory(str, Enum):
    """Broad cause of a fatal step."""

    NETWORK = "network"
    PACKAGE_MANAGER = "package-manager"
    BOOT_CONFIGURATION = "boot-configuration"
    PRECONDITION = "precondition"
    UNKNOWN = "unknown"


_STATUS_CHECKS = (
    "pveversion",
    "uname -r",
    "systemctl status pve-cluster pvedaemon pveproxy",
)

RECOVERY_STEPS: dict[FailureCategory, tuple[str, ...]] = {
    FailureCategory.NETWORK: (
        "ping -c 1 download.proxmox.com",
        "cat /etc/resolv.conf  # confirm a working nameserver",
        "ip route  # confirm a default route exists",
        "Check any proxy settings (http_proxy / /etc/apt/apt.conf.d/)",
        "Re-run pveup upgrade once connectivity is restored",
    ),
    FailureCategory.PACKAGE_MANAGER: (
        *_STATUS_CHECKS,
        "dpkg --configure -a",
        "apt --fix-broken install",
        "apt update && apt dist-upgrade",
        "Re-run pveup upgrade; completed steps are skipped or re-applied safely",
    ),
    FailureCategory.BOOT_CONFIGURATION: (
        *_STATUS_CHECKS,
        "apt install --reinstall grub-efi-amd64",
        "update-grub",
        "ls /boot/vmlinuz-*  # confirm the new kernel is installed",
        "Do not reboot until a bootable kernel and GRUB configuration are present",
    ),
    FailureCategory.PRECONDITION: (
        "No changes were made to the system",
        "Resolve the reported condition (version, disk space, connectivity, root)",
        "Re-run pveup upgrade --dry-run to re-check preconditions",
    ),
    FailureCategory.UNKNOWN: (
        *_STATUS_CHECKS,
        "If partially upgraded: apt update && apt dist-upgrade",
        "If partially upgraded: apt install --reinstall grub-efi-amd64",
        "Reboot if a new kernel is available",
        "If the system is broken: boot from rescue media and restore from backups",
        "Check logs: journalctl -xe",
    ),
}

STEP_CATEGORIES: dict[str, FailureCategory] = {
    "preflight": FailureCategory.NETWORK,
    "requirements": FailureCategory.PACKAGE_MANAGER,
    "upgrade-to-latest-source-release": FailureCategory.PACKAGE_MANAGER,
    "run-migration-checklist": FailureCategory.PACKAGE_MANAGER,
    "rewrite-repositories": FailureCategory.NETWORK,
    "perform-major-upgrade": FailureCategory.PACKAGE_MANAGER,
    "install-target-kernel": FailureCategory.BOOT_CONFIGURATION,
    "fix-boot-config": FailureCategory.BOOT_CONFIGURATION,
    "cleanup": FailureCategory.PACKAGE_MANAGER,
}


@dataclass(frozen=True)
class RecoveryGuidance:
    """Recovery instructions printed after a fatal termination."""

    step_name: str
    exit_code: int
    category: FailureCategory
    steps: tuple[str, ...]

    @property
    def title(self) -> str:
        return f"Step '{self.step_name}' failed ({self.category.value}, exit code {self.exit_code})"


def categorize(step_name: str, exit_code: int) -> FailureCategory:
    """Pick the failure category for a failing step."""
    if exit_code == ExitCode.PRECONDITION_FAILED:
        return FailureCategory.PRECONDITION
    return STEP_CATEGORIES.get(step_name, FailureCategory.UNKNOWN)


def report(step_name: str, exit_code: int) -> RecoveryGuidance:
    """
    Build recovery guidance for a failing step.

    Args:
        step_name: Name of the step that failed
        exit_code: Exit status the run terminates with (1 or 3)

    Returns:
        RecoveryGuidance with an ordered list of recovery steps
    """
    category = categorize(step_name, exit_code)
    return RecoveryGuidance(
        step_name=step_name,
        exit_code=exit_code,
        category=category,
        steps=RECOVERY_STEPS[category],
    )
