"""
APT/dpkg package manager.

All mutating operations check "already applied" first so that steps built on
them stay idempotent: installing an installed package or removing a missing
one is a no-op that returns False.
"""

from __future__ import annotations

import logging

from pveup.core.system.runner import CommandRunner

logger = logging.getLogger(__name__)

# Keep apt from asking questions; keep existing config files on conflicts.
NONINTERACTIVE_ENV = {
    "DEBIAN_FRONTEND": "noninteractive",
    "DEBIAN_PRIORITY": "critical",
}
DPKG_KEEP_CONFIG = ("-o", "Dpkg::Options::=--force-confdef", "-o", "Dpkg::Options::=--force-confold")


class AptPackageManager:
    """Package manager backed by apt-get and dpkg-query."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def update_indexes(self) -> None:
        self.runner.run(["apt-get", "update"], check=True, capture=False)

    def dist_upgrade(self) -> int:
        """
        Run ``apt-get dist-upgrade`` non-interactively.

        Returns:
            The command's exit code. Callers decide whether non-zero is fatal.
        """
        result = self.runner.run(
            ["apt-get", "dist-upgrade", "-y", *DPKG_KEEP_CONFIG],
            capture=False,
            env=NONINTERACTIVE_ENV,
        )
        return result.returncode

    def is_package_installed(self, name: str) -> bool:
        result = self.runner.run(["dpkg-query", "-W", "-f=${Status}", name])
        return result.ok and "install ok installed" in result.stdout

    def install_package(self, name: str, *, reinstall: bool = False) -> bool:
        """
        Install a package unless it is already installed.

        Args:
            name: Package name
            reinstall: Reinstall even when already installed

        Returns:
            True if apt was invoked, False if nothing needed doing
        """
        if not reinstall and self.is_package_installed(name):
            logger.info("Package %s already installed", name)
            return False
        args = ["apt-get", "install", "-y", *DPKG_KEEP_CONFIG]
        if reinstall:
            args.append("--reinstall")
        args.append(name)
        self.runner.run(args, check=True, capture=False, env=NONINTERACTIVE_ENV)
        return True

    def remove_package(self, name: str) -> bool:
        """Remove a package if installed. Returns False when it was absent."""
        if not self.is_package_installed(name):
            logger.info("Package %s not installed, nothing to remove", name)
            return False
        self.runner.run(
            ["apt-get", "remove", "-y", name], check=True, capture=False, env=NONINTERACTIVE_ENV
        )
        return True

    def autoremove(self) -> None:
        self.runner.run(["apt-get", "autoremove", "-y"], check=True, env=NONINTERACTIVE_ENV)

    def autoclean(self) -> None:
        self.runner.run(["apt-get", "autoclean"], check=True)

    def set_debconf_selection(self, selection: str) -> None:
        """Preseed a debconf answer (``package question type value``)."""
        self.runner.run(["debconf-set-selections"], check=True, input_text=selection + "\n")
