"""
Host wiring.

Builds the concrete collaborators for a real Proxmox VE host from the loaded
configuration, and assembles a RunController around any set of collaborators
(real or fake).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from pveup.core.checks import PreconditionChecker
from pveup.core.config.models import PveupConfig
from pveup.core.gate import ConfirmationGate
from pveup.core.run.controller import RunController
from pveup.core.run.models import RunConfig
from pveup.core.steps import CommandLocator, UpgradeSteps
from pveup.core.system import (
    AptPackageManager,
    BootloaderManager,
    CommandRunner,
    FileRepositoryRewriter,
    GrubBootloaderManager,
    HostProbe,
    PackageManager,
    RepositoryRewriter,
    ServiceController,
    SystemdServiceController,
    SystemHostProbe,
)

if TYPE_CHECKING:
    from pveup.utils.logging import RunLogger


@dataclass
class Host:
    """The collaborators one run talks to."""

    probe: HostProbe
    packages: PackageManager
    repositories: RepositoryRewriter
    bootloader: BootloaderManager
    services: ServiceController
    commands: CommandLocator
    sysroot: Path = Path("/")


def connect_host(config: PveupConfig) -> Host:
    """
    Build collaborators for the local machine.

    Args:
        config: Loaded configuration (``sysroot`` relocates file access)

    Returns:
        Host backed by subprocess, the filesystem and httpx
    """
    sysroot = Path(config.sysroot or "/")
    runner = CommandRunner()
    packages = AptPackageManager(runner)
    return Host(
        probe=SystemHostProbe(
            runner,
            connectivity_host=config.thresholds.connectivity_host,
            sysroot=sysroot,
        ),
        packages=packages,
        repositories=FileRepositoryRewriter(
            timeout=config.repositories.keyring_timeout_seconds,
        ),
        bootloader=GrubBootloaderManager(
            runner,
            packages,
            boot_package=config.packages.boot_package,
            sysroot=sysroot,
        ),
        services=SystemdServiceController(runner),
        commands=runner,
        sysroot=sysroot,
    )


def build_controller(
    config: PveupConfig,
    host: Host,
    *,
    run_config: RunConfig,
    gate: ConfirmationGate,
    run_logger: RunLogger | None = None,
) -> RunController:
    """
    Assemble the step catalog and controller for one run.

    Args:
        config: Loaded configuration
        host: Collaborators to run against
        run_config: Run options (dry run, run id)
        gate: Confirmation gate
        run_logger: Optional JSONL run log

    Returns:
        RunController ready to execute()
    """
    checker = PreconditionChecker(config.thresholds, config.target.major)
    steps = UpgradeSteps(
        config,
        host.probe,
        host.packages,
        host.repositories,
        host.bootloader,
        host.services,
        host.commands,
        checker,
        sysroot=host.sysroot,
    )
    return RunController(
        config=run_config,
        probe=host.probe,
        checker=checker,
        catalog=steps.catalog(),
        gate=gate,
        target_major=config.target.major,
        run_logger=run_logger,
    )
