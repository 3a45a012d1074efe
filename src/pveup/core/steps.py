"""
Upgrade step catalog.

Each public method of UpgradeSteps is the action of one named step. Actions
talk to the host only through the collaborator protocols and check "already
applied" before mutating, so a run interrupted at any point can be started
again from the first step.

Usage:
    >>> steps = UpgradeSteps(config, probe, packages, repositories, bootloader,
    ...                      services, runner, checker)
    >>> catalog = steps.catalog()
    >>> catalog["verify"].action().data["reboot_required"]
    False
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from typing import Protocol

from pveup.core.checks import PreconditionChecker
from pveup.core.config.models import PveupConfig
from pveup.core.models import CheckKind, HostState, Step, StepOutcome, Version
from pveup.core.system.protocols import (
    BootloaderManager,
    HostProbe,
    PackageManager,
    RepositoryRewriter,
    ServiceController,
)
from pveup.core.system.repositories import render_deb822
from pveup.core.system.runner import CommandResult

logger = logging.getLogger(__name__)

PREFLIGHT = "preflight"
REQUIREMENTS = "requirements"
BACKUP_CONFIRMATION = "backup-confirmation"
UPGRADE_SOURCE = "upgrade-to-latest-source-release"
MIGRATION_CHECKLIST = "run-migration-checklist"
REWRITE_REPOSITORIES = "rewrite-repositories"
MAJOR_UPGRADE = "perform-major-upgrade"
INSTALL_KERNEL = "install-target-kernel"
FIX_BOOT_CONFIG = "fix-boot-config"
CLEANUP = "cleanup"
VERIFY = "verify"

SUBSCRIPTION_NOTICE = "data.status !== 'Active'"
REBOOT_REQUIRED_FLAG = "var/run/reboot-required"
REQUIREMENTS_PROMPT = "Continue with the upgrade despite the requirement warnings above?"


class CommandLocator(Protocol):
    """The part of CommandRunner the steps need for helper tools."""

    def which(self, command: str) -> str | None:
        ...

    def run(self, args: list[str], *, capture: bool = True) -> CommandResult:
        ...


class UpgradeSteps:
    """
    Actions for every step of both pipeline branches.

    Attributes:
        config: Run configuration
        probe: Host probe, re-read after mutating steps
        packages: Package manager
        repositories: Repository rewriter
        bootloader: Bootloader manager
        services: Service controller
        commands: Runs helper tools such as the migration checklist
        checker: Builds step preconditions
        sysroot: Root that configured absolute paths are resolved under
    """

    def __init__(
        self,
        config: PveupConfig,
        probe: HostProbe,
        packages: PackageManager,
        repositories: RepositoryRewriter,
        bootloader: BootloaderManager,
        services: ServiceController,
        commands: CommandLocator,
        checker: PreconditionChecker,
        *,
        sysroot: Path = Path("/"),
    ) -> None:
        self.config = config
        self.probe = probe
        self.packages = packages
        self.repositories = repositories
        self.bootloader = bootloader
        self.services = services
        self.commands = commands
        self.checker = checker
        self.sysroot = sysroot

    def path(self, configured: str) -> Path:
        """Resolve a configured absolute path under the sysroot."""
        return self.sysroot / configured.lstrip("/")

    # -- catalog -------------------------------------------------------------

    def catalog(self) -> dict[str, Step]:
        """
        Build every Step, keyed by name.

        Returns:
            Mapping of step name to Step; ordering is decided by the pipeline
        """
        target = self.config.target
        check = self.checker.precondition
        steps = [
            Step(
                name=PREFLIGHT,
                action=self.preflight,
                precondition=check(
                    CheckKind.RUNNING_AS_ROOT,
                    CheckKind.NETWORK_REACHABILITY,
                    CheckKind.DNS_RESOLUTION,
                    CheckKind.VIRTUAL_MACHINE,
                    CheckKind.ENTROPY_FLOOR,
                    CheckKind.LOAD_FLOOR,
                ),
                description="Check root, connectivity and system health",
            ),
            Step(
                name=REQUIREMENTS,
                action=self.requirements,
                precondition=check(CheckKind.DISK_SPACE_FLOOR, CheckKind.CLUSTER_MEMBERSHIP),
                requires_confirmation=True,
                confirmation_prompt=REQUIREMENTS_PROMPT,
                description=f"Check disk space and install {self.config.packages.session_tool}",
            ),
            Step(
                name=BACKUP_CONFIRMATION,
                action=self.backup_confirmation,
                precondition=check(CheckKind.BACKUP_CONFIRMED),
                requires_confirmation=True,
                confirmation_prompt="Have you completed all necessary backups?",
                description="Confirm that backups exist",
            ),
            Step(
                name=UPGRADE_SOURCE,
                action=self.upgrade_to_latest_source_release,
                postcondition=self._reached_minimum_source,
                description=f"Upgrade to the latest {target.major - 1}.x release",
            ),
            Step(
                name=MIGRATION_CHECKLIST,
                action=self.run_migration_checklist,
                precondition=check(CheckKind.RUNNING_WORKLOADS),
                requires_confirmation=True,
                confirmation_prompt="Do you want to continue with the major upgrade?",
                description=f"Run {self.config.packages.checklist_command} --full",
            ),
            Step(
                name=REWRITE_REPOSITORIES,
                action=self.rewrite_repositories,
                postcondition=self._pve_sources_present,
                description=f"Point APT at {target.target_suite}",
            ),
            Step(
                name=MAJOR_UPGRADE,
                action=self.perform_major_upgrade,
                postcondition=self._on_target_major,
                description=f"Upgrade to Proxmox VE {target.major}",
            ),
            Step(
                name=INSTALL_KERNEL,
                action=self.install_target_kernel,
                postcondition=self._running_target_kernel,
                description=f"Install {target.kernel_package}",
            ),
            Step(
                name=FIX_BOOT_CONFIG,
                action=self.fix_boot_config,
                description="Repair UEFI boot configuration",
            ),
            Step(
                name=CLEANUP,
                action=self.cleanup,
                description="Remove unused packages and tidy the web UI",
            ),
            Step(
                name=VERIFY,
                action=self.verify,
                description="Verify version and kernel",
            ),
        ]
        return {step.name: step for step in steps}

    # -- actions -------------------------------------------------------------

    def preflight(self) -> StepOutcome:
        # Health warnings come from the precondition and are folded in by the controller.
        return StepOutcome.success()

    def requirements(self) -> StepOutcome:
        tool = self.config.packages.session_tool
        if self.packages.is_package_installed(tool):
            return StepOutcome.success()

        logger.info("Installing %s for session persistence", tool)
        self.packages.update_indexes()
        self.packages.install_package(tool)
        if not self.packages.is_package_installed(tool):
            return StepOutcome.with_warnings(
                [f"Could not install {tool}; run the upgrade inside a persistent session"]
            )
        return StepOutcome.success(installed=[tool])

    def backup_confirmation(self) -> StepOutcome:
        return StepOutcome.success()

    def upgrade_to_latest_source_release(self) -> StepOutcome:
        target = self.config.target
        current = self.probe.probe_version()
        if current is not None and current.major >= target.major:
            return StepOutcome.skipped(f"Already on Proxmox VE {current}")

        self.packages.update_indexes()
        warnings = []
        code = self.packages.dist_upgrade()
        if code != 0:
            if code not in self.config.steps.tolerated(UPGRADE_SOURCE):
                return StepOutcome.fatal(code, f"dist-upgrade failed with exit code {code}")
            warnings.append(f"dist-upgrade finished with tolerated exit code {code}")

        reached = self.probe.probe_version()
        if not self._is_upgrade_ready(reached):
            return StepOutcome.fatal(
                1,
                f"Unexpected version after upgrade: {reached or 'unknown'} "
                f"(need {target.major - 1}.{target.minimum_source_minor}.x or {target.major}.x)",
            )
        return StepOutcome.with_warnings(warnings, version=str(reached))

    def run_migration_checklist(self) -> StepOutcome:
        packages = self.config.packages
        target = self.config.target
        warnings = []

        if self.commands.which(packages.checklist_command) is None:
            logger.info(
                "%s not found, installing %s", packages.checklist_command, packages.checklist_provider
            )
            self.packages.update_indexes()
            self.packages.install_package(packages.checklist_provider)

        if self.commands.which(packages.checklist_command) is None:
            warnings.append(
                f"Could not install {packages.checklist_command}. "
                "Proceeding without automated checks."
            )
        else:
            result = self.commands.run([packages.checklist_command, "--full"], capture=False)
            if not result.ok:
                warnings.append("Pre-upgrade checklist found issues - review output above")

        stale = self.repositories.find_files_mentioning(
            self.path(self.config.repositories.sources_dir), "*.list", target.source_suite
        )
        if stale:
            names = ", ".join(p.name for p in stale)
            warnings.append(
                f"Repository files still reference '{target.source_suite}': {names} "
                "(rewritten in the next steps)"
            )
        return StepOutcome.with_warnings(warnings)

    def rewrite_repositories(self) -> StepOutcome:
        repos = self.config.repositories
        target = self.config.target
        sources_dir = self.path(repos.sources_dir)
        keyring = self.path(repos.keyring_path)
        changed: list[str] = []

        legacy = [self.path(repos.sources_list)]
        legacy += self.repositories.find_files_mentioning(sources_dir, "*.list", target.source_suite)
        for path in legacy:
            if self.repositories.replace_suite(path, target.source_suite, target.target_suite):
                changed.append(str(path))

        pve_sources = sources_dir / repos.pve_sources_name
        content = render_deb822(
            uris=repos.pve_uri,
            suites=target.target_suite,
            components=repos.pve_component,
            signed_by=repos.keyring_path,
            architectures=repos.architectures,
        )
        if self.repositories.write_repository_config(content, pve_sources):
            changed.append(str(pve_sources))

        ceph_sources = sources_dir / repos.ceph_sources_name
        if ceph_sources.exists():
            content = render_deb822(
                uris=repos.ceph_uri,
                suites=target.target_suite,
                components=repos.ceph_component,
                signed_by=repos.keyring_path,
            )
            if self.repositories.write_repository_config(content, ceph_sources):
                changed.append(str(ceph_sources))

        # Raises ActionFailure (or KeyringVerificationError) on any problem.
        if self.repositories.fetch_and_verify_keyring(
            repos.keyring_url, repos.keyring_sha256, keyring
        ):
            changed.append(str(keyring))

        if not changed:
            return StepOutcome.skipped("Repository configuration already up to date")
        return StepOutcome.success(changed=changed)

    def perform_major_upgrade(self) -> StepOutcome:
        target = self.config.target
        self.packages.update_indexes()

        removed = [
            name for name in self.config.packages.conflicting if self._remove_if_installed(name)
        ]

        warnings = []
        code = self.packages.dist_upgrade()
        if code != 0:
            if code not in self.config.steps.tolerated(MAJOR_UPGRADE):
                return StepOutcome.fatal(code, f"dist-upgrade failed with exit code {code}")
            warnings.append(f"Upgrade completed with warnings (exit code: {code})")

        reached = self.probe.probe_version()
        if reached is None:
            warnings.append("Could not determine PVE version after upgrade - will verify later")
        elif reached.major != target.major:
            warnings.append(f"Unexpected version after upgrade: {reached}")
        return StepOutcome.with_warnings(
            warnings, version=str(reached) if reached else None, removed=removed
        )

    def install_target_kernel(self) -> StepOutcome:
        target = self.config.target
        installed = []
        if not self.packages.is_package_installed(target.kernel_package):
            self.packages.install_package(target.kernel_package)
            installed.append(target.kernel_package)

        boot_fixes = self._repair_uefi_boot() if self.bootloader.is_uefi() else []
        self.bootloader.update_boot_config()

        kernels = self.bootloader.installed_kernels(target.kernel_series)
        logger.info("Available %s kernels: %s", target.kernel_series, kernels or "none")
        warnings = []
        if not kernels:
            warnings.append(f"No {target.kernel_series} kernel found under /boot")
        return StepOutcome.with_warnings(
            warnings, installed=installed, kernels=kernels, boot_fixes=boot_fixes
        )

    def fix_boot_config(self) -> StepOutcome:
        if not self.bootloader.is_uefi():
            return StepOutcome.skipped("Legacy BIOS boot detected - no UEFI fixes needed")
        fixes = self._repair_uefi_boot()
        if not fixes:
            return StepOutcome.skipped("UEFI boot configuration already correct")
        self.bootloader.update_boot_config()
        return StepOutcome.success(boot_fixes=fixes)

    def cleanup(self) -> StepOutcome:
        self.packages.autoremove()
        self.packages.autoclean()

        patched = False
        if self.config.cleanup.patch_subscription_notice:
            patched = self._patch_subscription_notice()
        return StepOutcome.success(notice_patched=patched)

    def verify(self) -> StepOutcome:
        target = self.config.target
        version = self.probe.probe_version()
        kernel = self.probe.probe_kernel()
        kernels = self.bootloader.installed_kernels(target.kernel_series)
        newest = kernels[-1] if kernels else None
        running_target = bool(
            re.match(rf"{re.escape(target.kernel_series)}.*-pve", kernel or "")
        )

        warnings = []
        if version is None:
            warnings.append("Could not determine PVE version - manual verification required")
        elif version.major != target.major:
            warnings.append(f"Unexpected PVE version: {version}")

        reboot_required = (self.sysroot / REBOOT_REQUIRED_FLAG).exists()
        if not running_target:
            if newest:
                reboot_required = True
                warnings.append(
                    f"New kernel ({newest}) is installed but not running ({kernel}); "
                    "reboot required"
                )
            else:
                warnings.append(
                    f"No {target.kernel_series} kernel found - this may indicate an "
                    "incomplete upgrade"
                )

        return StepOutcome.with_warnings(
            warnings,
            version=str(version) if version else None,
            running_kernel=kernel,
            available_kernel=newest,
            reboot_required=reboot_required,
        )

    # -- helpers -------------------------------------------------------------

    def _remove_if_installed(self, name: str) -> bool:
        if not self.packages.is_package_installed(name):
            return False
        logger.info("Removing conflicting package %s", name)
        return self.packages.remove_package(name)

    def _repair_uefi_boot(self) -> list[str]:
        boot_package = self.config.packages.boot_package
        fixes = []
        if self.bootloader.has_removable_loader() and not self.packages.is_package_installed(
            boot_package
        ):
            self.bootloader.reinstall_boot_package()
            fixes.append(f"reinstalled {boot_package} with removable-media fallback")
        if self.bootloader.esp_mounted() and not self.packages.is_package_installed(
            boot_package
        ):
            self.packages.install_package(boot_package)
            fixes.append(f"installed {boot_package}")
        return fixes

    def _patch_subscription_notice(self) -> bool:
        js = self.path(self.config.cleanup.widget_toolkit_js)
        if not js.exists():
            return False
        text = js.read_text()
        if SUBSCRIPTION_NOTICE not in text:
            return False
        shutil.copy2(js, js.with_name(js.name + ".backup"))
        js.write_text(text.replace(SUBSCRIPTION_NOTICE, "false"))
        logger.info("Patched subscription notice in %s", js)
        self.services.restart_service(self.config.cleanup.proxy_service)
        return True

    def _is_upgrade_ready(self, version: Version | None) -> bool:
        target = self.config.target
        if version is None:
            return False
        if version.major == target.major:
            return True
        return version.major == target.major - 1 and version.minor >= target.minimum_source_minor

    # -- postconditions ------------------------------------------------------

    def _reached_minimum_source(self, state: HostState) -> bool:
        return self._is_upgrade_ready(state.version)

    def _pve_sources_present(self, state: HostState) -> bool:
        repos = self.config.repositories
        return (self.path(repos.sources_dir) / repos.pve_sources_name).exists()

    def _on_target_major(self, state: HostState) -> bool:
        return state.version is not None and state.version.major == self.config.target.major

    def _running_target_kernel(self, state: HostState) -> bool:
        return state.kernel_version.startswith(self.config.target.kernel_series)

