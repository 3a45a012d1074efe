"""
Precondition checker.

Classifies a HostState snapshot as PASS, WARN or FAIL for each supported
CheckKind. The checker is pure: it reads only the HostState it is given and
the thresholds it was built with, never the orchestrator's own state.

FAIL aborts the run with exit code 3. WARN is recorded and, for steps marked
``requires_confirmation``, puts the question to the operator before the
step's action runs.

Usage:
    >>> from pveup.core.checks import PreconditionChecker
    >>> checker = PreconditionChecker(ThresholdsConfig(), target_major=9)
    >>> checker.check(CheckKind.DISK_SPACE_FLOOR, HostState(free_disk_gb=2)).status
    <CheckStatus.FAIL: 'fail'>
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from pveup.core.config.models import ThresholdsConfig
from pveup.core.models import CheckKind, CheckResult, CheckStatus, HostState

BACKUP_REMINDER = (
    "Backups must be confirmed by the operator: all VMs and containers (vzdump), "
    "/etc/pve/, /etc/network/interfaces and custom configuration"
)


class PreconditionChecker:
    """
    Evaluates preconditions against a HostState.

    Attributes:
        thresholds: Disk, entropy, load and connectivity limits
        target_major: Major version the run upgrades to
    """

    def __init__(self, thresholds: ThresholdsConfig, target_major: int) -> None:
        self.thresholds = thresholds
        self.target_major = target_major
        self._checks: dict[CheckKind, Callable[[HostState], CheckResult]] = {
            CheckKind.VERSION_IN_RANGE: self._check_version,
            CheckKind.DISK_SPACE_FLOOR: self._check_disk,
            CheckKind.NETWORK_REACHABILITY: self._check_network,
            CheckKind.CLUSTER_MEMBERSHIP: self._check_cluster,
            CheckKind.ENTROPY_FLOOR: self._check_entropy,
            CheckKind.LOAD_FLOOR: self._check_load,
            CheckKind.BACKUP_CONFIRMED: self._check_backup,
            CheckKind.RUNNING_AS_ROOT: self._check_root,
            CheckKind.DNS_RESOLUTION: self._check_dns,
            CheckKind.VIRTUAL_MACHINE: self._check_virtual_machine,
            CheckKind.RUNNING_WORKLOADS: self._check_workloads,
        }

    def check(self, kind: CheckKind, state: HostState) -> CheckResult:
        """
        Run a single check.

        Args:
            kind: Which property to classify
            state: Host snapshot to classify

        Returns:
            CheckResult tagged with ``kind``
        """
        return self._checks[kind](state)

    def evaluate(self, kinds: Iterable[CheckKind], state: HostState) -> CheckResult:
        """
        Run several checks and combine them.

        The first FAIL wins. Otherwise all WARN messages are merged into a
        single WARN. Otherwise PASS.
        """
        warnings: list[str] = []
        for kind in kinds:
            result = self.check(kind, state)
            if result.is_fail:
                return result
            if result.is_warn:
                warnings.extend(result.messages)
        if warnings:
            return CheckResult(CheckStatus.WARN, None, tuple(warnings))
        return CheckResult.passed()

    def precondition(self, *kinds: CheckKind) -> Callable[[HostState], CheckResult]:
        """Build a Step precondition that evaluates ``kinds``."""

        def _precondition(state: HostState) -> CheckResult:
            return self.evaluate(kinds, state)

        return _precondition

    # -- individual checks --------------------------------------------------

    def _check_version(self, state: HostState) -> CheckResult:
        kind = CheckKind.VERSION_IN_RANGE
        if state.version is None:
            return CheckResult.fail(kind, "unsupported version: unable to determine version")
        if state.version.major in (self.target_major, self.target_major - 1):
            return CheckResult.passed(kind)
        return CheckResult.fail(
            kind,
            f"unsupported version: {state.version} "
            f"(supported: {self.target_major - 1}.x to {self.target_major}.x)",
        )

    def _check_disk(self, state: HostState) -> CheckResult:
        kind = CheckKind.DISK_SPACE_FLOOR
        floor = self.thresholds.min_free_disk_gb
        if state.free_disk_gb < floor:
            return CheckResult.fail(
                kind,
                f"Insufficient disk space. Need at least {floor}GB free on root filesystem. "
                f"Available: {state.free_disk_gb}GB",
            )
        return CheckResult.passed(kind)

    def _check_network(self, state: HostState) -> CheckResult:
        kind = CheckKind.NETWORK_REACHABILITY
        if not state.network_reachable:
            return CheckResult.fail(
                kind,
                f"Cannot reach {self.thresholds.connectivity_host} - check network connectivity",
            )
        return CheckResult.passed(kind)

    def _check_cluster(self, state: HostState) -> CheckResult:
        kind = CheckKind.CLUSTER_MEMBERSHIP
        if state.is_cluster:
            return CheckResult.warn(kind, "Cluster detected. Ensure you upgrade nodes one by one!")
        return CheckResult.passed(kind)

    def _check_entropy(self, state: HostState) -> CheckResult:
        kind = CheckKind.ENTROPY_FLOOR
        if state.entropy_available < self.thresholds.min_entropy:
            return CheckResult.warn(
                kind, f"Low system entropy ({state.entropy_available}) - upgrade may be slower"
            )
        return CheckResult.passed(kind)

    def _check_load(self, state: HostState) -> CheckResult:
        kind = CheckKind.LOAD_FLOOR
        if state.load_average > self.thresholds.max_load_average:
            return CheckResult.warn(
                kind,
                f"High system load ({state.load_average:.2f}) - "
                "consider waiting for lower load before upgrade",
            )
        return CheckResult.passed(kind)

    def _check_backup(self, state: HostState) -> CheckResult:
        # Human-attested only: nothing on the host proves a backup exists.
        return CheckResult.warn(CheckKind.BACKUP_CONFIRMED, BACKUP_REMINDER)

    def _check_root(self, state: HostState) -> CheckResult:
        kind = CheckKind.RUNNING_AS_ROOT
        if not state.is_root:
            return CheckResult.fail(kind, "This tool must be run as root")
        return CheckResult.passed(kind)

    def _check_dns(self, state: HostState) -> CheckResult:
        kind = CheckKind.DNS_RESOLUTION
        if not state.dns_resolves:
            return CheckResult.warn(
                kind,
                "DNS resolution issues detected - this might cause package download problems",
            )
        return CheckResult.passed(kind)

    def _check_virtual_machine(self, state: HostState) -> CheckResult:
        kind = CheckKind.VIRTUAL_MACHINE
        if state.is_virtual_machine:
            return CheckResult.warn(
                kind, "Running on virtual machine - ensure you have VM snapshots as backup"
            )
        return CheckResult.passed(kind)

    def _check_workloads(self, state: HostState) -> CheckResult:
        kind = CheckKind.RUNNING_WORKLOADS
        if state.running_guests > 0:
            return CheckResult.warn(
                kind,
                f"Found {state.running_guests} running VMs/containers - "
                "consider stopping non-essential guests before major upgrade",
            )
        return CheckResult.passed(kind)
