"""
Core data models for the upgrade orchestrator.

Provides typed, immutable definitions for everything the Run Controller
passes around:

- Version: a structured (major, minor, patch) tuple parsed from probe output
- HostState: point-in-time snapshot of observable host facts
- CheckResult: PASS / WARN / FAIL classification from a precondition check
- StepOutcome: classification of a step result controlling continuation
- Step: a named unit of work (precondition, action, postcondition)
- RunReport: append-only record of (step name, outcome, timestamp)

Usage:
    >>> from pveup.core.models import StepOutcome, Version
    >>> Version.parse("8.4.1")
    Version(major=8, minor=4, patch=1)
    >>> StepOutcome.skipped("already applied").halts
    False
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

_VERSION_RE = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")


# ===========================================================================
# Version / HostState
# ===========================================================================


@dataclass(frozen=True, order=True)
class Version:
    """A Proxmox VE release number."""

    major: int
    minor: int = 0
    patch: int = 0

    @classmethod
    def parse(cls, text: str) -> Version | None:
        """
        Parse the first ``major.minor[.patch]`` number found in text.

        Returns:
            Version, or None when no version number is present
        """
        match = _VERSION_RE.search(text or "")
        if match is None:
            return None
        major, minor, patch = match.groups()
        return cls(int(major), int(minor), int(patch or 0))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class HostState:
    """
    Snapshot of the host, sampled fresh before every precondition check.

    Attributes:
        version: Installed Proxmox VE version (None when unparseable)
        kernel_version: Running kernel release (uname -r)
        is_cluster: Whether corosync/cluster configuration is present
        free_disk_gb: Free space on the root filesystem, whole gigabytes
        entropy_available: Kernel entropy pool size
        load_average: One-minute load average
        network_reachable: Whether the package mirror answers a ping
        dns_resolves: Whether the package mirror name resolves
        is_root: Whether the process runs with effective uid 0
        is_virtual_machine: Whether DMI reports a hypervisor product
        running_guests: Number of running VMs plus containers
    """

    version: Version | None = None
    kernel_version: str = ""
    is_cluster: bool = False
    free_disk_gb: int = 0
    entropy_available: int = 0
    load_average: float = 0.0
    network_reachable: bool = True
    dns_resolves: bool = True
    is_root: bool = True
    is_virtual_machine: bool = False
    running_guests: int = 0


# ===========================================================================
# Checks
# ===========================================================================


class CheckKind(str, Enum):
    """Host properties the precondition checker can classify."""

    VERSION_IN_RANGE = "version-in-range"
    DISK_SPACE_FLOOR = "disk-space-floor"
    NETWORK_REACHABILITY = "network-reachability"
    CLUSTER_MEMBERSHIP = "cluster-membership"
    ENTROPY_FLOOR = "entropy-floor"
    LOAD_FLOOR = "load-floor"
    BACKUP_CONFIRMED = "disk-backup-confirmed"
    RUNNING_AS_ROOT = "running-as-root"
    DNS_RESOLUTION = "dns-resolution"
    VIRTUAL_MACHINE = "virtual-machine"
    RUNNING_WORKLOADS = "running-workloads"


class CheckStatus(str, Enum):
    """Classification of a single check."""

    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


@dataclass(frozen=True)
class CheckResult:
    """Result of one or more precondition checks."""

    status: CheckStatus
    kind: CheckKind | None = None
    messages: tuple[str, ...] = ()

    @classmethod
    def passed(cls, kind: CheckKind | None = None) -> CheckResult:
        return cls(CheckStatus.PASS, kind)

    @classmethod
    def warn(cls, kind: CheckKind | None, *messages: str) -> CheckResult:
        return cls(CheckStatus.WARN, kind, tuple(messages))

    @classmethod
    def fail(cls, kind: CheckKind | None, message: str) -> CheckResult:
        return cls(CheckStatus.FAIL, kind, (message,))

    @property
    def reason(self) -> str:
        return "; ".join(self.messages)

    @property
    def is_fail(self) -> bool:
        return self.status == CheckStatus.FAIL

    @property
    def is_warn(self) -> bool:
        return self.status == CheckStatus.WARN


# ===========================================================================
# StepOutcome
# ===========================================================================


class OutcomeKind(str, Enum):
    """Discriminator for StepOutcome."""

    SUCCESS = "success"
    SUCCESS_WITH_WARNINGS = "success_with_warnings"
    FATAL = "fatal"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepOutcome:
    """
    Result of running a step's action.

    FATAL always halts the pipeline; SKIPPED never does.

    Attributes:
        kind: Outcome discriminator
        messages: Warning messages (SUCCESS_WITH_WARNINGS) or the failure message
        error_code: Exit status of the failing collaborator (FATAL only)
        reason: Why the step was skipped (SKIPPED only)
        data: Step-specific facts for the report (e.g. reboot_required)
    """

    kind: OutcomeKind
    messages: tuple[str, ...] = ()
    error_code: int | None = None
    reason: str = ""
    data: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, **data: Any) -> StepOutcome:
        return cls(OutcomeKind.SUCCESS, data=data)

    @classmethod
    def with_warnings(cls, messages: list[str] | tuple[str, ...], **data: Any) -> StepOutcome:
        """SUCCESS_WITH_WARNINGS, collapsing to SUCCESS when there is nothing to warn about."""
        if not messages:
            return cls.success(**data)
        return cls(OutcomeKind.SUCCESS_WITH_WARNINGS, messages=tuple(messages), data=data)

    @classmethod
    def fatal(cls, error_code: int, message: str, **data: Any) -> StepOutcome:
        return cls(OutcomeKind.FATAL, messages=(message,), error_code=error_code, data=data)

    @classmethod
    def skipped(cls, reason: str, **data: Any) -> StepOutcome:
        return cls(OutcomeKind.SKIPPED, reason=reason, data=data)

    @property
    def halts(self) -> bool:
        return self.kind == OutcomeKind.FATAL

    @property
    def has_warnings(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS_WITH_WARNINGS

    @property
    def message(self) -> str:
        if self.kind == OutcomeKind.SKIPPED:
            return self.reason
        return "; ".join(self.messages)

    def add_warnings(self, messages: list[str] | tuple[str, ...]) -> StepOutcome:
        """Fold extra warnings (e.g. from the precondition) into a non-fatal outcome."""
        if not messages or self.kind in (OutcomeKind.FATAL, OutcomeKind.SKIPPED):
            return self
        return StepOutcome(
            OutcomeKind.SUCCESS_WITH_WARNINGS,
            messages=tuple(messages) + self.messages,
            data=self.data,
        )


# ===========================================================================
# Step
# ===========================================================================


def always_pass(state: HostState) -> CheckResult:
    """Default precondition."""
    return CheckResult.passed()


def always_true(state: HostState) -> bool:
    """Default postcondition."""
    return True


@dataclass(frozen=True)
class Step:
    """
    A named, immutable unit of orchestrated work.

    Ordering is a property of the pipeline, not of the step. Every action
    must be safe to re-run: it checks "already applied" before mutating.

    Attributes:
        name: Unique step identifier (e.g. "rewrite-repositories")
        action: Performs the work and classifies the result
        precondition: Classifies the host before the action runs
        postcondition: Checked after the action, for logging only
        requires_confirmation: Ask the gate when the step produces warnings
        confirmation_prompt: Question put to the operator
        description: One-line summary for rendering
    """

    name: str
    action: Callable[[], StepOutcome]
    precondition: Callable[[HostState], CheckResult] = always_pass
    postcondition: Callable[[HostState], bool] = always_true
    requires_confirmation: bool = False
    confirmation_prompt: str = "Do you want to continue?"
    description: str = ""


# ===========================================================================
# RunReport
# ===========================================================================


@dataclass(frozen=True)
class ReportEntry:
    """One line of the run report."""

    step_name: str
    outcome: StepOutcome
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class RunReport:
    """Append-only record of step outcomes for one run."""

    entries: list[ReportEntry] = field(default_factory=list)

    def append(self, step_name: str, outcome: StepOutcome) -> ReportEntry:
        entry = ReportEntry(step_name=step_name, outcome=outcome)
        self.entries.append(entry)
        return entry

    @property
    def step_names(self) -> list[str]:
        return [entry.step_name for entry in self.entries]

    @property
    def steps_completed(self) -> int:
        """Steps that ran to a non-fatal outcome (skips included)."""
        return sum(1 for entry in self.entries if not entry.outcome.halts)

    @property
    def warnings(self) -> list[tuple[str, str]]:
        return [
            (entry.step_name, message)
            for entry in self.entries
            if entry.outcome.has_warnings
            for message in entry.outcome.messages
        ]

    def outcome_for(self, step_name: str) -> StepOutcome | None:
        for entry in reversed(self.entries):
            if entry.step_name == step_name:
                return entry.outcome
        return None
