"""
Stage pipeline.

The pipeline is the ordered, immutable list of steps for one run. It is
chosen once, from the version detected at run start, and never changes
afterwards:

- Branch A (VERIFY_REPAIR): the host already runs the target major. Only
  boot repair, cleanup and verification run; no package upgrade happens.
- Branch B (FULL_UPGRADE): the host runs the previous major. The whole
  upgrade sequence runs.

Any other version (or none) raises UnsupportedVersionError before any step
executes.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from pveup.core import steps as names
from pveup.core.errors import UnsupportedVersionError
from pveup.core.models import HostState, Step


class Branch(str, Enum):
    """Pipeline branch."""

    VERIFY_REPAIR = "verify-repair"
    FULL_UPGRADE = "full-upgrade"

    @property
    def label(self) -> str:
        return "A" if self == Branch.VERIFY_REPAIR else "B"


BRANCH_STEPS: dict[Branch, tuple[str, ...]] = {
    Branch.VERIFY_REPAIR: (
        names.FIX_BOOT_CONFIG,
        names.CLEANUP,
        names.VERIFY,
    ),
    Branch.FULL_UPGRADE: (
        names.PREFLIGHT,
        names.REQUIREMENTS,
        names.BACKUP_CONFIRMATION,
        names.UPGRADE_SOURCE,
        names.MIGRATION_CHECKLIST,
        names.REWRITE_REPOSITORIES,
        names.MAJOR_UPGRADE,
        names.INSTALL_KERNEL,
        names.CLEANUP,
        names.VERIFY,
    ),
}


@dataclass(frozen=True)
class Pipeline:
    """Ordered steps of one branch."""

    branch: Branch
    steps: tuple[Step, ...]

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]

    def __len__(self) -> int:
        return len(self.steps)

    @classmethod
    def for_branch(cls, branch: Branch, catalog: Mapping[str, Step]) -> Pipeline:
        """
        Assemble a branch from a step catalog.

        Raises:
            KeyError: If the catalog lacks a step the branch needs
        """
        return cls(branch=branch, steps=tuple(catalog[name] for name in BRANCH_STEPS[branch]))


def select_branch(state: HostState, target_major: int) -> Branch:
    """
    Pick the branch for a host.

    Raises:
        UnsupportedVersionError: When the version is unknown or out of range
    """
    version = state.version
    if version is None:
        raise UnsupportedVersionError("unknown", target_major)
    if version.major == target_major:
        return Branch.VERIFY_REPAIR
    if version.major == target_major - 1:
        return Branch.FULL_UPGRADE
    raise UnsupportedVersionError(str(version), target_major)


def build_pipeline(state: HostState, catalog: Mapping[str, Step], target_major: int) -> Pipeline:
    """
    Select the branch for ``state`` and assemble its pipeline.

    Args:
        state: Host snapshot taken at run start
        catalog: All known steps keyed by name
        target_major: Major version the run upgrades to

    Returns:
        Pipeline for the selected branch

    Raises:
        UnsupportedVersionError: When the version is unknown or out of range
    """
    return Pipeline.for_branch(select_branch(state, target_major), catalog)
