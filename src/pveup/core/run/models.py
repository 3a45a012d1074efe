"""
Run controller configuration and event models.

Provides typed models for configuring and observing an upgrade run,
separated from CLI/rendering concerns:

- RunConfig: Parameters of one run (dry run, run id)
- RunPhase: States of the run state machine
- RunEvent: Events yielded by the controller generator
- RunResult: Final outcome of a complete run

Any interface (CLI, tests, another tool) can create a RunConfig, iterate
RunEvents, and handle them appropriately for its rendering context.

Usage:
    >>> from pveup.core.run.models import RunConfig, RunEventType
    >>> config = RunConfig(dry_run=True)
    >>> # Pass to RunController.execute() to get a RunEvent generator
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pveup.core.errors import ExitCode
from pveup.core.models import RunReport
from pveup.core.recovery import RecoveryGuidance

# ===========================================================================
# RunConfig
# ===========================================================================


@dataclass(frozen=True)
class RunConfig:
    """
    Configuration for one upgrade run.

    Attributes:
        dry_run: Evaluate preconditions only; no action runs and no gate is asked.
        run_id: Identifier for logs (auto-generated if None).
        confirm_start: Ask before starting and before re-verifying an upgraded host.
    """

    dry_run: bool = False
    run_id: str | None = None
    confirm_start: bool = True


# ===========================================================================
# RunPhase
# ===========================================================================


class RunPhase(str, Enum):
    """States of the run state machine."""

    INIT = "init"
    DETECTING_STATE = "detecting_state"
    BRANCH_A = "branch_a"
    BRANCH_B = "branch_b"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunPhase.COMPLETED, RunPhase.ABORTED, RunPhase.FAILED)


# ===========================================================================
# RunEventType
# ===========================================================================


class RunEventType(str, Enum):
    """
    Discriminator for run events.

    CLI renderers and the run log switch on this.
    """

    # Lifecycle events
    RUN_STARTED = "run_started"
    STATE_DETECTED = "state_detected"
    BRANCH_SELECTED = "branch_selected"
    RUN_COMPLETED = "run_completed"
    RUN_ABORTED = "run_aborted"
    RUN_FAILED = "run_failed"

    # Step events
    STEP_STARTED = "step_started"
    PRECONDITION_WARNING = "precondition_warning"
    GATE_ASKED = "gate_asked"
    STEP_COMPLETED = "step_completed"
    STEP_SKIPPED = "step_skipped"
    STEP_FAILED = "step_failed"
    POSTCONDITION_UNMET = "postcondition_unmet"


# ===========================================================================
# RunEvent
# ===========================================================================


@dataclass
class RunEvent:
    """
    Event yielded by the run controller generator.

    Attributes:
        event_type: Discriminator for switching on event kind.
        message: Human-readable description of the event.
        phase: Controller phase when the event was produced.
        step_name: Associated step (if applicable).
        step_index: 1-based position of the step in the pipeline.
        step_total: Number of steps in the pipeline.
        warnings: Warning messages attached to the event.
        exit_code: Exit code (terminal events only).
        data: Arbitrary extra data for the event.
        timestamp: When the event occurred.
    """

    event_type: RunEventType
    message: str = ""
    phase: RunPhase = RunPhase.INIT

    # Step context
    step_name: str | None = None
    step_index: int = 0
    step_total: int = 0

    warnings: list[str] = field(default_factory=list)
    exit_code: int | None = None

    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


# ===========================================================================
# RunResult
# ===========================================================================


@dataclass
class RunResult:
    """
    Final result of an upgrade run.

    Returned after the generator is fully consumed.

    Attributes:
        run_id: Unique identifier for this run.
        phase: Terminal phase (completed, aborted, failed).
        exit_code: Process exit code for the run.
        report: Step outcomes in execution order.
        branch: Selected branch label ("A" or "B"), None if none was selected.
        guidance: Recovery guidance when the run failed.
        reboot_required: Whether verification found a pending reboot.
        failed_step: Name of the step that failed or was refused.
        error: Error message if failed or aborted.
        total_duration_seconds: Wall clock duration of the run.
    """

    run_id: str = ""
    phase: RunPhase = RunPhase.INIT
    exit_code: int = ExitCode.SUCCESS
    report: RunReport = field(default_factory=RunReport)
    branch: str | None = None
    guidance: RecoveryGuidance | None = None
    reboot_required: bool = False
    failed_step: str | None = None
    error: str | None = None
    total_duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.phase == RunPhase.COMPLETED
