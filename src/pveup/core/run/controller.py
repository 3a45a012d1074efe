"""
Run controller state machine.

Implements detect state → select branch → run steps → report as a generator
that yields RunEvent objects. All upgrade logic lives here; rich rendering and
CLI concerns stay in cli/upgrade.py.

Phases:
    INIT → DETECTING_STATE → {BRANCH_A | BRANCH_B} → RUNNING
         → {COMPLETED | ABORTED | FAILED}

For every step the controller samples a fresh HostState, evaluates the
precondition, asks the confirmation gate when required, runs the action,
appends the outcome to the RunReport and checks the postcondition for the log.

Usage:
    >>> from pveup.core.run.controller import RunController
    >>> controller = RunController(config=RunConfig(), probe=probe, checker=checker,
    ...                            catalog=steps.catalog(), gate=gate, target_major=9)
    >>> for event in controller.execute():
    ...     render(event)
    >>> result = controller.get_result()
"""

from __future__ import annotations

import logging
import time
from collections.abc import Generator, Mapping
from datetime import datetime
from typing import TYPE_CHECKING

from pveup.core import recovery
from pveup.core.checks import PreconditionChecker
from pveup.core.errors import (
    ActionFailure,
    ExitCode,
    OperatorCancelled,
    PreconditionFailure,
)
from pveup.core.gate import ConfirmationGate
from pveup.core.models import (
    CheckKind,
    HostState,
    OutcomeKind,
    RunReport,
    Step,
    StepOutcome,
    always_true,
)
from pveup.core.pipeline import Branch, Pipeline, build_pipeline
from pveup.core.recovery import RecoveryGuidance
from pveup.core.run.models import RunConfig, RunEvent, RunEventType, RunPhase, RunResult
from pveup.core.system.protocols import HostProbe

if TYPE_CHECKING:
    from pveup.utils.logging import RunLogger

logger = logging.getLogger(__name__)

DETECT_STATE = "detect-state"

_FINAL_EVENTS = {
    RunPhase.COMPLETED: RunEventType.RUN_COMPLETED,
    RunPhase.ABORTED: RunEventType.RUN_ABORTED,
    RunPhase.FAILED: RunEventType.RUN_FAILED,
}


class RunController:
    """
    Upgrade run state machine.

    Owns the run's HostState samples, RunReport and phase; nothing is shared
    between controller instances.

    Attributes:
        config: Run configuration (immutable).
        probe: Host probe, sampled before every precondition.
        checker: Precondition checker used for run-level checks.
        catalog: All steps keyed by name.
        gate: Confirmation gate.
        target_major: Major version the run upgrades to.
        run_logger: Optional JSONL run log.
    """

    def __init__(
        self,
        *,
        config: RunConfig,
        probe: HostProbe,
        checker: PreconditionChecker,
        catalog: Mapping[str, Step],
        gate: ConfirmationGate,
        target_major: int,
        run_logger: RunLogger | None = None,
    ) -> None:
        self.config = config
        self.probe = probe
        self.checker = checker
        self.catalog = catalog
        self.gate = gate
        self.target_major = target_major
        self.run_logger = run_logger

        self.run_id = config.run_id or f"pveup-{datetime.now().strftime('%Y%m%d-%H%M%S')}"

        self._phase = RunPhase.INIT
        self._report = RunReport()
        self._pipeline: Pipeline | None = None
        self._current_step: str | None = None
        self._exit_code: int = ExitCode.SUCCESS
        self._guidance: RecoveryGuidance | None = None
        self._error: str | None = None
        self._start_time: float | None = None
        self._end_time: float | None = None

    @property
    def phase(self) -> RunPhase:
        return self._phase

    @property
    def report(self) -> RunReport:
        return self._report

    def _make_event(
        self,
        event_type: RunEventType,
        message: str = "",
        **kwargs: object,
    ) -> RunEvent:
        """Create a RunEvent with the current phase baked in and log it."""
        event = RunEvent(
            event_type=event_type,
            message=message,
            phase=self._phase,
            **kwargs,  # type: ignore[arg-type]
        )
        if self.run_logger is not None:
            self.run_logger.log_run_event(event)
        return event

    def execute(self) -> Generator[RunEvent, None, None]:
        """
        Execute the run, yielding events.

        Yields:
            RunEvent objects describing each state transition.

        Example:
            >>> for event in controller.execute():
            ...     if event.event_type == RunEventType.STEP_FAILED:
            ...         print(f"Failed: {event.step_name}")
        """
        self._start_time = time.time()
        yield self._make_event(
            RunEventType.RUN_STARTED,
            f"Starting run: {self.run_id}",
            data={"run_id": self.run_id, "dry_run": self.config.dry_run},
        )

        try:
            pipeline = yield from self._detect_and_select()
            yield from self._confirm_start(pipeline)

            self._phase = RunPhase.RUNNING
            total = len(pipeline)
            for index, step in enumerate(pipeline.steps, start=1):
                yield from self._run_step(step, index, total)
            self._current_step = None
            self._phase = RunPhase.COMPLETED

        except OperatorCancelled as e:
            self._terminate(RunPhase.ABORTED, e.exit_code, str(e))
        except PreconditionFailure as e:
            self._terminate(RunPhase.FAILED, e.exit_code, str(e))
        except ActionFailure as e:
            self._terminate(RunPhase.FAILED, e.exit_code, str(e))
        except Exception as e:
            logger.exception("Unexpected error during run")
            self._terminate(RunPhase.FAILED, ExitCode.GENERAL_ERROR, f"Unexpected error: {e}")

        self._end_time = time.time()
        result = self.get_result()
        yield self._make_event(
            _FINAL_EVENTS[self._phase],
            self._final_message(result),
            exit_code=int(self._exit_code),
            step_name=result.failed_step,
            data={
                "phase": self._phase.value,
                "steps_completed": self._report.steps_completed,
                "reboot_required": result.reboot_required,
            },
        )
        if self.run_logger is not None:
            self.run_logger.log_result(result)

    def get_result(self) -> RunResult:
        """
        Get the final result after the run ends.

        Call this after fully consuming the execute() generator.

        Returns:
            RunResult summarizing the run.
        """
        end = self._end_time or time.time()
        duration = end - self._start_time if self._start_time else 0.0
        verify = self._report.outcome_for("verify")
        return RunResult(
            run_id=self.run_id,
            phase=self._phase,
            exit_code=self._exit_code,
            report=self._report,
            branch=self._pipeline.branch.label if self._pipeline else None,
            guidance=self._guidance,
            reboot_required=bool(verify and verify.data.get("reboot_required")),
            failed_step=self._current_step,
            error=self._error,
            total_duration_seconds=duration,
        )

    # -----------------------------------------------------------------------
    # Detection and branch selection
    # -----------------------------------------------------------------------

    def _detect_and_select(self) -> Generator[RunEvent, None, Pipeline]:
        self._phase = RunPhase.DETECTING_STATE
        self._current_step = DETECT_STATE
        state = self.probe.sample()
        yield self._make_event(
            RunEventType.STATE_DETECTED,
            f"Detected Proxmox VE {state.version or 'unknown'} (kernel {state.kernel_version})",
            data=_describe_state(state),
        )

        for kind in (CheckKind.RUNNING_AS_ROOT, CheckKind.VERSION_IN_RANGE):
            result = self.checker.check(kind, state)
            if result.is_fail:
                raise PreconditionFailure(kind.value, result.reason)

        # Raises UnsupportedVersionError for anything outside source..target.
        pipeline = build_pipeline(state, self.catalog, self.target_major)
        self._pipeline = pipeline
        self._phase = (
            RunPhase.BRANCH_A if pipeline.branch == Branch.VERIFY_REPAIR else RunPhase.BRANCH_B
        )
        self._current_step = None
        yield self._make_event(
            RunEventType.BRANCH_SELECTED,
            f"Branch {pipeline.branch.label}: {pipeline.branch.value} "
            f"({len(pipeline)} steps)",
            step_total=len(pipeline),
            data={"branch": pipeline.branch.value, "steps": pipeline.step_names},
        )
        return pipeline

    def _confirm_start(self, pipeline: Pipeline) -> Generator[RunEvent, None, None]:
        if self.config.dry_run or not self.config.confirm_start:
            return
        if pipeline.branch == Branch.VERIFY_REPAIR:
            yield from self._ask(
                None,
                f"System is already running Proxmox VE {self.target_major}.x. "
                "Continue with verification and fixes?",
            )
        else:
            yield from self._ask(
                None,
                f"Proceed with the Proxmox VE {self.target_major - 1} to "
                f"{self.target_major} upgrade?",
            )

    # -----------------------------------------------------------------------
    # Step execution
    # -----------------------------------------------------------------------

    def _run_step(self, step: Step, index: int, total: int) -> Generator[RunEvent, None, None]:
        self._current_step = step.name
        context = {"step_name": step.name, "step_index": index, "step_total": total}
        yield self._make_event(
            RunEventType.STEP_STARTED,
            step.description or step.name,
            **context,
        )

        # 1. Precondition against a fresh sample
        check = step.precondition(self.probe.sample())
        if check.is_fail:
            self._record(step.name, StepOutcome.fatal(ExitCode.PRECONDITION_FAILED, check.reason))
            yield self._make_event(
                RunEventType.STEP_FAILED,
                check.reason,
                exit_code=int(ExitCode.PRECONDITION_FAILED),
                **context,
            )
            raise PreconditionFailure(check.kind.value if check.kind else step.name, check.reason)

        precondition_warnings = list(check.messages) if check.is_warn else []
        if precondition_warnings:
            yield self._make_event(
                RunEventType.PRECONDITION_WARNING,
                check.reason,
                warnings=precondition_warnings,
                **context,
            )

        if self.config.dry_run:
            outcome = StepOutcome.skipped("dry run", warnings=precondition_warnings)
            self._record(step.name, outcome)
            yield self._make_event(RunEventType.STEP_SKIPPED, "dry run", **context)
            return

        if precondition_warnings and step.requires_confirmation:
            yield from self._ask(step.name, step.confirmation_prompt, precondition_warnings)

        # 2-3. Action; anything escaping it is fatal
        try:
            action_outcome = step.action()
        except Exception as e:
            logger.debug("Step %s raised", step.name, exc_info=True)
            code = e.returncode if isinstance(e, ActionFailure) and e.returncode > 0 else 1
            action_outcome = StepOutcome.fatal(code, str(e))

        outcome = action_outcome.add_warnings(precondition_warnings)
        self._record(step.name, outcome)

        if outcome.halts:
            yield self._make_event(
                RunEventType.STEP_FAILED,
                outcome.message,
                exit_code=outcome.error_code,
                **context,
            )
            raise ActionFailure(
                f"Step '{step.name}' failed: {outcome.message}",
                returncode=outcome.error_code if outcome.error_code is not None else -1,
            )

        if outcome.kind == OutcomeKind.SKIPPED:
            yield self._make_event(RunEventType.STEP_SKIPPED, outcome.reason, **context)
        else:
            yield self._make_event(
                RunEventType.STEP_COMPLETED,
                step.description or step.name,
                warnings=list(outcome.messages),
                data=dict(outcome.data),
                **context,
            )

        # 4. Gate on warnings produced by the action itself
        if step.requires_confirmation and action_outcome.has_warnings:
            yield from self._ask(step.name, step.confirmation_prompt, list(action_outcome.messages))

        # 6. Postcondition, for the log only
        if step.postcondition is not always_true:
            if not step.postcondition(self.probe.sample()):
                logger.info("Postcondition of %s not met yet", step.name)
                yield self._make_event(
                    RunEventType.POSTCONDITION_UNMET,
                    f"Postcondition of {step.name} not met yet",
                    **context,
                )

    def _ask(
        self,
        step_name: str | None,
        prompt: str,
        warnings: list[str] | None = None,
    ) -> Generator[RunEvent, None, None]:
        """Yield the gate event, then block on the operator's answer."""
        yield self._make_event(
            RunEventType.GATE_ASKED,
            prompt,
            step_name=step_name,
            warnings=list(warnings or []),
        )
        if not self.gate.confirm(prompt):
            raise OperatorCancelled(prompt)

    def _record(self, step_name: str, outcome: StepOutcome) -> None:
        entry = self._report.append(step_name, outcome)
        if self.run_logger is not None:
            self.run_logger.log_report_entry(entry)

    # -----------------------------------------------------------------------
    # Termination
    # -----------------------------------------------------------------------

    def _terminate(self, phase: RunPhase, exit_code: int, error: str) -> None:
        self._phase = phase
        self._exit_code = exit_code
        self._error = error
        if phase == RunPhase.FAILED:
            self._guidance = recovery.report(self._current_step or DETECT_STATE, exit_code)

    def _final_message(self, result: RunResult) -> str:
        if self._phase == RunPhase.COMPLETED:
            return f"Run completed: {self._report.steps_completed} steps"
        if self._phase == RunPhase.ABORTED:
            return "Cancelled by operator"
        return result.error or "Run failed"


def _describe_state(state: HostState) -> dict[str, object]:
    return {
        "version": str(state.version) if state.version else None,
        "kernel": state.kernel_version,
        "cluster": state.is_cluster,
        "free_disk_gb": state.free_disk_gb,
        "entropy": state.entropy_available,
        "load_average": state.load_average,
        "network_reachable": state.network_reachable,
        "running_guests": state.running_guests,
    }
