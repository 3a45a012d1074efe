"""
Core run package.

Provides the upgrade run state machine, separated from CLI concerns, so any
interface (CLI, tests, another tool) can drive a run and render its events.

Modules:
    models: Configuration, phase and event models for a run.
    controller: Run controller state machine (detect → branch → steps → report).
"""

from pveup.core.run.controller import RunController
from pveup.core.run.models import (
    RunConfig,
    RunEvent,
    RunEventType,
    RunPhase,
    RunResult,
)

__all__ = [
    "RunConfig",
    "RunController",
    "RunEvent",
    "RunEventType",
    "RunPhase",
    "RunResult",
]
