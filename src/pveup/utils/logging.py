"""
Structured JSONL run log for pveup.

Provides a RunLogger class that appends one JSON line per run event. Logs are
written to --log-file when given, otherwise to {log_dir}/{run_id}.jsonl
(log_dir defaults to /var/log/pveup, override with PVEUP_LOG_DIR).

Each log line is valid JSON with the format:
{
  "timestamp": "2026-01-15T12:34:56.789Z",
  "event_type": "step_completed",
  "data": { ... event-specific data ... }
}
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pveup.core.models import ReportEntry
from pveup.core.run.models import RunEvent, RunResult


class LogEntry(BaseModel):
    """A single structured log entry in JSONL format."""

    model_config = ConfigDict(use_enum_values=True)

    timestamp: datetime = Field(..., description="When the event occurred (ISO 8601 format)")
    event_type: str = Field(..., description="Type of event")
    data: dict[str, Any] = Field(default_factory=dict, description="Event-specific data")


class RunLogger:
    """
    Append-only JSONL logger for upgrade runs.

    Each line is valid JSON that can be queried with jq. Write failures are
    reported once and never interrupt the run.

    Example:
        logger = RunLogger.init("/var/log/pveup", "pveup-20260115-123456")
        logger.log_event("run_started", {"run_id": "pveup-20260115-123456"})
    """

    def __init__(self, log_file: Path):
        """
        Initialize logger with a log file path.

        Args:
            log_file: Path to the JSONL log file (created on first write)
        """
        self.log_file = Path(log_file)
        self._warned = False

    @staticmethod
    def init(log_dir: str | Path, run_id: str) -> "RunLogger":
        """
        Initialize a logger for one run.

        Args:
            log_dir: Directory holding run logs
            run_id: Unique run identifier (used for filename)

        Returns:
            RunLogger instance ready to log events

        Raises:
            ValueError: If run_id is empty
        """
        if not run_id:
            raise ValueError("run_id cannot be empty")
        return RunLogger(Path(log_dir) / f"{run_id}.jsonl")

    def log_event(self, event_type: str, data: dict[str, Any] | None = None) -> None:
        """
        Append an event to the JSONL file.

        Args:
            event_type: Event discriminator (e.g. "step_completed")
            data: Event-specific data (optional, defaults to {})
        """
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc), event_type=event_type, data=data or {}
        )
        log_line = entry.model_dump_json(exclude_none=True) + "\n"

        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(log_line)
        except OSError as e:
            if not self._warned:
                self._warned = True
                print(f"Warning: Failed to write to log file {self.log_file}: {e}", flush=True)

    def log_run_event(self, event: RunEvent) -> None:
        """Record a controller event."""
        data: dict[str, Any] = {"message": event.message, "phase": event.phase.value}
        if event.step_name:
            data["step"] = event.step_name
            data["step_index"] = event.step_index
        if event.warnings:
            data["warnings"] = list(event.warnings)
        if event.exit_code is not None:
            data["exit_code"] = event.exit_code
        if event.data:
            data["details"] = event.data
        self.log_event(event.event_type.value, data)

    def log_report_entry(self, entry: ReportEntry) -> None:
        """Record a RunReport entry as it is appended."""
        outcome = entry.outcome
        data: dict[str, Any] = {
            "step": entry.step_name,
            "outcome": outcome.kind.value,
            "recorded_at": entry.timestamp.isoformat(),
        }
        if outcome.message:
            data["message"] = outcome.message
        if outcome.error_code is not None:
            data["error_code"] = outcome.error_code
        if outcome.data:
            data["details"] = dict(outcome.data)
        self.log_event("report_entry", data)

    def log_result(self, result: RunResult) -> None:
        """Record the finalized run report."""
        data: dict[str, Any] = {
            "run_id": result.run_id,
            "phase": result.phase.value,
            "exit_code": int(result.exit_code),
            "branch": result.branch,
            "steps": result.report.step_names,
            "steps_completed": result.report.steps_completed,
            "reboot_required": result.reboot_required,
            "duration_sec": round(result.total_duration_seconds, 3),
        }
        if result.failed_step:
            data["failed_step"] = result.failed_step
        if result.error:
            data["error"] = result.error
        self.log_event("run_report", data)

    def get_log_file(self) -> Path:
        """Get the path to the log file."""
        return self.log_file
