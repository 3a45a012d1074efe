"""
Exception taxonomy and exit codes for upgrade runs.

Three outcomes can end a run early:

- PreconditionFailure: the host is not eligible. Nothing was mutated yet.
- ActionFailure: an external command or download failed mid-step.
- OperatorCancelled: the operator declined a confirmation gate.

Warnings are plain data carried by StepOutcome, never exceptions.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes, stable for scripting callers."""

    SUCCESS = 0
    """Run completed."""

    GENERAL_ERROR = 1
    """An action failed or an unexpected error occurred."""

    CANCELLED = 2
    """The operator declined a confirmation."""

    PRECONDITION_FAILED = 3
    """The host is not in a supported source state."""


class PveupError(Exception):
    """Base class for all orchestrator errors."""

    exit_code: ExitCode = ExitCode.GENERAL_ERROR

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class PreconditionFailure(PveupError):
    """
    The environment is not eligible for the run.

    Attributes:
        kind: Name of the failed check (e.g. "disk-space-floor")
        reason: Human-readable explanation
    """

    exit_code = ExitCode.PRECONDITION_FAILED

    def __init__(self, kind: str, reason: str) -> None:
        self.kind = kind
        self.reason = reason
        super().__init__(f"Precondition '{kind}' failed: {reason}")


class UnsupportedVersionError(PreconditionFailure):
    """The detected source version is neither the target nor one major below it."""

    def __init__(self, detected: str, target_major: int) -> None:
        self.detected = detected
        self.target_major = target_major
        super().__init__(
            "version-in-range",
            f"unsupported version: {detected} "
            f"(supported: {target_major - 1}.x to {target_major}.x)",
        )


class ActionFailure(PveupError):
    """
    An external collaborator returned a failure.

    Attributes:
        command: The command that failed, if any
        returncode: The command's exit status (or -1 when not applicable)
        stderr: Captured error output
    """

    exit_code = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] | None = None,
        returncode: int = -1,
        stderr: str = "",
    ) -> None:
        self.command = list(command) if command else []
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class KeyringVerificationError(ActionFailure):
    """Downloaded keyring does not match its expected SHA-256 checksum."""

    def __init__(self, url: str, expected: str, actual: str) -> None:
        self.url = url
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Keyring verification failed for {url}. Expected: {expected}, Got: {actual}"
        )


class OperatorCancelled(PveupError):
    """The operator answered no at a confirmation gate."""

    exit_code = ExitCode.CANCELLED

    def __init__(self, prompt: str) -> None:
        self.prompt = prompt
        super().__init__(f"Cancelled by operator: {prompt}")


__all__ = [
    "ActionFailure",
    "ExitCode",
    "KeyringVerificationError",
    "OperatorCancelled",
    "PreconditionFailure",
    "PveupError",
    "UnsupportedVersionError",
]
