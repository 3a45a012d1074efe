"""
Command runner for external system utilities.

Every call the orchestrator makes to apt, dpkg, grub, systemctl and friends
goes through CommandRunner so that commands are logged uniformly, missing
binaries surface as exit code 127 instead of a crash, and non-zero exits can
be promoted to ActionFailure.

Output handling:
- capture=True (default) collects stdout/stderr for parsing
- capture=False streams output to the terminal (long apt runs)
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from pveup.core.errors import ActionFailure

logger = logging.getLogger(__name__)

COMMAND_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return " ".join(self.args)


class CommandRunner:
    """
    Runs external commands via subprocess.

    Attributes:
        base_env: Extra environment variables applied to every command
    """

    def __init__(self, base_env: Mapping[str, str] | None = None) -> None:
        self.base_env = dict(base_env or {})

    def which(self, command: str) -> str | None:
        """Return the full path of ``command`` or None when it is not installed."""
        return shutil.which(command)

    def run(
        self,
        args: Sequence[str],
        *,
        check: bool = False,
        capture: bool = True,
        env: Mapping[str, str] | None = None,
        input_text: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """
        Run a command and return its result.

        Args:
            args: Command and arguments
            check: Raise ActionFailure on a non-zero exit
            capture: Capture output instead of streaming it
            env: Extra environment variables for this command only
            input_text: Text written to the command's stdin
            timeout: Seconds before the command is killed

        Returns:
            CommandResult with exit code and captured output

        Raises:
            ActionFailure: If check is True and the command exits non-zero
        """
        argv = tuple(str(a) for a in args)
        full_env = os.environ.copy()
        full_env.update(self.base_env)
        if env:
            full_env.update(env)

        logger.info("Running: %s", " ".join(argv))
        start_time = time.time()
        try:
            proc = subprocess.run(
                argv,
                capture_output=capture,
                text=True,
                env=full_env,
                input=input_text,
                timeout=timeout,
                check=False,
            )
            result = CommandResult(
                args=argv,
                returncode=proc.returncode,
                stdout=proc.stdout or "",
                stderr=proc.stderr or "",
                duration_seconds=time.time() - start_time,
            )
        except FileNotFoundError:
            result = CommandResult(
                args=argv,
                returncode=COMMAND_NOT_FOUND,
                stderr=f"{argv[0]}: command not found",
                duration_seconds=time.time() - start_time,
            )
        except subprocess.TimeoutExpired:
            result = CommandResult(
                args=argv,
                returncode=-1,
                stderr=f"Command timed out after {timeout}s",
                duration_seconds=time.time() - start_time,
            )

        if result.ok:
            logger.debug("Command succeeded in %.2fs: %s", result.duration_seconds, result.command_line)
        else:
            logger.warning(
                "Command exited with %d: %s %s",
                result.returncode,
                result.command_line,
                result.stderr.strip(),
            )

        if check and not result.ok:
            raise ActionFailure(
                f"Command failed with exit code {result.returncode}: {result.command_line}",
                command=argv,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result
