"""
Confirmation gates.

A gate suspends the run until an operator answers a yes/no question. There
is no timeout: an interactive gate blocks until the operator responds. A
negative answer ends the whole run as ABORTED (exit code 2), never just the
current step.

Implementations:
    InteractiveGate: asks on the terminal, default answer No
    AutoApproveGate: always yes (``--yes`` for scripted runs)
    ScriptedGate: replays fixed answers and records prompts (tests, dry runs)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Protocol, runtime_checkable

import typer

logger = logging.getLogger(__name__)


@runtime_checkable
class ConfirmationGate(Protocol):
    """Protocol for operator confirmation."""

    def confirm(self, prompt: str) -> bool:
        """
        Ask the operator a yes/no question.

        Args:
            prompt: Question to show

        Returns:
            True to proceed, False to cancel the run
        """
        ...


class InteractiveGate:
    """Blocking terminal prompt. Anything but an explicit yes is a refusal."""

    def __init__(self, ask: Callable[[str], bool] | None = None) -> None:
        self._ask = ask or (lambda prompt: typer.confirm(prompt, default=False))

    def confirm(self, prompt: str) -> bool:
        try:
            answer = bool(self._ask(prompt))
        except typer.Abort:
            # EOF or Ctrl-C at the prompt
            logger.info("Prompt aborted, treating as no: %s", prompt)
            return False
        logger.info("Operator answered %s to: %s", "yes" if answer else "no", prompt)
        return answer


class AutoApproveGate:
    """Approves every prompt. Used for non-interactive runs."""

    def __init__(self) -> None:
        self.prompts: list[str] = []

    def confirm(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        logger.info("Auto-approved: %s", prompt)
        return True


class ScriptedGate:
    """
    Replays a fixed sequence of answers.

    Once the answers run out, ``default`` is returned for every further prompt.
    """

    def __init__(self, answers: Iterable[bool] = (), default: bool = True) -> None:
        self._answers = list(answers)
        self.default = default
        self.prompts: list[str] = []

    def confirm(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        if self._answers:
            return self._answers.pop(0)
        return self.default
