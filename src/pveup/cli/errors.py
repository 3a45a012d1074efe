"""
Standardized error handling and exit codes for the pveup CLI.

This module provides consistent error messaging with actionable guidance.
Exit codes are shared with the core so scripted callers see the same values
whether a run fails inside a step or before it starts.
"""

from rich.console import Console

from pveup.core.errors import ExitCode

console = Console()


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "Configuration file not found",
        ...     reason="/etc/pveup/custom.json does not exist",
        ...     solution="pveup upgrade --config /path/to/config.json",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{reason}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


__all__ = ["ExitCode", "console", "print_error"]
