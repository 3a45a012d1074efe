"""
pveup CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import typer
from rich.console import Console

from pveup import __version__
from pveup.cli import upgrade
from pveup.core.config.env import load_layered_env

# Create the main Typer app
app = typer.Typer(
    name="pveup",
    help="Staged Proxmox VE 8 to 9 upgrade orchestrator",
    no_args_is_help=True,
    add_completion=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"pveup version {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show pveup version and exit",
    ),
) -> None:
    """
    pveup - Proxmox VE major upgrade orchestrator.

    Runs the Proxmox VE 8 to 9 upgrade as ordered, re-runnable steps with
    precondition checks, operator confirmations and recovery guidance.

    Quick Start:
        pveup upgrade --dry-run      # Check the host, change nothing
        pveup upgrade                # Upgrade interactively
        pveup upgrade --yes          # Upgrade without prompts

    Configuration:
        /etc/pveup/config.json       # Host-wide settings
        ~/.config/pveup/config.json  # User settings
        /etc/pveup/pveup.env         # PVEUP_* environment overrides
    """
    # Load layered env files early so PVEUP_* overrides reach the config loader.
    # Precedence: OS env > user .env > host .env
    load_layered_env()

    # Store debug flag in context for subcommands
    ctx.obj = {"debug": debug}


app.add_typer(upgrade.app, name="upgrade")


@app.command()
def version() -> None:
    """Show pveup version and exit."""
    console.print(f"pveup version {__version__}")
    raise typer.Exit(0)


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
