"""
pveup CLI - Upgrade command.

Upgrade a Proxmox VE 8 host to 9, or verify and repair a host that is
already on 9.
"""

import logging
from datetime import datetime
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from pveup.cli.errors import ExitCode, print_error
from pveup.core.config.loader import load_config
from pveup.core.config.models import PveupConfig
from pveup.core.gate import AutoApproveGate, ConfirmationGate, InteractiveGate
from pveup.core.host import build_controller, connect_host
from pveup.core.recovery import RecoveryGuidance
from pveup.core.run.models import RunConfig, RunEvent, RunEventType, RunPhase, RunResult
from pveup.utils.logging import RunLogger

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="upgrade",
    help="Upgrade Proxmox VE to the next major release",
    no_args_is_help=False,
)

console = Console()

_PHASE_STYLES = {
    RunPhase.COMPLETED: "green",
    RunPhase.ABORTED: "yellow",
    RunPhase.FAILED: "red",
}


def render_event(event: RunEvent, *, auto_approve: bool = False) -> None:
    """Print one controller event."""
    kind = event.event_type
    if kind == RunEventType.STATE_DETECTED:
        console.print(f"[dim]{event.message}[/dim]")
    elif kind == RunEventType.BRANCH_SELECTED:
        console.print(f"[bold]{event.message}[/bold]")
        console.print()
    elif kind == RunEventType.STEP_STARTED:
        console.print(
            f"[cyan][{event.step_index}/{event.step_total}][/cyan] "
            f"[bold]{event.step_name}[/bold] [dim]{event.message}[/dim]"
        )
    elif kind == RunEventType.PRECONDITION_WARNING:
        for warning in event.warnings:
            console.print(f"  [yellow]![/yellow] {warning}")
    elif kind == RunEventType.GATE_ASKED:
        if auto_approve:
            console.print(f"  [dim]? {event.message} (auto-approved)[/dim]")
    elif kind == RunEventType.STEP_COMPLETED:
        for warning in event.warnings:
            console.print(f"  [yellow]![/yellow] {warning}")
        console.print(f"  [green]✓[/green] {event.step_name}")
    elif kind == RunEventType.STEP_SKIPPED:
        console.print(f"  [dim]- skipped: {event.message}[/dim]")
    elif kind == RunEventType.STEP_FAILED:
        console.print(f"  [red]✗[/red] {event.step_name}: {event.message}")
    elif kind == RunEventType.POSTCONDITION_UNMET:
        console.print(f"  [dim]{event.message}[/dim]")
    elif kind == RunEventType.RUN_FAILED:
        console.print("[red]✗ Run failed[/red]")
        console.print(f"  {escape(event.message)}", soft_wrap=True)
    elif kind == RunEventType.RUN_ABORTED:
        console.print(f"[yellow]{escape(event.message)}[/yellow]", soft_wrap=True)


def display_summary(result: RunResult) -> None:
    """Display run summary at the end."""
    style = _PHASE_STYLES.get(result.phase, "white")
    table = Table(title="Upgrade Summary", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Run ID", result.run_id)
    table.add_row("Branch", result.branch or "-")
    table.add_row("Final Phase", f"[{style}]{result.phase.value}[/{style}]")
    table.add_row("Steps Completed", str(result.report.steps_completed))
    table.add_row("Warnings", str(len(result.report.warnings)))
    if result.failed_step:
        table.add_row("Stopped At", result.failed_step)
    if result.error and result.phase != RunPhase.COMPLETED:
        table.add_row("Error", escape(result.error))
    table.add_row("Duration", f"{result.total_duration_seconds:.1f}s")
    table.add_row("Exit Code", str(int(result.exit_code)))

    console.print(table)


def display_guidance(guidance: RecoveryGuidance) -> None:
    """Display recovery steps after a failed run."""
    lines = [f"{i}. {step}" for i, step in enumerate(guidance.steps, start=1)]
    console.print(
        Panel(
            "\n".join(lines),
            title=f"[bold red]{guidance.title}[/bold red]",
            border_style="red",
        )
    )


def display_checklist(config: PveupConfig) -> None:
    """Display the operator's post-upgrade checklist."""
    target = config.target
    console.print(
        Panel(
            "1. Clear browser cache and reload the web interface (Ctrl+Shift+R)\n"
            "2. Verify system status:\n"
            f"   uname -r       (should show {target.kernel_series}.x-pve)\n"
            f"   pveversion     (should show {target.major}.x.x)\n"
            "   systemctl status pve-cluster pvedaemon pveproxy\n"
            "3. Test VMs and containers: qm list && pct list\n"
            "4. Review logs: journalctl -xe, /var/log/syslog",
            title="[bold green]Post-upgrade verification tasks[/bold green]",
            border_style="green",
        )
    )


def display_reboot_required(config: PveupConfig) -> None:
    console.print(
        Panel(
            f"A reboot is required to load the new {config.target.kernel_series} kernel, "
            "activate GRUB configuration changes and complete systemd service updates.\n\n"
            "After reboot, verify with: uname -r && pveversion",
            title="[bold yellow]Reboot required[/bold yellow]",
            border_style="yellow",
        )
    )


def _open_run_log(config: PveupConfig, run_id: str, log_file: Path | None) -> RunLogger:
    if log_file is not None:
        return RunLogger(log_file)
    return RunLogger.init(config.log_dir, run_id)



def _should_reboot(reboot: bool | None, yes: bool) -> bool:
    """Decide the post-run reboot: forced, refused, or asked."""
    if reboot is False:
        return False
    if yes:
        return bool(reboot)
    try:
        return typer.confirm("Reboot now to complete the upgrade?", default=False)
    except typer.Abort:
        return False


@app.callback(invoke_without_command=True)
def upgrade(
    ctx: typer.Context,
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Answer yes to every confirmation (non-interactive)",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Check preconditions only; change nothing",
    ),
    log_file: Path | None = typer.Option(
        None,
        "--log-file",
        help="Write the JSONL run log here (default: $PVEUP_LOG_DIR/<run-id>.jsonl)",
    ),
    reboot: bool | None = typer.Option(
        None,
        "--reboot/--no-reboot",
        help="Reboot after a successful upgrade when a reboot is required "
        "(default: ask, or skip with --yes)",
    ),
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Additional JSON configuration file",
    ),
) -> None:
    """
    Upgrade this host from Proxmox VE 8 to 9.

    A host already on 9 gets boot repair, cleanup and verification only.

    Examples:
        pveup upgrade                   # Interactive upgrade
        pveup upgrade --dry-run         # Check preconditions only
        pveup upgrade --yes --reboot    # Unattended, reboot at the end
        pveup upgrade --config ./lab.json --log-file ./run.jsonl
    """
    debug = bool(ctx.obj and ctx.obj.get("debug"))
    if debug:
        logging.basicConfig(level=logging.DEBUG)

    try:
        config = load_config(config_file)
    except FileNotFoundError as e:
        print_error(
            "Configuration file not found",
            reason=str(e),
            solution="pveup upgrade --config /path/to/config.json",
        )
        raise typer.Exit(ExitCode.GENERAL_ERROR)
    except ValidationError as e:
        print_error("Invalid configuration", reason=str(e))
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    run_id = f"pveup-{datetime.now().strftime('%Y%m%d-%H%M%S')}"
    run_config = RunConfig(
        dry_run=dry_run,
        run_id=run_id,
        confirm_start=config.gates.confirm_start,
    )
    run_logger = _open_run_log(config, run_id, log_file)
    gate: ConfirmationGate = AutoApproveGate() if yes else InteractiveGate()

    host = connect_host(config)
    controller = build_controller(
        config, host, run_config=run_config, gate=gate, run_logger=run_logger
    )

    title = f"Proxmox VE {config.target.major - 1} → {config.target.major} upgrade"
    if dry_run:
        title += " [yellow](dry run)[/yellow]"
    console.print(Panel(f"[bold]{title}[/bold]\nRun: {run_id}", border_style="blue"))
    if debug:
        console.print(f"[dim]Run log: {run_logger.get_log_file()}[/dim]")

    for event in controller.execute():
        render_event(event, auto_approve=yes)

    result = controller.get_result()
    console.print()
    display_summary(result)

    if result.guidance is not None:
        display_guidance(result.guidance)
    elif result.phase == RunPhase.ABORTED:
        console.print("[yellow]Cancelled by operator. No further steps were run.[/yellow]")

    if result.phase == RunPhase.COMPLETED and not dry_run:
        display_checklist(config)
        if result.reboot_required:
            display_reboot_required(config)
            if _should_reboot(reboot, yes):
                console.print("Rebooting system...")
                host.services.reboot()
        else:
            console.print("[green]No reboot required - upgrade is complete[/green]")

    console.print(f"[dim]Run log: {run_logger.get_log_file()}[/dim]")
    raise typer.Exit(int(result.exit_code))
