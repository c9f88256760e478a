"""Waterfall CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
import json
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from waterfall.models import (
    PHASE_ORDER,
    FileRef,
    Phase,
    PhaseState,
    PhaseStatus,
    ResourceEstimate,
    RunCancelled,
    RunCompleted,
    RunFailed,
    RunPaused,
)
from waterfall.observability import close_file_logging, configure_logging, get_logger
from waterfall.pipeline import (
    AutoProceedGate,
    ClientConfig,
    ConfigError,
    WaterfallClient,
    WaterfallController,
    WaterfallTransportError,
    drive_waterfall,
    load_client_config,
)

if TYPE_CHECKING:
    from waterfall.models import PipelineState, RunOutcome, StepOutcome
    from waterfall.pipeline import GateDecision, GateHook

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="wf",
    help="Waterfall: drive the Architect → Reasoner → Executor → Reviewer pipeline.",
    no_args_is_help=True,
)
console = Console()

EXIT_INTERRUPTED = 130

STATUS_ICONS = {
    PhaseStatus.IDLE: "[dim]○[/dim] idle",
    PhaseStatus.PROCESSING: "[yellow]…[/yellow] processing",
    PhaseStatus.COMPLETED: "[green]✓[/green] completed",
    PhaseStatus.ERROR: "[red]✗[/red] error",
    PhaseStatus.PAUSED: "[magenta]‖[/magenta] paused",
}

# Global state for CLI-wide flags (set by callback, used by commands)
_config_path: Path | None = None


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log: Annotated[
        Path | None,
        typer.Option(
            "--log",
            help="Enable file logging to the given directory (debug.jsonl).",
        ),
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Config file (default: ./waterfall.yaml, then ~/.config/waterfall/config.yaml).",
            envvar="WATERFALL_CONFIG",
        ),
    ] = None,
) -> None:
    """Waterfall: drive the staged code-generation pipeline."""
    global _config_path
    _config_path = config

    if log is not None:
        configure_logging(verbosity=verbose, log_to_file=True, log_dir=log)
        atexit.register(close_file_logging)
    else:
        configure_logging(verbosity=verbose)


def _load_config() -> ClientConfig:
    """Load client config, exiting with a readable error on failure."""
    try:
        return load_client_config(_config_path)
    except (ConfigError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None


# =============================================================================
# Rendering
# =============================================================================


def _describe(slot: PhaseState) -> str:
    """One-line summary of a phase slot for progress output."""
    if slot.error:
        return slot.error
    data = slot.data
    if isinstance(data, dict):
        if isinstance(data.get("message"), str):
            return data["message"]
        if "score" in data:
            return f"Score: {data['score']}/100"
    return ""


class _ProgressPrinter:
    """State listener printing each phase status change once."""

    def __init__(self, console_: Console) -> None:
        self._console = console_
        self._seen: dict[Phase, tuple[PhaseStatus, str]] = {}

    def __call__(self, state: PipelineState) -> None:
        for phase in PHASE_ORDER:
            slot = state.phase(phase)
            key = (slot.status, _describe(slot))
            if self._seen.get(phase, (PhaseStatus.IDLE, "")) == key:
                continue
            self._seen[phase] = key
            detail = f" [dim]{key[1]}[/dim]" if key[1] else ""
            self._console.print(f"  {STATUS_ICONS[slot.status]:<28} {phase.value}{detail}")


def _render_state(state: PipelineState) -> None:
    table = Table(title="Waterfall")
    table.add_column("Phase", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("Detail", style="dim")

    for phase in PHASE_ORDER:
        slot = state.phase(phase)
        marker = " ←" if phase == state.current_phase else ""
        table.add_row(f"{phase.value}{marker}", STATUS_ICONS[slot.status], _describe(slot))

    console.print()
    console.print(table)


def _render_final(final: dict[str, Any]) -> None:
    executor = final.get("executor")
    if isinstance(executor, dict) and executor.get("code"):
        console.print()
        console.print(Panel(str(executor["code"]), title="Executor output", title_align="left"))

    reviewer = final.get("reviewer")
    if isinstance(reviewer, dict) and "score" in reviewer:
        console.print(f"Review score: [bold]{reviewer['score']}/100[/bold]")
        for issue in reviewer.get("issues") or []:
            console.print(f"  [yellow]•[/yellow] {issue}")


def _render_estimate(estimate: Any) -> None:
    try:
        view = ResourceEstimate.model_validate(estimate or {})
    except ValidationError:
        console.print(f"  Estimate: {estimate}")
        return
    if view.estimated_tokens is not None:
        console.print(f"  Estimated tokens: {view.estimated_tokens:,}")
    if view.estimated_cost_usd is not None:
        console.print(f"  Estimated cost: ${view.estimated_cost_usd:.4f}")
    if view.risk_level:
        console.print(f"  Risk level: {view.risk_level}")
    if view.reason:
        console.print(f"  Reason: {view.reason}")


class ConfirmGate:
    """Gate that asks on the terminal before resuming a paused run."""

    async def on_gated(self, paused: RunPaused) -> GateDecision:
        console.print()
        console.print(f"[magenta]Gate:[/magenta] {paused.reason}")
        _render_estimate(paused.estimate)
        if typer.confirm("Proceed with this run?", default=False):
            return "proceed"
        return "hold"


# =============================================================================
# Commands
# =============================================================================


@app.command()
def version() -> None:
    """Show version information."""
    from waterfall import __version__

    console.print(f"Waterfall v{__version__}")


async def _run_async(
    config: ClientConfig,
    prompt: str,
    provider: str | None,
    notepad_content: str | None,
    open_files: list[FileRef],
    gate: GateHook,
) -> tuple[RunOutcome | None, PipelineState]:
    async with WaterfallClient(config) as client:
        controller = WaterfallController(
            client,
            provider=provider,
            notepad_content=notepad_content,
            open_files=open_files,
        )
        controller.context.subscribe(_ProgressPrinter(console))
        # Ctrl-C cancels the main task; the run itself is cancelled through
        # its own handle so the active phase is marked before exiting.
        driver = asyncio.ensure_future(drive_waterfall(controller, prompt, gate))
        try:
            outcome = await asyncio.shield(driver)
        except asyncio.CancelledError:
            controller.cancel_waterfall()
            await driver
            raise
        return outcome, controller.state


@app.command()
def run(
    prompt: Annotated[str, typer.Argument(help="What the pipeline should build.")],
    provider: Annotated[
        str | None,
        typer.Option("--provider", help="Provider preference (e.g. auto, local)."),
    ] = None,
    notes: Annotated[
        Path | None,
        typer.Option("--notes", help="File sent as notepad (mission context)."),
    ] = None,
    open_file: Annotated[
        list[Path] | None,
        typer.Option("--open-file", "-f", help="File sent as open-file context (repeatable)."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Proceed automatically when the run is gated."),
    ] = False,
) -> None:
    """Run the full pipeline and stream its progress."""
    log = get_logger(__name__)
    config = _load_config()

    try:
        notepad_content = notes.read_text(encoding="utf-8") if notes else None
        files = [
            FileRef(path=str(path), content=path.read_text(encoding="utf-8"))
            for path in open_file or []
        ]
    except OSError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    gate: GateHook = AutoProceedGate() if yes else ConfirmGate()
    log.debug("run_command", base_url=config.base_url, open_files=len(files))
    console.print(f"[dim]Running waterfall against {config.base_url}...[/dim]")

    try:
        outcome, state = asyncio.run(
            _run_async(config, prompt, provider, notepad_content, files, gate)
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print()
        console.print("[yellow]Cancelled by user.[/yellow]")
        raise typer.Exit(EXIT_INTERRUPTED) from None

    _render_state(state)
    console.print()

    if isinstance(outcome, RunFailed):
        console.print(f"[red]✗[/red] Failed in {outcome.phase.value}: {outcome.reason}")
        raise typer.Exit(1)
    if isinstance(outcome, RunPaused):
        console.print(f"[magenta]‖[/magenta] Paused at {outcome.phase.value}: {outcome.reason}")
        console.print("Run again with [cyan]--yes[/cyan] to proceed past the gate.")
        return
    if isinstance(outcome, RunCancelled):
        console.print("[yellow]Cancelled by user.[/yellow]")
        raise typer.Exit(EXIT_INTERRUPTED)
    if isinstance(outcome, RunCompleted) and outcome.final is not None:
        _render_final(outcome.final)
        console.print("[green]✓[/green] Waterfall completed")
    else:
        console.print("[yellow]![/yellow] Stream ended without a final result")


async def _step_async(
    config: ClientConfig,
    step: Phase,
    step_input: str,
    plan: Any,
    provider: str | None,
) -> StepOutcome:
    async with WaterfallClient(config) as client:
        controller = WaterfallController(client, provider=provider)
        if plan is not None:
            state = controller.state
            seeded = PhaseState(status=PhaseStatus.COMPLETED, data=plan)
            controller.context.replace(state.with_phases({Phase.REASONER: seeded}))
        return await controller.run_waterfall_step(step, step_input)


@app.command()
def step(
    phase: Annotated[Phase, typer.Argument(help="Phase to run.")],
    step_input: Annotated[str, typer.Argument(metavar="INPUT", help="Input for the phase.")],
    plan: Annotated[
        Path | None,
        typer.Option("--plan", help="JSON file with the reasoner plan (context for reviewer)."),
    ] = None,
    provider: Annotated[
        str | None,
        typer.Option("--provider", help="Provider preference (e.g. auto, local)."),
    ] = None,
) -> None:
    """Run a single phase manually and print its result."""
    config = _load_config()

    plan_data: Any = None
    if plan is not None:
        try:
            plan_data = json.loads(plan.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            console.print(f"[red]Error:[/red] Cannot read plan: {e}")
            raise typer.Exit(1) from None

    outcome = asyncio.run(_step_async(config, phase, step_input, plan_data, provider))

    if not outcome.ok:
        console.print(f"[red]✗[/red] {phase.value} failed: {outcome.error}")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] {phase.value} completed")
    console.print_json(json.dumps(outcome.data, default=str))


async def _check_server(config: ClientConfig) -> bool:
    async with WaterfallClient(config) as client:
        try:
            report = await client.check_health()
        except WaterfallTransportError as e:
            console.print(f"  [red]✗[/red] server: {e}")
            return False
    console.print(f"  [green]✓[/green] server: Connected ({config.base_url})")
    for name, status in report.items():
        console.print(f"      {name}: {status}")
    return True


@app.command()
def doctor() -> None:
    """Check configuration and server connectivity."""
    console.print("[bold]Waterfall Doctor[/bold]")
    console.print()

    console.print("[bold]Configuration[/bold]")
    config = _load_config()
    console.print(f"  [green]✓[/green] Base URL: {config.base_url}")
    console.print(f"  [green]✓[/green] Provider: {config.provider}")
    if config.secret:
        console.print("  [green]✓[/green] Shared secret: configured")
    else:
        console.print("  [dim]○[/dim] Shared secret: not configured")
    console.print()

    console.print("[bold]Server[/bold]")
    all_ok = asyncio.run(_check_server(config))

    console.print()
    if all_ok:
        console.print("[green]All checks passed![/green]")
    else:
        console.print("[yellow]Some checks failed.[/yellow]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
