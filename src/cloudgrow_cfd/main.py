"""CLI interface for cloudgrow-cfd.

This module provides a command-line interface for solving growing-room
airflow cases from YAML configuration files without writing code.

Usage:
    cgcfd run my-room.yaml
    cgcfd run --scenario ventilated_room
    cgcfd list
    cgcfd init "My Room" -o my-room.yaml
    cgcfd validate my-room.yaml
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from cloudgrow_cfd.core.config import CaseConfig, load_config, save_config
from cloudgrow_cfd.core.errors import CFDError
from cloudgrow_cfd.core.events import Event, EventBus, EventType
from cloudgrow_cfd.simulation.convergence import RunStatus
from cloudgrow_cfd.simulation.factory import create_run_from_config
from cloudgrow_cfd.simulation.scenarios import SCENARIOS
from cloudgrow_cfd.simulation.settings import SolveMode

if TYPE_CHECKING:
    from cloudgrow_cfd.simulation.engine import SimulationResult

app = typer.Typer(
    name="cgcfd",
    help="CFD micro-climate solver for greenhouses, grow rooms and vertical farms.",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()

_STATUS_STYLE = {
    RunStatus.CONVERGED: "green",
    RunStatus.MAX_ITERATIONS_REACHED: "yellow",
    RunStatus.DIVERGED: "red",
    RunStatus.CANCELLED: "dim",
}


@app.callback()
def configure(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show solver log messages"),
    ] = False,
) -> None:
    """Configure logging for all commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _resolve_config(config_path: Path | None, scenario: str | None) -> CaseConfig:
    if config_path and scenario:
        console.print("[red]Error:[/] Cannot specify both config file and --scenario")
        raise typer.Exit(1)

    if scenario:
        if scenario not in SCENARIOS:
            console.print(f"[red]Error:[/] Unknown scenario '{scenario}'")
            console.print(f"Available: {', '.join(SCENARIOS)}")
            raise typer.Exit(1)
        return SCENARIOS[scenario]()

    if not config_path:
        console.print("[red]Error:[/] Provide a config file or --scenario")
        raise typer.Exit(1)

    try:
        return load_config(config_path)
    except FileNotFoundError:
        console.print(f"[red]Error:[/] Config file not found: {config_path}")
        raise typer.Exit(1) from None
    except (ValidationError, ValueError) as e:
        console.print(f"[red]Error:[/] Invalid configuration: {e}")
        raise typer.Exit(1) from None


@app.command()
def run(
    config_path: Annotated[
        Path | None,
        typer.Argument(help="Path to YAML/JSON case file"),
    ] = None,
    scenario: Annotated[
        str | None,
        typer.Option("--scenario", "-s", help="Built-in scenario name"),
    ] = None,
    max_iterations: Annotated[
        int | None,
        typer.Option("--max-iterations", "-n", min=1, help="Override the iteration cap"),
    ] = None,
    mode: Annotated[
        SolveMode | None,
        typer.Option("--mode", "-m", help="Override the solve mode"),
    ] = None,
    output_dir: Annotated[
        Path | None,
        typer.Option("--output-dir", "-o", help="Output directory for results"),
    ] = None,
    save_fields: Annotated[
        bool,
        typer.Option("--save-fields", help="Also write the fields as .npz"),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Suppress progress output"),
    ] = False,
) -> None:
    """Solve a case and print its summary metrics."""
    config = _resolve_config(config_path, scenario)

    updates: dict[str, object] = {}
    if max_iterations is not None:
        updates["max_iterations"] = max_iterations
    if mode is not None:
        updates["mode"] = mode
    if updates:
        config = config.model_copy(update={"solver": config.solver.model_copy(update=updates)})

    bus = EventBus()
    try:
        sim = create_run_from_config(config, event_bus=bus)
    except CFDError as e:
        console.print(f"[red]Error:[/] Failed to create simulation: {e}")
        raise typer.Exit(1) from None

    settings = sim.settings
    total = settings.n_time_steps if settings.transient else settings.max_iterations
    if not quiet:
        console.print(f"\n[bold]Running:[/] {config.name}")
        console.print(f"  Grid: {' x '.join(str(n) for n in sim.grid.shape)} cells")
        console.print(f"  Mode: {settings.mode.value}\n")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=console,
        ) as progress:
            task = progress.add_task("Solving...", total=total)

            def _advance(event: Event) -> None:
                residual = event.data.get("residual", float("nan"))
                progress.update(
                    task,
                    advance=1,
                    description=f"Solving... residual {residual:.2e}",
                )

            bus.subscribe(EventType.RUN_ITERATION, _advance)
            bus.subscribe(EventType.RUN_TIME_STEP, _advance)
            result = sim.run()
            progress.update(task, description=f"[green]{result.status.value}")
    else:
        result = sim.run()

    _output_results(result, output_dir, save_fields=save_fields, quiet=quiet)
    if result.status == RunStatus.DIVERGED:
        raise typer.Exit(2)


@app.command("list")
def list_scenarios() -> None:
    """List available built-in scenarios."""
    table = Table(title="Available Scenarios")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Grid")
    table.add_column("Equipment", justify="right")

    for name, factory in SCENARIOS.items():
        config = factory()
        nx, ny, nz = config.domain.cell_counts()
        table.add_row(name, config.description, f"{nx}x{ny}x{nz}", str(len(config.equipment)))

    console.print(table)


@app.command()
def init(
    name: Annotated[str, typer.Argument(help="Name for the new case")],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Output file path"),
    ] = None,
    scenario: Annotated[
        str,
        typer.Option("--scenario", "-s", help="Scenario to start from"),
    ] = "ventilated_room",
) -> None:
    """Generate a starter YAML case file."""
    if scenario not in SCENARIOS:
        console.print(f"[red]Error:[/] Unknown scenario '{scenario}'")
        raise typer.Exit(1)
    config = SCENARIOS[scenario]().model_copy(update={"name": name})

    # "My Room" -> "my-room.yaml"
    if output is None:
        output = Path(name.lower().replace(" ", "-") + ".yaml")

    save_config(config, output)
    console.print(f"[green]Created:[/] {output}")
    console.print("\nEdit this file to customize your case, then run:")
    console.print(f"  cgcfd run {output}")


@app.command()
def validate(
    config_path: Annotated[Path, typer.Argument(help="Path to YAML/JSON case file")],
) -> None:
    """Validate a case file (schema and geometry) without solving."""
    try:
        config = load_config(config_path)
        sim = create_run_from_config(config)
    except FileNotFoundError:
        console.print(f"[red]Error:[/] File not found: {config_path}")
        raise typer.Exit(1) from None
    except (ValidationError, CFDError, ValueError) as e:
        console.print(f"[red]Invalid:[/] {e}")
        raise typer.Exit(1) from None

    domain = config.domain
    console.print(f"[green]Valid:[/] {config.name}")
    console.print(f"  Domain: {domain.length}m x {domain.width}m x {domain.height}m")
    console.print(f"  Grid: {' x '.join(str(n) for n in sim.grid.shape)} cells")
    console.print(f"  Mode: {config.solver.mode.value}")
    console.print(f"  Boundaries: {len(config.boundaries)}")
    console.print(f"  Equipment: {len(config.equipment)}")
    console.print(f"  Heat load: {sim.sources.total_heat:.0f} W")
    for warning in sim.warnings:
        console.print(f"  [yellow]Warning:[/] {warning}")


def _output_results(
    result: SimulationResult,
    output_dir: Path | None,
    *,
    save_fields: bool,
    quiet: bool,
) -> None:
    """Print the summary and write requested files."""
    if not quiet:
        metrics = result.metrics
        style = _STATUS_STYLE.get(result.status, "white")
        console.print(f"\n[bold]Status:[/] [{style}]{result.status.value}[/]")
        console.print(f"  Iterations: {result.iterations} (residual {result.residual:.2e})")
        console.print(f"  Wall time: {result.wall_time:.2f}s")
        if result.error:
            console.print(f"  [red]Error:[/] {result.error}")

        table = Table(title="Summary Metrics")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Mean temperature", f"{metrics.temperature.mean:.2f} C")
        table.add_row(
            "Temperature range",
            f"{metrics.temperature.min:.2f} - {metrics.temperature.max:.2f} C",
        )
        table.add_row("Temperature uniformity", f"{metrics.temperature_uniformity:.3f}")
        table.add_row("Mean air speed", f"{metrics.speed.mean:.3f} m/s")
        table.add_row("Velocity uniformity", f"{metrics.velocity_uniformity:.3f}")
        table.add_row("Mean relative humidity", f"{metrics.mean_relative_humidity:.1f} %")
        table.add_row("Air changes per hour", f"{metrics.air_changes_per_hour:.1f}")
        if metrics.pressure_drop is not None:
            table.add_row("Pressure drop", f"{metrics.pressure_drop:.3f} Pa")
        if metrics.ventilation_effectiveness is not None:
            table.add_row(
                "Ventilation effectiveness", f"{metrics.ventilation_effectiveness:.2f}"
            )
        console.print(table)

        for zone in metrics.zones:
            console.print(
                f"  Zone {zone.name}: {zone.temperature.mean:.2f} C, "
                f"{zone.speed.mean:.3f} m/s, {zone.relative_humidity:.0f}% RH"
            )
        for message in [*result.warnings, *result.diagnostics]:
            console.print(f"  [yellow]Note:[/] {message}")
        if metrics.recommendations:
            console.print("\n[bold]Recommendations[/]")
            for advice in metrics.recommendations:
                console.print(f"  - {advice}")

    if output_dir:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        json_path = result.save_json(output_dir / "results.json")
        if not quiet:
            console.print(f"\n[dim]Results saved to {json_path}[/]")
        if save_fields:
            npz_path = result.save_fields(output_dir / "fields.npz")
            if not quiet:
                console.print(f"[dim]Fields saved to {npz_path}[/]")


def main() -> int:
    """Application entry point.

    Returns:
        Exit code (0 for success).
    """
    try:
        app()
        return 0
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 1


if __name__ == "__main__":
    sys.exit(main())
