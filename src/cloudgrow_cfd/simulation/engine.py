"""Simulation run: the top-level owner of one CFD solve.

A run owns its grid, boundary set, sources, settings, convergence controller
and event bus; runs share no mutable state, so several can execute side by
side (see :mod:`cloudgrow_cfd.simulation.batch`).

Each outer iteration:
1. SIMPLE step (momentum prediction, pressure correction, boundaries)
2. k-epsilon update and eddy viscosity
3. Temperature transport
4. Humidity transport
5. Residuals recorded with the convergence controller

Steady runs repeat the outer iteration until the controller stops them.
Transient runs advance ``duration / time_step`` physical time steps, each
with up to ``inner_iterations`` outer iterations.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np

from cloudgrow_cfd.core.errors import BoundaryError, DivergenceError, RunStateError
from cloudgrow_cfd.core.events import EventBus, EventType
from cloudgrow_cfd.core.grid import SCALAR_FIELDS, VELOCITY_FIELDS
from cloudgrow_cfd.physics.psychrometrics import humidity_ratio
from cloudgrow_cfd.simulation.convergence import (
    MIN_ITERATIONS,
    CancellationToken,
    ConvergenceController,
    ResidualRecord,
    RunStatus,
    field_residual,
)
from cloudgrow_cfd.simulation.momentum import MomentumSolver
from cloudgrow_cfd.simulation.results import SummaryMetrics, extract_results
from cloudgrow_cfd.simulation.settings import SolverSettings
from cloudgrow_cfd.simulation.sources import SourceField, build_sources
from cloudgrow_cfd.simulation.transport import ScalarTransport
from cloudgrow_cfd.simulation.turbulence import KEpsilonModel

if TYPE_CHECKING:
    from cloudgrow_cfd.core.equipment import EquipmentSpec
    from cloudgrow_cfd.core.grid import FlowFields, Grid
    from cloudgrow_cfd.simulation.boundaries import BoundarySet

logger = logging.getLogger(__name__)

#: Returns the sources active at a simulated time, given the baseline sources
SourceProvider = Callable[[float, SourceField], SourceField]

_TERMINAL_EVENTS = {
    RunStatus.CONVERGED: EventType.RUN_CONVERGED,
    RunStatus.DIVERGED: EventType.RUN_DIVERGED,
    RunStatus.MAX_ITERATIONS_REACHED: EventType.RUN_MAX_ITERATIONS,
    RunStatus.CANCELLED: EventType.RUN_CANCELLED,
}


@dataclass
class Snapshot:
    """Fields stored at one simulated time of a transient run."""

    time: float
    fields: FlowFields


@dataclass
class SimulationResult:
    """Outcome of a run.

    Attributes:
        name: Run name.
        status: Terminal state of the convergence controller.
        fields: Final fields (last stable fields for diverged runs).
        metrics: Summary metrics of ``fields``.
        iterations: Outer iterations (steady) or time steps (transient).
        residual: Final combined residual.
        history: Residual record per iteration or time step.
        warnings: Non-fatal problems found while setting up the run.
        diagnostics: Messages explaining the terminal state.
        error: Error message for diverged runs.
        wall_time: Wall-clock seconds spent iterating.
        snapshots: Intermediate fields of transient runs.
        settings: Settings the run used.
    """

    name: str
    status: RunStatus
    fields: FlowFields
    metrics: SummaryMetrics
    iterations: int
    residual: float
    history: list[ResidualRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)
    error: str | None = None
    wall_time: float = 0.0
    snapshots: list[Snapshot] = field(default_factory=list)
    settings: SolverSettings = field(default_factory=SolverSettings)

    @property
    def converged(self) -> bool:
        """Whether the run reached its convergence tolerance."""
        return self.status == RunStatus.CONVERGED

    def to_dict(self, *, include_history: bool = True) -> dict[str, Any]:
        """Convert to a JSON-serialisable dictionary (fields excluded)."""
        settings = {
            key: value.value if isinstance(value, Enum) else value
            for key, value in asdict(self.settings).items()
        }
        data: dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "converged": self.converged,
            "iterations": self.iterations,
            "residual": self.residual,
            "wall_time": self.wall_time,
            "error": self.error,
            "warnings": list(self.warnings),
            "diagnostics": list(self.diagnostics),
            "metrics": self.metrics.to_dict(),
            "settings": settings,
            "snapshot_times": [s.time for s in self.snapshots],
        }
        if include_history:
            data["history"] = [record.to_dict() for record in self.history]
        return data

    def save_json(self, path: str | Path) -> Path:
        """Write metrics, status and history as JSON.

        Returns:
            The written path.
        """
        path = Path(path)
        path.write_text(json.dumps(self.to_dict(), indent=2, allow_nan=True))
        logger.info("Saved results of '%s' to %s", self.name, path)
        return path

    def save_fields(self, path: str | Path) -> Path:
        """Write the final fields (and snapshots) as a compressed ``.npz``.

        Snapshot arrays are stored as ``<field>@<time>``.

        Returns:
            The written path.
        """
        path = Path(path)
        arrays: dict[str, np.ndarray] = {
            name: getattr(self.fields, name) for name in (*VELOCITY_FIELDS, *SCALAR_FIELDS)
        }
        for snapshot in self.snapshots:
            for name in (*VELOCITY_FIELDS, *SCALAR_FIELDS):
                arrays[f"{name}@{snapshot.time:g}"] = getattr(snapshot.fields, name)
        np.savez_compressed(path, **arrays)
        logger.info("Saved fields of '%s' to %s", self.name, path)
        return path


class SimulationRun:
    """One CFD solve of a growing environment.

    Example:
        >>> grid = create_grid(10, 5, 3, 10, 5, 3)
        >>> bcs = BoundarySet(grid)
        >>> bcs.add_boundary(FacePatch("x-"), Inlet(flow_rate=2.0))
        >>> bcs.add_boundary(FacePatch("x+"), Outlet())
        >>> run = SimulationRun(grid, bcs, [Fixture("led", (5, 2.5, 2.5), 1000)])
        >>> result = run.run()
    """

    def __init__(
        self,
        grid: Grid,
        boundaries: BoundarySet,
        equipment: Iterable[EquipmentSpec] = (),
        settings: SolverSettings | None = None,
        *,
        name: str = "run",
        source_provider: SourceProvider | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        """Assemble a run; structural errors surface here.

        Args:
            grid: Grid holding the fields.
            boundaries: Boundary set attached to ``grid``.
            equipment: Equipment items turned into sources. Canopy zones add
                porous zones to ``boundaries``.
            settings: Solver settings (defaults if None).
            name: Name used in events, logs and results.
            source_provider: Optional time-varying sources for transient runs,
                called once per time step with the step's end time.
            event_bus: Bus receiving run events (a private one if None).

        Raises:
            BoundaryError: If ``boundaries`` belongs to another grid, or a
                canopy zone overlaps a boundary of a different kind.
        """
        if boundaries.grid is not grid:
            msg = "Boundary set is attached to a different grid"
            raise BoundaryError(msg)

        self._grid = grid
        self._boundaries = boundaries
        self._equipment = list(equipment)
        self._settings = settings or SolverSettings()
        self._name = name
        self._source_provider = source_provider
        self._event_bus = event_bus or EventBus()

        self._sources = build_sources(
            self._equipment,
            grid,
            boundaries,
            air_density=self._settings.air_density,
        )
        self._active_sources = self._sources
        self._momentum = MomentumSolver(grid, boundaries, self._sources, self._settings)
        self._turbulence = KEpsilonModel(grid, boundaries, self._settings)
        self._transport = ScalarTransport(grid, boundaries, self._sources, self._settings)

        s = self._settings
        self._controller = ConvergenceController(
            tolerance=s.convergence_tolerance,
            max_iterations=s.max_iterations,
            divergence_window=s.divergence_window,
            time_limit=s.time_limit,
        )
        self._token = CancellationToken()
        self._stable: FlowFields | None = None
        self._snapshots: list[Snapshot] = []
        self._time = 0.0
        self._wall_time = 0.0
        self._error: str | None = None

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def name(self) -> str:
        """Run name."""
        return self._name

    @property
    def grid(self) -> Grid:
        """Grid holding the current fields."""
        return self._grid

    @property
    def boundaries(self) -> BoundarySet:
        """Boundary set of the run."""
        return self._boundaries

    @property
    def sources(self) -> SourceField:
        """Baseline sources built from the equipment."""
        return self._sources

    @property
    def settings(self) -> SolverSettings:
        """Solver settings."""
        return self._settings

    @property
    def controller(self) -> ConvergenceController:
        """Convergence controller with the residual history."""
        return self._controller

    @property
    def event_bus(self) -> EventBus:
        """Event bus of the run."""
        return self._event_bus

    @property
    def status(self) -> RunStatus:
        """Current state."""
        return self._controller.status

    @property
    def time(self) -> float:
        """Simulated time reached by a transient run (s)."""
        return self._time

    @property
    def warnings(self) -> list[str]:
        """Non-fatal problems found while setting up the run."""
        return list(self._sources.warnings)

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def initialize(self) -> None:
        """Set initial fields and move the controller to ITERATING.

        Raises:
            RunStateError: If the run has already been initialised.
        """
        if self.status != RunStatus.INITIALIZING:
            msg = f"Run '{self._name}' is already {self.status.value}"
            raise RunStateError(msg)

        s = self._settings
        fields = self._grid.fields
        for axis in range(3):
            fields.velocity(axis)[...] = 0.0
        fields.p[...] = 0.0
        fields.t[...] = s.initial_temperature
        fields.h[...] = humidity_ratio(s.initial_temperature, s.initial_relative_humidity)
        self._turbulence.initialize()
        self._boundaries.apply_boundaries(self._grid)
        self._stable = fields.copy()

        self._controller.start()
        logger.info(
            "Starting %s run '%s' on %s cells (%d boundaries, %.1f W sources)",
            s.mode.value,
            self._name,
            "x".join(str(n) for n in self._grid.shape),
            len(self._boundaries),
            self._sources.total_heat,
        )
        self._event_bus.emit_simple(
            EventType.RUN_START,
            source=self._name,
            message=f"Run '{self._name}' started",
            mode=s.mode.value,
            shape=list(self._grid.shape),
            total_heat=self._sources.total_heat,
        )
        for warning in self._sources.warnings:
            self._event_bus.emit_simple(
                EventType.RUN_WARNING, source=self._name, message=warning
            )

    def cancel(self) -> None:
        """Request cancellation; honoured before the next iteration."""
        self._token.cancel()

    # -------------------------------------------------------------------------
    # Iteration
    # -------------------------------------------------------------------------

    def _outer_iteration(self, number: int, old: FlowFields | None) -> ResidualRecord:
        """Run one outer iteration and measure its residuals."""
        fields = self._grid.fields
        previous = fields.copy()
        try:
            momentum = self._momentum.step(self._turbulence.effective_viscosity(), old)
            turbulence = self._turbulence.update(old)
            energy = self._transport.solve_temperature(old)
            humidity = self._transport.solve_humidity(old)
        except ArithmeticError as exc:
            logger.warning("Iteration %d of '%s' failed: %s", number, self._name, exc)
            self._controller.diagnostics.append(f"Linear solve failed: {exc}")
            return ResidualRecord(iteration=number, residual=float("nan"))

        r_vel, r_t = field_residual(previous, self._grid.fields)
        return ResidualRecord(
            iteration=number,
            residual=max(r_vel, r_t),
            velocity=r_vel,
            temperature=r_t,
            continuity=momentum.continuity,
            momentum=momentum.momentum,
            humidity=humidity,
            turbulence=turbulence,
        )

    def _accept(self, record: ResidualRecord, *, steady: bool = True) -> None:
        """Record a residual and keep the last stable fields."""
        finite = self._grid.fields.is_finite()
        if self._controller.record(record, finite=finite, steady=steady):
            self._stable = self._grid.fields.copy()
        if self.status == RunStatus.DIVERGED:
            self._restore_stable()

    def _restore_stable(self) -> None:
        controller = self._controller
        error = DivergenceError(
            controller.diagnostics[-1] if controller.diagnostics else "Solution diverged",
            iteration=controller.iteration,
            last_stable_iteration=controller.last_stable_iteration,
        )
        self._error = str(error)
        if self._stable is not None:
            self._grid.fields = self._stable.copy()
        logger.warning("Run '%s' diverged: %s", self._name, error)

    def iterate(self) -> ResidualRecord:
        """Run one steady outer iteration and record it.

        Returns:
            Residuals of the iteration.

        Raises:
            RunStateError: If the run is transient or already finished.
        """
        if self._settings.transient:
            msg = "iterate() is only available for steady runs"
            raise RunStateError(msg)
        if self.status == RunStatus.INITIALIZING:
            self.initialize()
        if self.status != RunStatus.ITERATING:
            msg = f"Run '{self._name}' is {self.status.value}"
            raise RunStateError(msg)

        record = self._outer_iteration(self._controller.iteration + 1, None)
        self._accept(record)
        self._event_bus.emit_simple(
            EventType.RUN_ITERATION,
            source=self._name,
            **record.to_dict(),
        )
        return record

    def _run_steady(self, token: CancellationToken) -> None:
        while self.status == RunStatus.ITERATING:
            if token.cancelled or self._token.cancelled:
                self._controller.cancel()
                break
            self.iterate()

    def _set_sources(self, sources: SourceField) -> None:
        self._active_sources = sources
        self._momentum.sources = sources
        self._transport.sources = sources

    def _run_transient(self, token: CancellationToken) -> None:
        s = self._settings
        controller = self._controller
        n_steps = s.n_time_steps
        unconverged_steps = 0
        next_output = s.output_interval

        for step in range(1, n_steps + 1):
            step_time = step * s.time_step
            if self._source_provider is not None:
                self._set_sources(self._source_provider(step_time, self._sources))

            old = self._grid.fields.copy()
            record = ResidualRecord(iteration=step, residual=float("nan"))
            inner = 0
            converged = False
            while inner < s.inner_iterations:
                if token.cancelled or self._token.cancelled:
                    controller.cancel()
                    return
                inner += 1
                record = self._outer_iteration(step, old)
                if not np.isfinite(record.residual):
                    break
                if inner >= MIN_ITERATIONS and record.residual < s.convergence_tolerance:
                    converged = True
                    break

            if not converged:
                unconverged_steps += 1
            self._accept(record, steady=False)
            if self.status != RunStatus.ITERATING:
                return

            self._time = step_time
            if next_output is not None and step_time >= next_output - 1e-9 * s.time_step:
                self._snapshots.append(Snapshot(step_time, self._grid.fields.copy()))
                next_output += s.output_interval or 0.0
            self._event_bus.emit_simple(
                EventType.RUN_TIME_STEP,
                source=self._name,
                step=step,
                time=step_time,
                inner_iterations=inner,
                converged=converged,
                residual=record.residual,
            )

        if unconverged_steps:
            controller.finish(
                RunStatus.MAX_ITERATIONS_REACHED,
                f"{unconverged_steps} of {n_steps} time steps did not converge "
                f"within {s.inner_iterations} inner iterations",
            )
        else:
            controller.finish(RunStatus.CONVERGED)

    def run(self, cancel: CancellationToken | None = None) -> SimulationResult:
        """Iterate until the controller reaches a terminal state.

        Args:
            cancel: Optional token polled once per iteration.

        Returns:
            SimulationResult; divergence is reported in it, not raised.
        """
        if self.status == RunStatus.INITIALIZING:
            self.initialize()
        token = cancel or CancellationToken()

        start = time.perf_counter()
        try:
            if self._settings.transient:
                self._run_transient(token)
            else:
                self._run_steady(token)
        finally:
            self._wall_time += time.perf_counter() - start

        return self._finish()

    def _finish(self) -> SimulationResult:
        controller = self._controller
        status = controller.status
        message = (
            f"Run '{self._name}' finished: {status.value} after "
            f"{controller.iteration} iterations (residual {controller.residual:.3e})"
        )
        logger.info(message)
        self._event_bus.emit_simple(
            _TERMINAL_EVENTS.get(status, EventType.CUSTOM),
            source=self._name,
            message=message,
            iterations=controller.iteration,
            residual=controller.residual,
            diagnostics=list(controller.diagnostics),
        )

        metrics = extract_results(
            self._grid,
            self._boundaries,
            self._active_sources,
            self._settings,
            self._equipment,
        )
        return SimulationResult(
            name=self._name,
            status=status,
            fields=self._grid.fields.copy(),
            metrics=metrics,
            iterations=controller.iteration,
            residual=controller.residual,
            history=list(controller.history),
            warnings=self.warnings,
            diagnostics=list(controller.diagnostics),
            error=self._error,
            wall_time=self._wall_time,
            snapshots=list(self._snapshots),
            settings=self._settings,
        )
