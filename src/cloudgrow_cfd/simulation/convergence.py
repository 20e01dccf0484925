"""Convergence control for the outer iteration loop.

The controller is a small state machine::

    INITIALIZING -> ITERATING -> CONVERGED
                              -> DIVERGED
                              -> MAX_ITERATIONS_REACHED
                              -> CANCELLED

It records one :class:`ResidualRecord` per iteration and decides the next
state; it never touches the fields itself. The residual is the normalised
L2 change between successive iterates::

    r_vel = rms(delta u_faces) / max(max|u|, 1e-3 m/s)
    r_T   = rms(delta T) / max(T_max - T_min, 1 K)
    r     = max(r_vel, r_T)
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Final

import numpy as np

from cloudgrow_cfd.core.errors import RunStateError

if TYPE_CHECKING:
    from cloudgrow_cfd.core.grid import FlowFields

logger = logging.getLogger(__name__)

#: Velocity scale floor of the residual normalisation (m/s)
VELOCITY_SCALE_FLOOR: Final[float] = 1e-3

#: Temperature range floor of the residual normalisation (K)
TEMPERATURE_SCALE_FLOOR: Final[float] = 1.0

#: Iterations required before convergence may be declared
MIN_ITERATIONS: Final[int] = 2


class RunStatus(str, Enum):
    """State of a run's convergence controller."""

    INITIALIZING = "initializing"
    ITERATING = "iterating"
    CONVERGED = "converged"
    DIVERGED = "diverged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        """Whether no further iterations will run."""
        return self not in (RunStatus.INITIALIZING, RunStatus.ITERATING)


class CancellationToken:
    """Cooperative cancellation flag, safe to set from another thread."""

    def __init__(self) -> None:
        """Create an unset token."""
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; honoured before the next iteration."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._event.is_set()


@dataclass
class ResidualRecord:
    """Residuals of one iteration.

    Attributes:
        iteration: 1-based iteration number.
        residual: Combined residual used for convergence decisions.
        velocity: Normalised velocity change.
        temperature: Normalised temperature change.
        continuity: Normalised mass imbalance before pressure correction.
        momentum: Normalised change of the predicted velocities.
        humidity: RMS humidity-ratio change (kg/kg).
        turbulence: Relative RMS change of k.
    """

    iteration: int
    residual: float
    velocity: float = 0.0
    temperature: float = 0.0
    continuity: float = 0.0
    momentum: float = 0.0
    humidity: float = 0.0
    turbulence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        return asdict(self)


def _rms(values: np.ndarray) -> float:
    return float(np.sqrt(np.mean(values**2))) if values.size else 0.0


def field_residual(previous: FlowFields, current: FlowFields) -> tuple[float, float]:
    """Normalised velocity and temperature change between two iterates.

    Returns:
        ``(r_vel, r_T)``.
    """
    deltas = np.concatenate(
        [(current.velocity(a) - previous.velocity(a)).ravel() for a in range(3)]
    )
    scale = max(
        max(float(np.abs(current.velocity(a)).max()) for a in range(3)),
        VELOCITY_SCALE_FLOOR,
    )
    r_vel = _rms(deltas) / scale

    t_range = float(current.t.max() - current.t.min())
    r_t = _rms(current.t - previous.t) / max(t_range, TEMPERATURE_SCALE_FLOOR)
    return r_vel, r_t


@dataclass
class ConvergenceController:
    """Tracks residuals and decides when the iteration stops.

    Attributes:
        tolerance: Residual below which the run has converged.
        max_iterations: Iteration cap.
        divergence_window: Consecutive residual increases treated as
            divergence.
        time_limit: Wall-clock budget (s), or None.
        clock: Monotonic clock, injectable for tests.
    """

    tolerance: float = 1e-4
    max_iterations: int = 1000
    divergence_window: int = 20
    time_limit: float | None = None
    clock: Callable[[], float] = time.perf_counter
    status: RunStatus = field(default=RunStatus.INITIALIZING, init=False)
    history: list[ResidualRecord] = field(default_factory=list, init=False)
    diagnostics: list[str] = field(default_factory=list, init=False)
    last_stable_iteration: int = field(default=0, init=False)
    _increases: int = field(default=0, init=False, repr=False)
    _started_at: float | None = field(default=None, init=False, repr=False)

    @property
    def iteration(self) -> int:
        """Number of recorded iterations."""
        return len(self.history)

    @property
    def residual(self) -> float:
        """Latest combined residual (``inf`` before the first iteration)."""
        return self.history[-1].residual if self.history else math.inf

    @property
    def elapsed(self) -> float:
        """Wall-clock seconds since :meth:`start`."""
        if self._started_at is None:
            return 0.0
        return self.clock() - self._started_at

    def start(self) -> None:
        """Enter ITERATING once grid, boundaries and sources are assembled.

        Raises:
            RunStateError: If the controller has already left INITIALIZING.
        """
        if self.status != RunStatus.INITIALIZING:
            msg = f"Cannot start a controller in state {self.status.value}"
            raise RunStateError(msg)
        self.status = RunStatus.ITERATING
        self._started_at = self.clock()

    def _require_iterating(self) -> None:
        if self.status != RunStatus.ITERATING:
            msg = f"Controller is {self.status.value}, not iterating"
            raise RunStateError(msg)

    def record(
        self, record: ResidualRecord, *, finite: bool = True, steady: bool = True
    ) -> bool:
        """Record an iteration and update the state.

        Args:
            record: Residuals of the iteration just run.
            finite: Whether all fields are finite after the iteration.
            steady: False for transient time steps, whose residuals measure
                physical change: only non-finite fields and the wall-clock
                budget end the run then, the time loop decides the rest.

        Returns:
            True when the iterate is stable (residual did not grow), meaning
            its fields may serve as the last stable snapshot.
        """
        self._require_iterating()
        previous = self.residual
        self.history.append(record)

        if not finite or not math.isfinite(record.residual):
            self.diagnostics.append(
                f"Non-finite values at iteration {record.iteration}"
            )
            self.status = RunStatus.DIVERGED
            return False

        stable = record.residual <= previous or not steady
        if stable:
            self._increases = 0
            self.last_stable_iteration = record.iteration
        else:
            self._increases += 1

        if not steady:
            if self.time_limit is not None and self.elapsed >= self.time_limit:
                self.diagnostics.append(
                    f"Wall-clock budget of {self.time_limit:.1f}s exhausted after "
                    f"{self.iteration} time steps"
                )
                self.status = RunStatus.MAX_ITERATIONS_REACHED
        elif self._increases >= self.divergence_window:
            self.diagnostics.append(
                f"Residual grew for {self._increases} consecutive iterations "
                f"(iteration {record.iteration}, residual {record.residual:.3e})"
            )
            self.status = RunStatus.DIVERGED
        elif self.iteration >= MIN_ITERATIONS and record.residual < self.tolerance:
            self.status = RunStatus.CONVERGED
        elif self.iteration >= self.max_iterations:
            self.diagnostics.append(
                f"Iteration cap of {self.max_iterations} reached with residual "
                f"{record.residual:.3e} (tolerance {self.tolerance:.1e})"
            )
            self.status = RunStatus.MAX_ITERATIONS_REACHED
        elif self.time_limit is not None and self.elapsed >= self.time_limit:
            self.diagnostics.append(
                f"Wall-clock budget of {self.time_limit:.1f}s exhausted after "
                f"{self.iteration} iterations"
            )
            self.status = RunStatus.MAX_ITERATIONS_REACHED

        logger.debug(
            "Iteration %d: residual=%.3e status=%s",
            record.iteration,
            record.residual,
            self.status.value,
        )
        return stable

    def cancel(self) -> None:
        """Move to CANCELLED; called when the token is seen between iterations."""
        self._require_iterating()
        self.diagnostics.append(f"Cancelled after {self.iteration} iterations")
        self.status = RunStatus.CANCELLED

    def finish(self, status: RunStatus, diagnostic: str | None = None) -> None:
        """Force a terminal state (used by the transient time loop)."""
        if not status.terminal:
            msg = f"{status.value} is not a terminal state"
            raise RunStateError(msg)
        if diagnostic:
            self.diagnostics.append(diagnostic)
        self.status = status
