"""Solver settings shared by all stages of a simulation run."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Final

from cloudgrow_cfd.physics.constants import (
    C_P_DRY_AIR,
    DYNAMIC_VISCOSITY_AIR,
    GRAVITY,
    STANDARD_AIR_DENSITY,
    THERMAL_DIFFUSIVITY_AIR,
    THERMAL_EXPANSION_AIR,
    VAPOR_DIFFUSIVITY_AIR,
)

#: Inner SIMPLE iterations per transient time step
DEFAULT_INNER_ITERATIONS: Final[int] = 20

#: Upper bound on the eddy-to-molecular viscosity ratio
DEFAULT_MAX_VISCOSITY_RATIO: Final[float] = 1.0e4


class SolveMode(str, Enum):
    """Steady (pseudo-time) or transient (time-accurate) solve."""

    STEADY = "steady"
    TRANSIENT = "transient"


class TurbulenceModel(str, Enum):
    """Turbulence closure."""

    K_EPSILON = "k-epsilon"
    LAMINAR = "laminar"


@dataclass(frozen=True)
class SolverSettings:
    """Physical properties, numerics and budgets of one run.

    Attributes:
        air_density: Air density (kg/m³).
        air_viscosity: Dynamic viscosity (Pa·s).
        thermal_diffusivity: Molecular thermal diffusivity (m²/s).
        vapor_diffusivity: Molecular diffusivity of water vapour (m²/s).
        specific_heat: Specific heat of air (J/(kg·K)).
        time_step: Physical time step for transient runs (s).
        convergence_tolerance: Residual below which the solve has converged.
        max_iterations: Outer iteration cap (steady) or time step cap
            (transient).
        mode: Steady or transient solve.
        duration: Simulated time for transient runs (s).
        inner_iterations: SIMPLE iterations per time step (transient).
        output_interval: Simulated time between stored snapshots (s);
            None stores only the final state.
        relax_velocity: Momentum under-relaxation.
        relax_pressure: Pressure-correction under-relaxation.
        relax_scalar: Temperature/humidity under-relaxation (steady only).
        relax_turbulence: k/epsilon under-relaxation.
        turbulence_model: ``k-epsilon`` or ``laminar``.
        max_viscosity_ratio: Cap on ``nu_t / nu``.
        buoyancy: Whether to add Boussinesq buoyancy to the vertical momentum.
        thermal_expansion: Expansion coefficient for buoyancy (1/K).
        gravity: Gravitational acceleration (m/s²).
        reference_temperature: Buoyancy reference temperature (C).
        initial_temperature: Initial air temperature (C).
        initial_relative_humidity: Initial relative humidity (%).
        divergence_window: Consecutive residual increases treated as
            divergence.
        pressure_solver: Registered linear solver for the pressure correction.
        transport_solver: Registered linear solver for transport equations.
        linear_rtol: Relative tolerance of the linear solves.
        linear_max_iter: Iteration cap of the linear solves.
        time_limit: Wall-clock budget in seconds, or None.
    """

    air_density: float = STANDARD_AIR_DENSITY
    air_viscosity: float = DYNAMIC_VISCOSITY_AIR
    thermal_diffusivity: float = THERMAL_DIFFUSIVITY_AIR
    vapor_diffusivity: float = VAPOR_DIFFUSIVITY_AIR
    specific_heat: float = C_P_DRY_AIR
    time_step: float = 0.1
    convergence_tolerance: float = 1e-4
    max_iterations: int = 1000
    mode: SolveMode = SolveMode.STEADY
    duration: float = 60.0
    inner_iterations: int = DEFAULT_INNER_ITERATIONS
    output_interval: float | None = None
    relax_velocity: float = 0.7
    relax_pressure: float = 0.3
    relax_scalar: float = 0.9
    relax_turbulence: float = 0.7
    turbulence_model: TurbulenceModel = TurbulenceModel.K_EPSILON
    max_viscosity_ratio: float = DEFAULT_MAX_VISCOSITY_RATIO
    buoyancy: bool = False
    thermal_expansion: float = THERMAL_EXPANSION_AIR
    gravity: float = GRAVITY
    reference_temperature: float = 20.0
    initial_temperature: float = 20.0
    initial_relative_humidity: float = 50.0
    divergence_window: int = 20
    pressure_solver: str = "cg"
    transport_solver: str = "bicgstab"
    linear_rtol: float = 1e-8
    linear_max_iter: int = 2000
    time_limit: float | None = None

    def __post_init__(self) -> None:
        """Validate settings and coerce enum fields given as strings."""
        object.__setattr__(self, "mode", SolveMode(self.mode))
        object.__setattr__(self, "turbulence_model", TurbulenceModel(self.turbulence_model))

        positive = {
            "air_density": self.air_density,
            "air_viscosity": self.air_viscosity,
            "thermal_diffusivity": self.thermal_diffusivity,
            "vapor_diffusivity": self.vapor_diffusivity,
            "specific_heat": self.specific_heat,
            "time_step": self.time_step,
            "convergence_tolerance": self.convergence_tolerance,
            "duration": self.duration,
            "max_viscosity_ratio": self.max_viscosity_ratio,
            "linear_rtol": self.linear_rtol,
        }
        for name, value in positive.items():
            if not (value > 0 and math.isfinite(value)):
                msg = f"{name} must be positive and finite, got {value}"
                raise ValueError(msg)

        for name, value in (
            ("max_iterations", self.max_iterations),
            ("inner_iterations", self.inner_iterations),
            ("divergence_window", self.divergence_window),
            ("linear_max_iter", self.linear_max_iter),
        ):
            if value < 1:
                msg = f"{name} must be at least 1, got {value}"
                raise ValueError(msg)

        for name, value in (
            ("relax_velocity", self.relax_velocity),
            ("relax_pressure", self.relax_pressure),
            ("relax_scalar", self.relax_scalar),
            ("relax_turbulence", self.relax_turbulence),
        ):
            if not 0.0 < value <= 1.0:
                msg = f"{name} must be in (0, 1], got {value}"
                raise ValueError(msg)

        if self.output_interval is not None and self.output_interval <= 0:
            msg = f"output_interval must be positive, got {self.output_interval}"
            raise ValueError(msg)
        if self.time_limit is not None and self.time_limit <= 0:
            msg = f"time_limit must be positive, got {self.time_limit}"
            raise ValueError(msg)

    @property
    def kinematic_viscosity(self) -> float:
        """Molecular kinematic viscosity (m²/s)."""
        return self.air_viscosity / self.air_density

    @property
    def transient(self) -> bool:
        """Whether the run is time-accurate."""
        return self.mode == SolveMode.TRANSIENT

    @property
    def n_time_steps(self) -> int:
        """Number of time steps of a transient run, capped by max_iterations."""
        return min(max(1, round(self.duration / self.time_step)), self.max_iterations)
