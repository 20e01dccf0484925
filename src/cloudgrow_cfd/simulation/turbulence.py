"""Standard k-epsilon closure with wall functions.

The eddy viscosity ``nu_t = C_mu k^2 / eps`` is added to the molecular
viscosity of the momentum equations and, divided by the turbulent Prandtl
and Schmidt numbers, to the scalar diffusivities.

Near walls the boundary layer is not resolved: the dissipation in
wall-adjacent cells is set from the local k by the equilibrium wall function
``eps_P = C_mu^0.75 k^1.5 / (kappa y_p)``, which is adequate for
engineering-accuracy room airflow.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final

import numpy as np

from cloudgrow_cfd.physics.constants import (
    C_EPS_1,
    C_EPS_2,
    C_MU,
    EPS_MIN,
    INLET_LENGTH_SCALE_FACTOR,
    K_MIN,
    SIGMA_EPS,
    SIGMA_K,
    VON_KARMAN,
)
from cloudgrow_cfd.simulation.discretization import gradient
from cloudgrow_cfd.simulation.settings import TurbulenceModel
from cloudgrow_cfd.simulation.transport import TRANSIENT_RTOL, assemble_scalar

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from cloudgrow_cfd.core.grid import FloatArray, FlowFields, Grid
    from cloudgrow_cfd.simulation.boundaries import BoundarySet, SideConditions
    from cloudgrow_cfd.simulation.discretization import LinearSystem
    from cloudgrow_cfd.simulation.settings import SolverSettings

logger = logging.getLogger(__name__)

#: Turbulence intensity of the initial field
INITIAL_INTENSITY: Final[float] = 0.05

#: Lower bound on the reference speed of the initial field (m/s)
MIN_REFERENCE_SPEED: Final[float] = 0.1


def _k_rule(cond: SideConditions) -> tuple[NDArray[np.bool_], FloatArray]:
    return cond.inlet, cond.k


def _eps_rule(cond: SideConditions) -> tuple[NDArray[np.bool_], FloatArray]:
    return cond.inlet, cond.eps


def strain_rate_squared(fields: FlowFields, spacing: tuple[float, float, float]) -> FloatArray:
    """``2 S_ij S_ij`` from cell-centred velocity gradients."""
    uc = fields.cell_velocity()
    g = [[gradient(uc[i], spacing[j], j) for j in range(3)] for i in range(3)]
    return (
        2.0 * (g[0][0] ** 2 + g[1][1] ** 2 + g[2][2] ** 2)
        + (g[0][1] + g[1][0]) ** 2
        + (g[0][2] + g[2][0]) ** 2
        + (g[1][2] + g[2][1]) ** 2
    )


class KEpsilonModel:
    """k-epsilon solver bound to one run.

    With ``turbulence_model = laminar`` the model keeps ``nu_t = 0`` and its
    update is a no-op.
    """

    def __init__(self, grid: Grid, boundaries: BoundarySet, settings: SolverSettings) -> None:
        """Bind the model to its run."""
        self._grid = grid
        self._boundaries = boundaries
        self._settings = settings

    @property
    def enabled(self) -> bool:
        """Whether the turbulence equations are solved."""
        return self._settings.turbulence_model == TurbulenceModel.K_EPSILON

    def initialize(self) -> None:
        """Set uniform initial k, epsilon and eddy viscosity.

        The reference speed is the fastest inlet (at least 0.1 m/s) and the
        length scale ``0.07 * min(extents)``.
        """
        fields = self._grid.fields
        if not self.enabled:
            fields.k[...] = K_MIN
            fields.eps[...] = EPS_MIN
            fields.nu_t[...] = 0.0
            return

        inlet_speed = 0.0
        for cond in self._boundaries.sides().values():
            if cond.inlet.any():
                speed = np.sqrt((cond.velocity**2).sum(axis=0))
                inlet_speed = max(inlet_speed, float(speed[cond.inlet].max()))
        u_ref = max(inlet_speed, MIN_REFERENCE_SPEED)
        length = INLET_LENGTH_SCALE_FACTOR * min(self._grid.extents)

        k0 = 1.5 * (INITIAL_INTENSITY * u_ref) ** 2
        eps0 = C_MU**0.75 * k0**1.5 / length
        fields.k[...] = k0
        fields.eps[...] = eps0
        self._update_viscosity()
        logger.debug("Initial turbulence: k=%.3e eps=%.3e", k0, eps0)

    def _update_viscosity(self) -> None:
        fields = self._grid.fields
        limit = self._settings.max_viscosity_ratio * self._settings.kinematic_viscosity
        fields.nu_t = np.clip(C_MU * fields.k**2 / fields.eps, 0.0, limit)

    def effective_viscosity(self) -> FloatArray:
        """Effective dynamic viscosity ``rho (nu + nu_t)`` per cell (Pa·s)."""
        s = self._settings
        return s.air_density * (s.kinematic_viscosity + self._grid.fields.nu_t)

    def update(self, old: FlowFields | None = None) -> float:
        """Solve the k and epsilon equations and refresh the eddy viscosity.

        Args:
            old: Fields at the previous time level (transient runs only).

        Returns:
            RMS change of k relative to its maximum.
        """
        if not self.enabled:
            return 0.0

        s = self._settings
        grid = self._grid
        fields = grid.fields
        volume = grid.cell_volume
        nu = s.kinematic_viscosity

        production = fields.nu_t * strain_rate_squared(fields, grid.spacing)
        ratio = fields.eps / fields.k

        k_system = assemble_scalar(
            grid, self._boundaries, fields.k, nu + fields.nu_t / SIGMA_K, _k_rule
        )
        k_system.add_source(production * volume, ratio * volume)
        k_new = self._finish(k_system, fields.k, None if old is None else old.k)
        k_new = np.maximum(k_new, K_MIN)

        eps_system = assemble_scalar(
            grid, self._boundaries, fields.eps, nu + fields.nu_t / SIGMA_EPS, _eps_rule
        )
        eps_system.add_source(
            C_EPS_1 * ratio * production * volume, C_EPS_2 * ratio * volume
        )
        distance = self._boundaries.wall_distance()
        near_wall = np.isfinite(distance)
        eps_wall = C_MU**0.75 * k_new**1.5 / (VON_KARMAN * np.where(near_wall, distance, 1.0))
        eps_system.fix(near_wall, eps_wall)
        eps_new = self._finish(eps_system, fields.eps, None if old is None else old.eps)

        change = float(np.sqrt(np.mean((k_new - fields.k) ** 2))) / max(
            float(k_new.max()), K_MIN
        )
        fields.k = k_new
        fields.eps = np.maximum(eps_new, EPS_MIN)
        self._update_viscosity()
        return change

    def _finish(
        self, system: LinearSystem, phi: FloatArray, old: FloatArray | None
    ) -> FloatArray:
        s = self._settings
        if old is not None:
            system.add_transient(self._grid.cell_volume / s.time_step, old)
            rtol = min(s.linear_rtol, TRANSIENT_RTOL)
        else:
            rtol = s.linear_rtol
        system.relax(s.relax_turbulence, phi)
        return system.solve(
            phi,
            solver=s.transport_solver,
            rtol=rtol,
            max_iter=s.linear_max_iter,
        )
