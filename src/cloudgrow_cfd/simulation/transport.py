"""Advection-diffusion of cell-centred scalars.

Temperature and humidity ratio obey

    d(phi)/dt + u . grad(phi) = div(Gamma grad(phi)) + S

discretised in conservative face-flux form with first-order upwind
advection, which keeps the solution bounded (no new extrema) at the cost of
some numerical diffusion, and central-difference diffusion. The same
assembly is reused for the k and epsilon equations of the turbulence model.

Transient solves are not under-relaxed and use a tight linear tolerance, so
the volume integral of ``rho c_p T`` changes exactly by the injected heat
minus what crosses the boundaries.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Final

import numpy as np

from cloudgrow_cfd.core.grid import SIDES, edge
from cloudgrow_cfd.physics.constants import PRANDTL_TURBULENT, SCHMIDT_TURBULENT
from cloudgrow_cfd.simulation.discretization import LinearSystem, average, interior

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from cloudgrow_cfd.core.grid import FloatArray, FlowFields, Grid
    from cloudgrow_cfd.simulation.boundaries import BoundarySet, SideConditions
    from cloudgrow_cfd.simulation.settings import SolverSettings
    from cloudgrow_cfd.simulation.sources import SourceField

logger = logging.getLogger(__name__)

#: Linear tolerance of transient scalar solves
TRANSIENT_RTOL: Final[float] = 1e-12

#: Returns (fixed mask, boundary value) for one side
BoundaryRule = Callable[["SideConditions"], "tuple[NDArray[np.bool_], FloatArray]"]


def assemble_scalar(
    grid: Grid,
    boundaries: BoundarySet,
    phi: FloatArray,
    gamma: FloatArray,
    rule: BoundaryRule,
) -> LinearSystem:
    """Assemble convection and diffusion of a cell-centred scalar.

    Args:
        grid: Grid providing geometry and face velocities.
        boundaries: Compiled boundary data.
        phi: Current values (inflow value on zero-gradient faces).
        gamma: Diffusivity per cell (m²/s).
        rule: Boundary rule selecting fixed faces and their values; other
            faces are zero-gradient.

    Returns:
        System with convection/diffusion terms; sources are added by the
        caller.
    """
    system = LinearSystem(grid.shape)
    sides = boundaries.sides()
    for a in range(3):
        area = grid.face_area(a)
        h = grid.spacing[a]
        flux = grid.fields.velocity(a) * area
        if grid.shape[a] > 1:
            system.add_faces(a, interior(flux, a), average(gamma, a) * area / h)
        for high in (False, True):
            cond = sides[SIDES[2 * a + int(high)]]
            layer = edge(a, high)
            fixed, value = rule(cond)
            system.add_boundary(
                a,
                high,
                flux[layer],
                np.where(fixed, gamma[layer] * area / (0.5 * h), 0.0),
                np.where(fixed, value, phi[layer]),
            )
    return system


def _temperature_rule(cond: SideConditions) -> tuple[NDArray[np.bool_], FloatArray]:
    return cond.temperature_fixed, cond.temperature


def _humidity_rule(cond: SideConditions) -> tuple[NDArray[np.bool_], FloatArray]:
    return cond.inlet, cond.humidity


class ScalarTransport:
    """Temperature and humidity solver bound to one run."""

    def __init__(
        self,
        grid: Grid,
        boundaries: BoundarySet,
        sources: SourceField,
        settings: SolverSettings,
    ) -> None:
        """Bind the solver to its run."""
        self._grid = grid
        self._boundaries = boundaries
        self.sources = sources
        self._settings = settings

    def _solve(
        self,
        phi: FloatArray,
        gamma: FloatArray,
        rule: BoundaryRule,
        source: FloatArray,
        old: FloatArray | None,
    ) -> FloatArray:
        s = self._settings
        system = assemble_scalar(self._grid, self._boundaries, phi, gamma, rule)
        system.add_source(source)
        if old is not None:
            system.add_transient(self._grid.cell_volume / s.time_step, old)
            rtol = min(s.linear_rtol, TRANSIENT_RTOL)
        else:
            system.relax(s.relax_scalar, phi)
            rtol = s.linear_rtol
        return system.solve(
            phi,
            solver=s.transport_solver,
            rtol=rtol,
            max_iter=s.linear_max_iter,
        )

    def solve_temperature(self, old: FlowFields | None = None) -> float:
        """Advance temperature in place.

        Returns:
            RMS temperature change (K).
        """
        s = self._settings
        fields = self._grid.fields
        gamma = s.thermal_diffusivity + fields.nu_t / PRANDTL_TURBULENT
        source = self.sources.heat / (s.air_density * s.specific_heat)
        new = self._solve(
            fields.t,
            gamma,
            _temperature_rule,
            source,
            None if old is None else old.t,
        )
        change = float(np.sqrt(np.mean((new - fields.t) ** 2)))
        fields.t = new
        return change

    def solve_humidity(self, old: FlowFields | None = None) -> float:
        """Advance the humidity ratio in place.

        Returns:
            RMS humidity-ratio change (kg/kg).
        """
        s = self._settings
        fields = self._grid.fields
        gamma = s.vapor_diffusivity + fields.nu_t / SCHMIDT_TURBULENT
        source = self.sources.moisture / s.air_density
        new = self._solve(
            fields.h,
            gamma,
            _humidity_rule,
            source,
            None if old is None else old.h,
        )
        change = float(np.sqrt(np.mean((new - fields.h) ** 2)))
        fields.h = np.maximum(new, 0.0)
        return change
