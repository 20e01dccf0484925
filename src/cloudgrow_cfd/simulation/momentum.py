"""SIMPLE pressure-velocity coupling on the staggered grid.

One call to :meth:`MomentumSolver.step` performs one outer iteration:

1. Predict each face-velocity component from the under-relaxed momentum
   equation using the previous pressure and the effective viscosity.
2. Solve the pressure-correction Poisson equation, which enforces discrete
   continuity in every cell.
3. Correct the face velocities (fully) and the pressure (by ``alpha_p``).
4. Re-apply the boundary conditions.

The control volume of a face velocity spans the two cells sharing the face.
Outlet faces take the velocity of the adjacent interior face as predictor
and are then corrected with ``p' = 0`` outside the domain. A domain without
outlets pins the correction in one cell; the pin is exact because the net
mass imbalance of a closed domain is zero.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

import numpy as np

from cloudgrow_cfd.core.grid import SIDES, axis_index, edge
from cloudgrow_cfd.simulation.discretization import LinearSystem, average, interior

if TYPE_CHECKING:
    from cloudgrow_cfd.core.grid import FloatArray, FlowFields, Grid
    from cloudgrow_cfd.simulation.boundaries import BoundarySet
    from cloudgrow_cfd.simulation.settings import SolverSettings
    from cloudgrow_cfd.simulation.sources import SourceField

logger = logging.getLogger(__name__)

#: Velocity scale used when estimating coefficients on faces without neighbours
_VELOCITY_FLOOR: Final[float] = 1e-3

_LO: Final = slice(None, -1)
_HI: Final = slice(1, None)


def _side(axis: int, high: bool) -> str:
    return SIDES[2 * axis + int(high)]


@dataclass
class MomentumResiduals:
    """Normalised imbalances of one outer iteration.

    Attributes:
        momentum: RMS change of the predicted face velocities relative to the
            velocity scale.
        continuity: RMS cell mass imbalance before correction, relative to
            the mass flow scale.
    """

    momentum: float
    continuity: float


class MomentumSolver:
    """Velocity/pressure solver bound to one grid and boundary set."""

    def __init__(
        self,
        grid: Grid,
        boundaries: BoundarySet,
        sources: SourceField,
        settings: SolverSettings,
    ) -> None:
        """Bind the solver to its run.

        Args:
            grid: Grid whose fields are updated in place.
            boundaries: Boundary conditions of the run.
            sources: Momentum sources (N per cell) from equipment.
            settings: Physical properties and numerics.
        """
        self._grid = grid
        self._boundaries = boundaries
        self.sources = sources
        self._settings = settings
        self._d: list[FloatArray] = [np.zeros(0)] * 3
        self._d_boundary: dict[str, FloatArray] = {}

    # -------------------------------------------------------------------------
    # Prediction
    # -------------------------------------------------------------------------

    def _drag_coefficient(self) -> FloatArray:
        """Implicit porous drag per unit volume, ``rho (C1/phi + C2|U|/phi^2)``."""
        porous = self._boundaries.porous_cells()
        fields = self._grid.fields
        coeff = np.zeros(self._grid.shape)
        if porous.mask.any():
            speed = fields.speed()
            phi = porous.porosity
            coeff = self._settings.air_density * (
                porous.resistance_linear / phi
                + porous.resistance_quadratic * speed / phi**2
            )
            coeff = np.where(porous.mask, coeff, 0.0)
        return coeff

    def _estimate_boundary_d(self, axis: int, high: bool, mu_eff: FloatArray) -> FloatArray:
        s = self._settings
        grid = self._grid
        area = grid.face_area(axis)
        vel = grid.fields.velocity(axis)
        layer = edge(axis, high)
        speed = np.maximum(np.abs(vel[layer]), _VELOCITY_FLOOR)
        a_p = s.air_density * area * speed + 2.0 * mu_eff[layer] * area / grid.spacing[axis]
        if s.transient:
            a_p = a_p + s.air_density * grid.cell_volume / s.time_step
        return s.relax_velocity * area / a_p

    def _predict_component(
        self,
        m: int,
        mu_eff: FloatArray,
        drag: FloatArray,
        old: FlowFields | None,
    ) -> float:
        """Solve the momentum equation for the face velocities normal to ``m``.

        Returns:
            RMS change of the interior face velocities.
        """
        s = self._settings
        grid = self._grid
        fields = grid.fields
        sides = self._boundaries.sides()
        rho = s.air_density
        h = grid.spacing
        volume = grid.cell_volume
        vel_m = fields.velocity(m)
        n_m = grid.shape[m]

        if n_m < 2:
            self._d[m] = np.zeros(0)
            for high in (False, True):
                self._d_boundary[_side(m, high)] = self._estimate_boundary_d(m, high, mu_eff)
            return 0.0

        shape = list(grid.shape)
        shape[m] = n_m - 1
        system = LinearSystem((shape[0], shape[1], shape[2]))
        u_prev = interior(vel_m, m).copy()

        # Faces normal to m sit at cell centres
        area_m = grid.face_area(m)
        flux_c = rho * area_m * average(vel_m, m)
        cond_c = mu_eff * area_m / h[m]
        system.add_faces(m, interior(flux_c, m), interior(cond_c, m))
        for high in (False, True):
            cond = sides[_side(m, high)]
            layer = edge(m, high)
            system.add_boundary(
                m,
                high,
                flux_c[layer],
                np.where(cond.fixed, cond_c[layer], 0.0),
                np.where(cond.fixed, vel_m[layer], u_prev[layer]),
            )

        # Faces tangential to m sit on the staggered faces of the other axes
        gamma = average(mu_eff, m)
        for a in (b for b in range(3) if b != m):
            area_a = grid.face_area(a)
            flux_a = rho * area_a * average(fields.velocity(a), m)
            if grid.shape[a] > 1:
                system.add_faces(a, interior(flux_a, a), average(gamma, a) * area_a / h[a])
            for high in (False, True):
                cond = sides[_side(a, high)]
                layer = edge(a, high)
                outlet = cond.outlet
                fixed = ~(outlet[axis_index(m, _LO)] & outlet[axis_index(m, _HI)])
                wall_value = average(cond.velocity[m], m)
                system.add_boundary(
                    a,
                    high,
                    flux_a[layer],
                    np.where(fixed, gamma[layer] * area_a / (0.5 * h[a]), 0.0),
                    np.where(fixed, wall_value, u_prev[layer]),
                )

        p = fields.p
        su = (p[axis_index(m, _LO)] - p[axis_index(m, _HI)]) * area_m
        su = su + average(self.sources.momentum[m], m)
        if s.buoyancy and m == 2:
            su = su + rho * s.gravity * s.thermal_expansion * volume * average(
                fields.t - s.reference_temperature, m
            )
        system.add_source(su, average(drag, m) * volume)

        if old is not None:
            system.add_transient(rho * volume / s.time_step, interior(old.velocity(m), m))
        system.relax(s.relax_velocity, u_prev)

        self._d[m] = area_m / system.diag
        u_star = system.solve(
            u_prev,
            solver=s.transport_solver,
            rtol=s.linear_rtol,
            max_iter=s.linear_max_iter,
        )
        vel_m[axis_index(m, slice(1, -1))] = u_star

        for high in (False, True):
            cond = sides[_side(m, high)]
            layer = edge(m, high)
            vel_m[layer] = np.where(cond.outlet, u_star[layer], vel_m[layer])
            self._d_boundary[_side(m, high)] = self._d[m][layer]

        return float(np.sqrt(np.mean((u_star - u_prev) ** 2)))

    def predict(self, mu_eff: FloatArray, old: FlowFields | None = None) -> float:
        """Predict all velocity components.

        Args:
            mu_eff: Effective dynamic viscosity per cell (Pa·s).
            old: Fields at the previous time level (transient runs only).

        Returns:
            Largest RMS change of a velocity component.
        """
        drag = self._drag_coefficient()
        return max(self._predict_component(m, mu_eff, drag, old) for m in range(3))

    # -------------------------------------------------------------------------
    # Correction
    # -------------------------------------------------------------------------

    def mass_imbalance(self) -> FloatArray:
        """Net mass inflow per cell (kg/s) of the current face velocities."""
        grid = self._grid
        rho = self._settings.air_density
        imbalance = np.zeros(grid.shape)
        for a in range(3):
            vel = grid.fields.velocity(a)
            imbalance += rho * grid.face_area(a) * (
                vel[axis_index(a, _LO)] - vel[axis_index(a, _HI)]
            )
        return imbalance

    def correct(self) -> float:
        """Solve the pressure correction and update velocity and pressure.

        Returns:
            RMS mass imbalance before correction (kg/s).
        """
        s = self._settings
        grid = self._grid
        fields = grid.fields
        sides = self._boundaries.sides()
        rho = s.air_density

        system = LinearSystem(grid.shape)
        for a in range(3):
            area = grid.face_area(a)
            if grid.shape[a] > 1:
                coeff = rho * self._d[a] * area
                system.add_faces(a, np.zeros_like(coeff), coeff)
            for high in (False, True):
                cond = sides[_side(a, high)]
                d_b = self._d_boundary[_side(a, high)]
                system.add_boundary(
                    a,
                    high,
                    np.zeros(cond.kind.shape),
                    np.where(cond.outlet, rho * d_b * area, 0.0),
                    np.zeros(cond.kind.shape),
                )
        imbalance = self.mass_imbalance()
        system.add_source(imbalance)

        has_outlet = self._boundaries.has_outlet()
        if not has_outlet:
            pinned = np.zeros(grid.shape, dtype=bool)
            pinned[0, 0, 0] = True
            system.fix(pinned, 0.0)

        p_corr = system.solve(
            np.zeros(grid.shape),
            solver=s.pressure_solver,
            rtol=s.linear_rtol,
            max_iter=s.linear_max_iter,
        )

        for a in range(3):
            vel = fields.velocity(a)
            if grid.shape[a] > 1:
                vel[axis_index(a, slice(1, -1))] += self._d[a] * (
                    p_corr[axis_index(a, _LO)] - p_corr[axis_index(a, _HI)]
                )
            for high in (False, True):
                cond = sides[_side(a, high)]
                layer = edge(a, high)
                d_b = self._d_boundary[_side(a, high)]
                sign = 1.0 if high else -1.0
                vel[layer] += np.where(cond.outlet, sign * d_b * p_corr[layer], 0.0)

        fields.p += s.relax_pressure * p_corr
        self._set_gauge(has_outlet)
        return float(np.sqrt(np.mean(imbalance**2)))

    def _set_gauge(self, has_outlet: bool) -> None:
        """Shift pressure so outlets sit at their reference pressure.

        Closed domains get a zero volume-mean pressure instead.
        """
        grid = self._grid
        p = grid.fields.p
        if not has_outlet:
            p -= p.mean()
            return
        weighted = 0.0
        area_total = 0.0
        for cond in self._boundaries.sides().values():
            if not cond.outlet.any():
                continue
            area = grid.face_area(cond.axis)
            offset = (p[edge(cond.axis, cond.high)] - cond.pressure)[cond.outlet]
            weighted += float(offset.sum()) * area
            area_total += float(cond.outlet.sum()) * area
        p -= weighted / area_total

    # -------------------------------------------------------------------------

    def step(self, mu_eff: FloatArray, old: FlowFields | None = None) -> MomentumResiduals:
        """Run one SIMPLE outer iteration.

        Args:
            mu_eff: Effective dynamic viscosity per cell (Pa·s).
            old: Fields at the previous time level (transient runs only).

        Returns:
            Normalised momentum and continuity residuals.
        """
        fields = self._grid.fields
        velocity_scale = max(
            max(float(np.abs(fields.velocity(a)).max()) for a in range(3)),
            _VELOCITY_FLOOR,
        )
        change = self.predict(mu_eff, old)
        imbalance = self.correct()
        self._boundaries.apply_boundaries(self._grid)

        mass_scale = (
            self._settings.air_density
            * velocity_scale
            * max(self._grid.face_area(a) for a in range(3))
        )
        residuals = MomentumResiduals(
            momentum=change / velocity_scale,
            continuity=imbalance / mass_scale,
        )
        logger.debug(
            "SIMPLE step: momentum=%.3e continuity=%.3e",
            residuals.momentum,
            residuals.continuity,
        )
        return residuals
