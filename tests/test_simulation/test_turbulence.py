"""Tests for the k-epsilon model."""

from __future__ import annotations

import numpy as np

from cloudgrow_cfd.core.grid import FlowFields, Grid
from cloudgrow_cfd.physics.constants import C_MU, EPS_MIN, INLET_LENGTH_SCALE_FACTOR, K_MIN
from cloudgrow_cfd.simulation.boundaries import BoundarySet
from cloudgrow_cfd.simulation.momentum import MomentumSolver
from cloudgrow_cfd.simulation.settings import SolverSettings
from cloudgrow_cfd.simulation.sources import build_sources
from cloudgrow_cfd.simulation.turbulence import KEpsilonModel, strain_rate_squared


class TestStrainRate:
    """Tests for strain_rate_squared."""

    def test_simple_shear(self) -> None:
        """u = y gives 2 S_ij S_ij = (du/dy)^2 = 1."""
        fields = FlowFields.zeros((4, 4, 4))
        y = 0.25 + 0.5 * np.arange(4)
        fields.u[...] = y[None, :, None]
        np.testing.assert_allclose(strain_rate_squared(fields, (0.5, 0.5, 0.5)), 1.0)

    def test_uniform_flow(self) -> None:
        """Uniform flow has no strain."""
        fields = FlowFields.zeros((3, 3, 3))
        fields.u[...] = 2.0
        fields.w[...] = -1.0
        assert not strain_rate_squared(fields, (1.0, 1.0, 1.0)).any()


class TestLaminar:
    """With the laminar closure the model is inert."""

    def test_initialize_and_update(
        self, room_grid: Grid, ventilated_boundaries: BoundarySet
    ) -> None:
        """nu_t stays zero and update is a no-op."""
        model = KEpsilonModel(
            room_grid, ventilated_boundaries, SolverSettings(turbulence_model="laminar")
        )
        model.initialize()
        assert not model.enabled
        assert not room_grid.fields.nu_t.any()
        np.testing.assert_allclose(room_grid.fields.k, K_MIN)
        np.testing.assert_allclose(room_grid.fields.eps, EPS_MIN)
        assert model.update() == 0.0

    def test_effective_viscosity_is_molecular(
        self, room_grid: Grid, ventilated_boundaries: BoundarySet
    ) -> None:
        """Laminar effective viscosity is rho * nu."""
        settings = SolverSettings(turbulence_model="laminar")
        model = KEpsilonModel(room_grid, ventilated_boundaries, settings)
        model.initialize()
        np.testing.assert_allclose(model.effective_viscosity(), settings.air_viscosity)


class TestKEpsilon:
    """Tests for the k-epsilon equations."""

    def test_initial_field(self, room_grid: Grid, ventilated_boundaries: BoundarySet) -> None:
        """Initial k and epsilon follow the inlet speed and room size."""
        settings = SolverSettings()
        model = KEpsilonModel(room_grid, ventilated_boundaries, settings)
        model.initialize()

        u_ref = 2.0 / 15.0
        k0 = 1.5 * (0.05 * u_ref) ** 2
        eps0 = C_MU**0.75 * k0**1.5 / (INLET_LENGTH_SCALE_FACTOR * 3.0)
        np.testing.assert_allclose(room_grid.fields.k, k0)
        np.testing.assert_allclose(room_grid.fields.eps, eps0)
        np.testing.assert_allclose(room_grid.fields.nu_t, C_MU * k0**2 / eps0)

    def test_reference_speed_floor(self, closed_boundaries: BoundarySet) -> None:
        """Rooms without inlets use the minimum reference speed."""
        model = KEpsilonModel(closed_boundaries.grid, closed_boundaries, SolverSettings())
        model.initialize()
        k0 = 1.5 * (0.05 * 0.1) ** 2
        np.testing.assert_allclose(closed_boundaries.grid.fields.k, k0)

    def test_viscosity_ratio_capped(
        self, room_grid: Grid, ventilated_boundaries: BoundarySet
    ) -> None:
        """Eddy viscosity never exceeds the configured ratio."""
        settings = SolverSettings(max_viscosity_ratio=2.0)
        model = KEpsilonModel(room_grid, ventilated_boundaries, settings)
        model.initialize()
        assert room_grid.fields.nu_t.max() <= 2.0 * settings.kinematic_viscosity * (1 + 1e-12)

    def test_coupled_iterations_stay_bounded(
        self, room_grid: Grid, ventilated_boundaries: BoundarySet
    ) -> None:
        """k and epsilon remain positive and finite while the flow develops."""
        settings = SolverSettings()
        sources = build_sources([], room_grid, ventilated_boundaries)
        model = KEpsilonModel(room_grid, ventilated_boundaries, settings)
        momentum = MomentumSolver(room_grid, ventilated_boundaries, sources, settings)
        ventilated_boundaries.apply_boundaries()
        model.initialize()

        for _ in range(10):
            momentum.step(model.effective_viscosity())
            change = model.update()
            assert np.isfinite(change)

        fields = room_grid.fields
        assert fields.is_finite()
        assert (fields.k >= K_MIN).all()
        assert (fields.eps >= EPS_MIN).all()
        assert (fields.nu_t >= 0).all()
        assert (model.effective_viscosity() >= settings.air_viscosity * (1 - 1e-12)).all()

    def test_transient_update(
        self, room_grid: Grid, ventilated_boundaries: BoundarySet
    ) -> None:
        """Transient updates take the previous time level."""
        settings = SolverSettings(mode="transient", time_step=0.5)
        model = KEpsilonModel(room_grid, ventilated_boundaries, settings)
        ventilated_boundaries.apply_boundaries()
        model.initialize()
        old = room_grid.fields.copy()
        change = model.update(old)
        assert change >= 0.0
        assert room_grid.fields.is_finite()
