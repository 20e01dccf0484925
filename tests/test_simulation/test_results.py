"""Tests for summary metric extraction."""

from __future__ import annotations

import json

import numpy as np
import pytest

from cloudgrow_cfd.core.equipment import Box, CanopyZone, Fixture
from cloudgrow_cfd.core.grid import Grid
from cloudgrow_cfd.physics.constants import C_P_DRY_AIR, STANDARD_AIR_DENSITY
from cloudgrow_cfd.physics.psychrometrics import humidity_ratio
from cloudgrow_cfd.simulation.boundaries import BoundarySet
from cloudgrow_cfd.simulation.results import (
    EnergyBalance,
    FieldStats,
    extract_results,
    uniformity_index,
)
from cloudgrow_cfd.simulation.settings import SolverSettings
from cloudgrow_cfd.simulation.sources import build_sources

RHO_CP = STANDARD_AIR_DENSITY * C_P_DRY_AIR


@pytest.fixture
def plug_flow(room_grid: Grid, ventilated_boundaries: BoundarySet) -> Grid:
    """Uniform 2 m³/s through the room at 21 C and 50% RH."""
    fields = room_grid.fields
    fields.u[...] = 2.0 / 15.0
    fields.t[...] = 21.0
    fields.h[...] = humidity_ratio(21.0, 50.0)
    fields.p[0] = 3.0
    fields.p[-1] = 1.0
    return room_grid


class TestUniformity:
    """Tests for the uniformity index."""

    def test_uniform_field(self) -> None:
        """Uniform fields score 1."""
        assert uniformity_index(np.full((3, 3, 3), 21.0)) == 1.0

    def test_coefficient_of_variation(self) -> None:
        """The index is one minus the coefficient of variation."""
        assert uniformity_index(np.array([1.0, 3.0])) == pytest.approx(0.5)

    def test_zero_field(self) -> None:
        """A zero field is uniform."""
        assert uniformity_index(np.zeros(4)) == 1.0

    def test_clipped_at_zero(self) -> None:
        """Very scattered fields bottom out at 0."""
        assert uniformity_index(np.array([-1.0, 1.0, 0.1])) == 0.0

    def test_field_stats(self) -> None:
        """FieldStats exposes the same index."""
        stats = FieldStats.of(np.array([1.0, 3.0]))
        assert stats.mean == 2.0
        assert stats.min == 1.0
        assert stats.max == 3.0
        assert stats.uniformity == pytest.approx(0.5)


class TestExtractResults:
    """Tests for extract_results."""

    def test_flow_metrics(
        self,
        plug_flow: Grid,
        ventilated_boundaries: BoundarySet,
        laminar_settings: SolverSettings,
    ) -> None:
        """Outflow, air changes and supply/exhaust temperatures."""
        sources = build_sources([], plug_flow, ventilated_boundaries)
        metrics = extract_results(plug_flow, ventilated_boundaries, sources, laminar_settings)

        assert metrics.outflow == pytest.approx(2.0)
        assert metrics.air_changes_per_hour == pytest.approx(3600.0 * 2.0 / 150.0)
        assert metrics.inlet_temperature == pytest.approx(20.0)
        assert metrics.outlet_temperature == pytest.approx(21.0)
        assert metrics.ventilation_effectiveness == pytest.approx(1.0)
        assert metrics.pressure_drop == pytest.approx(2.0)
        assert metrics.temperature_uniformity == pytest.approx(1.0)
        assert metrics.mean_relative_humidity == pytest.approx(50.0, abs=0.1)

    def test_energy_balance_terms(
        self,
        plug_flow: Grid,
        ventilated_boundaries: BoundarySet,
        laminar_settings: SolverSettings,
    ) -> None:
        """Advection carries rho c_p Q dT out of the room."""
        fixture = Fixture("lamp", (5.5, 2.5, 1.5), wattage=1000.0, efficiency=0.0)
        sources = build_sources([fixture], plug_flow, ventilated_boundaries)
        balance = extract_results(
            plug_flow, ventilated_boundaries, sources, laminar_settings
        ).energy_balance

        assert balance.heat_input == pytest.approx(1000.0)
        assert balance.advection_out == pytest.approx(RHO_CP * 2.0 * 1.0)
        # 15 inlet faces conduct against a 1 K step over half a cell
        expected_conduction = RHO_CP * laminar_settings.thermal_diffusivity * 15 / 0.5
        assert balance.conduction_out == pytest.approx(expected_conduction)

    def test_closed_room_has_no_through_flow(
        self, closed_boundaries: BoundarySet, laminar_settings: SolverSettings
    ) -> None:
        """Sealed rooms report no outflow and undefined flow metrics."""
        grid = closed_boundaries.grid
        grid.fields.t[...] = 20.0
        grid.fields.h[...] = humidity_ratio(20.0, 60.0)
        sources = build_sources([], grid, closed_boundaries)
        metrics = extract_results(grid, closed_boundaries, sources, laminar_settings)

        assert metrics.outflow == 0.0
        assert metrics.air_changes_per_hour == 0.0
        assert metrics.inlet_temperature is None
        assert metrics.outlet_temperature is None
        assert metrics.ventilation_effectiveness is None
        assert metrics.pressure_drop is None
        assert any("stagnant" in advice for advice in metrics.recommendations)

    def test_zone_stats(
        self,
        plug_flow: Grid,
        ventilated_boundaries: BoundarySet,
        laminar_settings: SolverSettings,
    ) -> None:
        """Canopies inside the domain get their own statistics."""
        equipment = [
            CanopyZone("bench", Box((2.0, 1.0, 0.0), (4.0, 3.0, 1.0))),
            CanopyZone("outside", Box((20.0, 1.0, 0.0), (22.0, 3.0, 1.0))),
        ]
        sources = build_sources([], plug_flow, ventilated_boundaries)
        metrics = extract_results(
            plug_flow, ventilated_boundaries, sources, laminar_settings, equipment
        )

        assert [zone.name for zone in metrics.zones] == ["bench"]
        zone = metrics.zones[0]
        assert zone.n_cells == 4
        assert zone.temperature.mean == pytest.approx(21.0)
        assert zone.speed.mean == pytest.approx(2.0 / 15.0)

    def test_humidity_recommendations(
        self, closed_boundaries: BoundarySet, laminar_settings: SolverSettings
    ) -> None:
        """Very humid air triggers dehumidification advice."""
        grid = closed_boundaries.grid
        grid.fields.t[...] = 20.0
        grid.fields.h[...] = humidity_ratio(20.0, 95.0)
        sources = build_sources([], grid, closed_boundaries)
        metrics = extract_results(grid, closed_boundaries, sources, laminar_settings)
        assert any("dehumidification" in advice for advice in metrics.recommendations)

    def test_to_dict_is_json(
        self,
        plug_flow: Grid,
        ventilated_boundaries: BoundarySet,
        laminar_settings: SolverSettings,
    ) -> None:
        """Metrics serialise to JSON, including the budget imbalance."""
        sources = build_sources([], plug_flow, ventilated_boundaries)
        data = extract_results(
            plug_flow, ventilated_boundaries, sources, laminar_settings
        ).to_dict()
        decoded = json.loads(json.dumps(data))
        assert decoded["outflow"] == pytest.approx(2.0)
        assert "imbalance" in decoded["energy_balance"]

    def test_extraction_does_not_modify_fields(
        self,
        plug_flow: Grid,
        ventilated_boundaries: BoundarySet,
        laminar_settings: SolverSettings,
    ) -> None:
        """Extraction is read-only."""
        before = plug_flow.fields.copy()
        sources = build_sources([], plug_flow, ventilated_boundaries)
        extract_results(plug_flow, ventilated_boundaries, sources, laminar_settings)
        np.testing.assert_array_equal(plug_flow.fields.t, before.t)
        np.testing.assert_array_equal(plug_flow.fields.u, before.u)


class TestEnergyBalance:
    """Tests for EnergyBalance."""

    def test_imbalance(self) -> None:
        """Imbalance is input minus what leaves."""
        balance = EnergyBalance(heat_input=1000.0, advection_out=900.0, conduction_out=50.0)
        assert balance.imbalance == pytest.approx(50.0)
        assert balance.relative_imbalance == pytest.approx(0.05)
