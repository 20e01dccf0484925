"""Tests for equipment source terms."""

from __future__ import annotations

import numpy as np
import pytest

from cloudgrow_cfd.core.equipment import Box, CanopyZone, Fan, Fixture, HVACUnit
from cloudgrow_cfd.core.grid import Grid
from cloudgrow_cfd.physics.constants import (
    LATENT_HEAT_VAPORIZATION,
    STANDARD_AIR_DENSITY,
    cfm_to_m3s,
)
from cloudgrow_cfd.simulation.boundaries import BoundarySet, PorousZone
from cloudgrow_cfd.simulation.sources import SourceField, build_sources, jet_thrust


class TestJetThrust:
    """Tests for jet_thrust."""

    def test_momentum_flux(self) -> None:
        """Thrust is rho Q^2 / A."""
        q = cfm_to_m3s(1000.0)
        assert jet_thrust(1000.0, 0.25, 1.2) == pytest.approx(1.2 * q * q / 0.25)

    def test_zero_airflow(self) -> None:
        """No airflow, no thrust."""
        assert jet_thrust(0.0, 0.25, STANDARD_AIR_DENSITY) == 0.0


class TestBuildSources:
    """Tests for build_sources."""

    def test_empty(self, room_grid: Grid) -> None:
        """No equipment gives zero sources."""
        sources = build_sources([], room_grid)
        assert sources.total_heat == 0.0
        assert sources.total_moisture == 0.0
        assert not sources.momentum.any()
        assert sources.contributions == []

    def test_fixture_heat(self, room_grid: Grid) -> None:
        """Fixtures release the non-light share of their wattage."""
        sources = build_sources([Fixture("led", (5.5, 2.5, 1.5), wattage=1000.0)], room_grid)
        assert sources.total_heat == pytest.approx(600.0)
        assert sources.heat[5, 2, 1] == pytest.approx(600.0)
        assert sources.contributions[0].cells == 1

    def test_fixture_on_face_is_shared(self, room_grid: Grid) -> None:
        """A point on an interior face is split between both cells."""
        sources = build_sources([Fixture("led", (5.0, 2.5, 1.5), wattage=1000.0)], room_grid)
        assert sources.heat[4, 2, 1] == pytest.approx(300.0)
        assert sources.heat[5, 2, 1] == pytest.approx(300.0)
        assert sources.total_heat == pytest.approx(600.0)

    def test_fan_thrust_direction(self, room_grid: Grid) -> None:
        """Fans add momentum along their unit direction."""
        fan = Fan("hafn", (2.5, 2.5, 1.5), direction=(0.0, 2.0, 0.0), airflow_cfm=1000.0)
        sources = build_sources([fan], room_grid)
        thrust = jet_thrust(1000.0, fan.outlet_area, STANDARD_AIR_DENSITY)
        assert sources.momentum[1, 2, 2, 1] == pytest.approx(thrust)
        assert sources.momentum[0].sum() == pytest.approx(0.0)
        assert sources.total_heat == 0.0
        assert sources.contributions[0].thrust == pytest.approx(thrust)

    def test_hvac_heat_moisture_and_return(self, room_grid: Grid) -> None:
        """HVAC units add signed heat and moisture and pull air at the return."""
        unit = HVACUnit(
            "ac",
            (0.5, 0.5, 2.5),
            supply_direction=(1.0, 0.0, 0.0),
            airflow_cfm=800.0,
            sensible_capacity_w=-2000.0,
            moisture_rate_kg_s=-1e-4,
            return_position=(0.5, 4.5, 2.5),
        )
        sources = build_sources([unit], room_grid)
        thrust = jet_thrust(800.0, unit.outlet_area, STANDARD_AIR_DENSITY)

        assert sources.total_heat == pytest.approx(-2000.0)
        assert sources.total_moisture == pytest.approx(-1e-4)
        assert sources.momentum[0, 0, 0, 2] == pytest.approx(thrust)
        assert sources.momentum[0, 0, 4, 2] == pytest.approx(-thrust)
        assert sources.contributions[0].cells == 2

    def test_hvac_return_outside_domain(self, room_grid: Grid) -> None:
        """A return outside the domain is ignored with a warning."""
        unit = HVACUnit(
            "ac",
            (0.5, 0.5, 2.5),
            supply_direction=(1.0, 0.0, 0.0),
            airflow_cfm=800.0,
            return_position=(20.0, 1.0, 1.0),
        )
        sources = build_sources([unit], room_grid)
        assert len(sources.warnings) == 1
        assert "return" in sources.warnings[0]
        assert sources.contributions[0].cells == 1

    def test_canopy_spreads_over_cells(self, room_grid: Grid) -> None:
        """Canopies spread transpiration and latent cooling over their cells."""
        canopy = CanopyZone(
            "bench", Box((2.0, 1.0, 0.0), (4.0, 3.0, 1.0)), transpiration_rate=1e-4
        )
        boundaries = BoundarySet(room_grid)
        sources = build_sources([canopy], room_grid, boundaries)

        assert sources.total_moisture == pytest.approx(1e-4)
        assert sources.total_heat == pytest.approx(-1e-4 * LATENT_HEAT_VAPORIZATION)
        assert sources.moisture[2, 1, 0] == pytest.approx(2.5e-5)
        assert int(np.count_nonzero(sources.moisture)) == 4

    def test_canopy_registers_porous_zone(self, room_grid: Grid) -> None:
        """The canopy's flow resistance becomes a porous-zone boundary."""
        canopy = CanopyZone("bench", Box((2.0, 1.0, 0.0), (4.0, 3.0, 1.0)), porosity=0.7)
        boundaries = BoundarySet(room_grid)
        build_sources([canopy], room_grid, boundaries)

        assert len(boundaries) == 1
        condition = boundaries.conditions[1]
        assert isinstance(condition, PorousZone)
        assert condition.porosity == 0.7
        assert condition.heat == 0.0
        assert boundaries.porous_cells().mask.sum() == 4

    def test_existing_porous_heat_folded_in(self, room_grid: Grid) -> None:
        """Heat carried by porous boundaries joins the source field."""
        boundaries = BoundarySet(room_grid)
        boundaries.add_boundary(
            Box((0.0, 0.0, 0.0), (2.0, 2.0, 1.0)), PorousZone(heat=100.0, moisture=2e-5)
        )
        sources = build_sources([], room_grid, boundaries)

        assert sources.total_heat == pytest.approx(100.0)
        assert sources.total_moisture == pytest.approx(2e-5)
        assert sources.contributions[0].kind == "porous"
        assert sources.heat[0, 0, 0] == pytest.approx(25.0)

    def test_overlapped_porous_zone_keeps_its_heat(self, room_grid: Grid) -> None:
        """A zone covered by a newer zone still deposits over its own box."""
        boundaries = BoundarySet(room_grid)
        inner = boundaries.add_boundary(
            Box((1.0, 1.0, 1.0), (2.0, 2.0, 2.0)), PorousZone(heat=-100.0)
        )
        boundaries.add_boundary(Box((0.0, 0.0, 0.0), (4.0, 4.0, 3.0)), PorousZone(heat=-50.0))
        sources = build_sources([], room_grid, boundaries)

        assert not boundaries.cell_mask(inner).any()
        assert sources.total_heat == pytest.approx(-150.0)
        assert [c.heat for c in sources.contributions] == [-100.0, -50.0]
        assert [c.cells for c in sources.contributions] == [1, 48]
        assert sources.heat[1, 1, 1] == pytest.approx(-100.0 - 50.0 / 48)

    def test_outside_item_skipped(self, room_grid: Grid) -> None:
        """Items outside the domain are skipped with a warning."""
        equipment = [
            Fixture("inside", (5.5, 2.5, 1.5), wattage=100.0),
            Fixture("outside", (50.0, 2.5, 1.5), wattage=100.0),
        ]
        sources = build_sources(equipment, room_grid)

        assert sources.total_heat == pytest.approx(60.0)
        assert len(sources.warnings) == 1
        assert "outside" in sources.warnings[0]
        assert [c.name for c in sources.contributions] == ["inside"]

    def test_total_matches_contributions(self, room_grid: Grid) -> None:
        """Field totals equal the sum of the itemised contributions."""
        equipment = [
            Fixture("a", (1.5, 1.5, 2.5), wattage=400.0),
            Fixture("b", (7.5, 3.5, 2.5), wattage=600.0, efficiency=0.5),
            HVACUnit("ac", (9.5, 2.5, 2.5), (-1.0, 0.0, 0.0), 500.0, sensible_capacity_w=-300.0),
        ]
        sources = build_sources(equipment, room_grid)
        assert sources.total_heat == pytest.approx(sum(c.heat for c in sources.contributions))


class TestSourceField:
    """Tests for SourceField helpers."""

    def test_copy_is_independent(self) -> None:
        """Copies do not share arrays."""
        original = SourceField.zeros((2, 2, 2))
        clone = original.copy()
        clone.heat[0, 0, 0] = 5.0
        clone.warnings.append("x")
        assert original.total_heat == 0.0
        assert original.warnings == []
