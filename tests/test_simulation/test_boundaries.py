"""Tests for the boundary condition set."""

from __future__ import annotations

import numpy as np
import pytest

from cloudgrow_cfd.core.equipment import Box
from cloudgrow_cfd.core.errors import BoundaryError, OutOfDomainError, OverlappingRegionError
from cloudgrow_cfd.core.grid import Grid, create_grid
from cloudgrow_cfd.physics.constants import C_MU, INLET_LENGTH_SCALE_FACTOR
from cloudgrow_cfd.physics.psychrometrics import humidity_ratio
from cloudgrow_cfd.simulation.boundaries import (
    BoundaryKind,
    BoundarySet,
    FacePatch,
    Inlet,
    Outlet,
    PorousZone,
    Wall,
)


class TestConditions:
    """Tests for condition and region validation."""

    def test_inlet_needs_exactly_one_flow(self) -> None:
        """Inlets take a velocity or a flow rate, not both or neither."""
        with pytest.raises(BoundaryError, match="exactly one"):
            Inlet()
        with pytest.raises(BoundaryError, match="exactly one"):
            Inlet(velocity=(1.0, 0.0, 0.0), flow_rate=1.0)

    def test_inlet_humidity_range(self) -> None:
        """Inlet RH must be a percentage."""
        with pytest.raises(BoundaryError, match="relative humidity"):
            Inlet(flow_rate=1.0, relative_humidity=150.0)

    def test_porous_zone_porosity(self) -> None:
        """Porosity must lie in (0, 1]."""
        with pytest.raises(BoundaryError, match="Porosity"):
            PorousZone(porosity=0.0)

    def test_patch_corners(self) -> None:
        """Patches need both corners or neither, ordered."""
        with pytest.raises(BoundaryError, match="both lo and hi"):
            FacePatch("x-", lo=(0.0, 0.0))
        with pytest.raises(BoundaryError, match="exceeds"):
            FacePatch("x-", lo=(2.0, 0.0), hi=(1.0, 1.0))

    def test_patch_side(self) -> None:
        """Unknown sides raise ValueError."""
        with pytest.raises(ValueError, match="Unknown side"):
            FacePatch("north")


class TestAddBoundary:
    """Tests for BoundarySet.add_boundary."""

    def test_ids_increase(self, room_grid: Grid) -> None:
        """Identifiers start at 1 and increase."""
        boundaries = BoundarySet(room_grid)
        assert boundaries.add_boundary(FacePatch("x-"), Inlet(flow_rate=1.0)) == 1
        assert boundaries.add_boundary(FacePatch("x+"), Outlet()) == 2
        assert len(boundaries) == 2
        assert isinstance(boundaries.conditions[2], Outlet)
        assert boundaries.region(1) == FacePatch("x-")

    def test_overlap_different_kind(self, room_grid: Grid) -> None:
        """A region already holding another kind is rejected."""
        boundaries = BoundarySet(room_grid)
        boundaries.add_boundary(FacePatch("x-"), Inlet(flow_rate=1.0))
        with pytest.raises(OverlappingRegionError, match="inlet"):
            boundaries.add_boundary(FacePatch("x-", lo=(0.0, 0.0), hi=(2.0, 2.0)), Outlet())
        assert len(boundaries) == 1

    def test_overlap_same_kind_newer_wins(self, room_grid: Grid) -> None:
        """Same-kind overlaps are allowed; the newer boundary owns shared faces."""
        boundaries = BoundarySet(room_grid)
        first = boundaries.add_boundary(FacePatch("x-"), Inlet(flow_rate=1.0))
        second = boundaries.add_boundary(
            FacePatch("x-", lo=(0.0, 0.0), hi=(2.0, 2.0)), Inlet(flow_rate=0.5)
        )
        assert int(boundaries.face_mask(second).sum()) == 4
        assert int(boundaries.face_mask(first).sum()) == 11

    def test_disjoint_sides_never_overlap(self, room_grid: Grid) -> None:
        """Boundaries on different sides are independent."""
        boundaries = BoundarySet(room_grid)
        boundaries.add_boundary(FacePatch("x-"), Inlet(flow_rate=1.0))
        boundaries.add_boundary(FacePatch("x+"), Outlet())
        boundaries.add_boundary(FacePatch("z-"), Wall(temperature=18.0))
        assert len(boundaries) == 3

    def test_patch_outside_domain(self, room_grid: Grid) -> None:
        """Patches extending past the side raise OutOfDomainError."""
        boundaries = BoundarySet(room_grid)
        with pytest.raises(OutOfDomainError):
            boundaries.add_boundary(FacePatch("x-", lo=(0.0, 0.0), hi=(6.0, 3.0)), Outlet())

    def test_box_outside_domain(self, room_grid: Grid) -> None:
        """Boxes extending past the domain raise OutOfDomainError."""
        boundaries = BoundarySet(room_grid)
        with pytest.raises(OutOfDomainError):
            boundaries.add_boundary(Box((0.0, 0.0, 0.0), (11.0, 1.0, 1.0)), PorousZone())

    def test_region_type_must_match(self, room_grid: Grid) -> None:
        """Porous zones need boxes; face conditions need patches."""
        boundaries = BoundarySet(room_grid)
        with pytest.raises(BoundaryError, match="cell box"):
            boundaries.add_boundary(FacePatch("x-"), PorousZone())
        with pytest.raises(BoundaryError, match="face patch"):
            boundaries.add_boundary(Box((0, 0, 0), (1, 1, 1)), Inlet(flow_rate=1.0))

    def test_patch_area(self, ventilated_boundaries: BoundarySet) -> None:
        """Patch area is the discretised area of the owned faces."""
        assert ventilated_boundaries.patch_area(1) == pytest.approx(15.0)

    def test_face_queries_reject_cell_boxes(self, room_grid: Grid) -> None:
        """Face-patch queries on a porous zone raise BoundaryError."""
        boundaries = BoundarySet(room_grid)
        zone = boundaries.add_boundary(Box((0.0, 0.0, 0.0), (1.0, 1.0, 1.0)), PorousZone())

        with pytest.raises(BoundaryError, match="face patch"):
            boundaries.face_mask(zone)
        with pytest.raises(BoundaryError, match="face patch"):
            boundaries.patch_area(zone)

    def test_cell_mask(self, room_grid: Grid) -> None:
        """Porous zones own the cells whose centres lie in the box."""
        boundaries = BoundarySet(room_grid)
        zone = boundaries.add_boundary(
            Box((2.0, 1.0, 0.0), (4.0, 3.0, 1.0)), PorousZone(porosity=0.6)
        )
        mask = boundaries.cell_mask(zone)
        assert int(mask.sum()) == 4
        porous = boundaries.porous_cells()
        assert porous.mask[2, 1, 0]
        assert porous.porosity[2, 1, 0] == 0.6
        assert porous.porosity[0, 0, 0] == 1.0


class TestCompiledSides:
    """Tests for the compiled per-side arrays."""

    def test_unassigned_faces_are_walls(self, closed_boundaries: BoundarySet) -> None:
        """Every face defaults to an adiabatic no-slip wall."""
        for cond in closed_boundaries.sides().values():
            assert np.all(cond.kind == BoundaryKind.WALL)
            assert not cond.temperature_fixed.any()
        assert not closed_boundaries.has_outlet()

    def test_flow_rate_becomes_inward_velocity(self, ventilated_boundaries: BoundarySet) -> None:
        """A flow rate spreads uniformly over the patch area, pointing inward."""
        sides = ventilated_boundaries.sides()
        np.testing.assert_allclose(sides["x-"].velocity[0], 2.0 / 15.0)
        assert sides["x-"].inlet.all()
        assert sides["x+"].outlet.all()
        assert ventilated_boundaries.has_outlet()

    def test_inlet_on_high_side_points_down_axis(self, room_grid: Grid) -> None:
        """Inflow through a high side has negative normal velocity."""
        boundaries = BoundarySet(room_grid)
        boundaries.add_boundary(FacePatch("z+"), Inlet(flow_rate=5.0))
        np.testing.assert_allclose(boundaries.sides()["z+"].velocity[2], -0.1)

    def test_inlet_scalars(self, ventilated_boundaries: BoundarySet) -> None:
        """Inlets fix temperature and humidity ratio."""
        cond = ventilated_boundaries.sides()["x-"]
        assert cond.temperature_fixed.all()
        np.testing.assert_allclose(cond.temperature, 20.0)
        np.testing.assert_allclose(cond.humidity, humidity_ratio(20.0, 50.0))

    def test_inlet_turbulence(self, ventilated_boundaries: BoundarySet) -> None:
        """Inlet k from intensity, epsilon from the hydraulic diameter."""
        cond = ventilated_boundaries.sides()["x-"]
        speed = 2.0 / 15.0
        k = 1.5 * (0.05 * speed) ** 2
        hydraulic_diameter = 4.0 * 15.0 / (2.0 * (5.0 + 3.0))
        eps = C_MU**0.75 * k**1.5 / (INLET_LENGTH_SCALE_FACTOR * hydraulic_diameter)
        np.testing.assert_allclose(cond.k, k)
        np.testing.assert_allclose(cond.eps, eps)

    def test_fixed_temperature_wall(self, room_grid: Grid) -> None:
        """Walls with a temperature fix it; adiabatic walls do not."""
        boundaries = BoundarySet(room_grid)
        boundaries.add_boundary(FacePatch("z-"), Wall(temperature=18.0))
        boundaries.add_boundary(FacePatch("z+"), Wall())
        sides = boundaries.sides()
        assert sides["z-"].temperature_fixed.all()
        np.testing.assert_allclose(sides["z-"].temperature, 18.0)
        assert not sides["z+"].temperature_fixed.any()

    def test_cache_invalidated(self, room_grid: Grid) -> None:
        """Adding a boundary recompiles the sides."""
        boundaries = BoundarySet(room_grid)
        assert not boundaries.has_outlet()
        boundaries.add_boundary(FacePatch("x+"), Outlet())
        assert boundaries.has_outlet()

    def test_wall_distance(self, closed_boundaries: BoundarySet) -> None:
        """Wall-adjacent cells are half a cell from the wall; others inf."""
        distance = closed_boundaries.wall_distance()
        assert distance[0, 0, 0] == pytest.approx(0.25)
        assert distance[0, 2, 2] == pytest.approx(0.25)
        assert np.isinf(distance[1:3, 1:3, 1:3]).all()

    def test_wall_distance_ignores_open_faces(self, small_grid: Grid) -> None:
        """Cells touching only an inlet face are not wall cells."""
        boundaries = BoundarySet(small_grid)
        boundaries.add_boundary(FacePatch("x-"), Inlet(flow_rate=0.1))
        distance = boundaries.wall_distance()
        assert np.isinf(distance[0, 1, 1])
        assert distance[0, 0, 1] == pytest.approx(0.25)


class TestApplyBoundaries:
    """Tests for apply_boundaries."""

    def test_imposes_face_velocities(
        self, room_grid: Grid, ventilated_boundaries: BoundarySet
    ) -> None:
        """Inlet and wall velocities are set; outlet faces stay free."""
        fields = room_grid.fields
        fields.u[...] = 1.0
        fields.v[...] = 1.0
        fields.k[...] = 1e-3
        fields.eps[...] = 1e-3
        ventilated_boundaries.apply_boundaries()

        np.testing.assert_allclose(fields.u[0], 2.0 / 15.0)
        np.testing.assert_allclose(fields.u[-1], 1.0)
        np.testing.assert_allclose(fields.u[1:-1], 1.0)
        np.testing.assert_allclose(fields.v[:, 0], 0.0)
        np.testing.assert_allclose(fields.v[:, -1], 0.0)
        np.testing.assert_allclose(fields.v[:, 1:-1], 1.0)

    def test_idempotent(
        self, room_grid: Grid, ventilated_boundaries: BoundarySet, rng: np.random.Generator
    ) -> None:
        """Applying twice gives the same state as applying once."""
        fields = room_grid.fields
        for name in ("u", "v", "w", "p", "t"):
            getattr(fields, name)[...] = rng.normal(size=getattr(fields, name).shape)
        fields.k[...] = rng.uniform(1e-6, 1e-2, size=fields.k.shape)
        fields.eps[...] = rng.uniform(1e-8, 1e-3, size=fields.eps.shape)

        ventilated_boundaries.apply_boundaries(room_grid)
        once = fields.copy()
        ventilated_boundaries.apply_boundaries(room_grid)

        for name in ("u", "v", "w", "p", "t", "h", "k", "eps", "nu_t"):
            np.testing.assert_array_equal(getattr(fields, name), getattr(once, name))

    def test_enforces_turbulence_floors(self, closed_boundaries: BoundarySet) -> None:
        """k and epsilon are kept strictly positive."""
        fields = closed_boundaries.grid.fields
        closed_boundaries.apply_boundaries()
        assert (fields.k > 0).all()
        assert (fields.eps > 0).all()

    def test_shape_mismatch(self, ventilated_boundaries: BoundarySet) -> None:
        """Grids of another shape are rejected."""
        with pytest.raises(BoundaryError, match="does not match"):
            ventilated_boundaries.apply_boundaries(create_grid(1, 1, 1, 2, 2, 2))
