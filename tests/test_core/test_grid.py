"""Tests for the structured grid and its flow fields."""

from __future__ import annotations

import numpy as np
import pytest

from cloudgrow_cfd.core.errors import CFDError, InvalidDimensionError
from cloudgrow_cfd.core.grid import (
    SCALAR_FIELDS,
    FlowFields,
    Grid,
    create_grid,
    edge,
    parse_side,
)


class TestCreateGrid:
    """Tests for create_grid."""

    def test_shapes(self, room_grid: Grid) -> None:
        """Scalars live at cells, velocities on staggered faces."""
        fields = room_grid.fields
        assert room_grid.shape == (10, 5, 3)
        assert fields.u.shape == (11, 5, 3)
        assert fields.v.shape == (10, 6, 3)
        assert fields.w.shape == (10, 5, 4)
        for name in SCALAR_FIELDS:
            assert getattr(fields, name).shape == (10, 5, 3)

    def test_geometry(self, room_grid: Grid) -> None:
        """Spacing, volumes and face areas follow from extents and counts."""
        assert room_grid.spacing == (1.0, 1.0, 1.0)
        assert room_grid.n_cells == 150
        assert room_grid.volume == pytest.approx(150.0)
        assert room_grid.cell_volume == pytest.approx(1.0)
        assert room_grid.face_area(0) == pytest.approx(1.0)

    def test_non_uniform_spacing_per_axis(self) -> None:
        """Each axis has its own cell size."""
        grid = create_grid(4.0, 2.0, 3.0, 8, 2, 2)
        assert grid.spacing == (0.5, 1.0, 1.5)
        assert grid.face_area(0) == pytest.approx(1.5)
        assert grid.face_area(2) == pytest.approx(0.5)

    def test_fields_start_at_zero(self, small_grid: Grid) -> None:
        """Allocation zeroes every field."""
        assert not small_grid.fields.u.any()
        assert not small_grid.fields.t.any()

    @pytest.mark.parametrize(
        "args",
        [
            (0.0, 5.0, 3.0, 10, 5, 3),
            (10.0, -5.0, 3.0, 10, 5, 3),
            (10.0, 5.0, 3.0, 0, 5, 3),
            (10.0, 5.0, 3.0, 10, -1, 3),
            (10.0, 5.0, 3.0, 10, 5, 2.5),
            (10.0, 5.0, float("nan"), 10, 5, 3),
        ],
    )
    def test_invalid_dimensions(self, args: tuple) -> None:
        """Non-positive or malformed arguments raise InvalidDimensionError."""
        with pytest.raises(InvalidDimensionError):
            create_grid(*args)

    def test_invalid_dimension_is_value_error(self) -> None:
        """Callers validating input can catch ValueError or CFDError."""
        with pytest.raises(ValueError):
            create_grid(1.0, 1.0, 1.0, 1, 1, 0)
        with pytest.raises(CFDError):
            create_grid(1.0, 1.0, 1.0, 1, 1, 0)

    @pytest.mark.parametrize(
        "args",
        [
            (np.float32(10), 5.0, 3.0, 10, 5, 3),
            (np.int64(10), 5, 3, 10, 5, 3),
            (10.0, 5.0, 3.0, np.int32(10), 5, 3),
        ],
    )
    def test_numpy_scalars_accepted(self, args: tuple) -> None:
        """Positive numpy scalars are valid extents and counts."""
        grid = create_grid(*args)

        assert grid.shape == (10, 5, 3)
        assert grid.extents == (10.0, 5.0, 3.0)
        assert all(type(e) is float for e in grid.extents)


class TestCoordinates:
    """Tests for coordinate lookups."""

    def test_cell_centers(self, room_grid: Grid) -> None:
        """Cell centres sit half a cell from the faces."""
        np.testing.assert_allclose(room_grid.cell_centers(2), [0.5, 1.5, 2.5])
        np.testing.assert_allclose(room_grid.face_centers(2), [0.0, 1.0, 2.0, 3.0])

    def test_cell_center_and_face_center(self, room_grid: Grid) -> None:
        """Face centres lie on the face plane, centred tangentially."""
        assert room_grid.cell_center((0, 0, 0)) == (0.5, 0.5, 0.5)
        assert room_grid.face_center(0, (0, 0, 0)) == (0.0, 0.5, 0.5)
        assert room_grid.face_center(0, (10, 4, 2)) == (10.0, 4.5, 2.5)

    def test_face_center_out_of_range(self, room_grid: Grid) -> None:
        """Face indices beyond n raise IndexError."""
        with pytest.raises(IndexError):
            room_grid.face_center(0, (11, 0, 0))

    def test_cell_index(self, room_grid: Grid) -> None:
        """Points map to the enclosing cell; the upper boundary maps inward."""
        assert room_grid.cell_index((0.5, 0.5, 0.5)) == (0, 0, 0)
        assert room_grid.cell_index((9.99, 4.2, 1.1)) == (9, 4, 1)
        assert room_grid.cell_index((10.0, 5.0, 3.0)) == (9, 4, 2)

    def test_cell_index_outside(self, room_grid: Grid) -> None:
        """Points outside the domain raise ValueError."""
        assert not room_grid.contains((10.5, 1.0, 1.0))
        with pytest.raises(ValueError, match="outside domain"):
            room_grid.cell_index((10.5, 1.0, 1.0))

    def test_enclosing_cells_inside_cell(self, room_grid: Grid) -> None:
        """A point inside a cell belongs to that cell only."""
        assert room_grid.enclosing_cells((3.3, 2.2, 1.1)) == [((3, 2, 1), 1.0)]

    def test_enclosing_cells_on_interior_face(self, room_grid: Grid) -> None:
        """A point on an interior face is split equally across both cells."""
        cells = room_grid.enclosing_cells((5.0, 2.5, 1.5))
        assert cells == [((4, 2, 1), 0.5), ((5, 2, 1), 0.5)]

    def test_enclosing_cells_on_edge(self, small_grid: Grid) -> None:
        """A point on an interior edge shared by four cells splits four ways."""
        cells = small_grid.enclosing_cells((1.0, 1.0, 0.25))
        assert len(cells) == 4
        assert sum(w for _, w in cells) == pytest.approx(1.0)
        assert all(w == pytest.approx(0.25) for _, w in cells)

    def test_enclosing_cells_on_domain_face(self, room_grid: Grid) -> None:
        """Points on the domain boundary are not split."""
        assert room_grid.enclosing_cells((0.0, 2.2, 1.1)) == [((0, 2, 1), 1.0)]

    def test_neighbor_clamps(self, room_grid: Grid) -> None:
        """Neighbours stop at the domain boundary."""
        assert room_grid.neighbor((0, 0, 0), 0, 1) == (1, 0, 0)
        assert room_grid.neighbor((0, 0, 0), 0, -1) == (0, 0, 0)
        assert room_grid.neighbor((9, 4, 2), 2, 5) == (9, 4, 2)

    def test_cell_range(self, room_grid: Grid) -> None:
        """Cells whose centres lie in the interval; never empty."""
        assert room_grid.cell_range(0, 2.0, 4.0) == (2, 4)
        assert room_grid.cell_range(0, 0.0, 10.0) == (0, 10)
        assert room_grid.cell_range(0, 3.1, 3.2) == (3, 4)


class TestFlowFields:
    """Tests for FlowFields."""

    def test_value_at(self, room_grid: Grid) -> None:
        """Bounds-checked scalar access."""
        room_grid.fields.t[1, 2, 0] = 25.0
        assert room_grid.fields.value_at("t", (1, 2, 0)) == 25.0

    def test_value_at_out_of_bounds(self, room_grid: Grid) -> None:
        """Out-of-range indices raise IndexError."""
        with pytest.raises(IndexError):
            room_grid.fields.value_at("t", (10, 0, 0))

    def test_value_at_unknown_field(self, room_grid: Grid) -> None:
        """Unknown field names raise KeyError."""
        with pytest.raises(KeyError, match="Unknown scalar field"):
            room_grid.fields.value_at("co2", (0, 0, 0))

    def test_copy_is_independent(self, small_grid: Grid) -> None:
        """Copies do not share memory with the original."""
        snapshot = small_grid.fields.copy()
        small_grid.fields.t += 5.0
        small_grid.fields.u[0, 0, 0] = 1.0
        assert not snapshot.t.any()
        assert snapshot.u[0, 0, 0] == 0.0

    def test_cell_velocity_and_speed(self, small_grid: Grid) -> None:
        """Face velocities average to cell centres."""
        fields = small_grid.fields
        fields.u[...] = 3.0
        fields.w[...] = 4.0
        uc, vc, wc = fields.cell_velocity()
        assert uc.shape == (4, 4, 4)
        np.testing.assert_allclose(fields.speed(), 5.0)
        assert not vc.any()

    def test_is_finite(self, small_grid: Grid) -> None:
        """NaN anywhere makes the fields non-finite."""
        assert small_grid.fields.is_finite()
        small_grid.fields.v[1, 1, 1] = np.nan
        assert not small_grid.fields.is_finite()

    def test_zeros_shape(self) -> None:
        """FlowFields.zeros allocates staggered shapes."""
        fields = FlowFields.zeros((2, 3, 4))
        assert fields.shape == (2, 3, 4)
        assert fields.velocity(1).shape == (2, 4, 4)


class TestSides:
    """Tests for side helpers."""

    def test_parse_side(self) -> None:
        """Side names split into axis and end."""
        assert parse_side("x-") == (0, False)
        assert parse_side("z+") == (2, True)

    def test_parse_side_invalid(self) -> None:
        """Unknown side names raise ValueError."""
        with pytest.raises(ValueError, match="Unknown side"):
            parse_side("top")

    def test_edge_keeps_axis(self, room_grid: Grid) -> None:
        """Edge layers keep a unit-length axis for broadcasting."""
        assert room_grid.fields.t[edge(0, True)].shape == (1, 5, 3)
        assert room_grid.fields.u[edge(0, False)].shape == (1, 5, 3)
