"""Structured rectilinear grid and the flow fields it owns.

The domain is the box ``[0, lx] x [0, ly] x [0, lz]`` split into
``nx * ny * nz`` cells of uniform size per axis. Scalars live at cell centres;
velocity components live on the cell faces normal to them (staggered
arrangement), which avoids checkerboard pressure oscillations:

- ``u`` on x-faces, shape ``(nx + 1, ny, nz)``
- ``v`` on y-faces, shape ``(nx, ny + 1, nz)``
- ``w`` on z-faces, shape ``(nx, ny, nz + 1)``

Axis convention: x and y are horizontal, z is vertical (up).
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, field
from typing import Final

import numpy as np
from numpy.typing import NDArray

from cloudgrow_cfd.core.errors import InvalidDimensionError

FloatArray = NDArray[np.float64]
Index3 = tuple[int, int, int]
Point3 = tuple[float, float, float]

#: Relative tolerance used when snapping points onto cell faces
_SNAP_TOL: Final[float] = 1e-9

#: Names of the cell-centred scalar fields
SCALAR_FIELDS: Final[tuple[str, ...]] = ("p", "t", "h", "k", "eps", "nu_t")

#: Names of the staggered velocity components, indexed by axis
VELOCITY_FIELDS: Final[tuple[str, str, str]] = ("u", "v", "w")

#: Domain sides, ordered by axis then low/high
SIDES: Final[tuple[str, ...]] = ("x-", "x+", "y-", "y+", "z-", "z+")


def parse_side(side: str) -> tuple[int, bool]:
    """Split a side name such as ``"x+"`` into ``(axis, high)``.

    Raises:
        ValueError: If the name is not one of :data:`SIDES`.
    """
    if side not in SIDES:
        msg = f"Unknown side '{side}'. Expected one of {list(SIDES)}"
        raise ValueError(msg)
    return SIDES.index(side) // 2, side.endswith("+")


def axis_index(axis: int, index: slice | int) -> tuple[slice | int, ...]:
    """Index tuple applying ``index`` along ``axis`` of a 3-D array."""
    idx: list[slice | int] = [slice(None)] * 3
    idx[axis] = index
    return tuple(idx)


def edge(axis: int, high: bool) -> tuple[slice | int, ...]:
    """Index tuple selecting the first or last layer along ``axis``.

    The axis is kept with length one so results broadcast against the
    per-side boundary arrays.
    """
    return axis_index(axis, slice(-1, None) if high else slice(0, 1))


@dataclass
class FlowFields:
    """Per-cell state of the domain.

    Attributes:
        u: x-velocity on x-faces in m/s.
        v: y-velocity on y-faces in m/s.
        w: z-velocity on z-faces in m/s.
        p: Gauge pressure at cell centres in Pa.
        t: Temperature at cell centres in C.
        h: Humidity ratio at cell centres in kg/kg.
        k: Turbulent kinetic energy in m²/s².
        eps: Turbulent dissipation rate in m²/s³.
        nu_t: Turbulent (eddy) kinematic viscosity in m²/s.
    """

    u: FloatArray
    v: FloatArray
    w: FloatArray
    p: FloatArray
    t: FloatArray
    h: FloatArray
    k: FloatArray
    eps: FloatArray
    nu_t: FloatArray

    @classmethod
    def zeros(cls, shape: Index3) -> FlowFields:
        """Allocate zeroed fields for a grid with ``shape`` cells."""
        nx, ny, nz = shape
        return cls(
            u=np.zeros((nx + 1, ny, nz)),
            v=np.zeros((nx, ny + 1, nz)),
            w=np.zeros((nx, ny, nz + 1)),
            **{name: np.zeros(shape) for name in SCALAR_FIELDS},
        )

    @property
    def shape(self) -> Index3:
        """Number of cells along each axis."""
        nx, ny, nz = self.p.shape
        return (nx, ny, nz)

    def velocity(self, axis: int) -> FloatArray:
        """Staggered velocity component normal to ``axis``."""
        return getattr(self, VELOCITY_FIELDS[axis])

    def cell_velocity(self) -> tuple[FloatArray, FloatArray, FloatArray]:
        """Velocity components interpolated to cell centres."""
        return (
            0.5 * (self.u[:-1, :, :] + self.u[1:, :, :]),
            0.5 * (self.v[:, :-1, :] + self.v[:, 1:, :]),
            0.5 * (self.w[:, :, :-1] + self.w[:, :, 1:]),
        )

    def speed(self) -> FloatArray:
        """Velocity magnitude at cell centres in m/s."""
        uc, vc, wc = self.cell_velocity()
        return np.sqrt(uc**2 + vc**2 + wc**2)

    def value_at(self, name: str, index: Index3) -> float:
        """Read a cell-centred scalar, bounds-checked in debug mode.

        Args:
            name: One of :data:`SCALAR_FIELDS`.
            index: Cell index ``(i, j, k)``.

        Raises:
            IndexError: If the index lies outside the grid (``__debug__`` only).
            KeyError: If ``name`` is not a scalar field.
        """
        if name not in SCALAR_FIELDS:
            msg = f"Unknown scalar field '{name}'. Available: {list(SCALAR_FIELDS)}"
            raise KeyError(msg)
        if __debug__:
            _check_index(index, self.shape)
        return float(getattr(self, name)[index])

    def is_finite(self) -> bool:
        """Whether every field is free of NaN and infinity."""
        return all(
            bool(np.all(np.isfinite(getattr(self, name))))
            for name in (*VELOCITY_FIELDS, *SCALAR_FIELDS)
        )

    def copy(self) -> FlowFields:
        """Deep copy of all arrays."""
        return FlowFields(
            **{
                name: getattr(self, name).copy()
                for name in (*VELOCITY_FIELDS, *SCALAR_FIELDS)
            }
        )


def _check_index(index: Index3, shape: Index3) -> None:
    if len(index) != 3 or any(
        not 0 <= i < n for i, n in zip(index, shape, strict=True)
    ):
        msg = f"Cell index {index} outside grid of shape {shape}"
        raise IndexError(msg)


@dataclass
class Grid:
    """Uniform structured grid owning its flow fields.

    Create instances with :func:`create_grid`, which validates the request.

    Attributes:
        extents: Physical size ``(lx, ly, lz)`` in metres.
        shape: Cell counts ``(nx, ny, nz)``.
        fields: Flow state, mutated in place by the solvers.
    """

    extents: Point3
    shape: Index3
    fields: FlowFields = field(repr=False)

    @property
    def spacing(self) -> Point3:
        """Cell size ``(dx, dy, dz)`` in metres."""
        return (
            self.extents[0] / self.shape[0],
            self.extents[1] / self.shape[1],
            self.extents[2] / self.shape[2],
        )

    @property
    def n_cells(self) -> int:
        """Total number of cells."""
        return self.shape[0] * self.shape[1] * self.shape[2]

    @property
    def cell_volume(self) -> float:
        """Volume of one cell in m³."""
        dx, dy, dz = self.spacing
        return dx * dy * dz

    @property
    def volume(self) -> float:
        """Domain volume in m³."""
        return self.extents[0] * self.extents[1] * self.extents[2]

    def face_area(self, axis: int) -> float:
        """Area of a cell face normal to ``axis`` in m²."""
        dx, dy, dz = self.spacing
        return (dy * dz, dx * dz, dx * dy)[axis]

    def cell_centers(self, axis: int) -> FloatArray:
        """1-D cell-centre coordinates along ``axis``."""
        h = self.spacing[axis]
        return (np.arange(self.shape[axis]) + 0.5) * h

    def face_centers(self, axis: int) -> FloatArray:
        """1-D face coordinates along ``axis`` (``n + 1`` values)."""
        return np.linspace(0.0, self.extents[axis], self.shape[axis] + 1)

    def cell_center(self, index: Index3) -> Point3:
        """Coordinates of the centre of cell ``index``."""
        if __debug__:
            _check_index(index, self.shape)
        dx, dy, dz = self.spacing
        i, j, k = index
        return ((i + 0.5) * dx, (j + 0.5) * dy, (k + 0.5) * dz)

    def face_center(self, axis: int, index: Index3) -> Point3:
        """Coordinates of the staggered face ``index`` normal to ``axis``.

        The face index runs to ``n`` along ``axis`` (``n + 1`` faces).
        """
        limits = [n - 1 for n in self.shape]
        limits[axis] += 1
        if __debug__ and any(
            not 0 <= i <= lim for i, lim in zip(index, limits, strict=True)
        ):
            msg = f"Face index {index} outside axis-{axis} faces of {self.shape}"
            raise IndexError(msg)
        coords = [(index[a] + 0.5) * self.spacing[a] for a in range(3)]
        coords[axis] = index[axis] * self.spacing[axis]
        return (coords[0], coords[1], coords[2])

    def contains(self, point: Point3) -> bool:
        """Whether ``point`` lies inside the closed domain box."""
        return all(
            -_SNAP_TOL * ext <= x <= ext * (1 + _SNAP_TOL)
            for x, ext in zip(point, self.extents, strict=True)
        )

    def cell_index(self, point: Point3) -> Index3:
        """Index of the cell enclosing ``point``.

        Points on the upper domain boundary belong to the last cell.

        Raises:
            ValueError: If the point is outside the domain.
        """
        if not self.contains(point):
            msg = f"Point {point} outside domain {self.extents}"
            raise ValueError(msg)
        i, j, k = (
            min(n - 1, max(0, math.floor(x / h)))
            for x, h, n in zip(point, self.spacing, self.shape, strict=True)
        )
        return (i, j, k)

    def enclosing_cells(self, point: Point3) -> list[tuple[Index3, float]]:
        """Cells enclosing ``point`` with their share of a point quantity.

        A point lying exactly on an interior cell face is shared equally by
        the cells on both sides, so that e.g. a fixture mounted at the room
        centre on an even grid stays centred. Weights always sum to one.

        Raises:
            ValueError: If the point is outside the domain.
        """
        if not self.contains(point):
            msg = f"Point {point} outside domain {self.extents}"
            raise ValueError(msg)

        per_axis: list[list[tuple[int, float]]] = []
        for x, h, n in zip(point, self.spacing, self.shape, strict=True):
            s = x / h
            nearest = round(s)
            if 0 < nearest < n and abs(s - nearest) <= _SNAP_TOL * max(1.0, s):
                per_axis.append([(nearest - 1, 0.5), (nearest, 0.5)])
            else:
                per_axis.append([(min(n - 1, max(0, math.floor(s))), 1.0)])

        return [
            ((i, j, k), wi * wj * wk)
            for i, wi in per_axis[0]
            for j, wj in per_axis[1]
            for k, wk in per_axis[2]
        ]

    def neighbor(self, index: Index3, axis: int, offset: int) -> Index3:
        """Neighbouring cell index, clamped at the domain boundary."""
        moved = list(index)
        moved[axis] = min(self.shape[axis] - 1, max(0, index[axis] + offset))
        return (moved[0], moved[1], moved[2])

    def cell_range(self, axis: int, lo: float, hi: float) -> tuple[int, int]:
        """Half-open range of cell indices whose centres lie in ``[lo, hi]``.

        When the interval is narrower than a cell, the single cell enclosing
        its midpoint is returned, so a region never maps to zero cells.
        """
        centers = self.cell_centers(axis)
        h = self.spacing[axis]
        tol = _SNAP_TOL * h
        inside = np.nonzero((centers >= lo - tol) & (centers <= hi + tol))[0]
        if inside.size:
            return int(inside[0]), int(inside[-1]) + 1
        mid = 0.5 * (lo + hi)
        i = min(self.shape[axis] - 1, max(0, math.floor(mid / h)))
        return i, i + 1


def create_grid(
    lx: float,
    ly: float,
    lz: float,
    nx: int,
    ny: int,
    nz: int,
) -> Grid:
    """Allocate a grid and its zeroed fields.

    Args:
        lx, ly, lz: Domain extents in metres.
        nx, ny, nz: Number of cells along each axis.

    Returns:
        New Grid with zero-initialised fields.

    Raises:
        InvalidDimensionError: If any extent or count is non-positive, or a
            count is not an integer.
    """
    extents = (lx, ly, lz)
    counts = (nx, ny, nz)

    for name, value in zip(("lx", "ly", "lz"), extents, strict=True):
        if (
            isinstance(value, bool)
            or not isinstance(value, numbers.Real)
            or not math.isfinite(value)
        ):
            msg = f"Extent {name} must be a finite number, got {value!r}"
            raise InvalidDimensionError(msg)
        if value <= 0:
            msg = f"Extent {name} must be positive, got {value}"
            raise InvalidDimensionError(msg)

    for name, value in zip(("nx", "ny", "nz"), counts, strict=True):
        if isinstance(value, bool) or not isinstance(value, numbers.Integral):
            msg = f"Cell count {name} must be an integer, got {value!r}"
            raise InvalidDimensionError(msg)
        if value <= 0:
            msg = f"Cell count {name} must be positive, got {value}"
            raise InvalidDimensionError(msg)

    shape = (int(nx), int(ny), int(nz))
    return Grid(
        extents=(float(lx), float(ly), float(lz)),
        shape=shape,
        fields=FlowFields.zeros(shape),
    )
