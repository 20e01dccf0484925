"""Boundary condition set for the solver.

Boundaries are attached to regions of the grid:

- :class:`FacePatch` - a rectangle on one of the six domain sides. Inlets,
  outlets and walls live on face patches.
- :class:`CellBox` - an axis-aligned box of cells. Porous zones (plant
  canopies) live on cell boxes.

Every domain face without an explicit boundary is an adiabatic no-slip wall.
The set is compiled into per-side arrays (:class:`SideConditions`) which the
transport and momentum assemblers read directly.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Final, Literal

import numpy as np

from cloudgrow_cfd.core.equipment import Box
from cloudgrow_cfd.core.errors import (
    BoundaryError,
    OutOfDomainError,
    OverlappingRegionError,
)
from cloudgrow_cfd.core.grid import SIDES, edge, parse_side
from cloudgrow_cfd.physics.constants import (
    C_MU,
    EPS_MIN,
    INLET_LENGTH_SCALE_FACTOR,
    K_MIN,
    VON_KARMAN,
)
from cloudgrow_cfd.physics.psychrometrics import humidity_ratio

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from cloudgrow_cfd.core.grid import FloatArray, Grid

logger = logging.getLogger(__name__)

#: Identifier returned by :meth:`BoundarySet.add_boundary` (always >= 1)
BoundaryId = int

#: Region of cells; same geometry type as canopy boxes
CellBox = Box

#: Relative tolerance for regions touching the domain extents
_EXTENT_TOL: Final[float] = 1e-9

#: Default inlet turbulence intensity
DEFAULT_TURBULENCE_INTENSITY: Final[float] = 0.05


class BoundaryKind(IntEnum):
    """Kind of a boundary face after compilation."""

    WALL = 0
    INLET = 1
    OUTLET = 2


# =============================================================================
# Regions
# =============================================================================


@dataclass(frozen=True)
class FacePatch:
    """Rectangle on a domain side.

    Tangential coordinates follow the remaining axes in ascending order:
    ``(y, z)`` on x-sides, ``(x, z)`` on y-sides, ``(x, y)`` on z-sides.
    Leaving ``lo``/``hi`` unset covers the whole side.

    Attributes:
        side: One of ``x-, x+, y-, y+, z-, z+``.
        lo: Lower tangential corner (m).
        hi: Upper tangential corner (m).
    """

    side: str
    lo: tuple[float, float] | None = None
    hi: tuple[float, float] | None = None

    def __post_init__(self) -> None:
        """Validate the side name and corner ordering."""
        parse_side(self.side)
        if (self.lo is None) != (self.hi is None):
            msg = "FacePatch needs both lo and hi, or neither"
            raise BoundaryError(msg)
        if self.lo is not None and self.hi is not None:
            if any(a > b for a, b in zip(self.lo, self.hi, strict=True)):
                msg = f"FacePatch lower corner {self.lo} exceeds upper {self.hi}"
                raise BoundaryError(msg)

    @property
    def axis(self) -> int:
        """Axis normal to the patch."""
        return parse_side(self.side)[0]

    @property
    def high(self) -> bool:
        """Whether the patch lies on the upper end of its axis."""
        return parse_side(self.side)[1]


# =============================================================================
# Conditions
# =============================================================================


@dataclass(frozen=True)
class Inlet:
    """Prescribed inflow.

    Give either ``velocity`` (m/s, full vector) or ``flow_rate`` (m³/s,
    turned into a uniform inward normal velocity over the patch area).

    Attributes:
        velocity: Inflow velocity vector.
        flow_rate: Volumetric inflow.
        temperature: Supply air temperature (C).
        relative_humidity: Supply air relative humidity (%).
        turbulence_intensity: Ratio of velocity fluctuation to mean speed.
    """

    velocity: tuple[float, float, float] | None = None
    flow_rate: float | None = None
    temperature: float = 20.0
    relative_humidity: float = 50.0
    turbulence_intensity: float = DEFAULT_TURBULENCE_INTENSITY
    kind: Literal["inlet"] = field(default="inlet", init=False)

    def __post_init__(self) -> None:
        """Validate inflow parameters."""
        if (self.velocity is None) == (self.flow_rate is None):
            msg = "Inlet needs exactly one of velocity or flow_rate"
            raise BoundaryError(msg)
        if self.flow_rate is not None and self.flow_rate < 0:
            msg = f"Inlet flow rate must be non-negative, got {self.flow_rate}"
            raise BoundaryError(msg)
        if not 0 <= self.relative_humidity <= 100:
            msg = f"Inlet relative humidity must be in [0, 100], got {self.relative_humidity}"
            raise BoundaryError(msg)
        if self.turbulence_intensity < 0:
            msg = "Inlet turbulence intensity must be non-negative"
            raise BoundaryError(msg)


@dataclass(frozen=True)
class Outlet:
    """Pressure outlet with gauge reference pressure (Pa)."""

    pressure: float = 0.0
    kind: Literal["outlet"] = field(default="outlet", init=False)


@dataclass(frozen=True)
class Wall:
    """No-slip wall, fixed temperature or adiabatic when ``temperature`` is None."""

    temperature: float | None = None
    kind: Literal["wall"] = field(default="wall", init=False)


@dataclass(frozen=True)
class PorousZone:
    """Porous flow resistance with heat and moisture exchange.

    Attributes:
        porosity: Fraction of the volume open to flow, in (0, 1].
        resistance_linear: Darcy coefficient (1/s).
        resistance_quadratic: Forchheimer coefficient (1/m).
        heat: Heat released over the zone (W), negative for cooling.
        moisture: Water released over the zone (kg/s).
    """

    porosity: float = 1.0
    resistance_linear: float = 0.0
    resistance_quadratic: float = 0.0
    heat: float = 0.0
    moisture: float = 0.0
    kind: Literal["porous"] = field(default="porous", init=False)

    def __post_init__(self) -> None:
        """Validate porous parameters."""
        if not 0.0 < self.porosity <= 1.0:
            msg = f"Porosity must be in (0, 1], got {self.porosity}"
            raise BoundaryError(msg)
        if self.resistance_linear < 0 or self.resistance_quadratic < 0:
            msg = "Porous resistance coefficients must be non-negative"
            raise BoundaryError(msg)


BoundaryCondition = Inlet | Outlet | Wall | PorousZone
Region = FacePatch | Box


# =============================================================================
# Compiled arrays
# =============================================================================


@dataclass
class SideConditions:
    """Per-face boundary data for one domain side.

    Arrays keep the normal axis with length one, so they broadcast against
    the boundary layer of any cell or face array (see
    :func:`cloudgrow_cfd.core.grid.edge`).
    """

    side: str
    axis: int
    high: bool
    tags: NDArray[np.int32]
    kind: NDArray[np.int8]
    velocity: FloatArray
    temperature: FloatArray
    temperature_fixed: NDArray[np.bool_]
    humidity: FloatArray
    k: FloatArray
    eps: FloatArray
    pressure: FloatArray

    @property
    def fixed(self) -> NDArray[np.bool_]:
        """Faces whose velocity is prescribed (walls and inlets)."""
        return self.kind != BoundaryKind.OUTLET

    @property
    def outlet(self) -> NDArray[np.bool_]:
        """Outlet faces."""
        return self.kind == BoundaryKind.OUTLET

    @property
    def inlet(self) -> NDArray[np.bool_]:
        """Inlet faces."""
        return self.kind == BoundaryKind.INLET

    @property
    def wall(self) -> NDArray[np.bool_]:
        """Wall faces."""
        return self.kind == BoundaryKind.WALL

    @property
    def sign(self) -> float:
        """+1 when the outward normal points along +axis, else -1."""
        return 1.0 if self.high else -1.0


@dataclass
class PorousCells:
    """Compiled porous-zone coefficients per cell."""

    mask: NDArray[np.bool_]
    porosity: FloatArray
    resistance_linear: FloatArray
    resistance_quadratic: FloatArray


class BoundarySet:
    """Boundary conditions attached to one grid.

    Example:
        >>> grid = create_grid(10, 5, 3, 10, 5, 3)
        >>> bcs = BoundarySet(grid)
        >>> bcs.add_boundary(FacePatch("x-"), Inlet(flow_rate=2.0))
        1
    """

    def __init__(self, grid: Grid) -> None:
        """Create an empty set (all sides adiabatic no-slip walls)."""
        self._grid = grid
        self._conditions: dict[BoundaryId, BoundaryCondition] = {}
        self._regions: dict[BoundaryId, Region] = {}
        self._face_tags: dict[str, NDArray[np.int32]] = {}
        for side in SIDES:
            axis, _ = parse_side(side)
            shape = list(grid.shape)
            shape[axis] = 1
            self._face_tags[side] = np.zeros(shape, dtype=np.int32)
        self._cell_tags = np.zeros(grid.shape, dtype=np.int32)
        self._next_id = 1
        self._compiled: dict[str, SideConditions] | None = None
        self._porous: PorousCells | None = None

    @property
    def grid(self) -> Grid:
        """Grid the boundaries are attached to."""
        return self._grid

    @property
    def conditions(self) -> dict[BoundaryId, BoundaryCondition]:
        """Registered conditions by id (read-only view)."""
        return dict(self._conditions)

    def region(self, boundary_id: BoundaryId) -> Region:
        """Region a boundary was attached to."""
        return self._regions[boundary_id]

    def __len__(self) -> int:
        """Number of registered boundaries."""
        return len(self._conditions)

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def add_boundary(self, region: Region, condition: BoundaryCondition) -> BoundaryId:
        """Attach a condition to a region of the grid.

        Args:
            region: Face patch (inlet/outlet/wall) or cell box (porous zone).
            condition: The boundary condition.

        Returns:
            Identifier of the new boundary.

        Raises:
            OutOfDomainError: If the region extends outside the grid.
            OverlappingRegionError: If part of the region already carries a
                boundary of a different kind.
            BoundaryError: If the condition kind does not fit the region type.
        """
        if isinstance(condition, PorousZone):
            if not isinstance(region, Box):
                msg = "Porous zones must be attached to a cell box"
                raise BoundaryError(msg)
            tags = self._cell_tags
            mask = self._box_mask(region)
        else:
            if not isinstance(region, FacePatch):
                msg = f"{type(condition).__name__} must be attached to a face patch"
                raise BoundaryError(msg)
            tags = self._face_tags[region.side]
            mask = self._patch_mask(region)

        clashing = {
            int(t)
            for t in np.unique(tags[mask])
            if t != 0 and self._conditions[int(t)].kind != condition.kind
        }
        if clashing:
            others = ", ".join(
                f"#{t} ({self._conditions[t].kind})" for t in sorted(clashing)
            )
            msg = f"Region {region} overlaps boundary {others} of a different kind"
            raise OverlappingRegionError(msg)

        boundary_id = self._next_id
        self._next_id += 1
        tags[mask] = boundary_id
        self._conditions[boundary_id] = condition
        self._regions[boundary_id] = region
        self._compiled = None
        self._porous = None
        logger.debug(
            "Added %s boundary #%d on %s (%d faces/cells)",
            condition.kind,
            boundary_id,
            region,
            int(mask.sum()),
        )
        return boundary_id

    def _check_interval(self, axis: int, lo: float, hi: float, region: Region) -> None:
        extent = self._grid.extents[axis]
        tol = _EXTENT_TOL * extent
        if lo < -tol or hi > extent + tol:
            msg = (
                f"Region {region} spans [{lo}, {hi}] on axis {'xyz'[axis]}, "
                f"outside [0, {extent}]"
            )
            raise OutOfDomainError(msg)

    def _patch_mask(self, patch: FacePatch) -> NDArray[np.bool_]:
        axis = patch.axis
        shape = list(self._grid.shape)
        shape[axis] = 1
        mask = np.zeros(shape, dtype=bool)
        if patch.lo is None or patch.hi is None:
            mask[...] = True
            return mask

        index: list[slice] = [slice(0, 1)] * 3
        tangential = [a for a in range(3) if a != axis]
        for a, lo, hi in zip(tangential, patch.lo, patch.hi, strict=True):
            self._check_interval(a, lo, hi, patch)
            start, stop = self._grid.cell_range(a, lo, hi)
            index[a] = slice(start, stop)
        mask[tuple(index)] = True
        return mask

    def _box_mask(self, box: Box) -> NDArray[np.bool_]:
        index: list[slice] = []
        for a in range(3):
            self._check_interval(a, box.lo[a], box.hi[a], box)
            start, stop = self._grid.cell_range(a, box.lo[a], box.hi[a])
            index.append(slice(start, stop))
        mask = np.zeros(self._grid.shape, dtype=bool)
        mask[tuple(index)] = True
        return mask

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _patch_of(self, boundary_id: BoundaryId) -> FacePatch:
        region = self._regions[boundary_id]
        if not isinstance(region, FacePatch):
            msg = f"Boundary #{boundary_id} is not attached to a face patch"
            raise BoundaryError(msg)
        return region

    def face_mask(self, boundary_id: BoundaryId) -> NDArray[np.bool_]:
        """Faces owned by a face boundary (on its side's layer)."""
        region = self._patch_of(boundary_id)
        return self._face_tags[region.side] == boundary_id

    def cell_mask(self, boundary_id: BoundaryId) -> NDArray[np.bool_]:
        """Cells owned by a porous zone."""
        return self._cell_tags == boundary_id

    def patch_area(self, boundary_id: BoundaryId) -> float:
        """Discretised area (m²) of the faces owned by a face boundary."""
        region = self._patch_of(boundary_id)
        return float(self.face_mask(boundary_id).sum()) * self._grid.face_area(
            region.axis
        )

    def has_outlet(self) -> bool:
        """Whether any outlet owns at least one face."""
        return any(bool(side.outlet.any()) for side in self.sides().values())

    def porous_sources(self) -> list[tuple[BoundaryId, NDArray[np.bool_], float, float]]:
        """Heat (W) and moisture (kg/s) carried by porous zones with their boxes.

        Each zone deposits over its whole box, including cells a newer
        overlapping zone owns for drag.
        """
        sources = []
        for boundary_id, condition in self._conditions.items():
            if isinstance(condition, PorousZone) and (condition.heat or condition.moisture):
                region = self._regions[boundary_id]
                if not isinstance(region, Box):
                    msg = f"Porous zone #{boundary_id} is not attached to a cell box"
                    raise BoundaryError(msg)
                mask = self._box_mask(region)
                sources.append((boundary_id, mask, condition.heat, condition.moisture))
        return sources

    # -------------------------------------------------------------------------
    # Compilation
    # -------------------------------------------------------------------------

    def sides(self) -> dict[str, SideConditions]:
        """Compiled per-side boundary data, cached until the set changes."""
        if self._compiled is None:
            self._compiled = {side: self._compile_side(side) for side in SIDES}
        return self._compiled

    def _inlet_velocity(self, boundary_id: BoundaryId, inlet: Inlet) -> tuple[float, float, float]:
        if inlet.velocity is not None:
            return inlet.velocity
        region = self._patch_of(boundary_id)
        area = self.patch_area(boundary_id)
        speed = (inlet.flow_rate or 0.0) / area
        vector = [0.0, 0.0, 0.0]
        # Inward normal
        vector[region.axis] = -speed if region.high else speed
        return (vector[0], vector[1], vector[2])

    def _inlet_turbulence(
        self, boundary_id: BoundaryId, inlet: Inlet, speed: float
    ) -> tuple[float, float]:
        region = self._patch_of(boundary_id)
        axis = region.axis
        mask = self.face_mask(boundary_id)
        tangential = [a for a in range(3) if a != axis]
        widths = [
            float(np.any(mask, axis=tuple(b for b in range(3) if b != a)).sum())
            * self._grid.spacing[a]
            for a in tangential
        ]
        area = widths[0] * widths[1]
        hydraulic_diameter = 4.0 * area / (2.0 * (widths[0] + widths[1]))
        k = max(1.5 * (inlet.turbulence_intensity * speed) ** 2, K_MIN)
        eps = max(
            C_MU**0.75 * k**1.5 / (INLET_LENGTH_SCALE_FACTOR * hydraulic_diameter),
            EPS_MIN,
        )
        return k, eps

    def _compile_side(self, side: str) -> SideConditions:
        axis, high = parse_side(side)
        tags = self._face_tags[side]
        shape = tags.shape
        kind = np.full(shape, BoundaryKind.WALL, dtype=np.int8)
        velocity = np.zeros((3, *shape))
        temperature = np.zeros(shape)
        temperature_fixed = np.zeros(shape, dtype=bool)
        humidity = np.zeros(shape)
        k = np.full(shape, K_MIN)
        eps = np.full(shape, EPS_MIN)
        pressure = np.zeros(shape)

        for boundary_id in (int(t) for t in np.unique(tags) if t != 0):
            condition = self._conditions[boundary_id]
            mask = tags == boundary_id
            if isinstance(condition, Inlet):
                vec = self._inlet_velocity(boundary_id, condition)
                speed = math.sqrt(sum(c * c for c in vec))
                kind[mask] = BoundaryKind.INLET
                for a in range(3):
                    velocity[a][mask] = vec[a]
                temperature[mask] = condition.temperature
                temperature_fixed[mask] = True
                humidity[mask] = humidity_ratio(
                    condition.temperature, condition.relative_humidity
                )
                k_in, eps_in = self._inlet_turbulence(boundary_id, condition, speed)
                k[mask] = k_in
                eps[mask] = eps_in
            elif isinstance(condition, Outlet):
                kind[mask] = BoundaryKind.OUTLET
                pressure[mask] = condition.pressure
            elif isinstance(condition, Wall) and condition.temperature is not None:
                temperature[mask] = condition.temperature
                temperature_fixed[mask] = True

        return SideConditions(
            side=side,
            axis=axis,
            high=high,
            tags=tags.copy(),
            kind=kind,
            velocity=velocity,
            temperature=temperature,
            temperature_fixed=temperature_fixed,
            humidity=humidity,
            k=k,
            eps=eps,
            pressure=pressure,
        )

    def porous_cells(self) -> PorousCells:
        """Compiled porous coefficients, cached until the set changes."""
        if self._porous is None:
            shape = self._grid.shape
            porous = PorousCells(
                mask=np.zeros(shape, dtype=bool),
                porosity=np.ones(shape),
                resistance_linear=np.zeros(shape),
                resistance_quadratic=np.zeros(shape),
            )
            for boundary_id, condition in self._conditions.items():
                if not isinstance(condition, PorousZone):
                    continue
                mask = self._cell_tags == boundary_id
                porous.mask |= mask
                porous.porosity[mask] = condition.porosity
                porous.resistance_linear[mask] = condition.resistance_linear
                porous.resistance_quadratic[mask] = condition.resistance_quadratic
            self._porous = porous
        return self._porous

    def wall_distance(self) -> FloatArray:
        """Distance from wall-adjacent cell centres to the nearest wall.

        Cells not touching a wall face get ``inf``.
        """
        distance = np.full(self._grid.shape, np.inf)
        for cond in self.sides().values():
            half = 0.5 * self._grid.spacing[cond.axis]
            layer = distance[edge(cond.axis, cond.high)]
            distance[edge(cond.axis, cond.high)] = np.where(
                cond.wall, np.minimum(layer, half), layer
            )
        return distance

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------

    def apply_boundaries(self, grid: Grid | None = None) -> None:
        """Re-impose boundary values on the grid fields.

        Sets inlet and wall normal velocities on the boundary faces, the
        wall-function dissipation in wall-adjacent cells and the lower bounds
        on k and epsilon. Interior values are untouched, and calling this
        repeatedly gives the same state as calling it once.

        Args:
            grid: Grid to update; defaults to the grid the set is attached to.

        Raises:
            BoundaryError: If ``grid`` has a different shape.
        """
        grid = grid or self._grid
        if grid.shape != self._grid.shape:
            msg = f"Grid shape {grid.shape} does not match boundary set {self._grid.shape}"
            raise BoundaryError(msg)
        fields = grid.fields

        for cond in self.sides().values():
            vel = fields.velocity(cond.axis)
            layer = edge(cond.axis, cond.high)
            vel[layer] = np.where(cond.fixed, cond.velocity[cond.axis], vel[layer])

        np.maximum(fields.k, K_MIN, out=fields.k)
        distance = self.wall_distance()
        near_wall = np.isfinite(distance)
        wall_eps = C_MU**0.75 * fields.k[near_wall] ** 1.5 / (
            VON_KARMAN * distance[near_wall]
        )
        fields.eps[near_wall] = wall_eps
        np.maximum(fields.eps, EPS_MIN, out=fields.eps)
