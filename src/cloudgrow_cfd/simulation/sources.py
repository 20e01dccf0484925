"""Source terms derived from equipment specifications.

Each equipment item is mapped onto the cells enclosing its position:

- Fixture: heat ``wattage * (1 - efficiency)``.
- HVAC unit: signed sensible heat and moisture at the supply point, plus the
  jet thrust ``rho Q^2 / A`` along the supply direction, and along the
  return direction at the return point.
- Fan: jet thrust ``rho Q^2 / A`` along its direction.
- Canopy zone: sensible heat and transpiration spread over the zone's cells,
  plus a porous-zone boundary carrying its flow resistance.

Items outside the domain are skipped with a warning rather than failing the
run, so a partially valid layout can still be evaluated.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from cloudgrow_cfd.core.equipment import CanopyZone, EquipmentSpec, Fan, Fixture, HVACUnit
from cloudgrow_cfd.physics.constants import STANDARD_AIR_DENSITY, cfm_to_m3s
from cloudgrow_cfd.simulation.boundaries import PorousZone

if TYPE_CHECKING:
    from cloudgrow_cfd.core.equipment import Vector3
    from cloudgrow_cfd.core.grid import FloatArray, Grid, Index3
    from cloudgrow_cfd.simulation.boundaries import BoundarySet

logger = logging.getLogger(__name__)


@dataclass
class SourceContribution:
    """What one equipment item added to the source field.

    Attributes:
        name: Equipment name.
        kind: Equipment kind (``fixture``, ``hvac``, ``fan``, ``canopy`` or
            ``porous`` for porous-zone boundaries).
        heat: Heat added (W).
        moisture: Water added (kg/s).
        thrust: Magnitude of the momentum source (N).
        cells: Number of cells the item was spread over.
    """

    name: str
    kind: str
    heat: float = 0.0
    moisture: float = 0.0
    thrust: float = 0.0
    cells: int = 0


@dataclass
class SourceField:
    """Per-cell heat (W), moisture (kg/s) and momentum (N) sources."""

    heat: FloatArray
    moisture: FloatArray
    momentum: FloatArray
    contributions: list[SourceContribution] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def zeros(cls, shape: Index3) -> SourceField:
        """Empty source field for a grid of ``shape`` cells."""
        return cls(
            heat=np.zeros(shape),
            moisture=np.zeros(shape),
            momentum=np.zeros((3, *shape)),
        )

    @property
    def total_heat(self) -> float:
        """Net heat added to the domain (W)."""
        return float(self.heat.sum())

    @property
    def total_moisture(self) -> float:
        """Net water added to the domain (kg/s)."""
        return float(self.moisture.sum())

    def copy(self) -> SourceField:
        """Independent copy of the arrays and lists."""
        return SourceField(
            heat=self.heat.copy(),
            moisture=self.moisture.copy(),
            momentum=self.momentum.copy(),
            contributions=list(self.contributions),
            warnings=list(self.warnings),
        )

    # -------------------------------------------------------------------------

    def _deposit(
        self,
        cells: list[tuple[Index3, float]],
        heat: float = 0.0,
        moisture: float = 0.0,
        force: Vector3 | None = None,
    ) -> None:
        for index, weight in cells:
            self.heat[index] += heat * weight
            self.moisture[index] += moisture * weight
            if force is not None:
                for axis in range(3):
                    self.momentum[(axis, *index)] += force[axis] * weight

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)


def jet_thrust(airflow_cfm: float, outlet_area: float, density: float) -> float:
    """Momentum flux of a discharge jet, ``rho Q^2 / A`` (N)."""
    q = cfm_to_m3s(airflow_cfm)
    return density * q * q / outlet_area


def _scale(vector: Vector3, factor: float) -> Vector3:
    return (vector[0] * factor, vector[1] * factor, vector[2] * factor)


def _add_fixture(field_: SourceField, item: Fixture, grid: Grid) -> None:
    cells = grid.enclosing_cells(item.position)
    heat = item.heat_output
    field_._deposit(cells, heat=heat)
    field_.contributions.append(
        SourceContribution(name=item.name, kind=item.kind, heat=heat, cells=len(cells))
    )


def _add_hvac(field_: SourceField, item: HVACUnit, grid: Grid, density: float) -> None:
    thrust = jet_thrust(item.airflow_cfm, item.outlet_area, density)
    cells = grid.enclosing_cells(item.position)
    field_._deposit(
        cells,
        heat=item.sensible_capacity_w,
        moisture=item.moisture_rate_kg_s,
        force=_scale(item.supply_unit, thrust),
    )
    n_cells = len(cells)
    if item.return_position is not None:
        if grid.contains(item.return_position):
            return_cells = grid.enclosing_cells(item.return_position)
            field_._deposit(return_cells, force=_scale(item.return_unit, thrust))
            n_cells += len(return_cells)
        else:
            field_._warn(
                f"HVAC '{item.name}' return at {item.return_position} lies outside "
                "the domain; return intake ignored"
            )
    field_.contributions.append(
        SourceContribution(
            name=item.name,
            kind=item.kind,
            heat=item.sensible_capacity_w,
            moisture=item.moisture_rate_kg_s,
            thrust=thrust,
            cells=n_cells,
        )
    )


def _add_fan(field_: SourceField, item: Fan, grid: Grid, density: float) -> None:
    thrust = jet_thrust(item.airflow_cfm, item.outlet_area, density)
    cells = grid.enclosing_cells(item.position)
    field_._deposit(cells, force=_scale(item.unit_direction, thrust))
    field_.contributions.append(
        SourceContribution(name=item.name, kind=item.kind, thrust=thrust, cells=len(cells))
    )


def _add_canopy(
    field_: SourceField,
    item: CanopyZone,
    grid: Grid,
    boundaries: BoundarySet | None,
) -> None:
    ranges = [grid.cell_range(a, item.box.lo[a], item.box.hi[a]) for a in range(3)]
    indices = [
        (i, j, k)
        for i in range(*ranges[0])
        for j in range(*ranges[1])
        for k in range(*ranges[2])
    ]
    weight = 1.0 / len(indices)
    heat = item.heat_output
    field_._deposit(
        [(index, weight) for index in indices],
        heat=heat,
        moisture=item.transpiration_rate,
    )
    if boundaries is not None:
        boundaries.add_boundary(
            item.box,
            PorousZone(
                porosity=item.porosity,
                resistance_linear=item.resistance_linear,
                resistance_quadratic=item.resistance_quadratic,
            ),
        )
    field_.contributions.append(
        SourceContribution(
            name=item.name,
            kind=item.kind,
            heat=heat,
            moisture=item.transpiration_rate,
            cells=len(indices),
        )
    )


def build_sources(
    equipment: Iterable[EquipmentSpec],
    grid: Grid,
    boundaries: BoundarySet | None = None,
    *,
    air_density: float = STANDARD_AIR_DENSITY,
) -> SourceField:
    """Convert an equipment list into per-cell source terms.

    Args:
        equipment: Equipment items to place.
        grid: Grid the sources are mapped onto.
        boundaries: Boundary set receiving the porous zones of canopy items.
            Heat and moisture carried by porous zones already in the set are
            folded into the returned field.
        air_density: Density used for jet thrust (kg/m³).

    Returns:
        SourceField whose total heat equals the sum of its contributions.

    Raises:
        OverlappingRegionError: If a canopy zone overlaps a boundary of a
            different kind.
    """
    field_ = SourceField.zeros(grid.shape)

    for item in equipment:
        inside = (
            grid.contains(item.box.lo) and grid.contains(item.box.hi)
            if isinstance(item, CanopyZone)
            else grid.contains(item.position)
        )
        if not inside:
            field_._warn(
                f"{type(item).__name__} '{item.name}' at {item.position} lies "
                "outside the domain; skipped"
            )
            continue

        if isinstance(item, Fixture):
            _add_fixture(field_, item, grid)
        elif isinstance(item, HVACUnit):
            _add_hvac(field_, item, grid, air_density)
        elif isinstance(item, Fan):
            _add_fan(field_, item, grid, air_density)
        elif isinstance(item, CanopyZone):
            _add_canopy(field_, item, grid, boundaries)
        else:
            msg = f"Unsupported equipment type: {type(item).__name__}"
            raise TypeError(msg)

    if boundaries is not None:
        for boundary_id, mask, heat, moisture in boundaries.porous_sources():
            n_cells = int(mask.sum())
            field_.heat[mask] += heat / n_cells
            field_.moisture[mask] += moisture / n_cells
            field_.contributions.append(
                SourceContribution(
                    name=f"porous zone #{boundary_id}",
                    kind="porous",
                    heat=heat,
                    moisture=moisture,
                    cells=n_cells,
                )
            )

    logger.info(
        "Built sources from %d items: %.1f W heat, %.3g kg/s moisture, %d warnings",
        len(field_.contributions),
        field_.total_heat,
        field_.total_moisture,
        len(field_.warnings),
    )
    return field_
