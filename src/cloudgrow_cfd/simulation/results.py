"""Summary metrics extracted from converged (or final) fields.

Everything here is a pure function of the grid fields, the boundary set and
the sources; extraction never modifies the run.

Uniformity index
    ``1 - sigma / |mu|`` (one minus the coefficient of variation), clipped
    to ``[0, 1]``. A perfectly uniform field scores 1. Temperature uses
    degrees Celsius, as growers read it.

Air changes per hour
    ``3600 * Q_out / V`` with ``Q_out`` the volumetric flow leaving through
    outlets.

Ventilation effectiveness
    ``(T_out - T_in) / (T_mean - T_in)``: how well the supply air picks up
    heat before it leaves. 1 is perfect mixing, above 1 displacement.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Final

import numpy as np

from cloudgrow_cfd.core.equipment import CanopyZone
from cloudgrow_cfd.core.grid import SIDES, edge
from cloudgrow_cfd.physics.constants import PRANDTL_TURBULENT, SECONDS_PER_HOUR
from cloudgrow_cfd.physics.psychrometrics import relative_humidity_field

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from cloudgrow_cfd.core.equipment import Box, EquipmentSpec
    from cloudgrow_cfd.core.grid import FloatArray, Grid
    from cloudgrow_cfd.simulation.boundaries import BoundarySet
    from cloudgrow_cfd.simulation.settings import SolverSettings
    from cloudgrow_cfd.simulation.sources import SourceField

logger = logging.getLogger(__name__)

# =============================================================================
# Recommendation thresholds
# =============================================================================

#: Temperature uniformity below which more circulation is advised
TARGET_TEMPERATURE_UNIFORMITY: Final[float] = 0.9

#: Velocity uniformity below which jets are considered poorly distributed
TARGET_VELOCITY_UNIFORMITY: Final[float] = 0.5

#: Mean air speed below which the canopy air is considered stagnant (m/s)
STAGNANT_AIR_SPEED: Final[float] = 0.1

#: Mean air speed above which plants are stressed by draughts (m/s)
EXCESSIVE_AIR_SPEED: Final[float] = 1.0

#: Relative humidity above which disease pressure rises (%)
HIGH_RELATIVE_HUMIDITY: Final[float] = 85.0

#: Relative humidity below which plants are water-stressed (%)
LOW_RELATIVE_HUMIDITY: Final[float] = 40.0

#: Temperature spread across the domain considered excessive (K)
MAX_TEMPERATURE_SPREAD: Final[float] = 3.0

#: Relative energy imbalance above which results are flagged as unconverged
ENERGY_BALANCE_TOLERANCE: Final[float] = 0.05


# =============================================================================
# Result types
# =============================================================================


@dataclass
class FieldStats:
    """Volume statistics of one cell field."""

    mean: float
    min: float
    max: float
    std: float

    @classmethod
    def of(cls, values: FloatArray) -> FieldStats:
        """Statistics of a (non-empty) array."""
        return cls(
            mean=float(values.mean()),
            min=float(values.min()),
            max=float(values.max()),
            std=float(values.std()),
        )

    @property
    def uniformity(self) -> float:
        """Uniformity index ``1 - std/|mean|`` in [0, 1]."""
        return uniformity_from_moments(self.mean, self.std)


@dataclass
class ZoneStats:
    """Conditions inside one canopy zone.

    Attributes:
        name: Canopy name.
        n_cells: Cells covered by the zone.
        temperature: Temperature statistics (C).
        speed: Velocity magnitude statistics (m/s).
        relative_humidity: Mean relative humidity (%).
    """

    name: str
    n_cells: int
    temperature: FieldStats
    speed: FieldStats
    relative_humidity: float


@dataclass
class EnergyBalance:
    """Global heat budget of the air volume (W).

    Attributes:
        heat_input: Net heat injected by sources.
        advection_out: Enthalpy carried out through open boundaries, net of
            what inflow brings in.
        conduction_out: Heat conducted into fixed-temperature boundaries.
    """

    heat_input: float
    advection_out: float
    conduction_out: float

    @property
    def imbalance(self) -> float:
        """Heat stored in the air (or lost to numerics), W."""
        return self.heat_input - self.advection_out - self.conduction_out

    @property
    def relative_imbalance(self) -> float:
        """Imbalance relative to the largest budget term."""
        scale = max(
            abs(self.heat_input), abs(self.advection_out), abs(self.conduction_out), 1.0
        )
        return abs(self.imbalance) / scale


@dataclass
class SummaryMetrics:
    """Engineering summary of one solution.

    Attributes:
        temperature: Temperature statistics (C).
        speed: Velocity magnitude statistics (m/s).
        pressure: Gauge pressure statistics (Pa).
        humidity_ratio: Humidity ratio statistics (kg/kg).
        mean_relative_humidity: Volume-mean relative humidity (%).
        temperature_uniformity: Uniformity index of temperature.
        velocity_uniformity: Uniformity index of velocity magnitude.
        air_changes_per_hour: ``3600 Q_out / V`` (1/h).
        outflow: Volumetric flow leaving through outlets (m³/s).
        pressure_drop: Mean inlet-cell minus mean outlet-cell pressure (Pa);
            None without both inlets and outlets.
        inlet_temperature: Flow-weighted supply temperature (C), or None.
        outlet_temperature: Flow-weighted exhaust temperature (C), or None.
        ventilation_effectiveness: Heat-removal effectiveness, or None when
            undefined (no through-flow, or ``T_mean == T_in``).
        zones: Per-canopy statistics.
        energy_balance: Global heat budget.
        recommendations: Rule-based layout advice.
    """

    temperature: FieldStats
    speed: FieldStats
    pressure: FieldStats
    humidity_ratio: FieldStats
    mean_relative_humidity: float
    temperature_uniformity: float
    velocity_uniformity: float
    air_changes_per_hour: float
    outflow: float
    pressure_drop: float | None
    inlet_temperature: float | None
    outlet_temperature: float | None
    ventilation_effectiveness: float | None
    energy_balance: EnergyBalance
    zones: list[ZoneStats] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serialisable dictionary."""
        data = asdict(self)
        data["energy_balance"]["imbalance"] = self.energy_balance.imbalance
        return data


# =============================================================================
# Metrics
# =============================================================================


def uniformity_from_moments(mean: float, std: float) -> float:
    """``1 - std/|mean|`` clipped to [0, 1]; 1 for a zero field."""
    if mean == 0.0:
        return 1.0 if std == 0.0 else 0.0
    return float(np.clip(1.0 - std / abs(mean), 0.0, 1.0))


def uniformity_index(values: FloatArray) -> float:
    """Uniformity index of a field (see module docstring)."""
    return uniformity_from_moments(float(values.mean()), float(values.std()))


def box_mask(grid: Grid, box: Box) -> NDArray[np.bool_]:
    """Cells whose centres fall inside ``box`` (at least one cell)."""
    mask = np.zeros(grid.shape, dtype=bool)
    ranges = [grid.cell_range(a, box.lo[a], box.hi[a]) for a in range(3)]
    mask[
        ranges[0][0] : ranges[0][1],
        ranges[1][0] : ranges[1][1],
        ranges[2][0] : ranges[2][1],
    ] = True
    return mask


def _open_boundary_flows(
    grid: Grid, boundaries: BoundarySet
) -> tuple[float, float, float, float, float]:
    """Outflow, inflow and flow-weighted inlet/outlet temperatures.

    Returns:
        ``(q_out, q_in, sum(q_out T_out), sum(q_in T_in), advection_out)``
        with the last term in K·m³/s.
    """
    fields = grid.fields
    q_out = q_in = weighted_out = weighted_in = advected = 0.0
    for side in SIDES:
        cond = boundaries.sides()[side]
        if not (cond.inlet.any() or cond.outlet.any()):
            continue
        layer = edge(cond.axis, cond.high)
        outward = cond.sign * fields.velocity(cond.axis)[layer] * grid.face_area(cond.axis)
        t_cell = fields.t[layer]
        leaving = np.maximum(outward, 0.0)
        entering = np.maximum(-outward, 0.0)
        t_in = np.where(cond.inlet, cond.temperature, t_cell)

        open_faces = cond.inlet | cond.outlet
        q_out += float(leaving[cond.outlet].sum())
        weighted_out += float((leaving * t_cell)[cond.outlet].sum())
        q_in += float(entering[open_faces].sum())
        weighted_in += float((entering * t_in)[open_faces].sum())
        advected += float((leaving * t_cell - entering * t_in)[open_faces].sum())
    return q_out, q_in, weighted_out, weighted_in, advected


def _boundary_cell_pressure(
    grid: Grid, boundaries: BoundarySet, *, inlets: bool
) -> float | None:
    values: list[FloatArray] = []
    for cond in boundaries.sides().values():
        mask = cond.inlet if inlets else cond.outlet
        if mask.any():
            values.append(grid.fields.p[edge(cond.axis, cond.high)][mask])
    if not values:
        return None
    return float(np.concatenate(values).mean())


def _conduction_out(
    grid: Grid, boundaries: BoundarySet, settings: SolverSettings
) -> float:
    """Heat conducted through fixed-temperature faces (W), as assembled."""
    fields = grid.fields
    gamma = settings.thermal_diffusivity + fields.nu_t / PRANDTL_TURBULENT
    rho_cp = settings.air_density * settings.specific_heat
    total = 0.0
    for cond in boundaries.sides().values():
        if not cond.temperature_fixed.any():
            continue
        layer = edge(cond.axis, cond.high)
        conductance = gamma[layer] * grid.face_area(cond.axis) / (
            0.5 * grid.spacing[cond.axis]
        )
        flux = conductance * (fields.t[layer] - cond.temperature)
        total += float(flux[cond.temperature_fixed].sum())
    return rho_cp * total


def energy_balance(
    grid: Grid,
    boundaries: BoundarySet,
    sources: SourceField,
    settings: SolverSettings,
) -> EnergyBalance:
    """Global heat budget of the current fields."""
    rho_cp = settings.air_density * settings.specific_heat
    *_, advected = _open_boundary_flows(grid, boundaries)
    return EnergyBalance(
        heat_input=sources.total_heat,
        advection_out=rho_cp * advected,
        conduction_out=_conduction_out(grid, boundaries, settings),
    )


def _zone_stats(grid: Grid, zone: CanopyZone, rh: FloatArray, speed: FloatArray) -> ZoneStats:
    mask = box_mask(grid, zone.box)
    return ZoneStats(
        name=zone.name,
        n_cells=int(mask.sum()),
        temperature=FieldStats.of(grid.fields.t[mask]),
        speed=FieldStats.of(speed[mask]),
        relative_humidity=float(rh[mask].mean()),
    )


def recommendations(metrics: SummaryMetrics) -> list[str]:
    """Rule-based layout advice for a set of metrics."""
    advice: list[str] = []
    if metrics.temperature_uniformity < TARGET_TEMPERATURE_UNIFORMITY:
        advice.append(
            f"Temperature uniformity is {metrics.temperature_uniformity:.2f}; "
            "add horizontal airflow fans to mix the air"
        )
    if metrics.temperature.max - metrics.temperature.min > MAX_TEMPERATURE_SPREAD:
        advice.append(
            f"Temperature spread of {metrics.temperature.max - metrics.temperature.min:.1f} K; "
            "move heat sources away from the warmest region or add exhaust there"
        )
    if metrics.speed.mean < STAGNANT_AIR_SPEED:
        advice.append(
            f"Mean air speed is {metrics.speed.mean:.2f} m/s; "
            "stagnant air raises disease risk, increase circulation"
        )
    elif metrics.speed.mean > EXCESSIVE_AIR_SPEED:
        advice.append(
            f"Mean air speed is {metrics.speed.mean:.2f} m/s; "
            "reduce fan speed or redirect jets away from the canopy"
        )
    if metrics.velocity_uniformity < TARGET_VELOCITY_UNIFORMITY:
        advice.append(
            f"Velocity uniformity is {metrics.velocity_uniformity:.2f}; "
            "distribute supply air over more outlets"
        )
    if metrics.mean_relative_humidity > HIGH_RELATIVE_HUMIDITY:
        advice.append(
            f"Mean relative humidity is {metrics.mean_relative_humidity:.0f}%; "
            "add dehumidification capacity"
        )
    elif metrics.mean_relative_humidity < LOW_RELATIVE_HUMIDITY:
        advice.append(
            f"Mean relative humidity is {metrics.mean_relative_humidity:.0f}%; "
            "consider humidification"
        )
    for zone in metrics.zones:
        if zone.speed.mean < STAGNANT_AIR_SPEED:
            advice.append(
                f"Canopy '{zone.name}' has stagnant air ({zone.speed.mean:.2f} m/s); "
                "add under-canopy circulation"
            )
    if metrics.energy_balance.relative_imbalance > ENERGY_BALANCE_TOLERANCE:
        advice.append(
            f"Energy balance is off by {metrics.energy_balance.relative_imbalance:.0%}; "
            "the solution may not be fully converged"
        )
    return advice


def extract_results(
    grid: Grid,
    boundaries: BoundarySet,
    sources: SourceField,
    settings: SolverSettings,
    equipment: Iterable[EquipmentSpec] = (),
) -> SummaryMetrics:
    """Compute summary metrics from the current grid fields.

    Args:
        grid: Grid holding the solution.
        boundaries: Boundary set of the run.
        sources: Sources of the run (for the energy balance).
        settings: Physical properties of the run.
        equipment: Equipment list; canopy zones inside the domain get
            per-zone statistics.

    Returns:
        SummaryMetrics with recommendations filled in.
    """
    fields = grid.fields
    speed = fields.speed()
    rh = relative_humidity_field(fields.t, fields.h)

    q_out, q_in, weighted_out, weighted_in, _ = _open_boundary_flows(grid, boundaries)
    t_out = weighted_out / q_out if q_out > 0 else None
    t_in = weighted_in / q_in if q_in > 0 else None
    t_mean = float(fields.t.mean())

    effectiveness = None
    if t_in is not None and t_out is not None and abs(t_mean - t_in) > 1e-9:
        effectiveness = (t_out - t_in) / (t_mean - t_in)

    p_in = _boundary_cell_pressure(grid, boundaries, inlets=True)
    p_out = _boundary_cell_pressure(grid, boundaries, inlets=False)
    pressure_drop = p_in - p_out if p_in is not None and p_out is not None else None

    zones = [
        _zone_stats(grid, item, rh, speed)
        for item in equipment
        if isinstance(item, CanopyZone)
        and grid.contains(item.box.lo)
        and grid.contains(item.box.hi)
    ]

    metrics = SummaryMetrics(
        temperature=FieldStats.of(fields.t),
        speed=FieldStats.of(speed),
        pressure=FieldStats.of(fields.p),
        humidity_ratio=FieldStats.of(fields.h),
        mean_relative_humidity=float(rh.mean()),
        temperature_uniformity=uniformity_index(fields.t),
        velocity_uniformity=uniformity_index(speed),
        air_changes_per_hour=SECONDS_PER_HOUR * q_out / grid.volume,
        outflow=q_out,
        pressure_drop=pressure_drop,
        inlet_temperature=t_in,
        outlet_temperature=t_out,
        ventilation_effectiveness=effectiveness,
        energy_balance=energy_balance(grid, boundaries, sources, settings),
        zones=zones,
    )
    metrics.recommendations = recommendations(metrics)
    logger.debug(
        "Extracted metrics: T=%.2f C, |U|=%.3f m/s, ACH=%.1f",
        metrics.temperature.mean,
        metrics.speed.mean,
        metrics.air_changes_per_hour,
    )
    return metrics
