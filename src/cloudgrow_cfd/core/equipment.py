"""Equipment specifications placed inside the domain.

``EquipmentSpec`` is a closed union: every variant carries only the fields
its kind needs, so a fan can never be handed a fixture wattage. Positions are
in metres in the grid frame (origin at the ``x-, y-, z-`` corner, z up).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Literal

from cloudgrow_cfd.physics.constants import LATENT_HEAT_VAPORIZATION

Vector3 = tuple[float, float, float]

#: Default fraction of fixture input power converted to light
DEFAULT_FIXTURE_EFFICIENCY = 0.4

#: Default HVAC/fan discharge area (m²)
DEFAULT_OUTLET_AREA = 0.25


def _unit(vector: Vector3, label: str) -> Vector3:
    norm = math.sqrt(sum(c * c for c in vector))
    if norm <= 0.0 or not math.isfinite(norm):
        msg = f"{label} must be a non-zero finite vector, got {vector}"
        raise ValueError(msg)
    return (vector[0] / norm, vector[1] / norm, vector[2] / norm)


@dataclass(frozen=True)
class Box:
    """Axis-aligned box in metres, ``lo`` inclusive to ``hi`` inclusive."""

    lo: Vector3
    hi: Vector3

    def __post_init__(self) -> None:
        """Validate corner ordering."""
        if any(a > b for a, b in zip(self.lo, self.hi, strict=True)):
            msg = f"Box lower corner {self.lo} exceeds upper corner {self.hi}"
            raise ValueError(msg)

    @property
    def center(self) -> Vector3:
        """Geometric centre of the box."""
        return (
            0.5 * (self.lo[0] + self.hi[0]),
            0.5 * (self.lo[1] + self.hi[1]),
            0.5 * (self.lo[2] + self.hi[2]),
        )

    @property
    def volume(self) -> float:
        """Box volume in m³."""
        return math.prod(b - a for a, b in zip(self.lo, self.hi, strict=True))


@dataclass(frozen=True)
class Fixture:
    """Lighting fixture acting as a point heat source.

    Attributes:
        name: Identifier used in warnings and contribution reports.
        position: Mounting point (m).
        wattage: Electrical input power (W).
        efficiency: Fraction of input radiated as light and leaving the air
            volume; the rest heats the air.
    """

    name: str
    position: Vector3
    wattage: float
    efficiency: float = DEFAULT_FIXTURE_EFFICIENCY
    kind: Literal["fixture"] = field(default="fixture", init=False)

    def __post_init__(self) -> None:
        """Validate fixture parameters."""
        if self.wattage < 0:
            msg = f"Fixture wattage must be non-negative, got {self.wattage}"
            raise ValueError(msg)
        if not 0.0 <= self.efficiency <= 1.0:
            msg = f"Fixture efficiency must be in [0, 1], got {self.efficiency}"
            raise ValueError(msg)

    @property
    def heat_output(self) -> float:
        """Heat released into the air (W)."""
        return self.wattage * (1.0 - self.efficiency)


@dataclass(frozen=True)
class HVACUnit:
    """Air handler with a supply jet and an optional return intake.

    Attributes:
        name: Identifier.
        position: Supply discharge point (m).
        supply_direction: Direction of the supply jet (normalised on use).
        airflow_cfm: Rated airflow (CFM).
        sensible_capacity_w: Heat added to the air (W); negative for cooling.
        moisture_rate_kg_s: Water added to the air (kg/s); negative for
            dehumidification.
        return_position: Intake point (m), or None for supply only.
        return_direction: Direction the return intake pulls air towards.
            Defaults to the reverse of the supply direction.
        outlet_area: Discharge area (m²) used for the jet thrust.
    """

    name: str
    position: Vector3
    supply_direction: Vector3
    airflow_cfm: float
    sensible_capacity_w: float = 0.0
    moisture_rate_kg_s: float = 0.0
    return_position: Vector3 | None = None
    return_direction: Vector3 | None = None
    outlet_area: float = DEFAULT_OUTLET_AREA
    kind: Literal["hvac"] = field(default="hvac", init=False)

    def __post_init__(self) -> None:
        """Validate HVAC parameters."""
        if self.airflow_cfm < 0:
            msg = f"HVAC airflow must be non-negative, got {self.airflow_cfm}"
            raise ValueError(msg)
        if self.outlet_area <= 0:
            msg = f"HVAC outlet area must be positive, got {self.outlet_area}"
            raise ValueError(msg)
        _unit(self.supply_direction, "HVAC supply direction")
        if self.return_direction is not None:
            _unit(self.return_direction, "HVAC return direction")

    @property
    def supply_unit(self) -> Vector3:
        """Normalised supply direction."""
        return _unit(self.supply_direction, "HVAC supply direction")

    @property
    def return_unit(self) -> Vector3:
        """Normalised return direction."""
        if self.return_direction is None:
            sx, sy, sz = self.supply_unit
            return (-sx, -sy, -sz)
        return _unit(self.return_direction, "HVAC return direction")


@dataclass(frozen=True)
class Fan:
    """Circulation fan acting as a directional momentum source.

    Attributes:
        name: Identifier.
        position: Fan hub position (m).
        direction: Discharge direction (normalised on use).
        airflow_cfm: Rated airflow (CFM).
        outlet_area: Discharge area (m²).
    """

    name: str
    position: Vector3
    direction: Vector3
    airflow_cfm: float
    outlet_area: float = DEFAULT_OUTLET_AREA
    kind: Literal["fan"] = field(default="fan", init=False)

    def __post_init__(self) -> None:
        """Validate fan parameters."""
        if self.airflow_cfm < 0:
            msg = f"Fan airflow must be non-negative, got {self.airflow_cfm}"
            raise ValueError(msg)
        if self.outlet_area <= 0:
            msg = f"Fan outlet area must be positive, got {self.outlet_area}"
            raise ValueError(msg)
        _unit(self.direction, "Fan direction")

    @property
    def unit_direction(self) -> Vector3:
        """Normalised discharge direction."""
        return _unit(self.direction, "Fan direction")


@dataclass(frozen=True)
class CanopyZone:
    """Plant canopy: porous flow resistance plus transpiration.

    Attributes:
        name: Identifier.
        box: Region occupied by the canopy (m).
        porosity: Fraction of the volume open to flow, in (0, 1].
        resistance_linear: Darcy (viscous) coefficient (1/s).
        resistance_quadratic: Forchheimer (inertial) coefficient (1/m).
        transpiration_rate: Water released by the plants (kg/s).
        sensible_heat: Heat exchanged with the air (W). Defaults to the
            latent cooling of the transpired water.
    """

    name: str
    box: Box
    porosity: float = 0.8
    resistance_linear: float = 0.0
    resistance_quadratic: float = 0.5
    transpiration_rate: float = 0.0
    sensible_heat: float | None = None
    kind: Literal["canopy"] = field(default="canopy", init=False)

    def __post_init__(self) -> None:
        """Validate canopy parameters."""
        if not 0.0 < self.porosity <= 1.0:
            msg = f"Canopy porosity must be in (0, 1], got {self.porosity}"
            raise ValueError(msg)
        if self.resistance_linear < 0 or self.resistance_quadratic < 0:
            msg = "Canopy resistance coefficients must be non-negative"
            raise ValueError(msg)
        if self.transpiration_rate < 0:
            msg = f"Transpiration rate must be non-negative, got {self.transpiration_rate}"
            raise ValueError(msg)

    @property
    def position(self) -> Vector3:
        """Canopy centre (m)."""
        return self.box.center

    @property
    def heat_output(self) -> float:
        """Sensible heat released into the air (W), negative when cooling."""
        if self.sensible_heat is not None:
            return self.sensible_heat
        return -self.transpiration_rate * LATENT_HEAT_VAPORIZATION


EquipmentSpec = Fixture | HVACUnit | Fan | CanopyZone
