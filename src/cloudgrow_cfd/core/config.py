"""Pydantic configuration models for CFD cases.

This module defines the case-file schema using Pydantic v2 models. Cases can
be loaded from YAML or JSON files.

The configuration hierarchy:
- CaseConfig (top-level)
  - DomainConfig
  - SolverConfig
  - BoundaryConfig[] (inlet | outlet | wall | porous, tagged by ``type``)
  - EquipmentConfig[] (fixture | hvac | fan | canopy, tagged by ``type``)

Every model converts to the solver's own dataclasses (``to_settings()``,
``to_condition()``, ``to_spec()``), so the solver never depends on pydantic.
"""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cloudgrow_cfd.core.equipment import (
    DEFAULT_FIXTURE_EFFICIENCY,
    DEFAULT_OUTLET_AREA,
    Box,
    CanopyZone,
    EquipmentSpec,
    Fan,
    Fixture,
    HVACUnit,
)
from cloudgrow_cfd.core.grid import Grid, create_grid
from cloudgrow_cfd.physics.constants import cfm_to_m3s
from cloudgrow_cfd.simulation.boundaries import (
    DEFAULT_TURBULENCE_INTENSITY,
    BoundaryCondition,
    FacePatch,
    Inlet,
    Outlet,
    PorousZone,
    Region,
    Wall,
)
from cloudgrow_cfd.simulation.settings import SolveMode, SolverSettings, TurbulenceModel

Vector = tuple[float, float, float]

#: Cell size (m) of the mesh resolution presets
MESH_PRESETS: dict[str, float] = {
    "coarse": 1.0,
    "medium": 0.5,
    "fine": 0.25,
}

Side = Literal["x-", "x+", "y-", "y+", "z-", "z+"]


# =============================================================================
# Domain and solver
# =============================================================================


class DomainConfig(BaseModel):
    """Room extents and mesh resolution.

    Give explicit cell counts ``nx, ny, nz`` or pick a ``resolution`` preset;
    explicit counts win.
    """

    model_config = ConfigDict(frozen=True)

    length: Annotated[float, Field(gt=0, description="Extent along x in meters")]
    width: Annotated[float, Field(gt=0, description="Extent along y in meters")]
    height: Annotated[float, Field(gt=0, description="Extent along z in meters")]
    resolution: Literal["coarse", "medium", "fine"] = "medium"
    nx: Annotated[int, Field(gt=0)] | None = None
    ny: Annotated[int, Field(gt=0)] | None = None
    nz: Annotated[int, Field(gt=0)] | None = None

    def cell_counts(self) -> tuple[int, int, int]:
        """Cell counts, from explicit values or the resolution preset."""
        size = MESH_PRESETS[self.resolution]
        derived = [
            max(1, math.ceil(extent / size - 1e-9))
            for extent in (self.length, self.width, self.height)
        ]
        explicit = (self.nx, self.ny, self.nz)
        nx, ny, nz = (e if e is not None else d for e, d in zip(explicit, derived, strict=True))
        return (nx, ny, nz)

    def to_grid(self) -> Grid:
        """Allocate the grid."""
        return create_grid(self.length, self.width, self.height, *self.cell_counts())


class SolverConfig(BaseModel):
    """Solver numerics and air properties."""

    model_config = ConfigDict(frozen=True)

    mode: SolveMode = SolveMode.STEADY
    turbulence_model: TurbulenceModel = TurbulenceModel.K_EPSILON
    convergence_tolerance: Annotated[float, Field(gt=0)] = 1e-4
    max_iterations: Annotated[int, Field(ge=1)] = 1000
    time_step: Annotated[float, Field(gt=0, description="Time step in seconds")] = 0.1
    duration: Annotated[float, Field(gt=0, description="Transient duration in seconds")] = 60.0
    inner_iterations: Annotated[int, Field(ge=1)] = 20
    output_interval: Annotated[float, Field(gt=0)] | None = None
    air_density: Annotated[float, Field(gt=0)] = 1.225
    air_viscosity: Annotated[float, Field(gt=0)] = 1.8e-5
    thermal_diffusivity: Annotated[float, Field(gt=0)] = 2.2e-5
    relax_velocity: Annotated[float, Field(gt=0, le=1)] = 0.7
    relax_pressure: Annotated[float, Field(gt=0, le=1)] = 0.3
    relax_scalar: Annotated[float, Field(gt=0, le=1)] = 0.9
    relax_turbulence: Annotated[float, Field(gt=0, le=1)] = 0.7
    buoyancy: bool = False
    initial_temperature: float = 20.0
    initial_relative_humidity: Annotated[float, Field(ge=0, le=100)] = 50.0
    pressure_solver: str = "cg"
    transport_solver: str = "bicgstab"
    time_limit: Annotated[float, Field(gt=0, description="Wall-clock budget (s)")] | None = None

    def to_settings(self) -> SolverSettings:
        """Convert to SolverSettings."""
        return SolverSettings(**self.model_dump())


# =============================================================================
# Boundaries
# =============================================================================


class PatchConfig(BaseModel):
    """Rectangle on a domain side (whole side when lo/hi are omitted)."""

    model_config = ConfigDict(frozen=True)

    side: Side
    lo: tuple[float, float] | None = None
    hi: tuple[float, float] | None = None

    @model_validator(mode="after")
    def validate_corners(self) -> PatchConfig:
        """Require both corners or neither."""
        if (self.lo is None) != (self.hi is None):
            msg = "Patch needs both lo and hi, or neither"
            raise ValueError(msg)
        return self

    def to_patch(self) -> FacePatch:
        """Convert to FacePatch."""
        return FacePatch(self.side, self.lo, self.hi)


class BoxConfig(BaseModel):
    """Axis-aligned box in meters."""

    model_config = ConfigDict(frozen=True)

    lo: Vector
    hi: Vector

    @model_validator(mode="after")
    def validate_order(self) -> BoxConfig:
        """Ensure lo <= hi on every axis."""
        if any(a > b for a, b in zip(self.lo, self.hi, strict=True)):
            msg = f"Box lower corner {self.lo} exceeds upper corner {self.hi}"
            raise ValueError(msg)
        return self

    def to_box(self) -> Box:
        """Convert to Box."""
        return Box(self.lo, self.hi)


class InletConfig(BaseModel):
    """Supply opening."""

    model_config = ConfigDict(frozen=True)

    type: Literal["inlet"] = "inlet"
    patch: PatchConfig
    velocity: Vector | None = None
    flow_rate: Annotated[float, Field(ge=0, description="Volumetric flow in m³/s")] | None = None
    flow_rate_cfm: Annotated[float, Field(ge=0)] | None = None
    temperature: float = 20.0
    relative_humidity: Annotated[float, Field(ge=0, le=100)] = 50.0
    turbulence_intensity: Annotated[float, Field(ge=0)] = DEFAULT_TURBULENCE_INTENSITY

    @model_validator(mode="after")
    def validate_flow(self) -> InletConfig:
        """Require exactly one way of specifying the inflow."""
        given = [v for v in (self.velocity, self.flow_rate, self.flow_rate_cfm) if v is not None]
        if len(given) != 1:
            msg = "Inlet needs exactly one of velocity, flow_rate or flow_rate_cfm"
            raise ValueError(msg)
        return self

    def region(self) -> Region:
        """Face patch of the inlet."""
        return self.patch.to_patch()

    def to_condition(self) -> BoundaryCondition:
        """Convert to Inlet."""
        flow_rate = self.flow_rate
        if self.flow_rate_cfm is not None:
            flow_rate = cfm_to_m3s(self.flow_rate_cfm)
        return Inlet(
            velocity=self.velocity,
            flow_rate=flow_rate,
            temperature=self.temperature,
            relative_humidity=self.relative_humidity,
            turbulence_intensity=self.turbulence_intensity,
        )


class OutletConfig(BaseModel):
    """Pressure opening."""

    model_config = ConfigDict(frozen=True)

    type: Literal["outlet"] = "outlet"
    patch: PatchConfig
    pressure: float = Field(default=0.0, description="Gauge pressure in Pa")

    def region(self) -> Region:
        """Face patch of the outlet."""
        return self.patch.to_patch()

    def to_condition(self) -> BoundaryCondition:
        """Convert to Outlet."""
        return Outlet(pressure=self.pressure)


class WallConfig(BaseModel):
    """Wall patch with optional fixed temperature."""

    model_config = ConfigDict(frozen=True)

    type: Literal["wall"] = "wall"
    patch: PatchConfig
    temperature: float | None = Field(default=None, description="None for adiabatic")

    def region(self) -> Region:
        """Face patch of the wall."""
        return self.patch.to_patch()

    def to_condition(self) -> BoundaryCondition:
        """Convert to Wall."""
        return Wall(temperature=self.temperature)


class PorousZoneConfig(BaseModel):
    """Porous region (benches, screens, racks)."""

    model_config = ConfigDict(frozen=True)

    type: Literal["porous"] = "porous"
    box: BoxConfig
    porosity: Annotated[float, Field(gt=0, le=1)] = 1.0
    resistance_linear: Annotated[float, Field(ge=0)] = 0.0
    resistance_quadratic: Annotated[float, Field(ge=0)] = 0.0
    heat: float = 0.0
    moisture: float = 0.0

    def region(self) -> Region:
        """Cell box of the zone."""
        return self.box.to_box()

    def to_condition(self) -> BoundaryCondition:
        """Convert to PorousZone."""
        return PorousZone(
            porosity=self.porosity,
            resistance_linear=self.resistance_linear,
            resistance_quadratic=self.resistance_quadratic,
            heat=self.heat,
            moisture=self.moisture,
        )


BoundaryConfig = Annotated[
    InletConfig | OutletConfig | WallConfig | PorousZoneConfig,
    Field(discriminator="type"),
]


# =============================================================================
# Equipment
# =============================================================================


class FixtureConfig(BaseModel):
    """Lighting fixture."""

    model_config = ConfigDict(frozen=True)

    type: Literal["fixture"] = "fixture"
    name: str
    position: Vector
    wattage: Annotated[float, Field(ge=0)]
    efficiency: Annotated[float, Field(ge=0, le=1)] = DEFAULT_FIXTURE_EFFICIENCY

    def to_spec(self) -> EquipmentSpec:
        """Convert to Fixture."""
        return Fixture(self.name, self.position, self.wattage, self.efficiency)


class HVACConfig(BaseModel):
    """Air handler."""

    model_config = ConfigDict(frozen=True)

    type: Literal["hvac"] = "hvac"
    name: str
    position: Vector
    supply_direction: Vector
    airflow_cfm: Annotated[float, Field(ge=0)]
    sensible_capacity_w: float = 0.0
    moisture_rate_kg_s: float = 0.0
    return_position: Vector | None = None
    return_direction: Vector | None = None
    outlet_area: Annotated[float, Field(gt=0)] = DEFAULT_OUTLET_AREA

    def to_spec(self) -> EquipmentSpec:
        """Convert to HVACUnit."""
        return HVACUnit(
            name=self.name,
            position=self.position,
            supply_direction=self.supply_direction,
            airflow_cfm=self.airflow_cfm,
            sensible_capacity_w=self.sensible_capacity_w,
            moisture_rate_kg_s=self.moisture_rate_kg_s,
            return_position=self.return_position,
            return_direction=self.return_direction,
            outlet_area=self.outlet_area,
        )


class FanConfig(BaseModel):
    """Circulation fan."""

    model_config = ConfigDict(frozen=True)

    type: Literal["fan"] = "fan"
    name: str
    position: Vector
    direction: Vector
    airflow_cfm: Annotated[float, Field(ge=0)]
    outlet_area: Annotated[float, Field(gt=0)] = DEFAULT_OUTLET_AREA

    def to_spec(self) -> EquipmentSpec:
        """Convert to Fan."""
        return Fan(self.name, self.position, self.direction, self.airflow_cfm, self.outlet_area)


class CanopyConfig(BaseModel):
    """Plant canopy."""

    model_config = ConfigDict(frozen=True)

    type: Literal["canopy"] = "canopy"
    name: str
    box: BoxConfig
    porosity: Annotated[float, Field(gt=0, le=1)] = 0.8
    resistance_linear: Annotated[float, Field(ge=0)] = 0.0
    resistance_quadratic: Annotated[float, Field(ge=0)] = 0.5
    transpiration_rate: Annotated[float, Field(ge=0, description="kg/s")] = 0.0
    sensible_heat: float | None = None

    def to_spec(self) -> EquipmentSpec:
        """Convert to CanopyZone."""
        return CanopyZone(
            name=self.name,
            box=self.box.to_box(),
            porosity=self.porosity,
            resistance_linear=self.resistance_linear,
            resistance_quadratic=self.resistance_quadratic,
            transpiration_rate=self.transpiration_rate,
            sensible_heat=self.sensible_heat,
        )


EquipmentConfig = Annotated[
    FixtureConfig | HVACConfig | FanConfig | CanopyConfig,
    Field(discriminator="type"),
]


# =============================================================================
# Case
# =============================================================================


class CaseConfig(BaseModel):
    """Top-level CFD case configuration."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="CFD Case")
    description: str = ""
    domain: DomainConfig
    solver: SolverConfig = Field(default_factory=SolverConfig)
    boundaries: list[BoundaryConfig] = Field(default_factory=list)
    equipment: list[EquipmentConfig] = Field(default_factory=list)

    @field_validator("equipment", mode="after")
    @classmethod
    def validate_unique_names(cls, v: list[Any]) -> list[Any]:
        """Ensure all equipment names are unique."""
        names = [item.name for item in v]
        if len(names) != len(set(names)):
            duplicates = {n for n in names if names.count(n) > 1}
            msg = f"Duplicate equipment names: {duplicates}"
            raise ValueError(msg)
        return v

    def equipment_specs(self) -> list[EquipmentSpec]:
        """Equipment converted to solver specs."""
        return [item.to_spec() for item in self.equipment]


def load_config(path: str | Path) -> CaseConfig:
    """Load a case from a YAML or JSON file.

    Args:
        path: Path to configuration file.

    Returns:
        Validated CaseConfig object.

    Raises:
        FileNotFoundError: If file doesn't exist.
        ValueError: If configuration is invalid.
    """
    path = Path(path)

    if not path.exists():
        msg = f"Configuration file not found: {path}"
        raise FileNotFoundError(msg)

    with path.open() as f:
        data = yaml.safe_load(f) if path.suffix in (".yaml", ".yml") else json.load(f)

    return CaseConfig.model_validate(data)


def save_config(config: CaseConfig, path: str | Path) -> None:
    """Save a case to a YAML or JSON file.

    Args:
        config: Configuration to save.
        path: Output file path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(mode="json", exclude_none=True)

    with path.open("w") as f:
        if path.suffix in (".yaml", ".yml"):
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        else:
            json.dump(data, f, indent=2)


def validate_config(data: dict[str, Any]) -> CaseConfig:
    """Validate configuration data without loading from file.

    Args:
        data: Configuration dictionary.

    Returns:
        Validated CaseConfig object.

    Raises:
        ValueError: If configuration is invalid.
    """
    return CaseConfig.model_validate(data)
