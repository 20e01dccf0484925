"""Pre-built cases for testing and demonstration.

Scenarios are complete :class:`CaseConfig` objects, so they can be run
directly, written out as case files (``cgcfd init --scenario``) or used as
starting points for layout studies.
"""

from __future__ import annotations

from collections.abc import Callable

from cloudgrow_cfd.core.config import (
    BoxConfig,
    CanopyConfig,
    CaseConfig,
    DomainConfig,
    FanConfig,
    FixtureConfig,
    HVACConfig,
    InletConfig,
    OutletConfig,
    PatchConfig,
    SolverConfig,
    WallConfig,
)
from cloudgrow_cfd.simulation.engine import SimulationRun
from cloudgrow_cfd.simulation.factory import create_run_from_config


def create_ventilated_room_case(
    flow_rate: float = 2.0,
    fixture_watts: float = 1000.0,
    max_iterations: int = 1000,
) -> CaseConfig:
    """Create the reference ventilated room.

    10m x 5m x 3m room on a 10 x 5 x 3 grid with:
    - Whole x- side as supply inlet (20 C, 50 % RH)
    - Whole x+ side as pressure outlet
    - One fixture at the room centre whose whole input becomes heat

    At steady state the exhaust runs ``Q / (rho c_p Q_vol)`` warmer than the
    supply (about 0.41 K with the defaults).

    Args:
        flow_rate: Supply airflow in m³/s.
        fixture_watts: Fixture heat in W.
        max_iterations: Outer iteration cap.

    Returns:
        Validated CaseConfig.
    """
    return CaseConfig(
        name="Ventilated room",
        description="Reference room: single inlet, single outlet, one heat source",
        domain=DomainConfig(length=10.0, width=5.0, height=3.0, nx=10, ny=5, nz=3),
        solver=SolverConfig(max_iterations=max_iterations),
        boundaries=[
            InletConfig(
                patch=PatchConfig(side="x-"),
                flow_rate=flow_rate,
                temperature=20.0,
                relative_humidity=50.0,
            ),
            OutletConfig(patch=PatchConfig(side="x+")),
        ],
        equipment=[
            FixtureConfig(
                name="fixture_1",
                position=(5.0, 2.5, 1.5),
                wattage=fixture_watts,
                efficiency=0.0,
            ),
        ],
    )


def create_grow_room_case() -> CaseConfig:
    """Create a single-tier grow room.

    8m x 4m x 3m sealed room with:
    - Ducted supply high on the x- wall, return low on the x+ wall
    - Bench canopy over most of the floor, transpiring
    - Six LED fixtures above the canopy
    - Two horizontal airflow fans

    Returns:
        Validated CaseConfig.
    """
    fixtures = [
        FixtureConfig(name=f"led_{i + 1}", position=(x, y, 2.2), wattage=650.0, efficiency=0.55)
        for i, (x, y) in enumerate(
            [(2.0, 1.25), (4.0, 1.25), (6.0, 1.25), (2.0, 2.75), (4.0, 2.75), (6.0, 2.75)]
        )
    ]
    return CaseConfig(
        name="Grow room",
        description="Sealed grow room with canopy, LED fixtures and HAF fans",
        domain=DomainConfig(length=8.0, width=4.0, height=3.0, resolution="medium"),
        solver=SolverConfig(max_iterations=1500),
        boundaries=[
            InletConfig(
                patch=PatchConfig(side="x-", lo=(1.0, 2.0), hi=(3.0, 2.5)),
                flow_rate_cfm=2000.0,
                temperature=18.0,
                relative_humidity=55.0,
            ),
            OutletConfig(patch=PatchConfig(side="x+", lo=(1.0, 0.0), hi=(3.0, 0.5))),
            WallConfig(patch=PatchConfig(side="z-"), temperature=20.0),
        ],
        equipment=[
            *fixtures,
            CanopyConfig(
                name="bench",
                box=BoxConfig(lo=(1.0, 0.5, 0.5), hi=(7.0, 3.5, 1.0)),
                porosity=0.7,
                resistance_quadratic=1.0,
                transpiration_rate=4.0e-4,
            ),
            FanConfig(
                name="haf_1",
                position=(1.0, 1.0, 1.75),
                direction=(1.0, 0.0, 0.0),
                airflow_cfm=1200.0,
            ),
            FanConfig(
                name="haf_2",
                position=(7.0, 3.0, 1.75),
                direction=(-1.0, 0.0, 0.0),
                airflow_cfm=1200.0,
            ),
        ],
    )


def create_vertical_farm_case() -> CaseConfig:
    """Create a three-tier vertical farm bay.

    6m x 3m x 4m bay with:
    - Three rack tiers, each a transpiring canopy with fixtures above it
    - One air handler supplying along the aisle, return at the far end
    - Ceiling diffuser inlet and floor-level outlet

    Returns:
        Validated CaseConfig.
    """
    tiers = (0.3, 1.5, 2.7)
    canopies = [
        CanopyConfig(
            name=f"tier_{n + 1}",
            box=BoxConfig(lo=(0.5, 0.5, z), hi=(5.5, 1.5, z + 0.4)),
            porosity=0.6,
            resistance_quadratic=2.0,
            transpiration_rate=1.5e-4,
        )
        for n, z in enumerate(tiers)
    ]
    fixtures = [
        FixtureConfig(
            name=f"tier_{n + 1}_led_{i + 1}",
            position=(x, 1.0, z + 0.8),
            wattage=300.0,
            efficiency=0.55,
        )
        for n, z in enumerate(tiers)
        for i, x in enumerate((1.5, 3.0, 4.5))
    ]
    return CaseConfig(
        name="Vertical farm bay",
        description="Three-tier rack with per-tier LEDs and an aisle air handler",
        domain=DomainConfig(length=6.0, width=3.0, height=4.0, resolution="medium"),
        solver=SolverConfig(max_iterations=1500),
        boundaries=[
            InletConfig(
                patch=PatchConfig(side="z+", lo=(2.0, 2.0), hi=(4.0, 2.5)),
                flow_rate=0.8,
                temperature=19.0,
                relative_humidity=60.0,
            ),
            OutletConfig(patch=PatchConfig(side="y+", lo=(0.0, 0.0), hi=(1.0, 0.5))),
        ],
        equipment=[
            *canopies,
            *fixtures,
            HVACConfig(
                name="ahu",
                position=(0.5, 2.25, 3.5),
                supply_direction=(1.0, 0.0, 0.0),
                airflow_cfm=1500.0,
                sensible_capacity_w=-1500.0,
                moisture_rate_kg_s=-2.0e-4,
                return_position=(5.5, 2.25, 0.5),
            ),
        ],
    )


#: Built-in scenarios by name
SCENARIOS: dict[str, Callable[[], CaseConfig]] = {
    "ventilated_room": create_ventilated_room_case,
    "grow_room": create_grow_room_case,
    "vertical_farm": create_vertical_farm_case,
}


def create_scenario(name: str) -> SimulationRun:
    """Create a ready-to-run scenario by name.

    Args:
        name: Key of :data:`SCENARIOS`.

    Returns:
        SimulationRun for the scenario.

    Raises:
        KeyError: If the scenario is unknown.
    """
    if name not in SCENARIOS:
        msg = f"Unknown scenario '{name}'. Available: {sorted(SCENARIOS)}"
        raise KeyError(msg)
    return create_run_from_config(SCENARIOS[name]())
