#!/usr/bin/env python3
"""Basic micro-climate simulation example.

This script demonstrates how to solve growing-room airflow with the
pre-built scenarios and with a case assembled directly in code.

Run with: uv run python examples/basic_simulation.py
"""

from cloudgrow_cfd.core.equipment import Fixture
from cloudgrow_cfd.core.events import Event, EventType
from cloudgrow_cfd.core.grid import create_grid
from cloudgrow_cfd.physics.constants import C_P_DRY_AIR, STANDARD_AIR_DENSITY
from cloudgrow_cfd.simulation.boundaries import BoundarySet, FacePatch, Inlet, Outlet
from cloudgrow_cfd.simulation.engine import SimulationRun
from cloudgrow_cfd.simulation.scenarios import create_scenario


def run_ventilated_room() -> None:
    """Solve the reference room and compare with the bulk heat balance."""
    print("=" * 60)
    print("VENTILATED ROOM: 10m x 5m x 3m, 2 m³/s supply, 1000 W fixture")
    print("=" * 60)

    run = create_scenario("ventilated_room")

    residuals: list[float] = []

    def on_iteration(event: Event) -> None:
        residuals.append(event.data["residual"])

    run.event_bus.subscribe(EventType.RUN_ITERATION, on_iteration)

    print("Solving...")
    result = run.run()
    metrics = result.metrics

    print()
    print(f"Status: {result.status.value} after {result.iterations} iterations")
    print(f"Final residual: {result.residual:.2e} ({result.wall_time:.2f}s)")
    print()

    print("Residual history (every 50 iterations):")
    print("-" * 30)
    for i, r in list(enumerate(residuals, start=1))[::50]:
        print(f"{i:>8} {r:>18.3e}")
    print("-" * 30)
    print()

    expected = 1000.0 / (STANDARD_AIR_DENSITY * C_P_DRY_AIR * 2.0)
    if metrics.outlet_temperature is not None and metrics.inlet_temperature is not None:
        rise = metrics.outlet_temperature - metrics.inlet_temperature
        print(f"Outlet temperature rise: {rise:.3f} K (bulk balance {expected:.3f} K)")
    print(f"Air changes per hour:   {metrics.air_changes_per_hour:.1f}")
    print(f"Temperature uniformity: {metrics.temperature_uniformity:.3f}")
    print(f"Velocity uniformity:    {metrics.velocity_uniformity:.3f}")
    print()


def run_custom_room() -> None:
    """Assemble a small room in code, without a case file."""
    print("=" * 60)
    print("CUSTOM ROOM: 4m x 4m x 3m with a ceiling exhaust")
    print("=" * 60)

    grid = create_grid(4.0, 4.0, 3.0, 8, 8, 6)
    boundaries = BoundarySet(grid)
    boundaries.add_boundary(
        FacePatch("x-", lo=(1.5, 0.0), hi=(2.5, 0.5)),
        Inlet(flow_rate=0.3, temperature=18.0, relative_humidity=60.0),
    )
    boundaries.add_boundary(FacePatch("z+", lo=(1.5, 1.5), hi=(2.5, 2.5)), Outlet())

    equipment = [
        Fixture("led_1", (1.5, 2.0, 2.5), wattage=400.0, efficiency=0.5),
        Fixture("led_2", (2.5, 2.0, 2.5), wattage=400.0, efficiency=0.5),
    ]
    run = SimulationRun(grid, boundaries, equipment, name="custom room")
    result = run.run()
    metrics = result.metrics

    print(f"Status: {result.status.value} after {result.iterations} iterations")
    print(f"Temperature: {metrics.temperature.min:.2f} - {metrics.temperature.max:.2f}°C")
    print(f"Mean RH: {metrics.mean_relative_humidity:.1f}%")
    print()
    if metrics.recommendations:
        print("Recommendations:")
        for advice in metrics.recommendations:
            print(f"  - {advice}")
    print()


def main() -> None:
    """Run micro-climate simulation examples."""
    print()
    print("CLOUDGROW-CFD: Growing Environment Micro-Climate Solver")
    print()

    run_ventilated_room()
    run_custom_room()

    print("=" * 60)
    print("Simulations complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
