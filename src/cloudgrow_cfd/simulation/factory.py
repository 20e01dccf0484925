"""Factory functions for creating simulation runs from configuration.

This module bridges YAML/JSON case files and the solver. The main entry
point is :func:`create_run_from_config`, which builds the grid, attaches the
boundaries and places the equipment, returning a SimulationRun ready to run.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cloudgrow_cfd.simulation.boundaries import BoundarySet
from cloudgrow_cfd.simulation.engine import SimulationRun

if TYPE_CHECKING:
    from cloudgrow_cfd.core.config import CaseConfig
    from cloudgrow_cfd.core.events import EventBus
    from cloudgrow_cfd.simulation.engine import SourceProvider

logger = logging.getLogger(__name__)


def create_boundaries(config: CaseConfig, boundaries: BoundarySet) -> list[int]:
    """Attach every configured boundary, in file order.

    Args:
        config: Validated case.
        boundaries: Set receiving the boundaries.

    Returns:
        Boundary ids in configuration order.

    Raises:
        OverlappingRegionError: If two boundaries of different kinds overlap.
        OutOfDomainError: If a region extends outside the domain.
    """
    return [
        boundaries.add_boundary(item.region(), item.to_condition())
        for item in config.boundaries
    ]


def create_run_from_config(
    config: CaseConfig,
    *,
    event_bus: EventBus | None = None,
    source_provider: SourceProvider | None = None,
) -> SimulationRun:
    """Create a SimulationRun from a CaseConfig.

    This is the main factory function that bridges configuration files to
    runnable solves. It:
    1. Allocates the grid from the domain extents and resolution
    2. Attaches the boundary conditions
    3. Converts the equipment and solver settings
    4. Builds the run (which maps equipment to sources)

    Args:
        config: Validated CaseConfig (from load_config or direct).
        event_bus: Bus receiving the run's events.
        source_provider: Optional time-varying sources for transient runs.

    Returns:
        SimulationRun ready to run.

    Raises:
        CFDError: If the grid or boundaries are structurally invalid.
    """
    grid = config.domain.to_grid()
    boundaries = BoundarySet(grid)
    create_boundaries(config, boundaries)

    run = SimulationRun(
        grid,
        boundaries,
        config.equipment_specs(),
        config.solver.to_settings(),
        name=config.name,
        source_provider=source_provider,
        event_bus=event_bus,
    )
    logger.info(
        "Created run '%s': %s cells, %d boundaries, %d equipment items",
        config.name,
        "x".join(str(n) for n in grid.shape),
        len(config.boundaries),
        len(config.equipment),
    )
    return run
