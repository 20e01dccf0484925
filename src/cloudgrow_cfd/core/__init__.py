"""Core module for the micro-climate solver.

This module provides the foundational types shared by every solver stage:
- Structured grid and the flow fields it owns
- Equipment specifications (fixtures, HVAC units, fans, canopies)
- Error taxonomy
- Linear-solver registry
- Per-run event bus

Case-file models live in :mod:`cloudgrow_cfd.core.config`, which is imported
on its own because it depends on the simulation package.
"""

from cloudgrow_cfd.core.equipment import (
    Box,
    CanopyZone,
    EquipmentSpec,
    Fan,
    Fixture,
    HVACUnit,
)
from cloudgrow_cfd.core.errors import (
    BoundaryError,
    CFDError,
    DivergenceError,
    InvalidDimensionError,
    OutOfDomainError,
    OverlappingRegionError,
    RunStateError,
)
from cloudgrow_cfd.core.events import Event, EventBus, EventType
from cloudgrow_cfd.core.grid import FlowFields, Grid, create_grid
from cloudgrow_cfd.core.registry import get_registry, register_solver

__all__ = [
    # Grid
    "FlowFields",
    "Grid",
    "create_grid",
    # Equipment
    "Box",
    "CanopyZone",
    "EquipmentSpec",
    "Fan",
    "Fixture",
    "HVACUnit",
    # Errors
    "BoundaryError",
    "CFDError",
    "DivergenceError",
    "InvalidDimensionError",
    "OutOfDomainError",
    "OverlappingRegionError",
    "RunStateError",
    # Registry
    "get_registry",
    "register_solver",
    # Events
    "Event",
    "EventBus",
    "EventType",
]
