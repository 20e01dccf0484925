"""Shared pytest fixtures for cloudgrow_cfd tests."""

from __future__ import annotations

import numpy as np
import pytest

from cloudgrow_cfd.core.grid import Grid, create_grid
from cloudgrow_cfd.simulation.boundaries import BoundarySet, FacePatch, Inlet, Outlet, Wall
from cloudgrow_cfd.simulation.settings import SolverSettings, TurbulenceModel

# =============================================================================
# Random number generator fixtures
# =============================================================================


@pytest.fixture
def rng() -> np.random.Generator:
    """Provide a seeded random generator for reproducible tests."""
    return np.random.default_rng(42)


# =============================================================================
# Grid fixtures
# =============================================================================


@pytest.fixture
def small_grid() -> Grid:
    """2m cube split into 4 x 4 x 4 cells of 0.5m."""
    return create_grid(2.0, 2.0, 2.0, 4, 4, 4)


@pytest.fixture
def room_grid() -> Grid:
    """Reference 10m x 5m x 3m room with 1m cells."""
    return create_grid(10.0, 5.0, 3.0, 10, 5, 3)


# =============================================================================
# Boundary fixtures
# =============================================================================


@pytest.fixture
def closed_boundaries(small_grid: Grid) -> BoundarySet:
    """Closed, adiabatic box (no explicit boundaries)."""
    return BoundarySet(small_grid)


@pytest.fixture
def ventilated_boundaries(room_grid: Grid) -> BoundarySet:
    """Whole x- side supplying 2 m³/s at 20 C, whole x+ side as outlet."""
    boundaries = BoundarySet(room_grid)
    boundaries.add_boundary(
        FacePatch("x-"),
        Inlet(flow_rate=2.0, temperature=20.0, relative_humidity=50.0),
    )
    boundaries.add_boundary(FacePatch("x+"), Outlet())
    return boundaries


@pytest.fixture
def cold_walls(small_grid: Grid) -> BoundarySet:
    """Closed box whose six sides are held at 20 C."""
    boundaries = BoundarySet(small_grid)
    for side in ("x-", "x+", "y-", "y+", "z-", "z+"):
        boundaries.add_boundary(FacePatch(side), Wall(temperature=20.0))
    return boundaries


# =============================================================================
# Settings fixtures
# =============================================================================


@pytest.fixture
def laminar_settings() -> SolverSettings:
    """Steady laminar settings with a short iteration budget."""
    return SolverSettings(
        turbulence_model=TurbulenceModel.LAMINAR,
        max_iterations=300,
        convergence_tolerance=1e-5,
    )


@pytest.fixture
def transient_settings() -> SolverSettings:
    """Laminar transient settings with 1s steps."""
    return SolverSettings(
        mode="transient",
        turbulence_model=TurbulenceModel.LAMINAR,
        time_step=1.0,
        duration=5.0,
        inner_iterations=5,
    )
