"""Solver stages, the simulation run and result extraction.

Configuration-driven helpers (:mod:`~cloudgrow_cfd.simulation.factory`,
:mod:`~cloudgrow_cfd.simulation.scenarios`, :mod:`~cloudgrow_cfd.simulation.batch`)
are imported from their modules, since they depend on the case-file models.
"""

from cloudgrow_cfd.simulation.boundaries import (
    BoundarySet,
    CellBox,
    FacePatch,
    Inlet,
    Outlet,
    PorousZone,
    Wall,
)
from cloudgrow_cfd.simulation.convergence import (
    CancellationToken,
    ConvergenceController,
    ResidualRecord,
    RunStatus,
)
from cloudgrow_cfd.simulation.engine import SimulationResult, SimulationRun, Snapshot
from cloudgrow_cfd.simulation.results import (
    EnergyBalance,
    FieldStats,
    SummaryMetrics,
    ZoneStats,
    extract_results,
    uniformity_index,
)
from cloudgrow_cfd.simulation.settings import SolveMode, SolverSettings, TurbulenceModel
from cloudgrow_cfd.simulation.sources import SourceField, build_sources

__all__ = [
    # Boundaries
    "BoundarySet",
    "CellBox",
    "FacePatch",
    "Inlet",
    "Outlet",
    "PorousZone",
    "Wall",
    # Settings
    "SolveMode",
    "SolverSettings",
    "TurbulenceModel",
    # Sources
    "SourceField",
    "build_sources",
    # Engine
    "CancellationToken",
    "ConvergenceController",
    "ResidualRecord",
    "RunStatus",
    "SimulationResult",
    "SimulationRun",
    "Snapshot",
    # Results
    "EnergyBalance",
    "FieldStats",
    "SummaryMetrics",
    "ZoneStats",
    "extract_results",
    "uniformity_index",
]
