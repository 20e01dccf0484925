"""Concurrent execution of independent runs.

Layout studies solve the same room with different equipment placements.
Runs share no mutable state, so they can execute on a thread pool; the
sparse linear algebra releases the GIL for most of each iteration.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from cloudgrow_cfd.simulation.convergence import RunStatus
from cloudgrow_cfd.simulation.factory import create_run_from_config

if TYPE_CHECKING:
    from cloudgrow_cfd.core.config import CaseConfig
    from cloudgrow_cfd.simulation.convergence import CancellationToken
    from cloudgrow_cfd.simulation.engine import SimulationResult, SimulationRun
    from cloudgrow_cfd.simulation.results import SummaryMetrics

logger = logging.getLogger(__name__)


def run_concurrently(
    runs: Iterable[SimulationRun],
    max_workers: int | None = None,
    cancel: CancellationToken | None = None,
) -> list[SimulationResult]:
    """Run several simulations on a thread pool.

    Args:
        runs: Independent runs (each with its own grid and boundaries).
        max_workers: Pool size; None lets the executor decide.
        cancel: Token shared by all runs; cancelling stops every run before
            its next iteration.

    Returns:
        Results in the order of ``runs``.
    """
    runs = list(runs)
    grids = {id(run.grid) for run in runs}
    if len(grids) != len(runs):
        msg = "Concurrent runs must not share a grid"
        raise ValueError(msg)

    logger.info("Running %d simulations on up to %s workers", len(runs), max_workers or "auto")
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(run.run, cancel) for run in runs]
        return [future.result() for future in futures]


def compare_layouts(
    configs: Sequence[CaseConfig],
    max_workers: int | None = None,
    key: Callable[[SummaryMetrics], float] = lambda m: m.temperature_uniformity,
) -> list[SimulationResult]:
    """Solve alternative layouts and rank them.

    Args:
        configs: Cases to compare.
        max_workers: Pool size.
        key: Score to maximise; temperature uniformity by default.

    Returns:
        Results sorted best first. Diverged runs sort last.
    """
    runs = [create_run_from_config(config) for config in configs]
    results = run_concurrently(runs, max_workers=max_workers)
    return sorted(
        results,
        key=lambda r: (r.status == RunStatus.DIVERGED, -key(r.metrics)),
    )
