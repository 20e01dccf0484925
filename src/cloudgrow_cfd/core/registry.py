"""Registry of sparse linear solvers.

Solvers register themselves at import time with the :func:`register_solver`
decorator and are looked up by name from :class:`SolverSettings`, so a case
file can pick e.g. ``pressure_solver: red_black_sor`` without code changes.

Usage:
    @register_solver("cg")
    def conjugate_gradient(matrix, rhs, x0, *, rtol, max_iter):
        ...

    solve = get_registry().get("cg")
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray
    from scipy.sparse import csr_array


class LinearSolver(Protocol):
    """Callable solving ``A x = b`` from an initial guess.

    Returns the solution and the number of iterations used.
    """

    def __call__(
        self,
        matrix: csr_array,
        rhs: NDArray[np.float64],
        x0: NDArray[np.float64],
        *,
        rtol: float,
        max_iter: int,
    ) -> tuple[NDArray[np.float64], int]: ...


# Module-level registry populated by decorators at import time
_registry: SolverRegistry | None = None


class SolverRegistry:
    """Name to linear-solver mapping.

    Registration is read-only after import, so concurrent runs can share it.
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._solvers: dict[str, LinearSolver] = {}

    def register(self, name: str, solver: LinearSolver) -> LinearSolver:
        """Register a solver under ``name``.

        Returns:
            The registered solver (for use as decorator).

        Raises:
            ValueError: If a different solver is already registered under
                ``name``.
        """
        existing = self._solvers.get(name)
        if existing is not None:
            # Allow idempotent registration after a module reload
            if getattr(existing, "__qualname__", None) == getattr(
                solver, "__qualname__", None
            ):
                self._solvers[name] = solver
                return solver
            msg = f"Linear solver '{name}' already registered as {existing!r}"
            raise ValueError(msg)
        self._solvers[name] = solver
        return solver

    def get(self, name: str) -> LinearSolver:
        """Look up a registered solver.

        Raises:
            KeyError: If no solver is registered under ``name``.
        """
        if name not in self._solvers:
            msg = f"Unknown linear solver '{name}'. Available: {self.list_names()}"
            raise KeyError(msg)
        return self._solvers[name]

    def list_names(self) -> list[str]:
        """Names of all registered solvers."""
        return sorted(self._solvers)

    def clear(self) -> None:
        """Remove all registrations."""
        self._solvers.clear()


def get_registry() -> SolverRegistry:
    """Get the linear-solver registry, creating it on first call."""
    global _registry
    if _registry is None:
        _registry = SolverRegistry()
    return _registry


def register_solver(name: str) -> Callable[[Any], Any]:
    """Decorator registering a linear solver under ``name``.

    Args:
        name: Lookup key, e.g. ``"cg"`` or ``"red_black_sor"``.

    Returns:
        Decorator function that registers the solver.
    """

    def decorator(func: Any) -> Any:
        return get_registry().register(name, func)

    return decorator
