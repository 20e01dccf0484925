"""Error taxonomy for the micro-climate solver.

Structural errors (bad grid dimensions, bad boundary regions) are raised
immediately, before any iteration runs. Numerical failures discovered during
the solve are captured in the run result instead of propagating; the
exception types below still exist for them so the result can carry a typed
error and callers can re-raise if they prefer.
"""

from __future__ import annotations


class CFDError(Exception):
    """Base class for all solver errors."""


class InvalidDimensionError(CFDError, ValueError):
    """Grid extents or cell counts are non-positive or malformed."""


class BoundaryError(CFDError, ValueError):
    """A boundary region could not be attached to the grid."""


class OverlappingRegionError(BoundaryError):
    """A region already carries a boundary of a different kind."""


class OutOfDomainError(BoundaryError):
    """A region references faces or cells outside the grid."""


class DivergenceError(CFDError):
    """The iteration diverged (growing residual or non-finite fields).

    Attributes:
        iteration: Iteration at which divergence was detected.
        last_stable_iteration: Iteration whose fields were kept.
    """

    def __init__(
        self,
        message: str,
        *,
        iteration: int,
        last_stable_iteration: int,
    ) -> None:
        super().__init__(message)
        self.iteration = iteration
        self.last_stable_iteration = last_stable_iteration


class RunStateError(CFDError, RuntimeError):
    """An operation was requested in an incompatible run state."""
