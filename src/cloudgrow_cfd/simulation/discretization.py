"""Finite-volume assembly shared by all transport equations.

Every equation the solver handles (momentum components, k, epsilon,
temperature, humidity) is a steady or transient convection-diffusion
equation on a structured array of control volumes. :class:`LinearSystem`
accumulates its seven-point stencil in conservative form:

    a_P phi_P = sum(a_nb phi_nb) + b

with first-order upwind convection and central diffusion. For a face with
outward flux ``F`` and conductance ``D``::

    a_P  += D + max(F, 0)
    a_nb  = D + max(-F, 0)

Each face flux enters the two adjacent equations with opposite signs, so the
assembled system conserves the transported quantity exactly.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from scipy import sparse

# Import solver module to populate the registry at import time
import cloudgrow_cfd.simulation.linear_solvers  # noqa: F401
from cloudgrow_cfd.core.grid import axis_index, edge
from cloudgrow_cfd.core.registry import get_registry

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from cloudgrow_cfd.core.grid import FloatArray, Index3

logger = logging.getLogger(__name__)


def average(arr: FloatArray, axis: int) -> FloatArray:
    """Mean of neighbouring entries along ``axis`` (length shrinks by one)."""
    return 0.5 * (arr[axis_index(axis, slice(None, -1))] + arr[axis_index(axis, slice(1, None))])


def interior(arr: FloatArray, axis: int) -> FloatArray:
    """Entries along ``axis`` without the first and last."""
    return arr[axis_index(axis, slice(1, -1))]


def gradient(arr: FloatArray, spacing: float, axis: int) -> FloatArray:
    """Central-difference derivative along ``axis``; zero on one-cell axes."""
    if arr.shape[axis] < 2:
        return np.zeros_like(arr)
    return np.gradient(arr, spacing, axis=axis)


class LinearSystem:
    """Seven-point stencil for an array of unknowns.

    Attributes:
        shape: Shape of the unknown array.
        diag: Diagonal coefficients ``a_P``.
        rhs: Right-hand side ``b``.
    """

    def __init__(self, shape: Index3) -> None:
        """Start an empty system for unknowns of ``shape``."""
        self.shape = shape
        self.diag = np.zeros(shape)
        self.rhs = np.zeros(shape)
        # (axis, coefficient of the upper neighbour in the lower equation,
        #  coefficient of the lower neighbour in the upper equation)
        self._links: list[tuple[int, FloatArray, FloatArray]] = []
        self._fixed = np.zeros(shape, dtype=bool)
        self._fixed_values = np.zeros(shape)

    @property
    def size(self) -> int:
        """Number of unknowns."""
        return int(np.prod(self.shape))

    def add_faces(self, axis: int, flux: FloatArray, conductance: FloatArray) -> None:
        """Couple neighbouring unknowns across interior faces.

        Args:
            axis: Axis normal to the faces.
            flux: Flux through each face, positive along +axis. Shape is the
                unknown shape with one entry fewer along ``axis``.
            conductance: Diffusive conductance ``Gamma A / distance``.
        """
        if flux.shape[axis] == 0:
            return
        upper = conductance + np.maximum(-flux, 0.0)
        lower = conductance + np.maximum(flux, 0.0)
        self.diag[axis_index(axis, slice(None, -1))] += lower
        self.diag[axis_index(axis, slice(1, None))] += upper
        self._links.append((axis, upper, lower))

    def add_boundary(
        self,
        axis: int,
        high: bool,
        flux: FloatArray,
        conductance: FloatArray,
        value: FloatArray,
    ) -> None:
        """Close the first or last layer of unknowns along ``axis``.

        A face with ``conductance > 0`` holds ``value`` (Dirichlet). With zero
        conductance the face only carries convection; ``value`` is then the
        value brought in by inflow (usually the previous iterate).

        Args:
            axis: Axis normal to the boundary.
            high: Upper (True) or lower (False) end of the axis.
            flux: Flux through the boundary faces, positive along +axis.
            conductance: Diffusive conductance of each boundary face.
            value: Boundary value of the transported quantity.
        """
        outward = flux if high else -flux
        layer = edge(axis, high)
        self.diag[layer] += conductance + np.maximum(outward, 0.0)
        self.rhs[layer] += (conductance + np.maximum(-outward, 0.0)) * value

    def add_source(self, su: FloatArray | float, sp: FloatArray | float = 0.0) -> None:
        """Add a linearised source ``Su - Sp * phi_P`` (``Sp >= 0``)."""
        self.rhs += su
        self.diag += sp

    def add_transient(self, coefficient: FloatArray | float, previous: FloatArray) -> None:
        """Add the implicit Euler term ``coefficient * (phi - phi_old)``."""
        self.diag += coefficient
        self.rhs += coefficient * previous

    def relax(self, alpha: float, previous: FloatArray) -> None:
        """Apply implicit under-relaxation towards ``previous``."""
        if alpha >= 1.0:
            return
        self.diag /= alpha
        self.rhs += (1.0 - alpha) * self.diag * previous

    def fix(self, mask: NDArray[np.bool_], values: FloatArray | float) -> None:
        """Pin unknowns under ``mask`` to ``values``."""
        self._fixed |= mask
        self._fixed_values = np.where(mask, values, self._fixed_values)

    def to_csr(self) -> tuple[sparse.csr_array, FloatArray]:
        """Assemble the sparse matrix and flat right-hand side.

        Links to fixed unknowns are moved to the right-hand side, so a
        symmetric system stays symmetric after :meth:`fix`.
        """
        n = self.size
        index = np.arange(n).reshape(self.shape)
        free = ~self._fixed
        known = self._fixed_values
        rhs = np.where(free, self.rhs, known)

        rows = [index.ravel()]
        cols = [index.ravel()]
        vals = [np.where(free, self.diag, 1.0).ravel()]
        for axis, upper, lower in self._links:
            lo = axis_index(axis, slice(None, -1))
            hi = axis_index(axis, slice(1, None))
            both = free[lo] & free[hi]
            rows.extend([index[lo].ravel(), index[hi].ravel()])
            cols.extend([index[hi].ravel(), index[lo].ravel()])
            vals.extend(
                [
                    -np.where(both, upper, 0.0).ravel(),
                    -np.where(both, lower, 0.0).ravel(),
                ]
            )
            rhs[lo] += np.where(free[lo] & ~free[hi], upper * known[hi], 0.0)
            rhs[hi] += np.where(free[hi] & ~free[lo], lower * known[lo], 0.0)

        matrix = sparse.coo_array(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
            shape=(n, n),
        ).tocsr()
        return matrix, rhs.ravel()

    def solve(
        self,
        x0: FloatArray,
        *,
        solver: str = "bicgstab",
        rtol: float = 1e-8,
        max_iter: int = 1000,
    ) -> FloatArray:
        """Assemble and solve with a registered linear solver.

        Args:
            x0: Initial guess with the unknown shape.
            solver: Registry name of the linear solver.
            rtol: Relative residual tolerance.
            max_iter: Iteration cap of the linear solver.

        Returns:
            Solution with the unknown shape.
        """
        if self.size == 0:
            return np.zeros(self.shape)
        matrix, rhs = self.to_csr()
        solve = get_registry().get(solver)
        x, iterations = solve(matrix, rhs, x0.ravel(), rtol=rtol, max_iter=max_iter)
        logger.debug("%s solved %d unknowns in %d iterations", solver, self.size, iterations)
        return x.reshape(self.shape)
