"""Sparse linear solvers available to the transport and pressure equations.

All solvers share the :class:`~cloudgrow_cfd.core.registry.LinearSolver`
signature and register by name:

- ``cg`` - Jacobi-preconditioned conjugate gradient. Default for the
  pressure correction, whose matrix is symmetric positive definite.
- ``bicgstab`` - Jacobi-preconditioned BiCGSTAB. Default for the
  non-symmetric convection-diffusion systems.
- ``direct`` - sparse LU; exact, for small grids and debugging.
- ``jacobi`` - double-buffered Jacobi sweeps: every sweep reads the old
  iterate and writes a new one, so the sweep is data-parallel.
- ``red_black_sor`` - successive over-relaxation in red-black order. Cells of
  one colour only couple to the other colour, so each half-sweep is
  data-parallel as well.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final

import numpy as np
from scipy import sparse
from scipy.sparse import csgraph
from scipy.sparse import linalg as splinalg

from cloudgrow_cfd.core.registry import register_solver

if TYPE_CHECKING:
    from numpy.typing import NDArray

    FloatArray = NDArray[np.float64]

logger = logging.getLogger(__name__)

#: Over-relaxation factor for the red-black SOR smoother
DEFAULT_SOR_OMEGA: Final[float] = 1.5


def _jacobi_preconditioner(matrix: sparse.csr_array) -> sparse.dia_array:
    diag = matrix.diagonal()
    inv = np.where(diag != 0.0, 1.0 / np.where(diag != 0.0, diag, 1.0), 1.0)
    return sparse.diags_array(inv)


def _converged(matrix: sparse.csr_array, x: FloatArray, rhs: FloatArray, rtol: float) -> bool:
    b_norm = float(np.linalg.norm(rhs))
    r_norm = float(np.linalg.norm(rhs - matrix @ x))
    return r_norm <= rtol * max(b_norm, 1e-300)


def _report(name: str, info: int, iterations: int) -> None:
    if info > 0:
        logger.debug("%s stopped at iteration cap (%d) before reaching tolerance", name, iterations)
    elif info < 0:
        msg = f"{name} failed with illegal input or breakdown (info={info})"
        raise ArithmeticError(msg)


@register_solver("cg")
def conjugate_gradient(
    matrix: sparse.csr_array,
    rhs: FloatArray,
    x0: FloatArray,
    *,
    rtol: float,
    max_iter: int,
) -> tuple[FloatArray, int]:
    """Preconditioned conjugate gradient for symmetric positive definite systems."""
    count = 0

    def _count(_: FloatArray) -> None:
        nonlocal count
        count += 1

    x, info = splinalg.cg(
        matrix,
        rhs,
        x0=x0,
        rtol=rtol,
        atol=0.0,
        maxiter=max_iter,
        M=_jacobi_preconditioner(matrix),
        callback=_count,
    )
    _report("cg", info, count)
    return x, count


@register_solver("bicgstab")
def bicgstab(
    matrix: sparse.csr_array,
    rhs: FloatArray,
    x0: FloatArray,
    *,
    rtol: float,
    max_iter: int,
) -> tuple[FloatArray, int]:
    """Preconditioned BiCGSTAB for non-symmetric systems."""
    count = 0

    def _count(_: FloatArray) -> None:
        nonlocal count
        count += 1

    x, info = splinalg.bicgstab(
        matrix,
        rhs,
        x0=x0,
        rtol=rtol,
        atol=0.0,
        maxiter=max_iter,
        M=_jacobi_preconditioner(matrix),
        callback=_count,
    )
    if info < 0:
        # Breakdown on a nearly solved system; fall back to the exact solve
        logger.debug("bicgstab breakdown (info=%d), using direct solve", info)
        return direct(matrix, rhs, x0, rtol=rtol, max_iter=max_iter)
    _report("bicgstab", info, count)
    return x, count


@register_solver("direct")
def direct(
    matrix: sparse.csr_array,
    rhs: FloatArray,
    x0: FloatArray,
    *,
    rtol: float,
    max_iter: int,
) -> tuple[FloatArray, int]:
    """Sparse LU solve; tolerance and iteration cap are ignored."""
    del x0, rtol, max_iter
    x = splinalg.spsolve(matrix.tocsc(), rhs)
    return np.asarray(x, dtype=np.float64), 1


@register_solver("jacobi")
def jacobi(
    matrix: sparse.csr_array,
    rhs: FloatArray,
    x0: FloatArray,
    *,
    rtol: float,
    max_iter: int,
) -> tuple[FloatArray, int]:
    """Double-buffered Jacobi iteration.

    Converges for diagonally dominant systems, which all assembled systems
    are once under-relaxed.
    """
    diag = matrix.diagonal()
    x = x0.copy()
    for iteration in range(1, max_iter + 1):
        x_new = x + (rhs - matrix @ x) / diag
        x = x_new
        if _converged(matrix, x, rhs, rtol):
            return x, iteration
    logger.debug("jacobi stopped at iteration cap (%d)", max_iter)
    return x, max_iter


def red_black_partition(matrix: sparse.csr_array) -> tuple[NDArray[np.intp], NDArray[np.intp]]:
    """Split unknowns into two colours with no coupling inside a colour.

    Colours come from the parity of the breadth-first depth in the matrix
    graph, which on a seven-point stencil is the checkerboard ordering.

    Raises:
        ValueError: If the matrix graph is not bipartite.
    """
    n = matrix.shape[0]
    depth = np.zeros(n, dtype=np.intp)
    n_components, labels = csgraph.connected_components(matrix, directed=False)
    for component in range(n_components):
        root = int(np.flatnonzero(labels == component)[0])
        order, predecessors = csgraph.breadth_first_order(
            matrix, root, directed=False, return_predecessors=True
        )
        for node in order[1:]:
            depth[node] = depth[predecessors[node]] + 1

    color = depth % 2
    coo = matrix.tocoo()
    off = coo.row != coo.col
    if np.any(color[coo.row[off]] == color[coo.col[off]]):
        msg = "Red-black ordering needs a bipartite (seven-point) stencil"
        raise ValueError(msg)
    return np.flatnonzero(color == 0), np.flatnonzero(color == 1)


@register_solver("red_black_sor")
def red_black_sor(
    matrix: sparse.csr_array,
    rhs: FloatArray,
    x0: FloatArray,
    *,
    rtol: float,
    max_iter: int,
    omega: float = DEFAULT_SOR_OMEGA,
) -> tuple[FloatArray, int]:
    """Successive over-relaxation with red-black ordering."""
    if not 0.0 < omega < 2.0:
        msg = f"SOR factor must be in (0, 2), got {omega}"
        raise ValueError(msg)
    diag = matrix.diagonal()
    colors = [(idx, matrix[idx, :], diag[idx]) for idx in red_black_partition(matrix)]
    x = x0.copy()
    for iteration in range(1, max_iter + 1):
        for idx, rows, d in colors:
            x[idx] += omega * (rhs[idx] - rows @ x) / d
        if _converged(matrix, x, rhs, rtol):
            return x, iteration
    logger.debug("red_black_sor stopped at iteration cap (%d)", max_iter)
    return x, max_iter
