"""
SciPy-based linear solver backend.

Design goals:
- Pure SciPy/NumPy (no PETSc dependency).
- Sparse LU factorization that Newton can reuse while the Jacobian ages.
- Strict shape checks; no session mutations.
"""

from __future__ import annotations

import logging

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from solvers.linear_types import LinearSolveResult, SingularJacobian

logger = logging.getLogger(__name__)


def _as_csc(A) -> sp.csc_matrix:
    """Ensure matrix is CSC sparse format."""
    if sp.issparse(A):
        return sp.csc_matrix(A)
    if isinstance(A, np.ndarray):
        if A.ndim != 2:
            raise TypeError(f"Expected 2D array for A, got ndim={A.ndim}")
        return sp.csc_matrix(A)
    raise TypeError(f"Unsupported matrix type for A: {type(A)}")


class ScipyLUFactor:
    """splu factorization of a square sparse matrix."""

    method = "direct_splu"

    def __init__(self, A) -> None:
        A_csc = _as_csc(A)
        if A_csc.shape[0] != A_csc.shape[1]:
            raise ValueError(f"A must be square, got shape {A_csc.shape}")
        self.A = A_csc
        self.N = A_csc.shape[0]
        try:
            self._lu = spla.splu(A_csc) if self.N > 0 else None
        except RuntimeError as exc:
            raise SingularJacobian(f"splu failed: {exc}") from exc
        logger.debug("splu factorization: N=%d nnz=%d", self.N, A_csc.nnz)

    def solve(self, b: np.ndarray) -> LinearSolveResult:
        b = np.asarray(b, dtype=np.float64)
        if b.shape != (self.N,):
            raise ValueError(f"b shape {b.shape} does not match A dimension {self.N}")
        if self.N == 0:
            return LinearSolveResult(x=b.copy(), converged=True, n_iter=0, residual_norm=0.0,
                                     rel_residual=0.0, method=self.method)
        x = self._lu.solve(b)
        if not np.all(np.isfinite(x)):
            raise SingularJacobian("splu solve produced non-finite values")
        r = b - self.A.dot(x)
        res_norm = float(np.linalg.norm(r))
        b_norm = float(np.linalg.norm(b))
        rel = res_norm / (b_norm + 1e-30)
        return LinearSolveResult(
            x=np.asarray(x, dtype=np.float64),
            converged=True,
            n_iter=1,
            residual_norm=res_norm,
            rel_residual=rel,
            method=self.method,
        )


def factorize_scipy(A) -> ScipyLUFactor:
    return ScipyLUFactor(A)
