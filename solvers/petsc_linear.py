"""
PETSc-based linear solver backend (mirrors the SciPy interface).

Design goals:
- Direct LU through KSP preonly, so a factorization is reused across solves.
- API mirrors the SciPy backend: factor.solve(b) -> LinearSolveResult.
- petsc4py is imported lazily; the backend is optional.
"""

from __future__ import annotations

import logging

import numpy as np
import scipy.sparse as sp

from solvers.linear_types import LinearSolveResult, SingularJacobian

logger = logging.getLogger(__name__)

_PETSC_BOOTSTRAPPED = False


def _get_petsc():
    """Initialise mpi4py before petsc4py, then return the PETSc module."""
    global _PETSC_BOOTSTRAPPED
    try:
        from mpi4py import MPI  # noqa: F401
        import petsc4py

        if not _PETSC_BOOTSTRAPPED:
            petsc4py.init([])
            _PETSC_BOOTSTRAPPED = True
        from petsc4py import PETSc
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("petsc4py and mpi4py are required for the PETSc linear backend.") from exc
    return PETSc


def scipy_to_petsc_aij(A, PETSc=None):
    if PETSc is None:
        PETSc = _get_petsc()
    A_csr = sp.csr_matrix(A)
    M = PETSc.Mat().createAIJ(
        size=A_csr.shape,
        csr=(A_csr.indptr.astype(PETSc.IntType), A_csr.indices.astype(PETSc.IntType), A_csr.data),
        comm=PETSc.COMM_SELF,
    )
    M.assemble()
    return M


class PetscLUFactor:
    """KSP(preonly) + PC(lu) on a sequential AIJ matrix."""

    method = "petsc_preonly_lu"

    def __init__(self, A) -> None:
        PETSc = _get_petsc()
        self._PETSc = PETSc
        self.N = int(A.shape[0])
        self.A = sp.csr_matrix(A)
        self._mat = scipy_to_petsc_aij(self.A, PETSc)
        ksp = PETSc.KSP().create(comm=PETSc.COMM_SELF)
        ksp.setOperators(self._mat)
        ksp.setType("preonly")
        ksp.getPC().setType("lu")
        try:
            ksp.setUp()
        except PETSc.Error as exc:
            raise SingularJacobian(f"PETSc LU setup failed: {exc}") from exc
        self._ksp = ksp

    def solve(self, b: np.ndarray) -> LinearSolveResult:
        b = np.asarray(b, dtype=np.float64)
        if b.shape != (self.N,):
            raise ValueError(f"b shape {b.shape} does not match A dimension {self.N}")
        PETSc = self._PETSc
        vb = PETSc.Vec().createWithArray(b.copy(), comm=PETSc.COMM_SELF)
        vx = vb.duplicate()
        try:
            self._ksp.solve(vb, vx)
        except PETSc.Error as exc:
            raise SingularJacobian(f"PETSc LU solve failed: {exc}") from exc
        if int(self._ksp.getConvergedReason()) < 0:
            raise SingularJacobian(f"PETSc KSP diverged: reason={self._ksp.getConvergedReason()}")
        x = np.array(vx.getArray(), dtype=np.float64, copy=True)
        r = b - self.A.dot(x)
        res_norm = float(np.linalg.norm(r))
        return LinearSolveResult(
            x=x,
            converged=True,
            n_iter=int(self._ksp.getIterationNumber()),
            residual_norm=res_norm,
            rel_residual=res_norm / (float(np.linalg.norm(b)) + 1e-30),
            method=self.method,
        )


def factorize_petsc(A) -> PetscLUFactor:
    return PetscLUFactor(A)
