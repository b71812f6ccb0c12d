"""
Linear factorization dispatcher for SciPy/PETSc backends.

This module routes a Jacobian to the selected backend without mixing assembly logic.
"""

from __future__ import annotations

from solvers.linear_types import LinearFactor

_BACKEND_ALIAS = {
    "scipy": "scipy",
    "splu": "scipy",
    "petsc": "petsc",
    "petsc_lu": "petsc",
}


def normalize_backend(backend: str) -> str:
    val = str(backend).strip().lower()
    val = _BACKEND_ALIAS.get(val, val)
    if val not in ("scipy", "petsc"):
        raise ValueError(f"Unknown linear backend '{backend}' (expected 'scipy' or 'petsc').")
    return val


def factorize(A, backend: str = "scipy") -> LinearFactor:
    """Factorize A with the configured backend."""
    backend = normalize_backend(backend)
    if backend == "scipy":
        from solvers.scipy_linear import factorize_scipy

        return factorize_scipy(A)
    from solvers.petsc_linear import factorize_petsc

    return factorize_petsc(A)
