"""
Shared linear solver result types.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import numpy as np


@dataclass
class LinearSolveResult:
    x: np.ndarray
    converged: bool
    n_iter: int
    residual_norm: float
    rel_residual: float
    method: str
    message: Optional[str] = None
    diag: Optional[Dict[str, Any]] = None


class LinearFactor(Protocol):
    """Factorized Jacobian reused across Newton iterations."""

    method: str

    def solve(self, b: np.ndarray) -> LinearSolveResult: ...


class SingularJacobian(RuntimeError):
    """Factorization failed; the Newton attempt treats this as a stall."""
