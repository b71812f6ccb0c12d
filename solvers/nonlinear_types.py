"""
Shared nonlinear solver result and statistics types.

Goal:
- Newton, time stepper and Stack exchange the same small structures.
- Keep statistics queryable after solve (write_stats).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class NewtonStatus(str, Enum):
    CONVERGED = "converged"
    STALLED = "stalled"


@dataclass(slots=True)
class NewtonDiagnostics:
    status: NewtonStatus
    n_iter: int
    n_jac_evals: int
    res_norm_2: float
    res_norm_inf: float
    step_norm: float
    history_res_2: List[float] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def converged(self) -> bool:
        return self.status is NewtonStatus.CONVERGED


@dataclass(slots=True)
class TimeStepResult:
    success: bool
    n_steps: int
    dt: float
    message: Optional[str] = None


@dataclass(slots=True)
class GridStats:
    """Work counters for one grid (one layout between refinements)."""

    n_points: Tuple[int, ...]
    n_func_evals: int = 0
    time_func: float = 0.0
    n_jac_evals: int = 0
    time_jac: float = 0.0
    n_newton_iter: int = 0
    n_time_steps: int = 0
    domain_evals: Dict[str, int] = field(default_factory=dict)
    domain_time: Dict[str, float] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "n_points": list(self.n_points),
            "n_func_evals": self.n_func_evals,
            "time_func": self.time_func,
            "n_jac_evals": self.n_jac_evals,
            "time_jac": self.time_jac,
            "n_newton_iter": self.n_newton_iter,
            "n_time_steps": self.n_time_steps,
            "domain_evals": dict(self.domain_evals),
            "domain_time": dict(self.domain_time),
        }
