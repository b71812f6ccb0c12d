"""
Typed configuration containers for the domain stack solver.

Conventions:
- All indices are 0-based (domain, component, point).
- Values arrays are (n_components, n_points); columns are grid points.
- Config dataclasses validate eagerly in __post_init__ and raise InvalidArgument.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from core.errors import InvalidArgument

FloatArray = NDArray[np.float64]


@dataclass(slots=True)
class RefineCriteria:
    """Grid refinement thresholds for one domain.

    Attributes
    ----------
    ratio : float
        Maximum size ratio between adjacent cells (>= 1).
    slope : float
        Maximum relative difference in value between adjacent points.
    curve : float
        Maximum relative difference in slope between adjacent cells.
    prune : float
        Points whose slope/curve ratios stay below prune for all components
        are removed. Negative disables pruning.
    grid_min : float
        Minimum grid spacing that insertion may produce.
    max_points : int
        Upper bound on the number of grid points in the domain.
    """

    ratio: float = 10.0
    slope: float = 0.8
    curve: float = 0.8
    prune: float = -0.1
    grid_min: float = 1.0e-10
    max_points: int = 1000

    def __post_init__(self) -> None:
        for name in ("ratio", "slope", "curve", "prune", "grid_min"):
            v = float(getattr(self, name))
            if not np.isfinite(v):
                raise InvalidArgument(f"refine criterion {name} must be finite, got {v}")
            setattr(self, name, v)
        if self.ratio < 1.0:
            raise InvalidArgument(f"ratio must be >= 1, got {self.ratio}")
        if not (0.0 < self.slope <= 1.0):
            raise InvalidArgument(f"slope must be in (0, 1], got {self.slope}")
        if not (0.0 < self.curve <= 1.0):
            raise InvalidArgument(f"curve must be in (0, 1], got {self.curve}")
        if self.prune > min(self.slope, self.curve):
            raise InvalidArgument(
                f"prune ({self.prune}) must not exceed slope ({self.slope}) or curve ({self.curve})"
            )
        if self.grid_min <= 0.0:
            raise InvalidArgument(f"grid_min must be positive, got {self.grid_min}")
        self.max_points = int(self.max_points)
        if self.max_points < 2:
            raise InvalidArgument(f"max_points must be >= 2, got {self.max_points}")


@dataclass(slots=True)
class NewtonConfig:
    """Damped Newton options."""

    max_jac_age_ss: int = 20
    max_jac_age_ts: int = 20
    max_damp_iter: int = 7
    max_newton_iter: int = 100
    armijo: float = 1.0e-4
    fd_eps: float = 1.0e-7
    f_atol: float = 1.0e-10
    linear_backend: str = "scipy"

    def __post_init__(self) -> None:
        for name in ("max_jac_age_ss", "max_jac_age_ts", "max_damp_iter", "max_newton_iter"):
            setattr(self, name, int(getattr(self, name)))
        for name in ("armijo", "fd_eps", "f_atol"):
            setattr(self, name, float(getattr(self, name)))
        if int(self.max_jac_age_ss) < 1 or int(self.max_jac_age_ts) < 1:
            raise InvalidArgument(
                f"Jacobian age limits must be >= 1, got ss={self.max_jac_age_ss} ts={self.max_jac_age_ts}"
            )
        if int(self.max_damp_iter) < 1:
            raise InvalidArgument(f"max_damp_iter must be >= 1, got {self.max_damp_iter}")
        if int(self.max_newton_iter) < 1:
            raise InvalidArgument(f"max_newton_iter must be >= 1, got {self.max_newton_iter}")
        if not (0.0 <= float(self.armijo) < 1.0):
            raise InvalidArgument(f"armijo must be in [0, 1), got {self.armijo}")
        if float(self.fd_eps) <= 0.0:
            raise InvalidArgument(f"fd_eps must be positive, got {self.fd_eps}")
        self.linear_backend = str(self.linear_backend).strip().lower()
        if self.linear_backend not in ("scipy", "splu", "petsc", "petsc_lu"):
            raise InvalidArgument(f"unknown linear backend '{self.linear_backend}' (expected 'scipy' or 'petsc')")


@dataclass(slots=True)
class TimeStepConfig:
    """Pseudo-transient continuation schedule.

    steps[k] is the number of time steps taken before the (k+1)-th retry of
    the steady solve; the last entry repeats once the list is exhausted.
    """

    dt0: float = 1.0e-5
    steps: Tuple[int, ...] = (10,)
    dt_min: float = 1.0e-16
    dt_max: float = 1.0e8
    grow: float = 1.5
    shrink: float = 0.5
    max_attempts: int = 20

    def __post_init__(self) -> None:
        self.dt0 = float(self.dt0)
        self.dt_min = float(self.dt_min)
        self.dt_max = float(self.dt_max)
        self.grow = float(self.grow)
        self.shrink = float(self.shrink)
        self.max_attempts = int(self.max_attempts)
        if not np.isfinite(self.dt0) or self.dt0 <= 0.0:
            raise InvalidArgument(f"time step size must be positive, got {self.dt0}")
        steps = tuple(int(s) for s in self.steps)
        if not steps or any(s < 1 for s in steps):
            raise InvalidArgument(f"steps must be a non-empty sequence of positive counts, got {self.steps}")
        self.steps = steps
        if float(self.dt_min) <= 0.0 or float(self.dt_max) < self.dt0:
            raise InvalidArgument(
                f"need 0 < dt_min and dt0 <= dt_max, got dt_min={self.dt_min} dt0={self.dt0} dt_max={self.dt_max}"
            )
        if float(self.grow) < 1.0 or not (0.0 < float(self.shrink) < 1.0):
            raise InvalidArgument(f"need grow >= 1 and 0 < shrink < 1, got grow={self.grow} shrink={self.shrink}")
        if int(self.max_attempts) < 1:
            raise InvalidArgument(f"max_attempts must be >= 1, got {self.max_attempts}")

    def steps_for_attempt(self, attempt: int) -> int:
        return self.steps[min(int(attempt), len(self.steps) - 1)]


@dataclass(slots=True)
class StackConfig:
    """Top-level solver configuration owned by a Stack."""

    newton: NewtonConfig = field(default_factory=NewtonConfig)
    timestep: TimeStepConfig = field(default_factory=TimeStepConfig)
    max_refine_passes: int = 10
    fixed_temperature: Optional[float] = None
    fixed_component: str = "T"

    def __post_init__(self) -> None:
        if not isinstance(self.newton, NewtonConfig):
            raise TypeError("newton must be NewtonConfig (loader must build dataclass).")
        if not isinstance(self.timestep, TimeStepConfig):
            raise TypeError("timestep must be TimeStepConfig (loader must build dataclass).")
        self.max_refine_passes = int(self.max_refine_passes)
        if self.fixed_temperature is not None:
            self.fixed_temperature = float(self.fixed_temperature)
        if int(self.max_refine_passes) < 0:
            raise InvalidArgument(f"max_refine_passes must be >= 0, got {self.max_refine_passes}")
        if self.fixed_temperature is not None and float(self.fixed_temperature) <= 0.0:
            raise InvalidArgument(f"fixed temperature must be positive, got {self.fixed_temperature}")


@dataclass(slots=True)
class FixedPoint:
    """Pinned (z, component, value) used by fixed-temperature continuation."""

    z: float
    component: int
    value: float
