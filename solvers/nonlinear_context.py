"""
Solver session owned by a Stack.

This packages the mutable solve state (global vector, previous time level,
stored Jacobian and its factorization, Jacobian age, statistics) so the
assembler, Newton solver, time stepper and refiner depend only on a session
object passed explicitly, never on ambient state.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from core.domain import Domain
from core.errors import SolveCancelled
from core.layout import StackLayout, bind_domains, build_layout, pack_domains
from core.types import StackConfig
from solvers.nonlinear_types import GridStats


class CancelToken:
    """Checkable cancellation flag, polled between Newton iterations and time-step blocks."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(slots=True)
class SolverSession:
    """
    Mutable solve state for one Stack.

    Responsibilities:
      - own the global vector x (domains hold views into it)
      - keep x_prev for the rdt-weighted transient term
      - keep the steady Jacobian, its factorization and age
      - keep per-grid statistics
    """

    cfg: StackConfig
    domains: List[Domain]
    layout: StackLayout
    x: np.ndarray
    x_prev: np.ndarray
    transient_mask: np.ndarray
    lower: np.ndarray
    upper: np.ndarray

    jac_steady: Any = None
    factor: Any = None
    factor_rdt: float = 0.0
    jac_age: int = 0
    pattern: Any = None

    stats: List[GridStats] = field(default_factory=list)
    cancel: Optional[CancelToken] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def current_stats(self) -> GridStats:
        return self.stats[-1]

    def check_cancel(self) -> None:
        if self.cancel is not None and self.cancel.cancelled:
            raise SolveCancelled("solve cancelled")

    def invalidate_jacobian(self) -> None:
        self.jac_steady = None
        self.factor = None
        self.jac_age = 0

    def jacobian_due(self, age_limit: int) -> bool:
        """True when the Jacobian is missing or has been reused age_limit times."""
        return self.jac_steady is None or self.jac_age >= int(age_limit)

    def jacobian_is_stale(self) -> bool:
        return self.jac_steady is not None and self.jac_age > 0

    def weights(self, x: np.ndarray, *, transient: bool) -> np.ndarray:
        """Flat error weights rtol*|x| + atol in layout order."""
        w = np.empty_like(x)
        for d, dom in enumerate(self.domains):
            view = self.layout.domain_view(w, d)
            view[:, :] = dom.error_weights(self.layout.domain_view(x, d), transient=transient)
        return w

    def weighted_norm(self, dx: np.ndarray, x: np.ndarray, *, transient: bool) -> float:
        if dx.size == 0:
            return 0.0
        w = self.weights(x, transient=transient)
        return float(np.sqrt(np.mean((dx / w) ** 2)))

    def rebuild(self) -> None:
        """Rebuild layout/vector after grids changed; domains keep their values."""
        self.layout = build_layout(self.domains)
        self.x = pack_domains(self.domains, self.layout)
        bind_domains(self.domains, self.layout, self.x)
        self.x_prev = self.x.copy()
        self.transient_mask, self.lower, self.upper = _flat_settings(self.domains, self.layout)
        self.pattern = None
        self.invalidate_jacobian()
        self.stats.append(GridStats(n_points=tuple(dom.n_points for dom in self.domains)))

    def refresh_settings(self) -> None:
        """Re-read per-domain bounds/masks without touching the vector."""
        self.transient_mask, self.lower, self.upper = _flat_settings(self.domains, self.layout)


def _flat_settings(domains: Sequence[Domain], layout: StackLayout):
    n = layout.size
    mask = np.zeros(n, dtype=bool)
    lower = np.empty(n, dtype=np.float64)
    upper = np.empty(n, dtype=np.float64)
    for d, dom in enumerate(domains):
        layout.domain_view(mask, d)[:, :] = dom.transient_mask()
        layout.domain_view(lower, d)[:, :] = dom.lower[:, None]
        layout.domain_view(upper, d)[:, :] = dom.upper[:, None]
    return mask, lower, upper


def build_session(domains: Sequence[Domain], cfg: StackConfig) -> SolverSession:
    """Build the session and bind every domain to the new global vector."""
    domains = list(domains)
    layout = build_layout(domains)
    x = pack_domains(domains, layout)
    bind_domains(domains, layout, x)
    mask, lower, upper = _flat_settings(domains, layout)
    session = SolverSession(
        cfg=cfg,
        domains=domains,
        layout=layout,
        x=x,
        x_prev=x.copy(),
        transient_mask=mask,
        lower=lower,
        upper=upper,
    )
    session.stats.append(GridStats(n_points=tuple(dom.n_points for dom in domains)))
    return session
