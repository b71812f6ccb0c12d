"""
Global residual F(x) for the domain stack.

Current policy:
- Extended domains are evaluated first, in stack order, then connectors, so
  connector coupling rows (continuity, imposed boundary values) overwrite the
  default boundary rows of their neighbours.
- On transient rows the backward-Euler term rdt * (x - x_prev) is added;
  rdt = 0 gives the pure steady residual.
- Per-domain evaluation counts and wall time feed the session statistics.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from core.domain import Domain, DomainKind
from core.layout import StackLayout
from solvers.nonlinear_context import SolverSession

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EvalContext:
    """Arguments of one residual evaluation, handed to every domain's physics."""

    x: np.ndarray
    r: np.ndarray
    rdt: float
    x_prev: np.ndarray
    layout: StackLayout
    domains: List[Domain]

    def values(self, domain: Domain) -> np.ndarray:
        """(n_components, n_points) view of x for a domain."""
        return self.layout.domain_view(self.x, domain.index)

    def residual(self, domain: Domain) -> np.ndarray:
        """(n_components, n_points) writable view of r for a domain."""
        return self.layout.domain_view(self.r, domain.index)

    def left(self, domain: Domain) -> Optional[Domain]:
        return self.domains[domain.index - 1] if domain.index > 0 else None

    def right(self, domain: Domain) -> Optional[Domain]:
        return self.domains[domain.index + 1] if domain.index + 1 < len(self.domains) else None


def _eval_order(domains: List[Domain]) -> List[Domain]:
    ext = [d for d in domains if d.kind is DomainKind.EXTENDED]
    con = [d for d in domains if d.kind is DomainKind.CONNECTOR]
    return ext + con


def build_global_residual(
    session: SolverSession,
    x: np.ndarray,
    rdt: float = 0.0,
    *,
    count_stats: bool = True,
) -> np.ndarray:
    """Assemble F(x) over all domains; x is not modified."""
    x = np.asarray(x, dtype=np.float64)
    if x.shape != (session.layout.size,):
        raise ValueError(f"x shape {x.shape} incompatible with layout size {session.layout.size}")
    r = np.zeros_like(x)
    ctx = EvalContext(
        x=x,
        r=r,
        rdt=float(rdt),
        x_prev=session.x_prev,
        layout=session.layout,
        domains=session.domains,
    )

    stats = session.current_stats if count_stats else None
    t_start = time.perf_counter()
    for dom in _eval_order(session.domains):
        t0 = time.perf_counter()
        dom.physics.eval(ctx, dom)
        if stats is not None:
            stats.domain_evals[dom.name] = stats.domain_evals.get(dom.name, 0) + 1
            stats.domain_time[dom.name] = stats.domain_time.get(dom.name, 0.0) + (time.perf_counter() - t0)

    if rdt != 0.0:
        m = session.transient_mask
        r[m] += rdt * (x[m] - session.x_prev[m])

    if stats is not None:
        stats.n_func_evals += 1
        stats.time_func += time.perf_counter() - t_start
    return r


def residual_only(session: SolverSession, x: np.ndarray, rdt: float = 0.0) -> np.ndarray:
    """Residual without touching statistics (diagnostics)."""
    return build_global_residual(session, x, rdt, count_stats=False)


def evaluate_domain_residual(
    session: SolverSession,
    domain: Domain,
    rdt: float = 0.0,
    count: int = 0,
) -> np.ndarray:
    """
    (n_components, n_points) residual of one domain at the current solution.

    The solution is left untouched; count is the caller's iteration counter,
    only used for logging.
    """
    r = residual_only(session, session.x.copy(), rdt)
    out = np.array(session.layout.domain_view(r, domain.index), copy=True)
    logger.debug(
        "evaluate residual: domain=%s rdt=%.3e count=%d |r|_inf=%.3e",
        domain.name,
        float(rdt),
        int(count),
        float(np.max(np.abs(out))) if out.size else 0.0,
    )
    return out
