"""
Damped Newton solver on the assembled stack system.

Policy:
- Jacobian: steady FD Jacobian, recomputed only when missing or when its age
  (Newton iterations since evaluation) reaches the limit for the current
  mode (steady: max_jac_age_ss, transient: max_jac_age_ts). The transient
  diagonal rdt * mask is added at factorization time, so a new rdt only
  refactors.
- Damping: the step is first capped so every unknown stays inside its
  component bounds, then halved up to max_damp_iter times until
  ||F(x + lam dx)||_2 <= (1 - armijo * lam) ||F(x)||_2.
- A rejected step with a stale Jacobian triggers one re-evaluation and retry;
  otherwise (or on a singular Jacobian) the attempt is reported as stalled.
- Convergence: weighted RMS norm of the undamped step <= 1, or ||F||_inf <= f_atol.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import numpy as np
import scipy.sparse as sp

from assembly.build_sparse_fd_jacobian import build_sparse_fd_jacobian
from assembly.residual_global import build_global_residual
from solvers.linear_types import SingularJacobian
from solvers.nonlinear_context import SolverSession
from solvers.nonlinear_types import NewtonDiagnostics, NewtonStatus
from solvers.solver_linear import factorize

logger = logging.getLogger(__name__)

_LAMBDA_MIN = 1.0e-10


def _evaluate_jacobian(session: SolverSession, x: np.ndarray, loglevel: int, reason: str = "age") -> None:
    J, diag = build_sparse_fd_jacobian(session, x, eps=session.cfg.newton.fd_eps)
    by_reason = session.meta.setdefault("jac_evals_by_reason", {})
    by_reason[reason] = by_reason.get(reason, 0) + 1
    session.jac_steady = J
    session.jac_age = 0
    session.factor = None
    if loglevel > 2:
        logger.debug(
            "jacobian evaluated: nnz=%d colors=%d fd_calls=%d time=%.3es",
            diag["nnz"],
            diag["ncolors"],
            diag["n_fd_calls"],
            diag["time"],
        )


def _ensure_factor(session: SolverSession, rdt: float) -> None:
    if session.factor is not None and session.factor_rdt == rdt:
        return
    A = session.jac_steady
    if rdt != 0.0:
        A = A + sp.diags(rdt * session.transient_mask.astype(np.float64), format="csc")
    session.factor = factorize(A, session.cfg.newton.linear_backend)
    session.factor_rdt = rdt


def bound_step(x: np.ndarray, dx: np.ndarray, lower: np.ndarray, upper: np.ndarray) -> float:
    """Largest lam in [0, 1] keeping lower <= x + lam * dx <= upper."""
    lam = 1.0
    up = (dx > 0.0) & np.isfinite(upper)
    if np.any(up):
        room = np.maximum(upper[up] - x[up], 0.0)
        lam = min(lam, float(np.min(room / dx[up])))
    lo = (dx < 0.0) & np.isfinite(lower)
    if np.any(lo):
        room = np.maximum(x[lo] - lower[lo], 0.0)
        lam = min(lam, float(np.min(room / -dx[lo])))
    return max(lam, 0.0)


def _damped_step(
    session: SolverSession,
    x: np.ndarray,
    dx: np.ndarray,
    f_norm: float,
    rdt: float,
    loglevel: int,
) -> Optional[Tuple[float, np.ndarray, float]]:
    cfg = session.cfg.newton
    lam = bound_step(x, dx, session.lower, session.upper)
    if lam < _LAMBDA_MIN:
        if loglevel > 1:
            logger.info("newton: step blocked by component bounds (lam=%.3e)", lam)
        return None
    for k in range(int(cfg.max_damp_iter)):
        x_try = x + lam * dx
        f_try = build_global_residual(session, x_try, rdt)
        n_try = float(np.linalg.norm(f_try))
        if loglevel > 2:
            logger.debug("  damping k=%d lam=%.3e |F|=%.6e (target %.6e)", k, lam, n_try,
                         (1.0 - cfg.armijo * lam) * f_norm)
        if np.isfinite(n_try) and n_try <= (1.0 - cfg.armijo * lam) * f_norm:
            return lam, x_try, n_try
        lam *= 0.5
    return None


def solve_newton(session: SolverSession, rdt: float = 0.0, *, loglevel: int = 0) -> NewtonDiagnostics:
    """
    Run damped Newton on F(x) (with transient weight rdt) from session.x.

    On convergence session.x holds the solution; on stall session.x is left at
    the last accepted iterate. Never raises for numerical failure.
    """
    cfg = session.cfg.newton
    rdt = float(rdt)
    transient = rdt > 0.0
    age_limit = int(cfg.max_jac_age_ts if transient else cfg.max_jac_age_ss)
    stats = session.current_stats

    x = session.x.copy()
    history: List[float] = []
    n_jac = 0
    step_norm = float("nan")
    f_norm = float("nan")
    f_inf = float("nan")

    def _finish(status: NewtonStatus, n_iter: int, message: Optional[str]) -> NewtonDiagnostics:
        session.x[:] = x
        if loglevel > 0:
            logger.info(
                "newton %s: iter=%d jac_evals=%d |F|_2=%.3e step=%.3e rdt=%.3e%s",
                status.value,
                n_iter,
                n_jac,
                f_norm,
                step_norm,
                rdt,
                f" ({message})" if message else "",
            )
        return NewtonDiagnostics(
            status=status,
            n_iter=n_iter,
            n_jac_evals=n_jac,
            res_norm_2=f_norm,
            res_norm_inf=f_inf,
            step_norm=step_norm,
            history_res_2=history,
            message=message,
        )

    for it in range(int(cfg.max_newton_iter)):
        session.check_cancel()

        F = build_global_residual(session, x, rdt)
        f_norm = float(np.linalg.norm(F))
        f_inf = float(np.max(np.abs(F))) if F.size else 0.0
        history.append(f_norm)
        if not np.isfinite(f_norm):
            return _finish(NewtonStatus.STALLED, it, "non-finite residual")
        if f_inf <= cfg.f_atol:
            step_norm = 0.0
            return _finish(NewtonStatus.CONVERGED, it, None)

        if session.jacobian_due(age_limit):
            _evaluate_jacobian(session, x, loglevel)
            n_jac += 1

        retried = False
        while True:
            try:
                _ensure_factor(session, rdt)
                dx = -session.factor.solve(F).x
            except SingularJacobian as exc:
                if session.jacobian_is_stale() and not retried:
                    _evaluate_jacobian(session, x, loglevel, reason="singular")
                    n_jac += 1
                    retried = True
                    continue
                return _finish(NewtonStatus.STALLED, it, f"singular Jacobian: {exc}")

            step_norm = session.weighted_norm(dx, x, transient=transient)
            if loglevel > 1:
                logger.info(
                    "newton iter=%d |F|_2=%.6e |F|_inf=%.3e step=%.3e jac_age=%d",
                    it, f_norm, f_inf, step_norm, session.jac_age,
                )
            if step_norm <= 1.0 and bound_step(x, dx, session.lower, session.upper) >= 1.0:
                x = x + dx
                session.jac_age += 1
                stats.n_newton_iter += 1
                return _finish(NewtonStatus.CONVERGED, it + 1, None)

            accepted = _damped_step(session, x, dx, f_norm, rdt, loglevel)
            if accepted is not None:
                break
            if session.jacobian_is_stale() and not retried:
                if loglevel > 1:
                    logger.info("newton: damping failed with stale Jacobian (age=%d); re-evaluating",
                                session.jac_age)
                _evaluate_jacobian(session, x, loglevel, reason="damping")
                n_jac += 1
                retried = True
                continue
            return _finish(NewtonStatus.STALLED, it, "damping failed")

        lam, x, f_norm = accepted
        session.jac_age += 1
        stats.n_newton_iter += 1
        if loglevel > 2:
            logger.debug("newton iter=%d accepted lam=%.3e |F|_2=%.6e", it, lam, f_norm)

    return _finish(NewtonStatus.STALLED, int(cfg.max_newton_iter), "iteration limit reached")
