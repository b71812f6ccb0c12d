"""
Pseudo-transient continuation for the stack solver.

Scope:
- Backward-Euler pseudo time steps: each step solves F(x) + rdt * mask * (x - x_prev) = 0
  with rdt = 1/dt through the damped Newton solver.
- Accepted step: x_prev <- x, dt grows by `grow` (capped at dt_max).
- Rejected step: x is restored from x_prev, dt shrinks by `shrink`; once dt drops
  below dt_min the block is reported as failed.
- Cancellation is polled before every step.

The time stepper never raises for numerical failure; Stack decides what to do
with an unsuccessful TimeStepResult.
"""

from __future__ import annotations

import logging

from solvers.newton import solve_newton
from solvers.nonlinear_context import SolverSession
from solvers.nonlinear_types import TimeStepResult

logger = logging.getLogger(__name__)


def take_time_steps(
    session: SolverSession,
    n_steps: int,
    dt: float,
    *,
    loglevel: int = 0,
) -> TimeStepResult:
    """
    Take n_steps accepted pseudo time steps starting with step size dt.

    Returns the step size to use for the next block in TimeStepResult.dt.
    """
    cfg = session.cfg.timestep
    stats = session.current_stats
    dt = float(dt)
    n_steps = int(n_steps)

    session.x_prev[:] = session.x
    taken = 0
    if loglevel > 0:
        logger.info("time stepping: %d steps, dt=%.3e", n_steps, dt)

    while taken < n_steps:
        session.check_cancel()
        diag = solve_newton(session, 1.0 / dt, loglevel=loglevel - 1)
        if diag.converged:
            session.x_prev[:] = session.x
            taken += 1
            stats.n_time_steps += 1
            if loglevel > 1:
                logger.info(
                    "  step %d/%d dt=%.3e newton_iter=%d |F|_2=%.3e",
                    taken, n_steps, dt, diag.n_iter, diag.res_norm_2,
                )
            dt = min(dt * cfg.grow, cfg.dt_max)
            continue

        session.x[:] = session.x_prev
        dt *= cfg.shrink
        if loglevel > 1:
            logger.info("  step %d rejected (%s); dt -> %.3e", taken + 1, diag.message, dt)
        if dt < cfg.dt_min:
            msg = f"time step fell below dt_min={cfg.dt_min:.3e} after {taken} accepted steps"
            if loglevel > 0:
                logger.info("time stepping failed: %s", msg)
            return TimeStepResult(success=False, n_steps=taken, dt=dt, message=msg)

    if loglevel > 0:
        logger.info("time stepping done: %d steps, next dt=%.3e", taken, dt)
    return TimeStepResult(success=True, n_steps=taken, dt=dt)
