"""
Stack: ordered composition of domains solved as one coupled nonlinear system.

Responsibilities:
- own the domain list (fixed at construction) and the SolverSession (global
  vector, Jacobian, age, statistics);
- public accessors/mutators for solution values, profiles and configuration;
  configuration and lookup errors are raised eagerly by the offending call;
- solve(): steady Newton, falling back to pseudo time stepping when Newton
  stalls, with grid refinement between converged solves;
- save/restore through persistence.solution_file.

Domain and component arguments accept 0-based indices or names.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
from typing import Any, Dict, List, Optional, Sequence, TextIO

import numpy as np

from assembly.residual_global import evaluate_domain_residual, residual_only
from core.domain import Domain
from core.errors import (
    DomainNotFound,
    InvalidArgument,
    ShapeMismatch,
    SolveFailed,
)
from core.grid import insert_point, locate_crossing
from core.refine import refine_domain
from core.remap import remap_values_to_new_grid
from core.types import FixedPoint, RefineCriteria, StackConfig
from persistence.solution_file import restore_solution, save_solution
from solvers.newton import solve_newton
from solvers.nonlinear_context import CancelToken, SolverSession, build_session
from solvers.nonlinear_types import NewtonDiagnostics
from solvers.timestepper import take_time_steps

logger = logging.getLogger(__name__)


class Stack:
    """Domain stack solver."""

    def __init__(self, domains: Sequence[Domain], config: Optional[StackConfig] = None) -> None:
        domains = list(domains)
        if not domains:
            raise InvalidArgument("a stack needs at least one domain.")
        names = [d.name for d in domains]
        if len(set(names)) != len(names):
            raise InvalidArgument(f"domain names must be unique, got {names}")
        for a, b in zip(domains[:-1], domains[1:]):
            if not a.is_connector and not b.is_connector:
                raise InvalidArgument(
                    f"extended domains '{a.name}' and '{b.name}' must be separated by a connector"
                )
        for i, dom in enumerate(domains):
            dom.index = i

        self.config = copy.deepcopy(config) if config is not None else StackConfig()
        self._domains = domains
        self._sync_connectors()
        self._session: SolverSession = build_session(domains, self.config)
        self._last_newton: Optional[NewtonDiagnostics] = None

        if self.config.fixed_temperature is not None:
            self.set_fixed_temperature(self.config.fixed_temperature)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    @property
    def domains(self) -> List[Domain]:
        return list(self._domains)

    @property
    def session(self) -> SolverSession:
        return self._session

    @property
    def n_domains(self) -> int:
        return len(self._domains)

    def domain_index(self, name: int | str) -> int:
        if isinstance(name, (int, np.integer)):
            d = int(name)
            if d < 0 or d >= len(self._domains):
                raise DomainNotFound(f"domain index {d} out of range [0,{len(self._domains)})")
            return d
        for d, dom in enumerate(self._domains):
            if dom.name == name:
                return d
        raise DomainNotFound(f"domain '{name}' not found. Available: {[d.name for d in self._domains]}")

    def domain(self, name: int | str) -> Domain:
        return self._domains[self.domain_index(name)]

    def grid(self, domain: int | str) -> np.ndarray:
        return self.domain(domain).grid.copy()

    # ------------------------------------------------------------------
    # Solution access
    # ------------------------------------------------------------------
    def solution(self, domain: int | str, component: int | str | None = None) -> np.ndarray:
        """1-D array for one component, or the (n_components, n_points) matrix."""
        dom = self.domain(domain)
        if component is None:
            return np.array(dom.values, copy=True)
        return np.array(dom.values[dom.component_index(component)], copy=True)

    def value(self, domain: int | str, component: int | str, point: int) -> float:
        return self.domain(domain).value(component, point)

    def set_value(self, domain: int | str, component: int | str, point: int, value: float) -> None:
        self.domain(domain).set_value(component, point, value)

    def set_flat_profile(self, domain: int | str, component: int | str, value: float) -> None:
        self.domain(domain).set_flat_profile(component, value)

    def set_profile(self, domain: int | str, components: Sequence[int | str] | int | str, table) -> None:
        """
        Set piecewise-linear profiles from a table.

        table is (len(components) + 1, n) with row 0 the normalized positions
        in [0, 1], or its transpose (n, len(components) + 1).
        """
        dom = self.domain(domain)
        if isinstance(components, (str, int, np.integer)):
            components = [components]
        comps = [dom.component_index(c) for c in components]
        arr = np.asarray(table, dtype=np.float64)
        nrow = len(comps) + 1
        if arr.ndim != 2:
            raise ShapeMismatch(f"profile table must be 2-D, got shape {arr.shape}")
        if arr.shape[0] == nrow:
            rows = arr
        elif arr.shape[1] == nrow:
            rows = arr.T
        else:
            raise ShapeMismatch(
                f"profile table shape {arr.shape} inconsistent with {len(comps)} component(s): "
                f"expected ({nrow}, n) or (n, {nrow})"
            )
        if rows.shape[1] < 1:
            raise ShapeMismatch("profile table has no positions")
        for i, n in enumerate(comps):
            dom.set_profile(n, rows[0], rows[i + 1])

    def get_initial_solution(self) -> None:
        """Reset every domain to its physics' initial values on the current grids."""
        for dom in self._domains:
            dom.values[:, :] = dom.initial_values()
        self._session.x_prev[:] = self._session.x
        self._session.invalidate_jacobian()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def _extended_targets(self, domain: int | str | None) -> List[Domain]:
        if domain is None:
            return [d for d in self._domains if not d.is_connector]
        dom = self.domain(domain)
        if dom.is_connector:
            raise InvalidArgument(f"domain '{dom.name}' is a connector; refinement applies to extended domains only")
        return [dom]

    def set_refine_criteria(
        self,
        domain: int | str | None = None,
        ratio: float = 10.0,
        slope: float = 0.8,
        curve: float = 0.8,
        prune: float = -0.1,
    ) -> None:
        for dom in self._extended_targets(domain):
            dom.refine = RefineCriteria(
                ratio=ratio,
                slope=slope,
                curve=curve,
                prune=prune,
                grid_min=dom.refine.grid_min,
                max_points=dom.refine.max_points,
            )

    def get_refine_criteria(self, domain: int | str) -> RefineCriteria:
        return self._extended_targets(domain)[0].refine

    def set_grid_min(self, domain: int | str | None, grid_min: float) -> None:
        for dom in self._extended_targets(domain):
            dom.refine = dataclasses.replace(dom.refine, grid_min=grid_min)

    def set_max_points(self, domain: int | str | None, max_points: int) -> None:
        for dom in self._extended_targets(domain):
            dom.refine = dataclasses.replace(dom.refine, max_points=max_points)

    def set_max_jac_age(self, ss_age: int, ts_age: Optional[int] = None) -> None:
        if ts_age is None:
            ts_age = ss_age
        self.config.newton = dataclasses.replace(
            self.config.newton, max_jac_age_ss=int(ss_age), max_jac_age_ts=int(ts_age)
        )

    def set_time_step(self, stepsize: float, steps: Sequence[int] | int) -> None:
        if isinstance(steps, (int, np.integer)):
            steps = [int(steps)]
        ts = self.config.timestep
        self.config.timestep = dataclasses.replace(
            ts, dt0=float(stepsize), steps=tuple(int(s) for s in steps), dt_max=max(ts.dt_max, float(stepsize))
        )

    def set_bounds(self, domain: int | str, component: int | str, lower: float, upper: float) -> None:
        self.domain(domain).set_bounds(component, lower, upper)
        self._session.refresh_settings()

    def set_steady_tolerances(
        self, domain: int | str, rtol: float, atol: float, component: int | str | None = None
    ) -> None:
        self.domain(domain).set_steady_tolerances(rtol, atol, component)

    def set_transient_tolerances(
        self, domain: int | str, rtol: float, atol: float, component: int | str | None = None
    ) -> None:
        self.domain(domain).set_transient_tolerances(rtol, atol, component)

    def set_fixed_temperature(self, temperature: float) -> int:
        """
        Pin the location where fixed_component crosses `temperature`.

        Every extended domain whose physics supports a fixed point and whose
        profile crosses the value gets a grid point at the crossing (unless
        one is already close). Returns the number of pinned domains.
        """
        T = float(temperature)
        if not np.isfinite(T) or T <= 0.0:
            raise InvalidArgument(f"fixed temperature must be positive, got {temperature}")

        comp_name = self.config.fixed_component
        candidates = [
            d for d in self._domains
            if not d.is_connector and d.supports_fixed_point and comp_name in d.components
        ]
        hits = []
        for dom in candidates:
            hit = locate_crossing(dom.grid, dom.values[dom.component_index(comp_name)], T)
            if hit is None:
                logger.debug("fixed temperature %.6g not crossed in domain '%s'", T, dom.name)
                continue
            hits.append((dom, hit[1]))
        if not hits:
            raise InvalidArgument(
                f"no domain supporting a fixed point has a '{comp_name}' profile crossing {T}"
            )

        # pins from an earlier temperature are dropped, including in domains it no longer crosses
        for dom in candidates:
            dom.fixed_point = None

        pinned = 0
        changed = False
        for dom, z_cross in hits:
            n = dom.component_index(comp_name)
            z_new, j = insert_point(dom.grid, z_cross)
            if z_new.size != dom.n_points:
                values = remap_values_to_new_grid(dom.grid, dom.values, z_new)
                values[n, j] = T
                dom.resize(z_new, values)
                changed = True
            else:
                dom.values[n, j] = T
            dom.fixed_point = FixedPoint(z=float(dom.grid[j]), component=n, value=T)
            pinned += 1
            logger.info("fixed %s=%.6g at z=%.6e (point %d) in domain '%s'", comp_name, T, dom.grid[j], j, dom.name)

        self.config.fixed_temperature = T
        if changed:
            self._rebuild()
        else:
            self._session.refresh_settings()
            self._session.invalidate_jacobian()
        return pinned

    def clear_fixed_temperature(self) -> None:
        for dom in self._domains:
            dom.fixed_point = None
        self.config.fixed_temperature = None
        self._session.refresh_settings()
        self._session.invalidate_jacobian()

    # ------------------------------------------------------------------
    # Residual diagnostics
    # ------------------------------------------------------------------
    def evaluate_residual(self, domain: int | str, rdt: float = 0.0, count: int = 0) -> np.ndarray:
        """(n_components, n_points) residual of one domain; the solution is unchanged."""
        return evaluate_domain_residual(self._session, self.domain(domain), rdt, count)

    def residual_norm(self) -> float:
        """Euclidean norm of the steady residual at the current solution."""
        return float(np.linalg.norm(residual_only(self._session, self._session.x.copy(), 0.0)))

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------
    def _solve_on_grid(self, loglevel: int) -> NewtonDiagnostics:
        session = self._session
        ts = self.config.timestep
        dt = ts.dt0
        for attempt in range(int(ts.max_attempts)):
            diag = solve_newton(session, 0.0, loglevel=loglevel - 1)
            self._last_newton = diag
            if diag.converged:
                if loglevel > 0:
                    logger.info(
                        "steady solve converged: points=%s iter=%d |F|_2=%.3e",
                        [d.n_points for d in self._domains], diag.n_iter, diag.res_norm_2,
                    )
                return diag

            n_steps = ts.steps_for_attempt(attempt)
            if loglevel > 0:
                logger.info(
                    "attempt %d: newton %s (%s); taking %d time steps from dt=%.3e",
                    attempt + 1, diag.status.value, diag.message, n_steps, dt,
                )
            session.check_cancel()
            result = take_time_steps(session, n_steps, dt, loglevel=loglevel - 1)
            if result.success:
                dt = result.dt
                continue
            if attempt == int(ts.max_attempts) - 1:
                raise SolveFailed(f"time stepping failed on the final attempt: {result.message}")
            if loglevel > 0:
                logger.info("attempt %d: %s; restarting from dt=%.3e", attempt + 1, result.message, ts.dt0)
            dt = ts.dt0

        diag = solve_newton(session, 0.0, loglevel=loglevel - 1)
        self._last_newton = diag
        if diag.converged:
            return diag
        raise SolveFailed(
            f"no steady solution after {ts.max_attempts} Newton/time-step attempts "
            f"(last |F|_2={diag.res_norm_2:.3e}, {diag.message})"
        )

    def refine(self, loglevel: int = 0) -> int:
        """Refine every extended domain once; returns the number of grid changes."""
        n_changes = 0
        for dom in self._domains:
            n_changes += refine_domain(dom, loglevel=loglevel)
        if n_changes:
            self._rebuild()
        return n_changes

    def solve(
        self,
        loglevel: int = 0,
        refine_grid: bool = True,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        """
        Solve to steady state, refining the grid between converged solves.

        Raises SolveFailed when the Newton/time-step budget is exhausted on
        some grid and SolveCancelled when `cancel` is set.
        """
        session = self._session
        session.cancel = cancel
        try:
            passes = 0
            while True:
                self._solve_on_grid(loglevel)
                if not refine_grid:
                    break
                if passes >= int(self.config.max_refine_passes):
                    logger.warning(
                        "refinement pass limit (%d) reached; keeping the current grid",
                        self.config.max_refine_passes,
                    )
                    break
                session.check_cancel()
                n_changes = self.refine(loglevel)
                if n_changes == 0:
                    break
                passes += 1
        finally:
            self._session.cancel = None

        if loglevel > 0:
            logger.info(
                "solve done: points=%s |F|_2=%.3e grids=%d",
                [d.n_points for d in self._domains], self.residual_norm(), len(self._session.stats),
            )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def save(self, path, solution_id: str = "solution", description: str = "--") -> None:
        save_solution(path, self._domains, solution_id=solution_id, description=description)

    def restore(self, path, solution_id: str = "solution") -> str:
        try:
            description = restore_solution(path, self._domains, solution_id=solution_id)
            fixed = [d.fixed_point.value for d in self._domains if d.fixed_point is not None]
            self.config.fixed_temperature = fixed[0] if fixed else None
        finally:
            # domains resized before a failure must still be bound to the global vector
            self._rebuild()
        return description

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    @property
    def stats(self) -> List[Dict[str, Any]]:
        return [s.as_dict() for s in self._session.stats]

    def write_stats(self, stream: Optional[TextIO] = None) -> None:
        lines = [
            f"{'grid':>4} {'points':>12} {'f_evals':>8} {'f_time[s]':>10} "
            f"{'jac_evals':>9} {'jac_time[s]':>11} {'newton':>7} {'steps':>6}"
        ]
        for g, s in enumerate(self._session.stats):
            lines.append(
                f"{g:>4} {sum(s.n_points):>12d} {s.n_func_evals:>8d} {s.time_func:>10.3e} "
                f"{s.n_jac_evals:>9d} {s.time_jac:>11.3e} {s.n_newton_iter:>7d} {s.n_time_steps:>6d}"
            )
            for name in sorted(s.domain_evals):
                lines.append(
                    f"     {name:>16}: evals={s.domain_evals[name]} time={s.domain_time.get(name, 0.0):.3e}s"
                )
        self._emit(lines, stream)

    def show_solution(self, stream: Optional[TextIO] = None) -> None:
        lines: List[str] = []
        for dom in self._domains:
            lines.append(f">>> {dom.name} ({dom.kind.value}, {dom.n_points} points)")
            lines.append(f"{'z':>14} " + " ".join(f"{c:>14}" for c in dom.components))
            for j in range(dom.n_points):
                row = " ".join(f"{dom.values[n, j]:>14.6e}" for n in range(dom.n_components))
                lines.append(f"{dom.grid[j]:>14.6e} {row}")
        self._emit(lines, stream)

    @staticmethod
    def _emit(lines: List[str], stream: Optional[TextIO]) -> None:
        if stream is None:
            for line in lines:
                logger.info(line)
            return
        stream.write("\n".join(lines) + "\n")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _sync_connectors(self) -> None:
        """Place every connector at its neighbour's boundary coordinate."""
        doms = self._domains
        for i, dom in enumerate(doms):
            if not dom.is_connector:
                continue
            if i > 0 and not doms[i - 1].is_connector:
                z = float(doms[i - 1].grid[-1])
            elif i + 1 < len(doms) and not doms[i + 1].is_connector:
                z = float(doms[i + 1].grid[0])
            else:
                continue
            dom.grid = np.array([z], dtype=np.float64)

    def _rebuild(self) -> None:
        self._sync_connectors()
        self._session.rebuild()
