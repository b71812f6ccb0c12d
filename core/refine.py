"""
Grid refinement for extended domains.

Per component, three insertion criteria mark intervals (j, j+1):
  slope : |v[j+1] - v[j]| / range(v)             > criteria.slope
  curve : |s[j] - s[j-1]| / range(s)             > criteria.curve   (marks j-1 and j)
  ratio : dz[j] / dz[j-1] outside [1/ratio, ratio]
Points whose slope/curve ratios stay below criteria.prune for every component
are deleted (only when prune > 0), unless an adjacent interval is marked for
insertion, the previous point was just deleted, or the point is pinned.
New points are interval midpoints; values are reinterpolated by core.remap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

import numpy as np

from core.domain import Domain
from core.remap import remap_values_to_new_grid
from core.types import FloatArray, RefineCriteria

logger = logging.getLogger(__name__)

# Components whose range is below this fraction of their magnitude are not refined on
MIN_RANGE = 0.01
_FUZZ = 1.0e-300


@dataclass(slots=True)
class RefinePlan:
    """Outcome of analysing one domain."""

    insert: List[int] = field(default_factory=list)  # interval indices j -> midpoint of (j, j+1)
    delete: List[int] = field(default_factory=list)  # point indices
    reasons: Dict[int, List[str]] = field(default_factory=dict)

    @property
    def n_changes(self) -> int:
        return len(self.insert) + len(self.delete)


def _mark(loc: Dict[int, List[str]], j: int, reason: str) -> None:
    loc.setdefault(j, [])
    if reason not in loc[j]:
        loc[j].append(reason)


def analyze(
    z: FloatArray,
    values: FloatArray,
    criteria: RefineCriteria,
    *,
    components: List[str] | None = None,
    protected: tuple[int, ...] = (),
) -> RefinePlan:
    """Propose insertions/deletions for one domain's (n_components, n_points) solution."""
    z = np.asarray(z, dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)
    npts = z.size
    plan = RefinePlan()
    if npts < 2:
        return plan

    names = components or [str(n) for n in range(values.shape[0])]
    loc: Dict[int, List[str]] = {}
    keep = np.zeros(npts, dtype=bool)
    keep[0] = keep[-1] = True
    for j in protected:
        if 0 <= j < npts:
            keep[j] = True

    dz = np.diff(z)

    for n in range(values.shape[0]):
        v = values[n]
        vmin, vmax = float(np.min(v)), float(np.max(v))
        vrange = vmax - vmin
        vmag = max(abs(vmax), abs(vmin))
        if vrange <= MIN_RANGE * vmag or vrange <= 0.0:
            continue

        dv = np.abs(np.diff(v)) / vrange
        for j in range(npts - 1):
            if dv[j] > criteria.slope:
                _mark(loc, j, names[n])
            if dv[j] >= criteria.prune:
                keep[j] = keep[j + 1] = True

        if npts < 3:
            continue
        s = np.diff(v) / dz
        srange = float(np.max(s) - np.min(s))
        smag = float(np.max(np.abs(s)))
        if srange <= MIN_RANGE * smag or srange <= 0.0:
            continue
        ds = np.abs(np.diff(s)) / (srange + _FUZZ)
        for j in range(1, npts - 1):
            if ds[j - 1] > criteria.curve:
                _mark(loc, j - 1, names[n])
                _mark(loc, j, names[n])
            if ds[j - 1] >= criteria.prune:
                keep[j] = True

    for j in range(1, npts - 1):
        if dz[j] > criteria.ratio * dz[j - 1]:
            _mark(loc, j, "point ratio")
        if dz[j] < dz[j - 1] / criteria.ratio:
            _mark(loc, j - 1, "point ratio")

    # Grid-min floor and point budget
    budget = max(0, criteria.max_points - npts)
    for j in sorted(loc):
        if dz[j] < 2.0 * criteria.grid_min:
            logger.debug("skip insertion in interval %d: dz=%.3e below 2*grid_min", j, dz[j])
            continue
        if len(plan.insert) >= budget:
            logger.debug("max_points=%d reached; remaining insertions dropped", criteria.max_points)
            break
        plan.insert.append(j)
        plan.reasons[j] = loc[j]

    if criteria.prune > 0.0:
        inserted = set(plan.insert)
        last_deleted = -2
        for j in range(1, npts - 1):
            if keep[j]:
                continue
            if (j - 1) in inserted or j in inserted:
                continue
            if last_deleted == j - 1:
                continue
            plan.delete.append(j)
            last_deleted = j

    return plan


def apply_plan(z: FloatArray, values: FloatArray, plan: RefinePlan) -> tuple[FloatArray, FloatArray]:
    """Return (new_grid, new_values) after applying insertions and deletions."""
    z = np.asarray(z, dtype=np.float64)
    if plan.n_changes == 0:
        return z.copy(), np.array(values, dtype=np.float64, copy=True)
    mids = np.array([0.5 * (z[j] + z[j + 1]) for j in plan.insert], dtype=np.float64)
    kept = np.delete(z, plan.delete)
    z_new = np.sort(np.concatenate([kept, mids]))
    # values are interpolated on the pre-deletion grid
    return z_new, remap_values_to_new_grid(z, values, z_new)


def refine_domain(domain: Domain, *, loglevel: int = 0) -> int:
    """
    Analyse and rewrite one extended domain's grid in place.

    Returns the number of grid changes (insertions + deletions). The caller
    must rebuild its layout and rebind the domain values afterwards.
    """
    if domain.is_connector:
        return 0
    protected: tuple[int, ...] = ()
    if domain.fixed_point is not None:
        hits = np.nonzero(domain.grid == domain.fixed_point.z)[0]
        protected = tuple(int(j) for j in hits)

    plan = analyze(
        domain.grid,
        domain.values,
        domain.refine,
        components=domain.components,
        protected=protected,
    )
    if plan.n_changes == 0:
        if loglevel > 0:
            logger.info("refine: domain '%s' no new points needed", domain.name)
        return 0

    if loglevel > 0:
        logger.info(
            "refine: domain '%s' inserting %d point(s), removing %d point(s)",
            domain.name,
            len(plan.insert),
            len(plan.delete),
        )
    if loglevel > 1:
        for j in plan.insert:
            logger.info("  insert between %d and %d: %s", j, j + 1, ", ".join(plan.reasons.get(j, [])))
        if plan.delete:
            logger.info("  delete points %s", plan.delete)

    z_new, v_new = apply_plan(domain.grid, domain.values, plan)
    domain.resize(z_new, v_new)
    return plan.n_changes
