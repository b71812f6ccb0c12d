"""
Grid refiner tests.

Tests:
1. A well-resolved profile produces no insertions and no deletions
2. A point next to an interval marked for insertion is never deleted
3. Consecutive points are never deleted in one pass; end points are kept
4. The pinned (fixed) point is never deleted
5. grid_min and max_points bound insertions
6. Remapping keeps shared points exactly and interpolates midpoints
"""

from __future__ import annotations

import numpy as np

from core.domain import extended_domain
from core.grid import uniform_grid
from core.refine import analyze, apply_plan, refine_domain
from core.remap import remap_values_to_new_grid
from core.types import FixedPoint, RefineCriteria
from physics.reaction_diffusion import ReactionDiffusion


def _criteria(**kw) -> RefineCriteria:
    base = dict(ratio=10.0, slope=0.8, curve=0.8, prune=-0.1)
    base.update(kw)
    return RefineCriteria(**base)


def test_well_resolved_grid_is_left_unchanged():
    z = uniform_grid(0.0, 1.0, 11)
    values = np.vstack([300.0 + 600.0 * z, 1.0 - 0.5 * z])

    plan = analyze(z, values, _criteria())
    assert plan.insert == []
    assert plan.delete == []

    dom = extended_domain("slab", ["T", "Y"], z, ReactionDiffusion(), refine=_criteria())
    dom.values[:, :] = values
    assert refine_domain(dom) == 0
    assert refine_domain(dom) == 0
    np.testing.assert_array_equal(dom.grid, z)


def test_steep_step_inserts_midpoints():
    z = uniform_grid(0.0, 1.0, 6)
    values = np.array([[0.0, 0.0, 0.0, 1.0, 1.0, 1.0]])

    plan = analyze(z, values, _criteria(slope=0.5, curve=0.9))
    assert 2 in plan.insert

    z_new, v_new = apply_plan(z, values, plan)
    assert z_new.size == z.size + len(plan.insert)
    assert np.all(np.diff(z_new) > 0.0)
    np.testing.assert_allclose(z_new[np.searchsorted(z_new, 0.5)], 0.5)
    np.testing.assert_allclose(v_new[0, np.searchsorted(z_new, 0.5)], 0.5)


def test_point_next_to_insertion_is_not_deleted():
    z = uniform_grid(0.0, 1.0, 8)
    values = np.array([[0.0, 0.0, 0.0, 0.0, 1.0, 1.0, 1.0, 1.0]])

    plan = analyze(z, values, _criteria(slope=0.5, curve=0.9, prune=0.1))

    assert sorted(plan.insert) == [2, 3, 4]
    # points 2 and 5 would be pruned, but each borders a marked interval
    assert 2 not in plan.delete
    assert 5 not in plan.delete
    assert plan.delete == [1, 6]


def test_pruning_skips_neighbours_of_deleted_points_and_ends():
    z = uniform_grid(0.0, 1.0, 6)
    values = np.full((1, 6), 7.0)

    plan = analyze(z, values, _criteria(prune=0.1))
    assert plan.insert == []
    assert plan.delete == [1, 3]
    assert 0 not in plan.delete and 5 not in plan.delete


def test_no_pruning_when_prune_negative():
    z = uniform_grid(0.0, 1.0, 6)
    values = np.full((1, 6), 7.0)
    assert analyze(z, values, _criteria(prune=-0.1)).delete == []


def test_fixed_point_is_protected():
    z = uniform_grid(0.0, 1.0, 6)
    values = np.full((1, 6), 7.0)

    plan = analyze(z, values, _criteria(prune=0.1), protected=(1,))
    assert 1 not in plan.delete
    assert plan.delete == [2, 4]

    dom = extended_domain("slab", ["T"], z, ReactionDiffusion(initial={"T": 7.0}), refine=_criteria(prune=0.1))
    dom.fixed_point = FixedPoint(z=float(z[3]), component=0, value=7.0)
    refine_domain(dom)
    assert float(z[3]) in dom.grid.tolist()


def test_grid_min_blocks_insertion():
    z = np.array([0.0, 1.0e-3, 2.0e-3, 3.0e-3])
    values = np.array([[0.0, 0.0, 1.0, 1.0]])

    plan = analyze(z, values, _criteria(slope=0.5, curve=0.9, grid_min=1.0e-3))
    assert plan.insert == []

    plan = analyze(z, values, _criteria(slope=0.5, curve=0.9, grid_min=1.0e-4))
    assert 1 in plan.insert


def test_max_points_caps_insertion():
    z = uniform_grid(0.0, 1.0, 6)
    values = np.array([[0.0, 0.0, 0.0, 1.0, 1.0, 1.0]])

    plan = analyze(z, values, _criteria(slope=0.5, curve=0.9, max_points=7))
    assert len(plan.insert) == 1


def test_remap_keeps_shared_points_exactly():
    z_old = np.array([0.0, 0.3, 1.0])
    v_old = np.array([[1.0 / 3.0, 2.0 / 7.0, 5.0 / 11.0]])
    z_new = np.array([0.0, 0.15, 0.3, 0.65, 1.0])

    v_new = remap_values_to_new_grid(z_old, v_old, z_new)

    assert v_new[0, 0] == v_old[0, 0]
    assert v_new[0, 2] == v_old[0, 1]
    assert v_new[0, 4] == v_old[0, 2]
    np.testing.assert_allclose(v_new[0, 1], 0.5 * (v_old[0, 0] + v_old[0, 1]))
    np.testing.assert_allclose(v_new[0, 3], 0.5 * (v_old[0, 1] + v_old[0, 2]))
