"""
End-to-end Stack.solve tests.

Tests:
1. Nonlinear conduction slab (k = T/300) converges to T^2 linear in z,
   and the refined grid is a fixed point of the refiner
2. Two-layer wall: interface value and flux continuity
3. A hopeless iteration budget raises SolveFailed
4. A set cancel token raises SolveCancelled and is detached afterwards
5. Statistics, stats report and solution dump
6. evaluate_residual leaves the solution untouched
"""

from __future__ import annotations

import io

import numpy as np
import pytest

from core.domain import connector_domain, extended_domain
from core.errors import SolveCancelled, SolveFailed
from core.grid import uniform_grid
from core.types import NewtonConfig, RefineCriteria, StackConfig, TimeStepConfig
from driver.stack import Stack
from physics.boundaries import FixedValueBoundary, InterfaceContinuity
from physics.reaction_diffusion import ReactionDiffusion
from solvers.nonlinear_context import CancelToken


def _conductivity(T: np.ndarray) -> np.ndarray:
    return T / 300.0


def _exact(z: np.ndarray) -> np.ndarray:
    return np.sqrt(90000.0 + 720000.0 * z)


def _make_slab(config: StackConfig | None = None, n_points: int = 6) -> Stack:
    left = connector_domain("cold", ["T"], FixedValueBoundary({"T": 300.0}))
    slab = extended_domain(
        "slab",
        ["T"],
        uniform_grid(0.0, 1.0, n_points),
        ReactionDiffusion(diffusivity=_conductivity, initial={"T": 300.0}),
        refine=RefineCriteria(slope=0.2, curve=0.2),
    )
    right = connector_domain("hot", ["T"], FixedValueBoundary({"T": 900.0}))
    stack = Stack([left, slab, right], config)
    for name in ("cold", "slab", "hot"):
        stack.set_steady_tolerances(name, 1.0e-8, 1.0e-10)
    return stack


def test_conduction_slab_matches_analytic_profile():
    stack = _make_slab(StackConfig(max_refine_passes=30))

    stack.solve(loglevel=0, refine_grid=True)

    z = stack.grid("slab")
    T = stack.solution("slab", "T")
    assert z.size > 6
    assert np.all(np.diff(z) > 0.0)
    assert np.all(np.diff(T) > 0.0)
    np.testing.assert_allclose(T, _exact(z), rtol=1.0e-6)
    assert stack.residual_norm() < 1.0e-2
    assert stack.refine() == 0
    assert len(stack.stats) >= 2


def test_conduction_slab_without_refinement_keeps_grid():
    stack = _make_slab()
    stack.solve(refine_grid=False)

    z = stack.grid("slab")
    np.testing.assert_array_equal(z, uniform_grid(0.0, 1.0, 6))
    np.testing.assert_allclose(stack.solution("slab", "T"), _exact(z), rtol=1.0e-6)
    assert len(stack.stats) == 1


def test_two_layer_wall_interface_continuity():
    inside = connector_domain("inside", ["T"], FixedValueBoundary({"T": 350.0}))
    insulation = extended_domain(
        "insulation", ["T"], uniform_grid(0.0, 0.4, 5), ReactionDiffusion(diffusivity=0.1, initial={"T": 320.0})
    )
    contact = connector_domain("contact", [], InterfaceContinuity())
    brick = extended_domain(
        "brick", ["T"], uniform_grid(0.4, 1.0, 7), ReactionDiffusion(diffusivity=1.0, initial={"T": 300.0})
    )
    outside = connector_domain("outside", ["T"], FixedValueBoundary({"T": 280.0}))
    stack = Stack([inside, insulation, contact, brick, outside])
    assert stack.domain("contact").point_bandwidth == 2

    stack.solve(refine_grid=False)

    T_if = 350.0 - 70.0 * 4.0 / 4.6
    T_ins = stack.solution("insulation", "T")
    T_brk = stack.solution("brick", "T")
    assert T_ins[-1] == pytest.approx(T_if, rel=1e-6)
    assert T_brk[0] == pytest.approx(T_if, rel=1e-6)
    assert stack.grid("contact").tolist() == [0.4]

    q_ins = -0.1 * (T_ins[-1] - T_ins[-2]) / 0.1
    q_brk = -1.0 * (T_brk[1] - T_brk[0]) / 0.1
    assert q_ins == pytest.approx(q_brk, rel=1e-6)
    assert q_ins == pytest.approx(70.0 / 4.6, rel=1e-6)


def test_exhausted_budget_raises_solve_failed():
    config = StackConfig(
        newton=NewtonConfig(max_newton_iter=1),
        timestep=TimeStepConfig(dt0=1.0e-5, steps=(2,), max_attempts=1),
    )
    stack = _make_slab(config)

    with pytest.raises(SolveFailed):
        stack.solve(refine_grid=False)
    assert stack.session.cancel is None


def test_cancel_token_stops_solve():
    stack = _make_slab()
    token = CancelToken()
    token.cancel()

    with pytest.raises(SolveCancelled):
        stack.solve(cancel=token)
    assert stack.session.cancel is None

    # the stack is still usable afterwards
    stack.solve(refine_grid=False)
    assert stack.residual_norm() < 1.0e-2


def test_stats_and_reports():
    stack = _make_slab()
    stack.solve(refine_grid=False)

    stats = stack.stats
    assert len(stats) == 1
    assert stats[0]["n_points"] == [1, 6, 1]
    assert stats[0]["n_func_evals"] > 0
    assert stats[0]["n_jac_evals"] >= 1
    assert stats[0]["domain_evals"]["slab"] == stats[0]["n_func_evals"]

    buf = io.StringIO()
    stack.write_stats(buf)
    text = buf.getvalue()
    assert "jac_evals" in text
    assert "slab" in text

    buf = io.StringIO()
    stack.show_solution(buf)
    text = buf.getvalue()
    assert ">>> slab (extended, 6 points)" in text
    assert ">>> cold (connector, 1 points)" in text


def test_evaluate_residual_does_not_touch_solution():
    stack = _make_slab()
    x_before = stack.session.x.copy()

    r = stack.evaluate_residual("slab", rdt=10.0, count=3)

    assert r.shape == (1, 6)
    np.testing.assert_array_equal(stack.session.x, x_before)
    # flat 300 K initial guess: interior rows vanish, the hot-side row does not
    np.testing.assert_allclose(r[0, 1:-1], 0.0, atol=1e-12)
    assert r[0, -1] == pytest.approx(-600.0)
