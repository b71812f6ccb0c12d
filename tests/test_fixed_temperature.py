"""
Fixed-temperature pinning tests (free front domain).

Tests:
1. Non-positive temperatures are rejected
2. Pinning inserts a grid point at the crossing and sets T there exactly
3. The speed row at the pinned point is T[j] - T_fix
4. A temperature no profile crosses raises InvalidArgument
5. clear_fixed_temperature drops the pin and restores the free speed rows
6. Re-pinning drops stale pins in domains the new temperature no longer crosses
"""

from __future__ import annotations

import numpy as np
import pytest

from core.domain import connector_domain, extended_domain
from core.errors import InvalidArgument
from core.grid import uniform_grid
from core.types import StackConfig
from driver.stack import Stack
from physics.boundaries import FixedValueBoundary, InterfaceContinuity, ZeroGradientBoundary
from physics.free_front import FreeFront
from physics.reaction_diffusion import ReactionDiffusion


def _make_front_stack(config: StackConfig | None = None, n_points: int = 21) -> Stack:
    inlet = connector_domain("inlet", ["T"], FixedValueBoundary({"T": 300.0}))
    front = extended_domain("front", ["T", "u"], uniform_grid(0.0, 1.0, n_points), FreeFront(u_init=0.5))
    outlet = connector_domain("outlet", [], ZeroGradientBoundary())
    return Stack([inlet, front, outlet], config)


def _make_two_front_stack() -> Stack:
    inlet = connector_domain("inlet", ["T"], FixedValueBoundary({"T": 300.0}))
    f0 = extended_domain("f0", ["T", "u"], uniform_grid(0.0, 1.0, 21), FreeFront(u_init=0.5))
    mid = connector_domain("mid", [], InterfaceContinuity(components=["T"]))
    f1 = extended_domain("f1", ["T", "u"], uniform_grid(1.0, 2.0, 21), FreeFront(u_init=0.5))
    outlet = connector_domain("outlet", [], ZeroGradientBoundary())
    return Stack([inlet, f0, mid, f1, outlet])


@pytest.mark.parametrize("bad", [0.0, -10.0, float("nan")])
def test_non_positive_temperature_rejected(bad):
    stack = _make_front_stack()
    with pytest.raises(InvalidArgument, match="positive"):
        stack.set_fixed_temperature(bad)


def test_pin_inserts_point_and_sets_value():
    stack = _make_front_stack()
    assert stack.domain("front").n_points == 21

    pinned = stack.set_fixed_temperature(1000.0)

    front = stack.domain("front")
    assert pinned == 1
    assert front.n_points == 22
    fp = front.fixed_point
    j = int(np.argmin(np.abs(front.grid - fp.z)))
    assert front.grid[j] == fp.z
    assert stack.value("front", "T", j) == 1000.0
    assert stack.config.fixed_temperature == 1000.0
    # the global vector was rebuilt around the new point
    assert stack.session.layout.size == 1 + 2 * 22
    assert np.all(np.diff(front.grid) > 0.0)


def test_speed_row_at_pinned_point():
    stack = _make_front_stack()
    stack.set_fixed_temperature(1000.0)
    front = stack.domain("front")
    j = int(np.argmin(np.abs(front.grid - front.fixed_point.z)))

    r = stack.evaluate_residual("front")
    assert r[1, j] == 0.0

    stack.set_value("front", "T", j, 1010.0)
    r = stack.evaluate_residual("front")
    assert r[1, j] == pytest.approx(10.0)


def test_uncrossed_temperature_rejected():
    stack = _make_front_stack()
    with pytest.raises(InvalidArgument, match="crossing"):
        stack.set_fixed_temperature(5000.0)
    assert stack.domain("front").fixed_point is None


def test_domains_without_fixed_point_support_are_skipped():
    left = connector_domain("left", ["T"], FixedValueBoundary({"T": 300.0}))
    slab = extended_domain("slab", ["T"], uniform_grid(0.0, 1.0, 5), ReactionDiffusion(initial={"T": 300.0}))
    right = connector_domain("right", ["T"], FixedValueBoundary({"T": 900.0}))
    stack = Stack([left, slab, right])
    stack.set_profile("slab", ["T"], [[0.0, 1.0], [300.0, 900.0]])

    with pytest.raises(InvalidArgument):
        stack.set_fixed_temperature(600.0)
    assert stack.domain("slab").n_points == 5


def test_config_pin_applied_at_construction_and_cleared():
    stack = _make_front_stack(StackConfig(fixed_temperature=1000.0))
    front = stack.domain("front")
    assert front.fixed_point is not None
    assert front.n_points == 22

    stack.clear_fixed_temperature()
    assert front.fixed_point is None
    assert stack.config.fixed_temperature is None
    r = stack.evaluate_residual("front")
    u = stack.solution("front", "u")
    assert r[1, 0] == pytest.approx(u[0] - 0.5)


def test_repin_drops_stale_pins():
    stack = _make_two_front_stack()
    assert stack.set_fixed_temperature(1000.0) == 2

    stack.set_flat_profile("f1", "T", 300.0)
    assert stack.set_fixed_temperature(1500.0) == 1

    assert stack.domain("f1").fixed_point is None
    fp = stack.domain("f0").fixed_point
    assert fp.value == 1500.0
    assert stack.config.fixed_temperature == 1500.0
    # f1 is back on the free speed equations
    stack.set_value("f1", "u", 0, 0.7)
    r = stack.evaluate_residual("f1")
    assert r[1, 0] == pytest.approx(0.2)

    # a rejected temperature leaves the current pin in place
    with pytest.raises(InvalidArgument, match="crossing"):
        stack.set_fixed_temperature(5000.0)
    assert stack.domain("f0").fixed_point == fp
    assert stack.config.fixed_temperature == 1500.0
