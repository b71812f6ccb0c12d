"""
Solution file save/restore tests.

Tests:
1. save -> restore reproduces grids and values exactly (incl. resized grids)
2. Several ids coexist in one file; list_solutions reports them
3. Missing ids raise NameNotFound, missing files FileNotFoundError
4. Structural mismatches raise IncompatibleSolution and leave the stack untouched
5. The fixed point survives a round trip
6. A malformed grid in the file is rejected before any domain changes
"""

from __future__ import annotations

import numpy as np
import pytest
import yaml

from core.domain import connector_domain, extended_domain
from core.errors import IncompatibleSolution, NameNotFound
from core.grid import uniform_grid
from driver.stack import Stack
from persistence.solution_file import list_solutions, read_solution_file
from physics.boundaries import FixedValueBoundary
from physics.free_front import FreeFront
from physics.reaction_diffusion import ReactionDiffusion


def _make_stack(n_points: int = 5, components=("T",), slab_name: str = "slab") -> Stack:
    left = connector_domain("left", ["T"], FixedValueBoundary({"T": 300.0}))
    slab = extended_domain(slab_name, list(components), uniform_grid(0.0, 1.0, n_points), ReactionDiffusion())
    right = connector_domain("right", ["T"], FixedValueBoundary({"T": 900.0}))
    return Stack([left, slab, right])


def test_round_trip_is_exact(tmp_path):
    path = tmp_path / "sol.yaml"
    src = _make_stack(n_points=7)
    src.set_profile("slab", ["T"], [[0.0, 1.0], [1.0 / 3.0, 2.0 / 7.0]])
    src.set_value("slab", "T", 3, 0.1 + 1.0e-12)
    src.save(path, "run1", "first run")

    dst = _make_stack(n_points=4)
    description = dst.restore(path, "run1")

    assert description == "first run"
    assert dst.domain("slab").n_points == 7
    np.testing.assert_array_equal(dst.grid("slab"), src.grid("slab"))
    np.testing.assert_array_equal(dst.solution("slab"), src.solution("slab"))
    np.testing.assert_array_equal(dst.solution("right"), src.solution("right"))
    # restored values are bound to the rebuilt global vector
    assert dst.session.layout.size == 1 + 7 + 1
    dst.set_value("slab", "T", 0, 42.0)
    assert dst.session.x[dst.session.layout.index(1, 0, 0)] == 42.0


def test_multiple_ids_in_one_file(tmp_path):
    path = tmp_path / "sol.yaml"
    stack = _make_stack()
    stack.save(path, "a", "cold")
    stack.set_flat_profile("slab", "T", 500.0)
    stack.save(path, "b", "warm")

    assert list_solutions(path) == {"a": "cold", "b": "warm"}
    assert set(read_solution_file(path)) == {"a", "b"}

    stack.restore(path, "a")
    assert np.all(stack.solution("slab", "T") == 0.0)
    stack.restore(path, "b")
    assert np.all(stack.solution("slab", "T") == 500.0)

    # saving an existing id overwrites it, the others are kept
    stack.set_flat_profile("slab", "T", 1.5)
    stack.save(path, "a", "replaced")
    assert list_solutions(path) == {"a": "replaced", "b": "warm"}
    assert not list(tmp_path.glob("*.tmp"))


def test_missing_id_and_file(tmp_path):
    path = tmp_path / "sol.yaml"
    stack = _make_stack()
    with pytest.raises(FileNotFoundError):
        stack.restore(path, "nothing")

    stack.save(path, "present")
    with pytest.raises(NameNotFound, match="'absent'"):
        stack.restore(path, "absent")


@pytest.mark.parametrize(
    "other",
    [
        lambda: _make_stack(slab_name="core"),
        lambda: _make_stack(components=("T", "Y")),
    ],
)
def test_structure_mismatch_rejected(tmp_path, other):
    path = tmp_path / "sol.yaml"
    _make_stack().save(path, "s")

    stack = other()
    before = stack.solution(1).copy()
    n_before = stack.domain(1).n_points
    with pytest.raises(IncompatibleSolution):
        stack.restore(path, "s")
    assert stack.domain(1).n_points == n_before
    np.testing.assert_array_equal(stack.solution(1), before)


def test_domain_count_mismatch_rejected(tmp_path):
    path = tmp_path / "sol.yaml"
    _make_stack().save(path, "s")

    slab = extended_domain("slab", ["T"], uniform_grid(0.0, 1.0, 5), ReactionDiffusion())
    right = connector_domain("right", ["T"], FixedValueBoundary({"T": 900.0}))
    with pytest.raises(IncompatibleSolution, match="2"):
        Stack([slab, right]).restore(path, "s")


def test_fixed_point_round_trip(tmp_path):
    path = tmp_path / "front.yaml"

    def _front_stack() -> Stack:
        inlet = connector_domain("inlet", ["T"], FixedValueBoundary({"T": 300.0}))
        front = extended_domain("front", ["T", "u"], uniform_grid(0.0, 1.0, 11), FreeFront())
        outlet = connector_domain("outlet", ["T"], FixedValueBoundary({"T": 2000.0}))
        return Stack([inlet, front, outlet])

    src = _front_stack()
    src.set_fixed_temperature(1000.0)
    src.save(path, "pinned")

    dst = _front_stack()
    dst.restore(path, "pinned")
    fp = dst.domain("front").fixed_point
    assert fp is not None
    assert fp.value == 1000.0
    assert fp.component == 0
    assert fp.z == src.domain("front").fixed_point.z
    assert dst.config.fixed_temperature == 1000.0


@pytest.mark.parametrize("bad_grid", [[0.0, 0.5, 0.25, 0.75, 1.0], [0.0, 0.25, float("nan"), 0.75, 1.0], [0.5]])
def test_malformed_grid_rejected(tmp_path, bad_grid):
    path = tmp_path / "sol.yaml"
    src = _make_stack(n_points=5)
    src.save(path, "s")
    doc = yaml.safe_load(path.read_text(encoding="utf-8"))
    slab = doc["s"]["domains"][1]
    slab["grid"] = bad_grid
    slab["values"]["T"] = [0.0] * len(bad_grid)
    path.write_text(yaml.safe_dump(doc), encoding="utf-8")

    stack = _make_stack(n_points=7)
    with pytest.raises(IncompatibleSolution, match="slab"):
        stack.restore(path, "s")

    assert stack.domain("slab").n_points == 7
    # every domain is still bound to the solver vector
    stack.set_value("left", "T", 0, 555.0)
    assert stack.session.x[stack.session.layout.index(0, 0, 0)] == 555.0
    stack.set_value("slab", "T", 6, 1.5)
    assert stack.session.x[stack.session.layout.index(1, 0, 6)] == 1.5
