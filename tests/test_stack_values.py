"""
Stack value access and profile tests.

Tests:
1. set_value / value / solution agree and touch only the addressed entry
2. set_profile interpolates a (components+1, n) table and its transpose
3. set_profile rejects inconsistent tables with ShapeMismatch
4. name / index lookups raise DomainNotFound / NameNotFound
5. connectors are placed at their neighbour's boundary coordinate
"""

from __future__ import annotations

import numpy as np
import pytest

from core.domain import connector_domain, extended_domain
from core.errors import DomainNotFound, InvalidArgument, NameNotFound, ShapeMismatch
from core.grid import uniform_grid
from driver.stack import Stack
from physics.boundaries import FixedValueBoundary
from physics.reaction_diffusion import ReactionDiffusion


def _make_stack(n_points: int = 5, z0: float = 0.0, z1: float = 1.0) -> Stack:
    left = connector_domain("left", ["T"], FixedValueBoundary({"T": 300.0}))
    slab = extended_domain(
        "slab",
        ["T", "Y"],
        uniform_grid(z0, z1, n_points),
        ReactionDiffusion(diffusivity=1.0, initial={"T": 300.0, "Y": 0.5}),
    )
    right = connector_domain("right", ["T"], FixedValueBoundary({"T": 900.0}))
    return Stack([left, slab, right])


def test_set_value_then_get_solution():
    stack = _make_stack()
    before = stack.solution("slab")

    stack.set_value("slab", "T", 2, 555.0)

    assert stack.value("slab", "T", 2) == 555.0
    assert stack.solution("slab", "T")[2] == 555.0
    after = stack.solution("slab")
    changed = np.argwhere(after != before)
    assert changed.tolist() == [[0, 2]]

    # values are views into the global vector
    layout = stack.session.layout
    assert stack.session.x[layout.index(1, 0, 2)] == 555.0


def test_set_value_accepts_indices():
    stack = _make_stack()
    stack.set_value(1, 1, 0, 0.25)
    assert stack.value("slab", "Y", 0) == 0.25
    assert stack.solution(1, 1)[0] == 0.25


def test_set_flat_profile():
    stack = _make_stack()
    stack.set_flat_profile("slab", "Y", 0.1)
    assert np.all(stack.solution("slab", "Y") == 0.1)
    assert np.all(stack.solution("slab", "T") == 300.0)


def test_set_profile_interpolates_linear_table():
    stack = _make_stack(n_points=5, z0=2.0, z1=4.0)
    stack.set_profile("slab", ["T"], [[0.0, 1.0], [300.0, 900.0]])

    np.testing.assert_allclose(stack.solution("slab", "T"), [300.0, 450.0, 600.0, 750.0, 900.0])


def test_set_profile_accepts_transposed_table():
    stack = _make_stack(n_points=5)
    table = np.array(
        [
            [0.0, 300.0, 1.0],
            [0.25, 350.0, 0.75],
            [0.5, 500.0, 0.0],
            [1.0, 300.0, 1.0],
        ]
    )  # (n, components+1)
    stack.set_profile("slab", ["T", "Y"], table)

    np.testing.assert_allclose(stack.solution("slab", "T"), [300.0, 350.0, 500.0, 400.0, 300.0])
    np.testing.assert_allclose(stack.solution("slab", "Y"), [1.0, 0.75, 0.0, 0.5, 1.0])


def test_set_profile_shape_mismatch():
    stack = _make_stack()
    with pytest.raises(ShapeMismatch, match="inconsistent"):
        stack.set_profile("slab", ["T"], np.zeros((3, 3)))
    with pytest.raises(ShapeMismatch, match="2-D"):
        stack.set_profile("slab", ["T"], [0.0, 1.0])
    with pytest.raises(ShapeMismatch):
        stack.set_profile("slab", ["T", "Y"], np.zeros((2, 4)))


def test_lookup_errors():
    stack = _make_stack()
    assert stack.domain_index("right") == 2
    assert stack.domain_index(1) == 1

    with pytest.raises(DomainNotFound, match="nowhere"):
        stack.domain_index("nowhere")
    with pytest.raises(DomainNotFound):
        stack.grid(7)
    with pytest.raises(NameNotFound, match="component 'P'"):
        stack.value("slab", "P", 0)
    with pytest.raises(InvalidArgument, match="point index"):
        stack.set_value("slab", "T", 99, 1.0)

    # DomainNotFound is a KeyError without quoted message
    err = DomainNotFound("missing domain")
    assert isinstance(err, KeyError)
    assert str(err) == "missing domain"


def test_connectors_sit_on_neighbour_boundaries():
    stack = _make_stack(z0=2.0, z1=4.0)
    assert stack.grid("left").tolist() == [2.0]
    assert stack.grid("right").tolist() == [4.0]


def test_adjacent_extended_domains_rejected():
    a = extended_domain("a", ["T"], uniform_grid(0.0, 1.0, 3), ReactionDiffusion())
    b = extended_domain("b", ["T"], uniform_grid(1.0, 2.0, 3), ReactionDiffusion())
    with pytest.raises(InvalidArgument, match="separated by a connector"):
        Stack([a, b])


def test_get_initial_solution_resets_values():
    stack = _make_stack()
    stack.set_flat_profile("slab", "T", 1234.0)
    stack.get_initial_solution()
    assert np.all(stack.solution("slab", "T") == 300.0)
    assert stack.solution("right", "T").tolist() == [900.0]
