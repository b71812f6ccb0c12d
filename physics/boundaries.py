"""
Connector physics: coupling rows written at domain interfaces.

Every connector sits at one interface point. Its own rows are written first;
then it overwrites the boundary rows of its extended neighbours:
- left neighbour  -> last point (j = n_points - 1)
- right neighbour -> first point (j = 0)
Only components present in the neighbour are touched; others keep the
neighbour's default boundary rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Sequence, Tuple

from core.errors import InvalidArgument

logger = logging.getLogger(__name__)


def _extended_neighbours(ctx, domain) -> Iterator[Tuple[object, int, str]]:
    """Yield (neighbour, boundary point index, side of the neighbour touching the connector)."""
    left = ctx.left(domain)
    if left is not None and not left.is_connector:
        yield left, left.n_points - 1, "right"
    right = ctx.right(domain)
    if right is not None and not right.is_connector:
        yield right, 0, "left"


@dataclass
class FixedValueBoundary:
    """
    Imposed boundary values.

    The connector owns one unknown per imposed component (residual x_c - value)
    and pins the adjacent boundary value of each neighbour to it.
    """

    values: Dict[str, float]

    def __post_init__(self) -> None:
        if not self.values:
            raise InvalidArgument("FixedValueBoundary needs at least one imposed component value.")
        self.values = {str(k): float(v) for k, v in self.values.items()}

    def initial_value(self, domain, comp: int, z: float) -> float:
        return self.values[domain.components[comp]]

    def set_value(self, component: str, value: float) -> None:
        if component not in self.values:
            raise InvalidArgument(f"component '{component}' is not imposed by this boundary")
        self.values[component] = float(value)

    def eval(self, ctx, domain) -> None:
        xc = ctx.values(domain)[:, 0]
        rc = ctx.residual(domain)
        for n, name in enumerate(domain.components):
            rc[n, 0] = xc[n] - self.values[name]

        for nb, j, _side in _extended_neighbours(ctx, domain):
            v = ctx.values(nb)
            r = ctx.residual(nb)
            for n, name in enumerate(domain.components):
                if name in nb.components:
                    k = nb.components.index(name)
                    r[k, j] = v[k, j] - xc[n]


@dataclass
class ZeroGradientBoundary:
    """
    Outlet / symmetry condition: d(phi)/dz = 0 at the neighbour's boundary.

    components=None applies to every neighbour component. The connector owns
    no unknowns unless components are given to it explicitly as a domain.
    """

    components: Optional[Sequence[str]] = None

    def initial_value(self, domain, comp: int, z: float) -> float:
        return 0.0

    def eval(self, ctx, domain) -> None:
        ctx.residual(domain)[:, :] = ctx.values(domain)

        for nb, j, side in _extended_neighbours(ctx, domain):
            v = ctx.values(nb)
            r = ctx.residual(nb)
            names = nb.components if self.components is None else self.components
            for name in names:
                if name not in nb.components:
                    continue
                k = nb.components.index(name)
                if side == "left":
                    r[k, j] = v[k, 1] - v[k, 0]
                else:
                    r[k, j] = v[k, -1] - v[k, -2]


@dataclass
class InterfaceContinuity:
    """
    Interface between two extended domains.

    For every component shared by both neighbours:
      left last row   : phi_L(end) - phi_R(0)             (value continuity)
      right first row : q_L(end) - q_R(0)                 (flux continuity)
    Fluxes come from the neighbours' physics (boundary_flux). The flux row at
    the right neighbour's first point reaches two points back into the left
    neighbour, so this physics declares a point bandwidth of 2.
    """

    components: Optional[Sequence[str]] = None
    point_bandwidth: int = field(default=2)

    def initial_value(self, domain, comp: int, z: float) -> float:
        return 0.0

    def eval(self, ctx, domain) -> None:
        ctx.residual(domain)[:, :] = ctx.values(domain)

        left = ctx.left(domain)
        right = ctx.right(domain)
        if left is None or right is None or left.is_connector or right.is_connector:
            raise InvalidArgument(
                f"interface '{domain.name}' must sit between two extended domains"
            )
        vL, rL = ctx.values(left), ctx.residual(left)
        vR, rR = ctx.values(right), ctx.residual(right)
        qL = left.physics.boundary_flux(left, vL, "right")
        qR = right.physics.boundary_flux(right, vR, "left")

        shared = [c for c in left.components if c in right.components]
        if self.components is not None:
            shared = [c for c in shared if c in self.components]
        for name in shared:
            kL = left.components.index(name)
            kR = right.components.index(name)
            rL[kL, -1] = vL[kL, -1] - vR[kR, 0]
            rR[kR, 0] = qL[kL] - qR[kR]
