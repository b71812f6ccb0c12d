"""
Domain container: one sub-problem contributing a contiguous block of unknowns.

Principles:
- Extended and connector domains are the same type, distinguished by `kind`.
  Extended domains own interior grid points and equations; connectors sit at
  one interface point and contribute coupling rows.
- Physics is an external collaborator reached through DomainPhysics only.
- Once bound to a Stack, `values` is a view into the stack's global vector;
  writes through the domain touch only its own slice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, List, Optional, Protocol, Sequence

import logging
import numpy as np

from core.errors import InvalidArgument, NameNotFound
from core.grid import as_grid, interp_profile
from core.types import FixedPoint, FloatArray, RefineCriteria

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from assembly.residual_global import EvalContext

logger = logging.getLogger(__name__)

DEFAULT_RTOL = 1.0e-4
DEFAULT_ATOL = 1.0e-9


class DomainKind(str, Enum):
    EXTENDED = "extended"
    CONNECTOR = "connector"


class DomainPhysics(Protocol):
    """
    Residual provider for one domain.

    eval(ctx, domain) writes the domain's rows of ctx.r using ctx.x; connector
    physics may also overwrite the boundary rows of its neighbours. The
    steady residual R is written so that dx/dt = -R on transient rows; the
    assembler adds rdt * (x - x_prev) there.

    Optional attributes: transient_mask(domain) -> bool (n_components, n_points),
    supports_fixed_point: bool, point_bandwidth: int (default 1).
    """

    def initial_value(self, domain: "Domain", comp: int, z: float) -> float: ...

    def eval(self, ctx: "EvalContext", domain: "Domain") -> None: ...


@dataclass(eq=False)
class Domain:
    """One domain of the stack (extended or connector)."""

    name: str
    kind: DomainKind
    components: List[str]
    grid: FloatArray
    physics: Any
    refine: RefineCriteria = field(default_factory=RefineCriteria)
    index: int = -1
    fixed_point: Optional[FixedPoint] = None
    lower: FloatArray = field(init=False)
    upper: FloatArray = field(init=False)
    rtol_ss: FloatArray = field(init=False)
    atol_ss: FloatArray = field(init=False)
    rtol_ts: FloatArray = field(init=False)
    atol_ts: FloatArray = field(init=False)
    _values: FloatArray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidArgument("domain name must be non-empty.")
        self.kind = DomainKind(self.kind)
        self.components = [str(c) for c in self.components]
        if len(set(self.components)) != len(self.components):
            raise InvalidArgument(f"domain '{self.name}' has duplicate component names: {self.components}")
        self.grid = as_grid(self.grid)
        if self.kind is DomainKind.CONNECTOR and self.grid.size != 1:
            raise InvalidArgument(f"connector domain '{self.name}' must have exactly one point, got {self.grid.size}")
        if self.kind is DomainKind.EXTENDED and self.grid.size < 2:
            raise InvalidArgument(f"extended domain '{self.name}' needs at least 2 points, got {self.grid.size}")

        nc = len(self.components)
        self.lower = np.full(nc, -np.inf, dtype=np.float64)
        self.upper = np.full(nc, np.inf, dtype=np.float64)
        self.rtol_ss = np.full(nc, DEFAULT_RTOL, dtype=np.float64)
        self.atol_ss = np.full(nc, DEFAULT_ATOL, dtype=np.float64)
        self.rtol_ts = np.full(nc, DEFAULT_RTOL, dtype=np.float64)
        self.atol_ts = np.full(nc, DEFAULT_ATOL, dtype=np.float64)
        self._values = self.initial_values()

    # ------------------------------------------------------------------
    # Shape / identity
    # ------------------------------------------------------------------
    @property
    def n_components(self) -> int:
        return len(self.components)

    @property
    def n_points(self) -> int:
        return int(self.grid.size)

    @property
    def size(self) -> int:
        return self.n_components * self.n_points

    @property
    def is_connector(self) -> bool:
        return self.kind is DomainKind.CONNECTOR

    @property
    def supports_fixed_point(self) -> bool:
        return bool(getattr(self.physics, "supports_fixed_point", False))

    @property
    def point_bandwidth(self) -> int:
        return max(1, int(getattr(self.physics, "point_bandwidth", 1)))

    def component_index(self, comp: int | str) -> int:
        """Resolve a component name (or pass-through index) to a 0-based index."""
        if isinstance(comp, (int, np.integer)):
            n = int(comp)
            if n < 0 or n >= self.n_components:
                raise NameNotFound(
                    f"component index {n} out of range [0,{self.n_components}) in domain '{self.name}'"
                )
            return n
        try:
            return self.components.index(str(comp))
        except ValueError:
            raise NameNotFound(
                f"component '{comp}' not found in domain '{self.name}'. Available: {self.components}"
            ) from None

    def component_name(self, n: int) -> str:
        return self.components[self.component_index(n)]

    def _check_point(self, point: int) -> int:
        j = int(point)
        if j < 0 or j >= self.n_points:
            raise InvalidArgument(f"point index {j} out of range [0,{self.n_points}) in domain '{self.name}'")
        return j

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------
    @property
    def values(self) -> FloatArray:
        """(n_components, n_points) array; a view into the stack vector once bound."""
        return self._values

    def bind(self, view: FloatArray) -> None:
        """Attach the (n_components, n_points) view of the owning stack's vector."""
        if view.shape != (self.n_components, self.n_points):
            raise ValueError(
                f"bind view shape {view.shape} != ({self.n_components}, {self.n_points}) for '{self.name}'"
            )
        self._values = view

    def resize(self, grid: FloatArray, values: FloatArray) -> None:
        """Replace grid and values; the owning stack must rebind afterwards."""
        grid = as_grid(grid)
        values = np.array(values, dtype=np.float64, copy=True)
        if values.shape != (self.n_components, grid.size):
            raise ValueError(f"values shape {values.shape} != ({self.n_components}, {grid.size})")
        self.grid = grid
        self._values = values
        on_resize = getattr(self.physics, "on_resize", None)
        if on_resize is not None:
            on_resize(self)

    def initial_values(self) -> FloatArray:
        out = np.empty((self.n_components, self.n_points), dtype=np.float64)
        for n in range(self.n_components):
            for j, z in enumerate(self.grid):
                out[n, j] = float(self.physics.initial_value(self, n, float(z)))
        return out

    def value(self, comp: int | str, point: int) -> float:
        return float(self._values[self.component_index(comp), self._check_point(point)])

    def set_value(self, comp: int | str, point: int, v: float) -> None:
        self._values[self.component_index(comp), self._check_point(point)] = float(v)

    def set_flat_profile(self, comp: int | str, v: float) -> None:
        self._values[self.component_index(comp), :] = float(v)

    def set_profile(self, comp: int | str, positions: Sequence[float], values: Sequence[float]) -> None:
        self._values[self.component_index(comp), :] = interp_profile(self.grid, positions, values)

    # ------------------------------------------------------------------
    # Solver-facing settings
    # ------------------------------------------------------------------
    def transient_mask(self) -> np.ndarray:
        custom = getattr(self.physics, "transient_mask", None)
        if custom is not None:
            mask = np.asarray(custom(self), dtype=bool)
            if mask.shape != (self.n_components, self.n_points):
                raise ValueError(f"transient_mask shape {mask.shape} invalid for domain '{self.name}'")
            return mask
        mask = np.zeros((self.n_components, self.n_points), dtype=bool)
        if self.kind is DomainKind.EXTENDED:
            mask[:, 1:-1] = True
        return mask

    def set_bounds(self, comp: int | str, lower: float, upper: float) -> None:
        n = self.component_index(comp)
        if not float(lower) < float(upper):
            raise InvalidArgument(f"lower bound {lower} must be below upper bound {upper}")
        self.lower[n] = float(lower)
        self.upper[n] = float(upper)

    def _set_tolerances(self, rtol_arr, atol_arr, rtol: float, atol: float, comp) -> None:
        if float(rtol) <= 0.0 or float(atol) <= 0.0:
            raise InvalidArgument(f"tolerances must be positive, got rtol={rtol} atol={atol}")
        if comp is None:
            rtol_arr[:] = float(rtol)
            atol_arr[:] = float(atol)
        else:
            n = self.component_index(comp)
            rtol_arr[n] = float(rtol)
            atol_arr[n] = float(atol)

    def set_steady_tolerances(self, rtol: float, atol: float, comp: int | str | None = None) -> None:
        self._set_tolerances(self.rtol_ss, self.atol_ss, rtol, atol, comp)

    def set_transient_tolerances(self, rtol: float, atol: float, comp: int | str | None = None) -> None:
        self._set_tolerances(self.rtol_ts, self.atol_ts, rtol, atol, comp)

    def error_weights(self, x_dom: FloatArray, *, transient: bool) -> FloatArray:
        rtol = self.rtol_ts if transient else self.rtol_ss
        atol = self.atol_ts if transient else self.atol_ss
        return rtol[:, None] * np.abs(x_dom) + atol[:, None]


def extended_domain(
    name: str,
    components: Sequence[str],
    grid: Sequence[float] | np.ndarray,
    physics: Any,
    *,
    refine: Optional[RefineCriteria] = None,
) -> Domain:
    return Domain(
        name=name,
        kind=DomainKind.EXTENDED,
        components=list(components),
        grid=np.asarray(grid, dtype=np.float64),
        physics=physics,
        refine=refine if refine is not None else RefineCriteria(),
    )


def connector_domain(
    name: str,
    components: Sequence[str],
    physics: Any,
    *,
    z: float = 0.0,
) -> Domain:
    return Domain(
        name=name,
        kind=DomainKind.CONNECTOR,
        components=list(components),
        grid=np.array([float(z)], dtype=np.float64),
        physics=physics,
    )
