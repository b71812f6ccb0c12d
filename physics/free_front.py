"""
Freely propagating front with a speed eigenvalue.

Components: temperature T and front speed u (u is constant in z; it is carried
at every point so that each equation couples only nearest neighbours).

T equation (interior points):
    u dT/dz = d/dz(k dT/dz) + (T_b - T_u) * w(theta),  theta = (T - T_u)/(T_b - T_u)
with a one-step Arrhenius-type rate
    w = A (1 - theta) exp(-Ze (1 - theta) / (1 - alpha (1 - theta))).
Convection is first-order upwind (u > 0 flows towards +z).

u equation:
- without a fixed point: u[0] = u_init and u[j] - u[j-1] = 0 for j >= 1;
- with a fixed point at j_fix: u[j+1] - u[j] = 0 for j < j_fix,
  T[j_fix] - T_fix = 0 at j_fix, and u[j] - u[j-1] = 0 for j > j_fix.
Pinning one temperature removes the translational degeneracy of the front.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Union

import numpy as np

from core.errors import InvalidArgument
from physics.reaction_diffusion import face_fluxes

ConductivityLike = Union[float, Callable[[np.ndarray], np.ndarray]]


@dataclass
class FreeFront:
    """Premixed-front model on one extended domain (components: T, u)."""

    t_unburnt: float = 300.0
    t_burnt: float = 2000.0
    conductivity: ConductivityLike = 1.0
    pre_exponential: float = 1.0e3
    zeldovich: float = 8.0
    heat_release: float = 0.85
    u_init: float = 1.0
    front_width: float = 0.1
    temperature: str = "T"
    speed: str = "u"

    supports_fixed_point = True
    point_bandwidth = 1

    def __post_init__(self) -> None:
        if not (0.0 < self.t_unburnt < self.t_burnt):
            raise InvalidArgument(
                f"need 0 < t_unburnt < t_burnt, got {self.t_unburnt} and {self.t_burnt}"
            )
        if not (0.0 <= self.heat_release < 1.0):
            raise InvalidArgument(f"heat_release must be in [0, 1), got {self.heat_release}")
        if self.front_width <= 0.0:
            raise InvalidArgument(f"front_width must be positive, got {self.front_width}")

    def _indices(self, domain) -> tuple[int, int]:
        return domain.component_index(self.temperature), domain.component_index(self.speed)

    def initial_value(self, domain, comp: int, z: float) -> float:
        iT, iu = self._indices(domain)
        if comp == iu:
            return float(self.u_init)
        z0, z1 = float(domain.grid[0]), float(domain.grid[-1])
        s = (z - z0) / (z1 - z0)
        return self.t_unburnt + (self.t_burnt - self.t_unburnt) * 0.5 * (1.0 + np.tanh((s - 0.5) / self.front_width))

    def reaction_rate(self, T: np.ndarray) -> np.ndarray:
        theta = np.clip((T - self.t_unburnt) / (self.t_burnt - self.t_unburnt), 0.0, 1.0)
        one_m = 1.0 - theta
        return self.pre_exponential * one_m * np.exp(
            -self.zeldovich * one_m / (1.0 - self.heat_release * one_m)
        )

    def fixed_index(self, domain) -> Optional[int]:
        fp = domain.fixed_point
        if fp is None:
            return None
        return int(np.argmin(np.abs(domain.grid - fp.z)))

    def transient_mask(self, domain) -> np.ndarray:
        iT, _ = self._indices(domain)
        mask = np.zeros((domain.n_components, domain.n_points), dtype=bool)
        mask[iT, 1:-1] = True
        return mask

    def boundary_flux(self, domain, values: np.ndarray, side: str) -> np.ndarray:
        iT, _ = self._indices(domain)
        q = np.zeros(domain.n_components, dtype=np.float64)
        qT = face_fluxes(domain.grid, values[iT:iT + 1, :], self.conductivity)[0]
        q[iT] = qT[0] if side == "left" else qT[-1]
        return q

    def eval(self, ctx, domain) -> None:
        iT, iu = self._indices(domain)
        v = ctx.values(domain)
        r = ctx.residual(domain)
        z = domain.grid
        T = v[iT]
        u = v[iu]

        q = face_fluxes(z, v[iT:iT + 1, :], self.conductivity)[0]
        vol = 0.5 * (z[2:] - z[:-2])
        dz = np.diff(z)
        conv = u[1:-1] * (T[1:-1] - T[:-2]) / dz[:-1]
        r[iT, 1:-1] = conv + (q[1:] - q[:-1]) / vol - (self.t_burnt - self.t_unburnt) * self.reaction_rate(T[1:-1])
        r[iT, 0] = T[1] - T[0]
        r[iT, -1] = T[-1] - T[-2]

        jfix = self.fixed_index(domain)
        if jfix is None:
            r[iu, 0] = u[0] - self.u_init
            r[iu, 1:] = u[1:] - u[:-1]
            return
        fp = domain.fixed_point
        r[iu, :jfix] = u[1:jfix + 1] - u[:jfix]
        r[iu, jfix] = v[fp.component, jfix] - fp.value
        r[iu, jfix + 1:] = u[jfix + 1:] - u[jfix:-1]
