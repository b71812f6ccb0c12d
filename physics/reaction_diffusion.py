"""
Reaction-diffusion residual for an extended domain.

Model (per component phi):
    d(phi)/dt = d/dz( D(phi) d(phi)/dz ) + S(z, phi)

Discretisation:
- Vertex-centred finite volumes on a non-uniform grid. Face diffusivity is the
  arithmetic mean of the two adjacent point values; face flux q = -D dphi/dz.
- Interior rows: R_j = (q_{j+1/2} - q_{j-1/2}) / (0.5 * (z_{j+1} - z_{j-1})) - S_j,
  so that dphi/dt = -R on transient rows.
- Boundary rows default to zero gradient (phi_1 - phi_0, phi_N-1 - phi_N-2);
  connector domains overwrite them with their coupling conditions.

Sign conventions follow q = -D dphi/dz with fluxes positive along +z.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Union

import numpy as np

from core.errors import InvalidArgument

FloatArray = np.ndarray
DiffusivityLike = Union[float, Callable[[FloatArray], FloatArray]]
SourceFn = Callable[[FloatArray, FloatArray], FloatArray]


def _point_diffusivity(diffusivity: DiffusivityLike, values: FloatArray) -> FloatArray:
    """Broadcast D (constant or callable of the (n_components, n_points) values) to values.shape."""
    if callable(diffusivity):
        D = np.asarray(diffusivity(values), dtype=np.float64)
    else:
        D = np.asarray(float(diffusivity), dtype=np.float64)
    return np.broadcast_to(D, values.shape)


def face_fluxes(z: FloatArray, values: FloatArray, diffusivity: DiffusivityLike) -> FloatArray:
    """
    Diffusive fluxes q = -D dphi/dz on the n_points-1 internal faces.

    Returns
    -------
    q : (n_components, n_points-1) ndarray
    """
    dz = np.diff(z)
    if np.any(dz <= 0.0):
        raise ValueError("grid must be strictly increasing")
    D = _point_diffusivity(diffusivity, values)
    D_face = 0.5 * (D[:, 1:] + D[:, :-1])
    return -D_face * np.diff(values, axis=1) / dz[None, :]


@dataclass
class ReactionDiffusion:
    """
    Scalar transport physics for one extended domain.

    Attributes
    ----------
    diffusivity : float or callable
        Constant D, or D(values) -> array broadcastable to (n_components, n_points).
    source : callable, optional
        S(z, values) -> (n_components, n_points) volumetric source.
    initial : dict
        Default initial value per component name (0.0 when missing).
    """

    diffusivity: DiffusivityLike = 1.0
    source: Optional[SourceFn] = None
    initial: Dict[str, float] = field(default_factory=dict)

    supports_fixed_point = False
    point_bandwidth = 1

    def __post_init__(self) -> None:
        if not callable(self.diffusivity) and float(self.diffusivity) <= 0.0:
            raise InvalidArgument(f"diffusivity must be positive, got {self.diffusivity}")

    def initial_value(self, domain, comp: int, z: float) -> float:
        return float(self.initial.get(domain.components[comp], 0.0))

    def boundary_flux(self, domain, values: FloatArray, side: str) -> FloatArray:
        """One-sided flux at the left ('left') or right ('right') end, per component."""
        q = face_fluxes(domain.grid, values, self.diffusivity)
        return q[:, 0] if side == "left" else q[:, -1]

    def eval(self, ctx, domain) -> None:
        v = ctx.values(domain)
        r = ctx.residual(domain)
        z = domain.grid

        q = face_fluxes(z, v, self.diffusivity)
        vol = 0.5 * (z[2:] - z[:-2])
        r[:, 1:-1] = (q[:, 1:] - q[:, :-1]) / vol[None, :]
        if self.source is not None:
            S = np.broadcast_to(np.asarray(self.source(z, v), dtype=np.float64), v.shape)
            r[:, 1:-1] -= S[:, 1:-1]

        r[:, 0] = v[:, 1] - v[:, 0]
        r[:, -1] = v[:, -1] - v[:, -2]
