"""
1-D grid helpers: construction, validation, normalized coordinates and point insertion.

Grids are plain float64 arrays, strictly increasing. They are mutated only
between solve attempts (refinement, fixed-point insertion), never during a
Newton iteration.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from core.errors import InvalidArgument
from core.types import FloatArray

logger = logging.getLogger(__name__)


def as_grid(z: Sequence[float] | np.ndarray) -> FloatArray:
    """Validate and return a strictly increasing float64 grid."""
    z = np.array(z, dtype=np.float64, copy=True).ravel()
    if z.size < 1:
        raise InvalidArgument("grid must contain at least one point.")
    if not np.all(np.isfinite(z)):
        raise InvalidArgument("grid contains non-finite coordinates.")
    if z.size > 1 and not np.all(np.diff(z) > 0.0):
        raise InvalidArgument("grid must be strictly increasing.")
    return z


def uniform_grid(z0: float, z1: float, n_points: int) -> FloatArray:
    n_points = int(n_points)
    if n_points < 2:
        raise InvalidArgument(f"an extended domain needs at least 2 points, got {n_points}")
    if not float(z1) > float(z0):
        raise InvalidArgument(f"grid end {z1} must exceed start {z0}")
    return np.linspace(float(z0), float(z1), n_points, dtype=np.float64)


def normalized_coordinate(z: FloatArray) -> FloatArray:
    """Map grid onto [0, 1]: 0 = leftmost point, 1 = rightmost point."""
    z = np.asarray(z, dtype=np.float64)
    if z.size == 1:
        return np.zeros(1, dtype=np.float64)
    length = float(z[-1] - z[0])
    return (z - z[0]) / length


def interp_profile(z: FloatArray, positions: Sequence[float], values: Sequence[float]) -> FloatArray:
    """
    Linearly interpolate a (normalized position -> value) table onto grid z.

    Positions outside [0, 1] are allowed; values beyond the table ends are held
    constant (np.interp semantics).
    """
    pos = np.asarray(positions, dtype=np.float64).ravel()
    val = np.asarray(values, dtype=np.float64).ravel()
    if pos.size != val.size or pos.size == 0:
        raise InvalidArgument(f"profile needs matching non-empty positions/values, got {pos.size} and {val.size}")
    order = np.argsort(pos, kind="stable")
    return np.interp(normalized_coordinate(z), pos[order], val[order])


def locate_crossing(z: FloatArray, v: FloatArray, target: float) -> tuple[int, float] | None:
    """
    Find the first interval where v crosses target.

    Returns (j, z_cross) with z[j] <= z_cross <= z[j+1], or None.
    """
    v = np.asarray(v, dtype=np.float64)
    for j in range(v.size - 1):
        a, b = float(v[j]), float(v[j + 1])
        if a == target:
            return j, float(z[j])
        if (a - target) * (b - target) < 0.0:
            w = (target - a) / (b - a)
            return j, float(z[j] + w * (z[j + 1] - z[j]))
    if v.size and float(v[-1]) == target:
        return v.size - 1, float(z[-1])
    return None


def insert_point(z: FloatArray, z_new: float, *, rtol: float = 1.0e-6) -> tuple[FloatArray, int]:
    """
    Insert z_new into grid z unless an existing point is within rtol*length.

    Returns (grid, index of the point at z_new).
    """
    z = np.asarray(z, dtype=np.float64)
    length = float(z[-1] - z[0]) if z.size > 1 else 1.0
    j_near = int(np.argmin(np.abs(z - z_new)))
    if abs(float(z[j_near]) - z_new) <= rtol * length:
        return z.copy(), j_near
    j = int(np.searchsorted(z, z_new))
    z_out = np.insert(z, j, z_new)
    logger.debug("inserted grid point z=%.6e at index %d (n=%d)", z_new, j, z_out.size)
    return z_out, j
