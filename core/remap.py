from __future__ import annotations

import logging

import numpy as np

from core.grid import normalized_coordinate

logger = logging.getLogger(__name__)


def _interp_normalized(z_old: np.ndarray, v_old: np.ndarray, z_new: np.ndarray) -> np.ndarray:
    """Linear interpolation on the normalized [0, 1] domain-local coordinate."""
    return np.interp(normalized_coordinate(z_new), normalized_coordinate(z_old), v_old)


def remap_values_to_new_grid(
    z_old: np.ndarray,
    values_old: np.ndarray,
    z_new: np.ndarray,
) -> np.ndarray:
    """
    Reinterpolate (n_components, n_old) values onto z_new.

    Points shared by both grids keep their values exactly; inserted points
    get the linear interpolant of their old neighbours.
    """
    z_old = np.asarray(z_old, dtype=np.float64)
    z_new = np.asarray(z_new, dtype=np.float64)
    values_old = np.asarray(values_old, dtype=np.float64)
    if values_old.ndim != 2 or values_old.shape[1] != z_old.size:
        raise ValueError(f"values shape {values_old.shape} incompatible with grid size {z_old.size}")

    out = np.empty((values_old.shape[0], z_new.size), dtype=np.float64)
    if z_old.size == 1:
        out[:] = values_old[:, :1]
        return out
    for n in range(values_old.shape[0]):
        out[n] = _interp_normalized(z_old, values_old[n], z_new)

    # np.interp on normalized coordinates can perturb shared points by rounding
    shared_new = np.isin(z_new, z_old)
    if np.any(shared_new):
        idx_old = np.searchsorted(z_old, z_new[shared_new])
        out[:, shared_new] = values_old[:, idx_old]

    logger.debug("remapped %d components from %d to %d points", values_old.shape[0], z_old.size, z_new.size)
    return out
