"""
Conservative sparsity pattern for the global Jacobian.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np

from core.domain import Domain
from core.layout import StackLayout


@dataclass(slots=True)
class JacobianPattern:
    """CSR pattern for the global Jacobian."""

    indptr: np.ndarray
    indices: np.ndarray
    shape: Tuple[int, int]
    meta: Dict[str, float]


def build_jacobian_pattern(layout: StackLayout, domains: Sequence[Domain]) -> JacobianPattern:
    """
    Build a block-banded CSR pattern for dF/dx.

    Grid points of all domains form one chain in stack order (a connector's
    single point sits between the last point of its left neighbour and the
    first point of its right neighbour). Every unknown at chain position p
    couples to all unknowns at positions p-w .. p+w, with w the largest
    point_bandwidth declared by any domain's physics.
    """
    N = layout.size
    w = max((dom.point_bandwidth for dom in domains), default=1)

    # Component-free points carry no unknowns and do not separate their neighbours
    chain: List[Tuple[int, int]] = [(start, stop) for _, _, start, stop in layout.point_chain() if stop > start]

    indptr = np.zeros(N + 1, dtype=np.int32)
    indices_list: List[np.ndarray] = []
    nnz = 0
    max_row = 0
    for p, (start, stop) in enumerate(chain):
        lo = chain[max(0, p - w)][0]
        hi = chain[min(len(chain) - 1, p + w)][1]
        cols = np.arange(lo, hi, dtype=np.int32)
        for i in range(start, stop):
            indices_list.append(cols)
            nnz += cols.size
            indptr[i + 1] = nnz
        max_row = max(max_row, cols.size)

    indices = np.concatenate(indices_list) if indices_list else np.zeros(0, dtype=np.int32)
    meta = {
        "nnz_total": float(nnz),
        "nnz_avg": float(nnz) / float(N) if N > 0 else 0.0,
        "nnz_max_row": float(max_row),
        "point_bandwidth": float(w),
    }
    return JacobianPattern(indptr=indptr, indices=indices, shape=(N, N), meta=meta)
