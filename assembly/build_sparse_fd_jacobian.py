"""
Build the sparse finite-difference Jacobian of the steady residual using a
coloring of the conservative pattern.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Tuple

import numpy as np
import scipy.sparse as sp

from assembly.jacobian_pattern import JacobianPattern, build_jacobian_pattern
from assembly.residual_global import build_global_residual
from solvers.nonlinear_context import SolverSession

logger = logging.getLogger(__name__)


def color_columns(pattern: JacobianPattern) -> List[List[int]]:
    """
    Greedy coloring: columns sharing a row never share a color, so one
    residual evaluation per color recovers all their entries.
    """
    indptr = np.asarray(pattern.indptr, dtype=np.int64)
    indices = np.asarray(pattern.indices, dtype=np.int64)
    N = pattern.shape[0]

    col_adj: List[set[int]] = [set() for _ in range(N)]
    for i in range(N):
        row_cols = indices[indptr[i] : indptr[i + 1]]
        for a in range(row_cols.size):
            ca = int(row_cols[a])
            for b in range(a + 1, row_cols.size):
                cb = int(row_cols[b])
                if ca == cb:
                    continue
                col_adj[ca].add(cb)
                col_adj[cb].add(ca)

    order = sorted(range(N), key=lambda j: len(col_adj[j]), reverse=True)
    colors = [-1] * N
    ncolors = 0
    for j in order:
        used = {colors[nbr] for nbr in col_adj[j] if colors[nbr] >= 0}
        c = 0
        while c in used:
            c += 1
        colors[j] = c
        if c + 1 > ncolors:
            ncolors = c + 1

    groups: List[List[int]] = [[] for _ in range(ncolors)]
    for j, c in enumerate(colors):
        groups[c].append(j)
    return groups


def _col_rows(pattern: JacobianPattern) -> List[np.ndarray]:
    N = pattern.shape[0]
    rows: List[List[int]] = [[] for _ in range(N)]
    indptr = pattern.indptr
    for i in range(N):
        for c in pattern.indices[indptr[i] : indptr[i + 1]]:
            rows[int(c)].append(i)
    return [np.asarray(r, dtype=np.int64) for r in rows]


def build_sparse_fd_jacobian(
    session: SolverSession,
    x0: np.ndarray,
    *,
    eps: float = 1.0e-7,
) -> Tuple[sp.csc_matrix, Dict[str, Any]]:
    """
    Finite-difference dF/dx of the steady residual at x0, as CSC.

    The pattern and its coloring are cached on the session until the layout
    changes. Non-finite residual entries are replaced by a large penalty so a
    single bad evaluation cannot poison the whole matrix.
    """
    t_start = time.perf_counter()
    x0 = np.asarray(x0, dtype=np.float64)
    N = int(x0.size)

    cache = session.meta.get("fd_jacobian_cache")
    if session.pattern is None or cache is None or cache.get("size") != N:
        session.pattern = build_jacobian_pattern(session.layout, session.domains)
        cache = {
            "size": N,
            "groups": color_columns(session.pattern),
            "col_rows": _col_rows(session.pattern),
        }
        session.meta["fd_jacobian_cache"] = cache
        logger.debug(
            "jacobian pattern: N=%d nnz=%d colors=%d",
            N,
            int(session.pattern.meta["nnz_total"]),
            len(cache["groups"]),
        )

    groups: List[List[int]] = cache["groups"]
    col_rows: List[np.ndarray] = cache["col_rows"]

    r0 = build_global_residual(session, x0, 0.0)
    if not np.all(np.isfinite(r0)):
        r0 = np.where(np.isfinite(r0), r0, 1.0e20)

    rows_out: List[np.ndarray] = []
    cols_out: List[np.ndarray] = []
    vals_out: List[np.ndarray] = []
    x_work = x0.copy()
    n_fd_calls = 0

    for cols_in_color in groups:
        if not cols_in_color:
            continue
        dx_by_col: Dict[int, float] = {}
        for j in cols_in_color:
            dx = eps * (1.0 + abs(x0[j]))
            x_work[j] = x0[j] + dx
            dx_by_col[j] = dx

        r = build_global_residual(session, x_work, 0.0)
        if not np.all(np.isfinite(r)):
            r = np.where(np.isfinite(r), r, 1.0e20)
        diff = r - r0
        n_fd_calls += 1

        for j in cols_in_color:
            rows = col_rows[j]
            x_work[j] = x0[j]
            if rows.size == 0:
                continue
            rows_out.append(rows)
            cols_out.append(np.full(rows.size, j, dtype=np.int64))
            vals_out.append(diff[rows] / dx_by_col[j])

    if rows_out:
        J = sp.coo_matrix(
            (np.concatenate(vals_out), (np.concatenate(rows_out), np.concatenate(cols_out))),
            shape=(N, N),
        ).tocsc()
    else:
        J = sp.csc_matrix((N, N), dtype=np.float64)

    elapsed = time.perf_counter() - t_start
    stats = session.current_stats
    stats.n_jac_evals += 1
    stats.time_jac += elapsed
    diag = {"n_fd_calls": n_fd_calls, "ncolors": len(groups), "nnz": int(J.nnz), "time": elapsed}
    return J, diag
