"""
Solution files: save/restore stack solutions keyed by an id.

Format (YAML, one top-level mapping):
    <id>:
      description: str
      created: ISO timestamp
      domains:
        - name, kind, components
          grid: [z0, z1, ...]
          values: {component: [...]}
          fixed_point: {z, component, value}   # optional

Rules:
- save merges into an existing file (other ids preserved) and writes atomically
  (temp file in the same directory + os.replace).
- restore checks the whole entry before touching any domain: domain count,
  names, kinds and component lists must match exactly, and every grid must
  be finite and strictly increasing.
- Floats are written with repr precision, so values round-trip exactly.
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Sequence

import numpy as np
import yaml

from core.domain import Domain
from core.errors import IncompatibleSolution, NameNotFound
from core.types import FixedPoint

logger = logging.getLogger(__name__)


def _domain_record(dom: Domain) -> Dict[str, Any]:
    rec: Dict[str, Any] = {
        "name": dom.name,
        "kind": dom.kind.value,
        "components": list(dom.components),
        "grid": [float(z) for z in dom.grid],
        "values": {name: [float(v) for v in dom.values[n]] for n, name in enumerate(dom.components)},
    }
    if dom.fixed_point is not None:
        rec["fixed_point"] = {
            "z": float(dom.fixed_point.z),
            "component": dom.components[dom.fixed_point.component],
            "value": float(dom.fixed_point.value),
        }
    return rec


def read_solution_file(path: str | Path) -> Dict[str, Any]:
    """Load the whole document; a missing or empty file reads as {}."""
    path = Path(path)
    if not path.exists():
        return {}
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise IncompatibleSolution(f"solution file {path} must contain a mapping at top level")
    return raw


def list_solutions(path: str | Path) -> Dict[str, str]:
    """Return {id: description} for every solution stored in the file."""
    doc = read_solution_file(path)
    return {str(k): str((v or {}).get("description", "")) for k, v in doc.items()}


def save_solution(
    path: str | Path,
    domains: Sequence[Domain],
    *,
    solution_id: str = "solution",
    description: str = "--",
) -> Path:
    """Store the domains' grids and values under solution_id."""
    path = Path(path)
    doc = read_solution_file(path)
    if solution_id in doc:
        logger.info("overwriting solution '%s' in %s", solution_id, path)
    doc[str(solution_id)] = {
        "description": str(description),
        "created": datetime.now().isoformat(timespec="seconds"),
        "domains": [_domain_record(dom) for dom in domains],
    }

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yaml.safe_dump(doc, f, sort_keys=False, default_flow_style=None)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    logger.info("saved solution '%s' to %s", solution_id, path)
    return path


def _check_structure(records: List[Dict[str, Any]], domains: Sequence[Domain], solution_id: str) -> None:
    if len(records) != len(domains):
        raise IncompatibleSolution(
            f"solution '{solution_id}' has {len(records)} domains, stack has {len(domains)}"
        )
    for rec, dom in zip(records, domains):
        if rec.get("name") != dom.name:
            raise IncompatibleSolution(f"domain name mismatch: file '{rec.get('name')}' vs stack '{dom.name}'")
        if rec.get("kind") != dom.kind.value:
            raise IncompatibleSolution(
                f"domain '{dom.name}' kind mismatch: file '{rec.get('kind')}' vs stack '{dom.kind.value}'"
            )
        if list(rec.get("components", [])) != list(dom.components):
            raise IncompatibleSolution(
                f"domain '{dom.name}' components mismatch: file {rec.get('components')} vs stack {dom.components}"
            )
        grid = np.asarray(rec.get("grid", []), dtype=np.float64)
        if grid.ndim != 1 or grid.size == 0:
            raise IncompatibleSolution(f"domain '{dom.name}' has no grid in the solution file")
        if dom.is_connector and grid.size != 1:
            raise IncompatibleSolution(f"connector '{dom.name}' must have one grid point, file has {grid.size}")
        if not dom.is_connector and grid.size < 2:
            raise IncompatibleSolution(f"domain '{dom.name}' needs at least 2 grid points, file has {grid.size}")
        if not np.all(np.isfinite(grid)) or not np.all(np.diff(grid) > 0.0):
            raise IncompatibleSolution(f"domain '{dom.name}' grid in the solution file is not strictly increasing")
        values = rec.get("values") or {}
        for name in dom.components:
            col = values.get(name)
            if col is None or len(col) != grid.size:
                raise IncompatibleSolution(
                    f"domain '{dom.name}' component '{name}' values missing or not matching the grid"
                )


def restore_solution(path: str | Path, domains: Sequence[Domain], *, solution_id: str = "solution") -> str:
    """
    Load solution_id into the domains (grids resized, values copied exactly).

    Returns the stored description. The caller must rebuild its session.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"solution file not found: {path}")
    doc = read_solution_file(path)
    if solution_id not in doc:
        raise NameNotFound(f"solution id '{solution_id}' not found in {path}. Available: {list(doc)}")
    entry = doc[solution_id] or {}
    records = entry.get("domains") or []
    _check_structure(records, domains, solution_id)

    loaded = []
    for rec, dom in zip(records, domains):
        grid = np.asarray(rec["grid"], dtype=np.float64)
        try:
            values = np.array([rec["values"][name] for name in dom.components], dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise IncompatibleSolution(f"domain '{dom.name}' has non-numeric values: {exc}") from exc
        fp = rec.get("fixed_point")
        fixed = None
        if fp is not None:
            if fp.get("component") not in dom.components:
                raise IncompatibleSolution(
                    f"domain '{dom.name}' fixed point component '{fp.get('component')}' is not a component"
                )
            fixed = FixedPoint(
                z=float(fp["z"]),
                component=dom.components.index(fp["component"]),
                value=float(fp["value"]),
            )
        loaded.append((grid, values.reshape(dom.n_components, grid.size), fixed))

    for dom, (grid, values, fixed) in zip(domains, loaded):
        dom.resize(grid, values)
        dom.fixed_point = fixed
    logger.info("restored solution '%s' from %s", solution_id, path)
    return str(entry.get("description", ""))
