"""
Driver to run a domain-stack case from YAML.

Responsibilities:
- Load StackConfig and the domain list from a case YAML.
- Build the Stack, apply optional initial profiles / restored solution.
- Solve (with or without grid refinement).
- Write the solution file and the statistics report.

Exit codes: 0 on success, 1 when the solve fails or is cancelled.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import numpy as np
import yaml

from core.domain import Domain, connector_domain, extended_domain
from core.errors import InvalidArgument, SolveCancelled, SolveFailed
from core.grid import uniform_grid
from core.logging_utils import get_log_level_from_env, loglevel_to_logging, setup_logging
from core.types import NewtonConfig, RefineCriteria, StackConfig, TimeStepConfig
from driver.stack import Stack
from physics.boundaries import FixedValueBoundary, InterfaceContinuity, ZeroGradientBoundary
from physics.free_front import FreeFront
from physics.reaction_diffusion import ReactionDiffusion

logger = logging.getLogger(__name__)


def _resolve_path(base: Path, value: str | Path) -> Path:
    """Resolve a possibly relative path against base."""
    path = Path(value)
    return path if path.is_absolute() else (base / path).resolve()


def _read_yaml_text(cfg_file: Path) -> str:
    try:
        return cfg_file.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError:
        return cfg_file.read_text()


# -----------------------------------------------------------------------------
# Model parameters
# -----------------------------------------------------------------------------
def _power_law(raw: Mapping[str, Any]) -> Callable[[np.ndarray], np.ndarray]:
    """D(phi) = value * (phi / reference) ** exponent."""
    value = float(raw["value"])
    reference = float(raw.get("reference", 1.0))
    exponent = float(raw.get("exponent", 1.0))

    def _law(phi: np.ndarray) -> np.ndarray:
        return value * np.power(np.abs(phi) / reference, exponent)

    return _law


def _coefficient(raw: Any, what: str):
    if raw is None:
        return 1.0
    if isinstance(raw, Mapping):
        if "value" not in raw:
            raise InvalidArgument(f"{what} mapping needs a 'value' entry, got {dict(raw)}")
        return _power_law(raw)
    return float(raw)


def _linear_source(raw: Any) -> Optional[Callable[[np.ndarray, np.ndarray], np.ndarray]]:
    """S(z, phi) = constant + linear * phi."""
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raw = {"constant": raw}
    constant = float(raw.get("constant", 0.0))
    linear = float(raw.get("linear", 0.0))

    def _source(z: np.ndarray, phi: np.ndarray) -> np.ndarray:
        return constant + linear * phi

    return _source


def _build_grid(raw: Mapping[str, Any]) -> np.ndarray:
    if "grid" in raw:
        return np.asarray(raw["grid"], dtype=np.float64)
    length = raw.get("length", 1.0)
    if isinstance(length, (list, tuple)):
        z0, z1 = float(length[0]), float(length[1])
    else:
        z0, z1 = 0.0, float(length)
    return uniform_grid(z0, z1, int(raw.get("points", 6)))


def _refine_criteria(raw: Optional[Mapping[str, Any]]) -> RefineCriteria:
    return RefineCriteria(**dict(raw or {}))


def _reaction_diffusion(raw: Mapping[str, Any]) -> Domain:
    physics = ReactionDiffusion(
        diffusivity=_coefficient(raw.get("diffusivity"), "diffusivity"),
        source=_linear_source(raw.get("source")),
        initial={str(k): float(v) for k, v in (raw.get("initial") or {}).items()},
    )
    return extended_domain(
        raw["name"], raw.get("components", ["T"]), _build_grid(raw), physics,
        refine=_refine_criteria(raw.get("refine")),
    )


def _free_front(raw: Mapping[str, Any]) -> Domain:
    params = dict(raw.get("params") or {})
    if "conductivity" in params:
        params["conductivity"] = _coefficient(params["conductivity"], "conductivity")
    physics = FreeFront(**params)
    return extended_domain(
        raw["name"], [physics.temperature, physics.speed], _build_grid(raw), physics,
        refine=_refine_criteria(raw.get("refine")),
    )


def _fixed_value(raw: Mapping[str, Any]) -> Domain:
    values = {str(k): float(v) for k, v in (raw.get("values") or {}).items()}
    return connector_domain(raw["name"], list(values), FixedValueBoundary(values))


def _zero_gradient(raw: Mapping[str, Any]) -> Domain:
    return connector_domain(raw["name"], [], ZeroGradientBoundary(raw.get("components")))


def _interface(raw: Mapping[str, Any]) -> Domain:
    return connector_domain(raw["name"], [], InterfaceContinuity(raw.get("components")))


_MODELS: Dict[str, Callable[[Mapping[str, Any]], Domain]] = {
    "reaction_diffusion": _reaction_diffusion,
    "free_front": _free_front,
    "fixed_value": _fixed_value,
    "zero_gradient": _zero_gradient,
    "interface": _interface,
}

_MODEL_KIND = {
    "reaction_diffusion": "extended",
    "free_front": "extended",
    "fixed_value": "connector",
    "zero_gradient": "connector",
    "interface": "connector",
}


def build_domain(raw: Mapping[str, Any]) -> Domain:
    """Build one Domain from its YAML mapping."""
    if "name" not in raw:
        raise InvalidArgument(f"domain entry needs a 'name': {dict(raw)}")
    model = str(raw.get("model", "")).strip().lower()
    if model not in _MODELS:
        raise InvalidArgument(f"unknown model '{model}' for domain '{raw['name']}'. Known: {sorted(_MODELS)}")
    kind = raw.get("kind")
    if kind is not None and str(kind).lower() != _MODEL_KIND[model]:
        raise InvalidArgument(
            f"domain '{raw['name']}': model '{model}' is a {_MODEL_KIND[model]} domain, not '{kind}'"
        )
    return _MODELS[model](raw)


def build_stack_config(raw: Mapping[str, Any]) -> StackConfig:
    solver_raw = dict(raw.get("solver") or {})
    newton = NewtonConfig(**dict(solver_raw.pop("newton", None) or {}))
    ts_raw = dict(solver_raw.pop("timestep", None) or {})
    if "steps" in ts_raw:
        ts_raw["steps"] = tuple(ts_raw["steps"])
    timestep = TimeStepConfig(**ts_raw)
    for key in ("loglevel", "refine"):
        solver_raw.pop(key, None)
    return StackConfig(newton=newton, timestep=timestep, **solver_raw)


def load_case(cfg_path: str | Path) -> Dict[str, Any]:
    """Load the raw case YAML (with its base directory under '_base')."""
    cfg_file = Path(cfg_path).expanduser().resolve()
    raw = yaml.safe_load(_read_yaml_text(cfg_file)) or {}
    if not isinstance(raw, dict):
        raise InvalidArgument(f"case file {cfg_file} must contain a mapping")
    raw["_base"] = cfg_file.parent
    return raw


def build_stack(raw: Mapping[str, Any]) -> Stack:
    """Build the Stack and apply the optional initial guess of a loaded case."""
    domains_raw: List[Mapping[str, Any]] = list(raw.get("domains") or [])
    if not domains_raw:
        raise InvalidArgument("case has no 'domains' list")
    cfg = build_stack_config(raw)
    fixed_T = cfg.fixed_temperature
    cfg.fixed_temperature = None
    stack = Stack([build_domain(d) for d in domains_raw], cfg)

    base = Path(raw.get("_base", "."))
    init = raw.get("initial") or {}
    if init.get("restore"):
        stack.restore(_resolve_path(base, init["restore"]), init.get("solution_id", "solution"))
    for prof in raw.get("profiles") or []:
        stack.set_profile(prof["domain"], list(prof["components"]), prof["table"])
    for flat in raw.get("flat_profiles") or []:
        stack.set_flat_profile(flat["domain"], flat["component"], float(flat["value"]))
    if fixed_T is not None:
        stack.set_fixed_temperature(fixed_T)
    return stack


def run_case(
    cfg_path: str,
    *,
    loglevel: Optional[int] = None,
    refine: Optional[bool] = None,
    save: Optional[str] = None,
) -> int:
    raw = load_case(cfg_path)
    base = Path(raw["_base"])
    solver_raw = raw.get("solver") or {}
    out_raw = raw.get("output") or {}
    case_id = (raw.get("case") or {}).get("id", Path(cfg_path).stem)

    if loglevel is None:
        loglevel = int(solver_raw.get("loglevel", 1))
    setup_logging(level=get_log_level_from_env(loglevel_to_logging(loglevel)))
    if refine is None:
        refine = bool(solver_raw.get("refine", True))

    stack = build_stack(raw)
    logger.info("case '%s': %d domains, %d unknowns", case_id, stack.n_domains, stack.session.layout.size)

    try:
        stack.solve(loglevel=loglevel, refine_grid=refine)
    except (SolveFailed, SolveCancelled) as exc:
        logger.error("case '%s' failed: %s", case_id, exc)
        return 1

    solution_path = save or out_raw.get("solution")
    if solution_path:
        path = _resolve_path(base, solution_path)
        stack.save(path, out_raw.get("solution_id", "solution"), out_raw.get("description", str(case_id)))
        logger.info("solution written: %s", path)
    stats_path = out_raw.get("stats")
    if stats_path:
        path = _resolve_path(base, stats_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            stack.write_stats(f)
    if loglevel > 1:
        stack.show_solution()
    logger.info("case '%s' done: |F|_2=%.3e", case_id, stack.residual_norm())
    return 0


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Solve a domain-stack case.")
    parser.add_argument("case_yaml", help="Path to case YAML file.")
    parser.add_argument("--loglevel", type=int, default=None, help="Solve verbosity 0..3 (default: use YAML).")
    parser.add_argument("--no-refine", action="store_true", help="Solve once on the initial grid.")
    parser.add_argument("--save", default=None, help="Solution file path (default: use YAML).")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    return run_case(
        args.case_yaml,
        loglevel=args.loglevel,
        refine=False if args.no_refine else None,
        save=args.save,
    )


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
