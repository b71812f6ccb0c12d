from __future__ import annotations

import logging
import os
from typing import Optional


_TRUTHY = {"1", "true", "yes", "on"}


def _is_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in _TRUTHY


def _parse_level(value, default_level: int) -> int:
    if value is None:
        return default_level
    if isinstance(value, int):
        return int(value)
    text = str(value).strip().upper()
    if not text:
        return default_level
    if text.isdigit():
        return int(text)
    resolved = logging.getLevelName(text)
    if isinstance(resolved, int):
        return resolved
    return default_level


def loglevel_to_logging(loglevel: int) -> int:
    """
    Map the integer solve verbosity (0 silent ... 3+ very verbose) to a logging level.
    """
    loglevel = int(loglevel)
    if loglevel <= 0:
        return logging.WARNING
    if loglevel == 1:
        return logging.INFO
    return logging.DEBUG


def get_log_level_from_env(default: str | int = "INFO") -> int:
    """
    Resolve log level from env (STACK1D_LOG_LEVEL or STACK1D_DEBUG).
    """
    default_level = _parse_level(default, logging.INFO)
    env_level = os.environ.get("STACK1D_LOG_LEVEL")
    if env_level:
        return _parse_level(env_level, default_level)
    if _is_truthy(os.environ.get("STACK1D_DEBUG")):
        return logging.DEBUG
    return default_level


def setup_logging(*, level: int) -> None:
    """
    Configure root logging once; later calls only adjust the level.
    """
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    root.setLevel(level)
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            continue
        handler.setLevel(level)
