"""Run configuration: YAML loading, environment overrides, and logging setup.

``load_run_config`` reads a ``RunConfig`` from a YAML mapping.
``apply_env_overrides`` lets ``REFCHECK_*`` environment variables replace
fields that still hold their defaults. ``configure_logging`` attaches
handlers to the ``refcheck`` logger.
"""

from __future__ import annotations

from collections.abc import Callable
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from refcheck.models import RunConfig

# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------


def load_run_config(path: str | Path) -> RunConfig:
    """Load a ``RunConfig`` from a YAML file.

    Args:
        path: File path to a YAML mapping of ``RunConfig`` fields.

    Returns:
        The validated configuration.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file does not parse to a mapping.
        pydantic.ValidationError: If a field value is invalid.
    """
    file_path = Path(path)
    if not file_path.exists():
        msg = f"config file not found: {path}"
        raise FileNotFoundError(msg)

    with open(file_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = f"config file must contain a YAML mapping, got {type(data).__name__}"
        raise ValueError(msg)

    return RunConfig(**data)


# ---------------------------------------------------------------------------
# Environment variable support
# ---------------------------------------------------------------------------


def _parse_seed(raw: str) -> int | None:
    try:
        return int(raw, 0)
    except ValueError:
        return None


def _parse_time_limit(raw: str) -> float | None:
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def _parse_workers(raw: str) -> int | None:
    value = _parse_seed(raw)
    return value if value is not None and value >= 1 else None


_ENV_FIELDS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "REFCHECK_SEED": ("seed", _parse_seed),
    "REFCHECK_LOG_LEVEL": ("log_level", str.strip),
    "REFCHECK_TIME_LIMIT": ("time_limit_seconds", _parse_time_limit),
    "REFCHECK_WORKERS": ("worker_count", _parse_workers),
}
"""Environment variable -> (RunConfig field, parser returning None on bad input)."""


def apply_env_overrides(config: RunConfig) -> RunConfig:
    """Let ``REFCHECK_*`` environment variables fill in defaulted fields.

    A variable only applies while its field still equals the ``RunConfig``
    default, so values set in code or YAML win. Unparseable or out-of-range
    values are ignored.

    Args:
        config: The run configuration to apply overrides to.

    Returns:
        A new ``RunConfig`` with overrides applied, or *config* itself when
        nothing changed.
    """
    defaults = RunConfig()
    overrides: dict[str, Any] = {}
    for env_var, (field_name, parse) in _ENV_FIELDS.items():
        raw = os.environ.get(env_var)
        if raw is None or getattr(config, field_name) != getattr(defaults, field_name):
            continue
        value = parse(raw)
        if value is not None:
            overrides[field_name] = value
    return config.model_copy(update=overrides) if overrides else config


# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

# The pid tells the orchestrating process apart from its worker processes.
_LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(process)d] %(name)s: %(message)s"


def _has_handler(pkg_logger: logging.Logger, matches: Callable[[logging.Handler], bool]) -> bool:
    return any(matches(h) for h in pkg_logger.handlers)


def configure_logging(config: RunConfig) -> None:
    """Set the ``refcheck`` logger level and attach its handlers once.

    A console handler is always present; a file handler is added for
    ``config.log_file``. Calling this again for the same config adds nothing.

    Args:
        config: Run configuration providing ``log_level`` and ``log_file``.
    """
    pkg_logger = logging.getLogger("refcheck")
    pkg_logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    formatter = logging.Formatter(_LOG_FORMAT)

    if not _has_handler(pkg_logger, lambda h: type(h) is logging.StreamHandler):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        pkg_logger.addHandler(console)

    if config.log_file is None:
        return
    resolved = str(Path(config.log_file).resolve())
    if not _has_handler(
        pkg_logger,
        lambda h: isinstance(h, logging.FileHandler) and h.baseFilename == resolved,
    ):
        file_handler = logging.FileHandler(config.log_file)
        file_handler.setFormatter(formatter)
        pkg_logger.addHandler(file_handler)
