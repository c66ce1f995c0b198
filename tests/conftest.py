"""Shared fixtures for the refcheck test suite."""

from __future__ import annotations

from typing import Any

import pytest
from refcheck.descriptors import describe
from refcheck.models import EntryPointDescriptor, RunConfig

# ---------------------------------------------------------------------------
# Factory functions (plain functions, importable from conftest)
# ---------------------------------------------------------------------------


def make_config(**overrides: Any) -> RunConfig:
    """Build a RunConfig sized for fast test runs.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed RunConfig instance.
    """
    defaults: dict[str, Any] = {
        "trials_per_round": 8,
        "max_complexity": 3,
        "time_limit_seconds": 1.0,
        "log_level": "WARNING",
    }
    defaults.update(overrides)
    return RunConfig(**defaults)


def make_descriptor(
    reference: type[Any],
    submission: type[Any],
    solution: str | None = None,
    **overrides: Any,
) -> EntryPointDescriptor:
    """Build a descriptor for *solution* through ``describe``.

    Args:
        reference: Reference class.
        submission: Submission class.
        solution: Solution method name.
        **overrides: Keyword arguments forwarded to ``describe``.

    Returns:
        A resolved EntryPointDescriptor.
    """
    return describe(reference, submission, solution, **overrides)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

_ENV_VARS = (
    "REFCHECK_SEED",
    "REFCHECK_LOG_LEVEL",
    "REFCHECK_TIME_LIMIT",
    "REFCHECK_WORKERS",
)


@pytest.fixture(autouse=True)
def _clean_refcheck_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep REFCHECK_* variables from the outer environment out of tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def fast_config() -> RunConfig:
    """Return a small RunConfig: rounds 0..3, 8 generated trials each."""
    return make_config()
