"""Tests for run configuration loading, env overrides, and logging setup.

Validates ``load_run_config``, ``apply_env_overrides``, and
``configure_logging`` defined in ``src/refcheck/config.py``.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from hypothesis import given, settings, strategies as st
from pydantic import ValidationError
import pytest
from refcheck.config import apply_env_overrides, configure_logging, load_run_config
from refcheck.models import RunConfig
import yaml

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture()
def clean_logger() -> Iterator[logging.Logger]:
    """Remove handlers added to the ``refcheck`` logger during a test."""
    pkg_logger = logging.getLogger("refcheck")
    before = list(pkg_logger.handlers)
    level = pkg_logger.level
    yield pkg_logger
    for handler in pkg_logger.handlers:
        if handler not in before:
            pkg_logger.removeHandler(handler)
            handler.close()
    pkg_logger.setLevel(level)


# ===========================================================================
# YAML loading
# ===========================================================================


@pytest.mark.unit
class TestLoadRunConfig:
    def test_loads_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "run.yaml"
        path.write_text(yaml.safe_dump({"seed": 99, "worker_count": 4, "fail_fast_threshold": 1}))
        config = load_run_config(path)
        assert config.seed == 99
        assert config.worker_count == 4
        assert config.fail_fast_threshold == 1
        assert config.trials_per_round == 32

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_run_config(path) == RunConfig()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="not found"):
            load_run_config(tmp_path / "absent.yaml")

    def test_non_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError, match="mapping"):
            load_run_config(path)

    def test_invalid_value(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("worker_count: 0\n")
        with pytest.raises(ValidationError):
            load_run_config(str(path))


# ===========================================================================
# Environment overrides
# ===========================================================================


@pytest.mark.unit
class TestApplyEnvOverrides:
    def test_no_env_returns_same_object(self) -> None:
        config = RunConfig()
        assert apply_env_overrides(config) is config

    def test_seed_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REFCHECK_SEED", "1234")
        assert apply_env_overrides(RunConfig()).seed == 1234

    def test_hex_seed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REFCHECK_SEED", "0x10")
        assert apply_env_overrides(RunConfig()).seed == 16

    def test_all_fields(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REFCHECK_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("REFCHECK_TIME_LIMIT", "2.5")
        monkeypatch.setenv("REFCHECK_WORKERS", "3")
        result = apply_env_overrides(RunConfig())
        assert result.log_level == "DEBUG"
        assert result.time_limit_seconds == 2.5
        assert result.worker_count == 3

    def test_explicit_value_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REFCHECK_SEED", "1234")
        assert apply_env_overrides(RunConfig(seed=7)).seed == 7

    @pytest.mark.parametrize(
        ("variable", "raw"),
        [
            ("REFCHECK_SEED", "not-a-number"),
            ("REFCHECK_TIME_LIMIT", "-1"),
            ("REFCHECK_TIME_LIMIT", "0"),
            ("REFCHECK_TIME_LIMIT", "soon"),
            ("REFCHECK_WORKERS", "0"),
            ("REFCHECK_WORKERS", "two"),
        ],
    )
    def test_invalid_values_ignored(
        self, monkeypatch: pytest.MonkeyPatch, variable: str, raw: str
    ) -> None:
        monkeypatch.setenv(variable, raw)
        assert apply_env_overrides(RunConfig()) == RunConfig()

    @given(workers=st.integers(min_value=1, max_value=64))
    @settings(max_examples=20)
    def test_worker_values(self, workers: int) -> None:
        with pytest.MonkeyPatch.context() as mp:
            mp.setenv("REFCHECK_WORKERS", str(workers))
            assert apply_env_overrides(RunConfig()).worker_count == workers


# ===========================================================================
# Logging
# ===========================================================================


@pytest.mark.unit
class TestConfigureLogging:
    def test_sets_level(self, clean_logger: logging.Logger) -> None:
        configure_logging(RunConfig(log_level="debug"))
        assert clean_logger.level == logging.DEBUG

    def test_idempotent(self, clean_logger: logging.Logger) -> None:
        configure_logging(RunConfig())
        count = len(clean_logger.handlers)
        configure_logging(RunConfig())
        configure_logging(RunConfig())
        assert len(clean_logger.handlers) == count

    def test_file_handler(self, clean_logger: logging.Logger, tmp_path: Path) -> None:
        log_file = tmp_path / "run.log"
        config = RunConfig(log_file=str(log_file))
        configure_logging(config)
        configure_logging(config)
        file_handlers = [h for h in clean_logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        logging.getLogger("refcheck.test").warning("written")
        file_handlers[0].flush()
        assert "written" in log_file.read_text()

    def test_records_carry_process_id(
        self, clean_logger: logging.Logger, tmp_path: Path
    ) -> None:
        log_file = tmp_path / "pid.log"
        configure_logging(RunConfig(log_file=str(log_file)))
        logging.getLogger("refcheck.worker").warning("from worker")
        for handler in clean_logger.handlers:
            handler.flush()
        line = log_file.read_text().strip()
        assert f"[{os.getpid()}] refcheck.worker: from worker" in line
