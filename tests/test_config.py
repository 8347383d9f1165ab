"""Tests for engine settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from conveyor.config import Settings


def test_defaults() -> None:
    s = Settings()

    assert s.database_path == Path("data/conveyor.db")
    assert s.tasks_config_path == Path("tasks.yaml")
    assert s.config_poll_interval == 5.0
    assert s.chunk_size_limit == 5_000
    assert s.max_parallel_steps == 8
    assert s.log_level == "INFO"


def test_env_ignored_under_pytest(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONVEYOR_CHUNK_SIZE_LIMIT", "10")

    assert Settings().chunk_size_limit == 5_000


def test_explicit_values() -> None:
    s = Settings(chunk_size_limit=100, database_path=Path("/tmp/x.db"))

    assert s.chunk_size_limit == 100
    assert s.database_path == Path("/tmp/x.db")


def test_limits_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        Settings(chunk_size_limit=0)
