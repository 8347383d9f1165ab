"""Engine settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Conveyor configuration. All values come from environment variables.

    Per-task pipeline settings live in the YAML file at ``tasks_config_path``
    (see ``conveyor.pipeline.settings``); this model only holds engine-wide
    knobs.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONVEYOR_", env_file=_env_file(), env_file_encoding="utf-8"
    )

    # Database
    database_path: Path = Field(default=Path("data/conveyor.db"))

    # Task configuration (hot reloaded)
    tasks_config_path: Path = Field(default=Path("tasks.yaml"))
    config_poll_interval: float = Field(default=5.0, gt=0)

    # Pipeline limits
    chunk_size_limit: int = Field(default=5_000, gt=0)
    max_parallel_steps: int = Field(default=8, gt=0)

    # Logging
    log_level: str = Field(default="INFO")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)


settings = Settings()
