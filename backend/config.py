from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the query core.

    Values come from ``INSIGHTQL_*`` environment variables or a local ``.env``.
    """

    model_config = SettingsConfigDict(
        env_prefix="INSIGHTQL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Local byte store for Arrow IPC payloads
    storage_dir: Path = Field(default=Path(".data/arrow"))

    # DuckDB database (":memory:" keeps everything in-process)
    duckdb_path: str = Field(default=":memory:")

    log_level: str = Field(default="INFO")

    preview_rows: int = Field(default=10, ge=1)


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
