"""Shared settings loaded from environment / .env file."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration for the query engine.

    Values are read from ``SLICE_``-prefixed environment variables and from a
    ``.env`` file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="SLICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Software join
    max_fetch_workers: int = 8
    fetch_timeout_seconds: float | None = 30.0  # None waits forever

    # Planning
    symmetric_join_paths: bool = True  # walk relations backwards when no declared path exists

    # SQL rendering
    default_grammar: str = "sqlite"
    pretty_sql: bool = False


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.log_level.upper())
