"""
config.py
---------
Centralised configuration management for pgrecord.

Loads settings from environment variables (with .env file support via
python-dotenv). Provides typed settings as frozen dataclasses so
configuration is immutable at runtime.

Design Decision:
    Using a dataclass with class-level defaults means the library works
    "out of the box" against a local PostgreSQL without any .env file, while
    still allowing environment-based overrides for deployments.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

_env_path = Path(__file__).parent / ".env"
if _env_path.exists():
    load_dotenv(dotenv_path=_env_path)


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection settings."""
    host: str = field(default_factory=lambda: os.getenv("PGRECORD_DB_HOST", "localhost"))
    port: int = field(default_factory=lambda: int(os.getenv("PGRECORD_DB_PORT", "5432")))
    dbname: str = field(default_factory=lambda: os.getenv("PGRECORD_DB_NAME", "postgres"))
    user: str = field(default_factory=lambda: os.getenv("PGRECORD_DB_USER", "postgres"))
    password: str = field(default_factory=lambda: os.getenv("PGRECORD_DB_PASSWORD", ""))
    connect_timeout: int = field(
        default_factory=lambda: int(os.getenv("PGRECORD_DB_CONNECT_TIMEOUT", "10"))
    )
    min_conn: int = field(default_factory=lambda: int(os.getenv("PGRECORD_DB_MIN_CONN", "1")))
    max_conn: int = field(default_factory=lambda: int(os.getenv("PGRECORD_DB_MAX_CONN", "10")))


@dataclass(frozen=True)
class MigrationConfig:
    """Migration engine settings."""
    models_path: Path = field(
        default_factory=lambda: Path(os.getenv("PGRECORD_MODELS_PATH", "app/models"))
    )
    migrations_path: Path = field(
        default_factory=lambda: Path(os.getenv("PGRECORD_MIGRATIONS_PATH", "migrations"))
    )
    settle_seconds: float = field(
        default_factory=lambda: float(os.getenv("PGRECORD_SETTLE_SECONDS", "0.1"))
    )
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper()
    )
    log_file: str | None = field(
        default_factory=lambda: os.getenv("LOG_FILE")  # None → log to stderr only
    )
    sql_log_level: str = field(
        default_factory=lambda: os.getenv("PGRECORD_SQL_LOG_LEVEL", "WARNING").upper()
    )


@dataclass(frozen=True)
class AppConfig:
    """Root application configuration."""
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    app_name: str = "pgrecord"
    app_version: str = "1.0.0"


def load_config() -> AppConfig:
    """
    Build and return the application configuration.

    Returns:
        AppConfig: Fully populated (and frozen) configuration object.

    Example::

        cfg = load_config()
        print(cfg.db.host)                     # "localhost"
        print(cfg.migration.migrations_path)   # "migrations"
    """
    return AppConfig()


# Module-level singleton used throughout the application
CONFIG: AppConfig = load_config()


def _level_from_name(name: str, fallback: int) -> int:
    level = getattr(logging, name, None)
    return level if isinstance(level, int) else fallback


def get_log_level() -> int:
    """Convert string log level from config to logging module constant."""
    return _level_from_name(CONFIG.migration.log_level, logging.INFO)


def get_sql_log_level() -> int:
    """Level of the SQL statement logger (``PGRECORD_SQL_LOG_LEVEL``)."""
    return _level_from_name(CONFIG.migration.sql_log_level, logging.WARNING)
