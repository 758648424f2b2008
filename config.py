"""
config.py
---------
Centralised configuration for the database transfer engine.

Loads settings from environment variables (a ``.env`` file next to this
module is honoured through python-dotenv). Settings are exposed as frozen
dataclasses so configuration is immutable at runtime.

Design Decision:
    Engine-level knobs (native batch size, worker count, log destination)
    live here.  Per-transfer policy (transactions, commit interval, multi-row
    inserts, ...) is *not* configuration: it travels with each transfer as
    :class:`models.settings.TransferSettings` and is persisted by the
    settings store.
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
    """Defaults used when opening target connections."""
    host: str = field(default_factory=lambda: os.getenv("DB_HOST", "localhost"))
    port: int = field(default_factory=lambda: int(os.getenv("DB_PORT", "3306")))
    charset: str = field(default_factory=lambda: os.getenv("DB_CHARSET", "utf8mb4"))
    connect_timeout: int = field(
        default_factory=lambda: int(os.getenv("DB_CONNECT_TIMEOUT", "10"))
    )
    max_retries: int = field(
        default_factory=lambda: int(os.getenv("DB_MAX_RETRIES", "3"))
    )
    retry_delay: float = field(
        default_factory=lambda: float(os.getenv("DB_RETRY_DELAY", "1.0"))
    )
    # Credentials are supplied by the connection provider at runtime and are
    # never read from configuration.


@dataclass(frozen=True)
class TransferConfig:
    """Transfer engine settings."""
    batch_size: int = field(
        default_factory=lambda: int(os.getenv("TRANSFER_BATCH_SIZE", "1000"))
    )
    max_workers: int = field(
        default_factory=lambda: int(os.getenv("TRANSFER_MAX_WORKERS", "4"))
    )
    settings_file: Path = field(
        default_factory=lambda: Path(
            os.getenv("TRANSFER_SETTINGS_FILE", "transfer_settings.json")
        )
    )
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper()
    )
    log_file: str | None = field(
        default_factory=lambda: os.getenv("LOG_FILE")  # None → log to stderr only
    )


@dataclass(frozen=True)
class AppConfig:
    """Root application configuration."""
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)
    app_name: str = "Database Transfer Engine"
    app_version: str = "1.0.0"


def load_config() -> AppConfig:
    """
    Build and return the application configuration.

    Returns:
        AppConfig: Fully populated (and frozen) configuration object.

    Example::

        cfg = load_config()
        print(cfg.transfer.batch_size)   # 1000
        print(cfg.db.connect_timeout)    # 10
    """
    return AppConfig()


# Module-level singleton used throughout the application
CONFIG: AppConfig = load_config()


def get_log_level() -> int:
    """Convert string log level from config to logging module constant."""
    level = getattr(logging, CONFIG.transfer.log_level, None)
    if not isinstance(level, int):
        return logging.INFO
    return level
