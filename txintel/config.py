"""Configuration loading from TOML files with environment variable fallbacks."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import tomli

DEFAULT_CONFIG_PATHS = [
    Path("config.toml"),
    Path.home() / ".config" / "txintel" / "config.toml",
]

DEFAULT_DB_PATH = "txintel.db"
DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class DatabaseConfig:
    """Database configuration."""

    path: Path


@dataclass(frozen=True)
class PipelineConfig:
    """Tuning knobs for the categorize, recurring and transfer stages."""

    uncategorized_page_size: int = 500
    write_chunk_size: int = 50
    learned_min_confidence: float = 0.8
    transfer_window_days: int = 3
    transfer_lookback_months: int = 6


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration. A missing file means log to stderr."""

    level: str = DEFAULT_LOG_LEVEL
    file: Path | None = None


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    database: DatabaseConfig
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def find_config_file() -> Path | None:
    """Find the first existing config file from default paths."""
    for path in DEFAULT_CONFIG_PATHS:
        if path.exists():
            return path
    return None


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from TOML file with environment variable fallbacks."""
    path = config_path or find_config_file()
    toml_data = _load_toml_data(path)
    return _build_config(toml_data, path)


def configure_logging(config: LoggingConfig) -> None:
    """Apply logging settings to the root logger."""
    level = getattr(logging, config.level.upper(), logging.INFO)
    kwargs = {"level": level, "format": LOG_FORMAT}
    if config.file is not None:
        kwargs["filename"] = str(config.file)
    logging.basicConfig(**kwargs)


def _load_toml_data(config_path: Path | None) -> dict:
    """Load TOML data from file if it exists."""
    if config_path and config_path.exists():
        with open(config_path, "rb") as f:
            return tomli.load(f)
    return {}


def _build_config(toml_data: dict, config_path: Path | None) -> Config:
    """Build Config object from TOML data and environment variables."""
    db_config = _build_database_config(toml_data.get("database", {}), config_path)
    pipeline_config = _build_pipeline_config(toml_data.get("pipeline", {}))
    logging_config = _build_logging_config(toml_data.get("logging", {}), config_path)
    return Config(database=db_config, pipeline=pipeline_config, logging=logging_config)


def _resolve_path(value: str, config_path: Path | None) -> Path:
    """Resolve a relative path against the config file location."""
    path = Path(value)
    if not path.is_absolute() and config_path:
        path = config_path.parent / path
    return path


def _build_database_config(db_data: dict, config_path: Path | None) -> DatabaseConfig:
    """Build database config, resolving relative paths against config file location."""
    db_path_str = os.environ.get("TXINTEL_DB_PATH", db_data.get("path", DEFAULT_DB_PATH))
    return DatabaseConfig(path=_resolve_path(db_path_str, config_path))


def _build_pipeline_config(pipeline_data: dict) -> PipelineConfig:
    """Build pipeline config from TOML data and env vars."""
    defaults = PipelineConfig()
    return PipelineConfig(
        uncategorized_page_size=int(
            os.environ.get(
                "TXINTEL_PAGE_SIZE",
                pipeline_data.get("uncategorized_page_size", defaults.uncategorized_page_size),
            )
        ),
        write_chunk_size=int(
            os.environ.get(
                "TXINTEL_CHUNK_SIZE",
                pipeline_data.get("write_chunk_size", defaults.write_chunk_size),
            )
        ),
        learned_min_confidence=float(
            pipeline_data.get("learned_min_confidence", defaults.learned_min_confidence)
        ),
        transfer_window_days=int(
            pipeline_data.get("transfer_window_days", defaults.transfer_window_days)
        ),
        transfer_lookback_months=int(
            pipeline_data.get("transfer_lookback_months", defaults.transfer_lookback_months)
        ),
    )


def _build_logging_config(logging_data: dict, config_path: Path | None) -> LoggingConfig:
    """Build logging config from TOML data and env vars."""
    level = os.environ.get("TXINTEL_LOG_LEVEL", logging_data.get("level", DEFAULT_LOG_LEVEL))
    file_str = os.environ.get("TXINTEL_LOG_FILE", logging_data.get("file") or None)
    log_file = _resolve_path(file_str, config_path) if file_str else None
    return LoggingConfig(level=level, file=log_file)
