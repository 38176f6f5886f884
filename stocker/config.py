"""
Stocker Configuration Module

Pydantic-based configuration management with environment variable overrides,
an optional YAML config file, and validation for the price data pipeline.

Settings are built once at process start (see ``load_settings``) and passed
into the provider, store, registry and service constructors.
"""

from __future__ import annotations

import re
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = Path("~/.stocker/config.yml")


class LogLevel(str, Enum):
    """Supported log levels for structured logging."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DataSource(str, Enum):
    """Supported price data sources."""

    EOD = "eod"
    YAHOO = "yahoo"
    MOCK = "mock"


class ConfigurationError(Exception):
    """Raised when settings are missing a value a component requires."""


# Letters, digits and the punctuation exchanges use in tickers (BRK.B,
# BF-B, ^GSPC, EURUSD=X); no path separators and no leading dot
SYMBOL_PATTERN = re.compile(r"^[A-Z0-9^][A-Z0-9.\-^=_]*$")


def normalize_symbol(symbol: str) -> str:
    """
    Normalize a ticker symbol to its stored form.

    Symbols double as directory names in the store, so anything that is not
    a plain ticker is rejected.

    Raises:
        ValueError: If the symbol is blank or has characters outside
            ``SYMBOL_PATTERN``
    """
    normalized = symbol.upper().strip()
    if not normalized:
        raise ValueError("Ticker symbol must not be empty")
    if not SYMBOL_PATTERN.match(normalized) or ".." in normalized:
        raise ValueError(f"Invalid ticker symbol: {symbol!r}")
    return normalized


class StockerSettings(BaseSettings):
    """
    Main configuration class for Stocker.

    Supports environment variable overrides with the STOCKER_ prefix. The API
    key is also read from EODHD_API_KEY.
    """

    model_config = SettingsConfigDict(
        env_prefix="STOCKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Logging Configuration
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level for structured logs"
    )

    # Storage Configuration
    data_dir: Path = Field(
        default=Path("./data"),
        description="Root directory for price files and the reference registry"
    )

    parquet_compression: str = Field(
        default="zstd",
        description="Compression algorithm for Parquet files"
    )

    # Data Source Configuration
    data_source: DataSource = Field(
        default=DataSource.EOD,
        description="Price data source: eod, yahoo, or mock"
    )

    eodhd_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "eodhd_api_key", "STOCKER_EODHD_API_KEY", "EODHD_API_KEY"
        ),
        description="EOD Historical Data API token"
    )

    eodhd_base_url: str = Field(
        default="https://eodhistoricaldata.com/api",
        description="EOD Historical Data REST base URL"
    )

    request_timeout: float = Field(
        default=30.0,
        gt=0.0,
        le=300.0,
        description="HTTP request timeout in seconds"
    )

    rate_limit_delay: float = Field(
        default=0.05,
        ge=0.0,
        le=10.0,
        description="Delay between API requests in seconds"
    )

    # Retry Configuration
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum number of attempts for transient fetch failures"
    )

    retry_backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Exponential backoff factor for retries"
    )

    # Operation Configuration
    max_workers: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum number of concurrent symbol fetches"
    )

    default_start_date: Optional[date] = Field(
        default=None,
        description="Start date used for initial fetches when none is given"
    )

    @field_validator("data_dir")
    @classmethod
    def validate_paths(cls, v: Path) -> Path:
        """Ensure paths are absolute and expanded."""
        return Path(v).expanduser().resolve()

    @field_validator("eodhd_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank keys as unset."""
        if v is not None and not v.strip():
            return None
        return v.strip() if v else v

    @property
    def stocks_dir(self) -> Path:
        """Directory holding one sub-directory per ticker."""
        return self.data_dir / "stocks"

    @property
    def reference_path(self) -> Path:
        """Path of the reference registry CSV."""
        return self.data_dir / "reference" / "tickers.csv"

    def require_api_key(self) -> str:
        """Return the EODHD API key or raise if it is not configured."""
        if not self.eodhd_api_key:
            raise ConfigurationError(
                "EOD Historical Data API key is required "
                "(set EODHD_API_KEY or sources.eodhd.api_key in the config file)"
            )
        return self.eodhd_api_key


# YAML keys flattened onto settings fields
_YAML_FIELD_MAP = {
    ("sources", "eodhd", "api_key"): "eodhd_api_key",
    ("sources", "eodhd", "apiKey"): "eodhd_api_key",
    ("sources", "eodhd", "base_url"): "eodhd_base_url",
    ("sources", "eodhd", "rate_limit"): "rate_limit_delay",
    ("storage", "data_dir"): "data_dir",
    ("storage", "dataDir"): "data_dir",
    ("storage", "compression"): "parquet_compression",
    ("defaults", "start_date"): "default_start_date",
    ("defaults", "startDate"): "default_start_date",
    ("defaults", "parallel"): "max_workers",
    ("defaults", "source"): "data_source",
    ("logging", "level"): "log_level",
}


def read_config_file(config_path: Path) -> Dict[str, Any]:
    """
    Read a YAML config file and flatten it onto settings field names.

    Args:
        config_path: Path to the YAML file

    Returns:
        Mapping of settings field name to value; empty if the file is absent

    Raises:
        ConfigurationError: If the file exists but is not valid YAML
    """
    path = Path(config_path).expanduser()
    if not path.exists():
        return {}

    try:
        with open(path, "r", encoding="utf-8") as file:
            raw = yaml.safe_load(file) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    values: Dict[str, Any] = {}
    for keys, field_name in _YAML_FIELD_MAP.items():
        node: Any = raw
        for key in keys:
            if not isinstance(node, dict) or key not in node:
                node = None
                break
            node = node[key]
        if node is not None:
            values[field_name] = node
    return values


def load_settings(
    config_path: Optional[Path] = None,
    **overrides: Any,
) -> StockerSettings:
    """
    Build settings from overrides, environment, and the YAML config file.

    Precedence is overrides, then environment (and .env), then the config
    file, then field defaults.

    Args:
        config_path: YAML file to read; defaults to ~/.stocker/config.yml
        **overrides: Explicit field values, typically from CLI options

    Returns:
        Validated settings
    """
    overrides = {k: v for k, v in overrides.items() if v is not None}
    settings = StockerSettings(**overrides)

    file_values = read_config_file(config_path or DEFAULT_CONFIG_PATH)
    missing = {
        k: v for k, v in file_values.items() if k not in settings.model_fields_set
    }
    if not missing:
        return settings

    return StockerSettings(**missing, **overrides)
