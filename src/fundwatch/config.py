"""Configuration system using pydantic-settings with environment variable loading."""

from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """SQLite sample store settings."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    path: str = "data/fundwatch.db"
    pool_size: int = 5
    acquire_timeout: float = 5.0  # seconds to wait for a free connection
    busy_timeout_ms: int = 5000


class CollectorSettings(BaseSettings):
    """Collection scheduler settings.

    missing_rate_policy decides what happens to an instrument whose rate
    could not be fetched in a cycle:
    - "flag": store the observation with a NULL rate (surfaced as null)
    - "omit": store no observation for that instrument
    """

    model_config = SettingsConfigDict(env_prefix="COLLECTOR_")

    enabled: bool = True
    interval_seconds: float = 60.0
    cycle_timeout_seconds: float = 45.0
    missing_rate_policy: Literal["omit", "flag"] = "flag"


class UpstreamSettings(BaseSettings):
    """Upstream market data source (ccxt exchange) settings."""

    model_config = SettingsConfigDict(env_prefix="UPSTREAM_")

    exchange_id: str = "bybit"
    api_key: SecretStr = SecretStr("")
    api_secret: SecretStr = SecretStr("")
    reference_symbol: str = "USDC/USDT"
    quote: str = "USDT"  # registry "BTC/USD" -> "BTC/USDT:USDT"
    settle: str = "USDT"


class ServerSettings(BaseSettings):
    """HTTP query server configuration."""

    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = "0.0.0.0"
    port: int = 3001


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    database: DatabaseSettings = DatabaseSettings()
    collector: CollectorSettings = CollectorSettings()
    upstream: UpstreamSettings = UpstreamSettings()
    server: ServerSettings = ServerSettings()
