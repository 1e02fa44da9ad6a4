"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the Solana
transaction monitor, loading and validating environment variables at startup.

Services do not read settings directly. They consume small frozen config
objects (``WatcherConfig``, ``LedgerConfig``, ``PatternConfig``,
``AnomalyThresholds``) which validate themselves on construction and raise
``ConfigurationError`` for values that make no sense. ``MonitorConfig``
bundles them and can be built from ``Settings``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class ConfigurationError(ValueError):
    """Raised when thresholds or window sizes are invalid."""


def _require_positive(name: str, value: float | int | Decimal) -> None:
    if value <= 0:
        raise ConfigurationError(f"{name} must be > 0 (got {value})")


def _require_non_negative(name: str, value: float | int | Decimal) -> None:
    if value < 0:
        raise ConfigurationError(f"{name} must be >= 0 (got {value})")


@dataclass(frozen=True)
class WatcherConfig:
    """Polling parameters for the signature watcher."""

    initial_delay_seconds: float = 2.0
    poll_interval_seconds: float = 4.0
    max_attempts: int = 30
    max_concurrency: int = 32
    rpc_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        _require_non_negative("initial_delay_seconds", self.initial_delay_seconds)
        _require_positive("poll_interval_seconds", self.poll_interval_seconds)
        _require_positive("max_attempts", self.max_attempts)
        _require_positive("max_concurrency", self.max_concurrency)
        _require_positive("rpc_timeout_seconds", self.rpc_timeout_seconds)


@dataclass(frozen=True)
class LedgerConfig:
    """Confirmation ledger capacity and sliding-window metric parameters."""

    history_size: int = 1000
    metrics_window: timedelta = timedelta(seconds=60)
    metrics_interval_seconds: float = 10.0
    retention: timedelta = timedelta(hours=1)
    slow_confirmation_ms: int = 30_000
    fail_rate_alert_pct: float = 20.0
    tps_alert: float = 100.0

    def __post_init__(self) -> None:
        _require_positive("history_size", self.history_size)
        _require_positive("metrics_window", self.metrics_window.total_seconds())
        _require_positive("metrics_interval_seconds", self.metrics_interval_seconds)
        _require_positive("slow_confirmation_ms", self.slow_confirmation_ms)
        _require_non_negative("tps_alert", self.tps_alert)
        if not 0.0 <= self.fail_rate_alert_pct <= 100.0:
            raise ConfigurationError(
                f"fail_rate_alert_pct must be within [0, 100] (got {self.fail_rate_alert_pct})"
            )
        if self.retention < self.metrics_window:
            raise ConfigurationError("retention must be at least as long as metrics_window")


@dataclass(frozen=True)
class PatternConfig:
    """Per-actor history bounds."""

    window: timedelta = timedelta(hours=1)
    frequency_window: timedelta = timedelta(seconds=60)
    max_records_per_actor: int = 1000
    cleanup_interval_seconds: float = 600.0

    def __post_init__(self) -> None:
        _require_positive("window", self.window.total_seconds())
        _require_positive("frequency_window", self.frequency_window.total_seconds())
        _require_positive("max_records_per_actor", self.max_records_per_actor)
        _require_positive("cleanup_interval_seconds", self.cleanup_interval_seconds)
        if self.frequency_window > self.window:
            raise ConfigurationError("frequency_window must not exceed window")

    @property
    def retention(self) -> timedelta:
        """Records older than this are evicted from an actor's history."""
        return self.window * 2


@dataclass(frozen=True)
class AnomalyThresholds:
    """Tunable thresholds for the anomaly rules."""

    max_frequency_per_minute: int = 10
    max_amount_per_window: Decimal = Decimal("100")
    single_amount_threshold: Decimal = Decimal("50")
    max_failed_attempts: int = 5
    new_recipient_amount: Decimal = Decimal("10")

    def __post_init__(self) -> None:
        _require_positive("max_frequency_per_minute", self.max_frequency_per_minute)
        _require_positive("max_amount_per_window", self.max_amount_per_window)
        _require_positive("single_amount_threshold", self.single_amount_threshold)
        _require_non_negative("max_failed_attempts", self.max_failed_attempts)
        _require_non_negative("new_recipient_amount", self.new_recipient_amount)


@dataclass(frozen=True)
class MonitorConfig:
    """Everything the transaction monitor needs, grouped by component."""

    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    pattern: PatternConfig = field(default_factory=PatternConfig)
    thresholds: AnomalyThresholds = field(default_factory=AnomalyThresholds)

    @classmethod
    def from_settings(cls, settings: Settings) -> MonitorConfig:
        """Build service configuration from environment settings.

        Raises:
            ConfigurationError: If the combination of values is invalid.
        """
        return cls(
            watcher=WatcherConfig(
                initial_delay_seconds=settings.watcher.initial_delay_seconds,
                poll_interval_seconds=settings.watcher.poll_interval_seconds,
                max_attempts=settings.watcher.max_attempts,
                max_concurrency=settings.watcher.max_concurrency,
                rpc_timeout_seconds=settings.watcher.rpc_timeout_seconds,
            ),
            ledger=LedgerConfig(
                history_size=settings.ledger.history_size,
                metrics_window=timedelta(seconds=settings.ledger.metrics_window_seconds),
                metrics_interval_seconds=settings.ledger.metrics_interval_seconds,
                retention=timedelta(seconds=settings.ledger.retention_seconds),
                slow_confirmation_ms=settings.ledger.slow_confirmation_ms,
                fail_rate_alert_pct=settings.ledger.fail_rate_alert_pct,
                tps_alert=settings.ledger.tps_alert,
            ),
            pattern=PatternConfig(
                window=timedelta(seconds=settings.pattern.window_seconds),
                frequency_window=timedelta(seconds=settings.pattern.frequency_window_seconds),
                max_records_per_actor=settings.pattern.max_records_per_actor,
                cleanup_interval_seconds=settings.pattern.cleanup_interval_seconds,
            ),
            thresholds=AnomalyThresholds(
                max_frequency_per_minute=settings.anomaly.max_frequency_per_minute,
                max_amount_per_window=settings.anomaly.max_amount_per_window,
                single_amount_threshold=settings.anomaly.single_amount_threshold,
                max_failed_attempts=settings.anomaly.max_failed_attempts,
                new_recipient_amount=settings.anomaly.new_recipient_amount,
            ),
        )


class SolanaSettings(BaseSettings):
    """Solana RPC connection settings."""

    model_config = SettingsConfigDict(env_prefix="SOLANA_", extra="ignore")

    rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        alias="SOLANA_RPC_URL",
        description="Primary Solana JSON-RPC endpoint",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="SOLANA_FALLBACK_RPC_URL",
        description="Fallback Solana JSON-RPC endpoint",
    )
    commitment: Literal["processed", "confirmed", "finalized"] = Field(
        default="confirmed",
        alias="SOLANA_COMMITMENT",
        description="Commitment level used for transaction detail lookups",
    )
    max_requests_per_second: float = Field(
        default=25.0,
        alias="SOLANA_MAX_REQUESTS_PER_SECOND",
        gt=0.0,
        le=10_000.0,
        description="Client-side rate limit for RPC calls",
    )
    max_retries: int = Field(
        default=2,
        alias="SOLANA_MAX_RETRIES",
        ge=1,
        le=10,
        description="Attempts per endpoint before failing over",
    )
    details_cache_ttl_seconds: int = Field(
        default=3600,
        alias="SOLANA_DETAILS_CACHE_TTL_SECONDS",
        ge=0,
        le=7 * 24 * 3600,
        description="Redis TTL for cached transaction details (0 disables caching)",
    )

    @field_validator("rpc_url", "fallback_rpc_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )
    alert_stream: str = Field(
        default="solana:alerts",
        alias="REDIS_ALERT_STREAM",
        description="Stream key anomaly alerts are published to",
    )
    alert_stream_maxlen: int = Field(
        default=10_000,
        alias="REDIS_ALERT_STREAM_MAXLEN",
        ge=1,
        le=10_000_000,
        description="Approximate cap on alert stream length",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("REDIS_URL must start with redis://, rediss://, or unix://")
        return v


class WatcherSettings(BaseSettings):
    """Signature watcher polling settings."""

    model_config = SettingsConfigDict(env_prefix="WATCHER_", extra="ignore")

    initial_delay_seconds: float = Field(
        default=2.0,
        alias="WATCHER_INITIAL_DELAY_SECONDS",
        ge=0.0,
        le=600.0,
        description="Delay before the first status check",
    )
    poll_interval_seconds: float = Field(
        default=4.0,
        alias="WATCHER_POLL_INTERVAL_SECONDS",
        gt=0.0,
        le=600.0,
        description="Spacing between status checks",
    )
    max_attempts: int = Field(
        default=30,
        alias="WATCHER_MAX_ATTEMPTS",
        ge=1,
        le=10_000,
        description="Status checks before a signature times out",
    )
    max_concurrency: int = Field(
        default=32,
        alias="WATCHER_MAX_CONCURRENCY",
        ge=1,
        le=10_000,
        description="Maximum concurrent in-flight status checks",
    )
    rpc_timeout_seconds: float = Field(
        default=10.0,
        alias="WATCHER_RPC_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Timeout applied to each RPC call",
    )


class LedgerSettings(BaseSettings):
    """Confirmation ledger and metrics settings."""

    model_config = SettingsConfigDict(env_prefix="LEDGER_", extra="ignore")

    history_size: int = Field(
        default=1000,
        alias="LEDGER_HISTORY_SIZE",
        ge=1,
        le=1_000_000,
        description="Maximum transaction events kept in memory",
    )
    metrics_window_seconds: int = Field(
        default=60,
        alias="LEDGER_METRICS_WINDOW_SECONDS",
        ge=1,
        le=86_400,
        description="Trailing window for TPS / latency / fail-rate metrics",
    )
    metrics_interval_seconds: float = Field(
        default=10.0,
        alias="LEDGER_METRICS_INTERVAL_SECONDS",
        gt=0.0,
        le=3600.0,
        description="How often metrics are recomputed and published",
    )
    retention_seconds: int = Field(
        default=3600,
        alias="LEDGER_RETENTION_SECONDS",
        ge=1,
        le=7 * 86_400,
        description="Events older than this are pruned during cleanup",
    )
    slow_confirmation_ms: int = Field(
        default=30_000,
        alias="LEDGER_SLOW_CONFIRMATION_MS",
        ge=1,
        description="Confirmation latency counted as an anomaly",
    )
    fail_rate_alert_pct: float = Field(
        default=20.0,
        alias="LEDGER_FAIL_RATE_ALERT_PCT",
        ge=0.0,
        le=100.0,
        description="Fail rate above which failure bursts add to the anomaly count",
    )
    tps_alert: float = Field(
        default=100.0,
        alias="LEDGER_TPS_ALERT",
        ge=0.0,
        description="TPS above which one anomaly is counted",
    )


class PatternSettings(BaseSettings):
    """Per-actor pattern tracking settings."""

    model_config = SettingsConfigDict(env_prefix="PATTERN_", extra="ignore")

    window_seconds: int = Field(
        default=3600,
        alias="PATTERN_WINDOW_SECONDS",
        ge=60,
        le=7 * 86_400,
        description="Aggregation window for total amounts (records kept for 2x this)",
    )
    frequency_window_seconds: int = Field(
        default=60,
        alias="PATTERN_FREQUENCY_WINDOW_SECONDS",
        ge=1,
        le=86_400,
        description="Window used for per-actor transaction frequency",
    )
    max_records_per_actor: int = Field(
        default=1000,
        alias="PATTERN_MAX_RECORDS_PER_ACTOR",
        ge=1,
        le=1_000_000,
        description="Ring buffer size per actor",
    )
    cleanup_interval_seconds: float = Field(
        default=600.0,
        alias="PATTERN_CLEANUP_INTERVAL_SECONDS",
        gt=0.0,
        le=86_400.0,
        description="How often stale records and patterns are evicted",
    )


class AnomalySettings(BaseSettings):
    """Anomaly rule thresholds."""

    model_config = SettingsConfigDict(env_prefix="ANOMALY_", extra="ignore")

    max_frequency_per_minute: int = Field(
        default=10,
        alias="ANOMALY_MAX_FREQUENCY_PER_MINUTE",
        ge=1,
        description="Transactions per frequency window before HighFrequency fires",
    )
    max_amount_per_window: Decimal = Field(
        default=Decimal("100"),
        alias="ANOMALY_MAX_AMOUNT_PER_WINDOW",
        description="Total amount per window before aggregate LargeAmount fires",
    )
    single_amount_threshold: Decimal = Field(
        default=Decimal("50"),
        alias="ANOMALY_SINGLE_AMOUNT_THRESHOLD",
        description="Single transaction amount before LargeAmount fires",
    )
    max_failed_attempts: int = Field(
        default=5,
        alias="ANOMALY_MAX_FAILED_ATTEMPTS",
        ge=0,
        description="Failed records retained before FailedPattern fires",
    )
    new_recipient_amount: Decimal = Field(
        default=Decimal("10"),
        alias="ANOMALY_NEW_RECIPIENT_AMOUNT",
        description="Amount sent to a first-seen recipient before SuspiciousRecipient fires",
    )

    @field_validator("max_amount_per_window", "single_amount_threshold")
    @classmethod
    def validate_positive_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("amount thresholds must be > 0")
        return v

    @field_validator("new_recipient_amount")
    @classmethod
    def validate_non_negative_amount(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("ANOMALY_NEW_RECIPIENT_AMOUNT must be >= 0")
        return v


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files.

    Example:
        ```python
        from solana_tx_monitor.config import get_settings

        settings = get_settings()
        print(settings.solana.rpc_url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    solana: SolanaSettings = Field(
        default_factory=lambda: SolanaSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    watcher: WatcherSettings = Field(
        default_factory=lambda: WatcherSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    ledger: LedgerSettings = Field(
        default_factory=lambda: LedgerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    pattern: PatternSettings = Field(
        default_factory=lambda: PatternSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    anomaly: AnomalySettings = Field(
        default_factory=lambda: AnomalySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    alert_sink: Literal["redis", "null"] = Field(
        default="redis",
        alias="ALERT_SINK",
        description="Where anomaly alerts are delivered",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run without sending actual alerts",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "redis_url": self._redact_url(self.redis.url),
            "solana": {
                "rpc_url": self._redact_url(self.solana.rpc_url),
                "fallback_rpc_url": (
                    self._redact_url(self.solana.fallback_rpc_url)
                    if self.solana.fallback_rpc_url
                    else "(not set)"
                ),
                "commitment": self.solana.commitment,
            },
            "watcher": {
                "max_attempts": str(self.watcher.max_attempts),
                "poll_interval_seconds": str(self.watcher.poll_interval_seconds),
                "max_concurrency": str(self.watcher.max_concurrency),
            },
            "ledger": {
                "history_size": str(self.ledger.history_size),
                "metrics_window_seconds": str(self.ledger.metrics_window_seconds),
            },
            "anomaly": {
                "max_frequency_per_minute": str(self.anomaly.max_frequency_per_minute),
                "max_amount_per_window": str(self.anomaly.max_amount_per_window),
                "single_amount_threshold": str(self.anomaly.single_amount_threshold),
            },
            "alert_sink": self.alert_sink,
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
