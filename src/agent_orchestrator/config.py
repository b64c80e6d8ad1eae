"""Runtime configuration for the agent orchestrator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from urllib.parse import urlparse

SATURATION_POLICIES = ("block", "reject")
COMPLETION_PROVIDERS = ("echo",)
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True)
class PoolSettings:
    """Bounded worker pool settings."""

    max_workers: int = 4
    max_backlog: int = 32
    saturation_policy: str = "reject"
    batch_size: int = 5


@dataclass(slots=True)
class SweeperSettings:
    """Timeout and retention sweep settings."""

    task_timeout_seconds: int = 90
    timeout_interval_seconds: int = 180
    retention_interval_seconds: int = 3_600
    task_retention_days: int = 7
    memory_stale_days: int = 30

    @property
    def task_timeout(self) -> timedelta:
        return timedelta(seconds=self.task_timeout_seconds)

    @property
    def task_retention(self) -> timedelta:
        return timedelta(days=self.task_retention_days)

    @property
    def memory_stale_after(self) -> timedelta:
        return timedelta(days=self.memory_stale_days)


@dataclass(slots=True)
class RetrySettings:
    """Bounded retry around a single agent invocation; 1 attempt disables it."""

    max_attempts: int = 1
    base_seconds: float = 1.0
    max_seconds: float = 30.0


@dataclass(slots=True)
class ProviderSettings:
    """Upstream provider settings."""

    completion_provider: str = "echo"
    metadata_timeout_seconds: float = 15.0
    crossref_url: str = "https://api.crossref.org"
    semantic_scholar_url: str = "https://api.semanticscholar.org/graph/v1"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".agent_orchestrator.db")
    sqlite_busy_timeout_ms: int = 5_000
    pool: PoolSettings = field(default_factory=PoolSettings)
    sweeper: SweeperSettings = field(default_factory=SweeperSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    providers: ProviderSettings = field(default_factory=ProviderSettings)
    notifier_max_delivery_attempts: int = 3
    metrics_window_hours: int = 24
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("AGENT_ORCH_DB_PATH", ".agent_orchestrator.db")),
            sqlite_busy_timeout_ms=int(os.getenv("AGENT_ORCH_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            pool=PoolSettings(
                max_workers=int(os.getenv("AGENT_ORCH_POOL_MAX_WORKERS", "4")),
                max_backlog=int(os.getenv("AGENT_ORCH_POOL_MAX_BACKLOG", "32")),
                saturation_policy=os.getenv("AGENT_ORCH_POOL_SATURATION_POLICY", "reject")
                .strip()
                .lower(),
                batch_size=int(os.getenv("AGENT_ORCH_BATCH_SIZE", "5")),
            ),
            sweeper=SweeperSettings(
                task_timeout_seconds=int(os.getenv("AGENT_ORCH_TASK_TIMEOUT_SECONDS", "90")),
                timeout_interval_seconds=int(
                    os.getenv("AGENT_ORCH_TIMEOUT_SWEEP_INTERVAL_SECONDS", "180"),
                ),
                retention_interval_seconds=int(
                    os.getenv("AGENT_ORCH_RETENTION_SWEEP_INTERVAL_SECONDS", "3600"),
                ),
                task_retention_days=int(os.getenv("AGENT_ORCH_TASK_RETENTION_DAYS", "7")),
                memory_stale_days=int(os.getenv("AGENT_ORCH_MEMORY_STALE_DAYS", "30")),
            ),
            retry=RetrySettings(
                max_attempts=int(os.getenv("AGENT_ORCH_RETRY_MAX_ATTEMPTS", "1")),
                base_seconds=float(os.getenv("AGENT_ORCH_RETRY_BASE_SECONDS", "1.0")),
                max_seconds=float(os.getenv("AGENT_ORCH_RETRY_MAX_SECONDS", "30.0")),
            ),
            providers=ProviderSettings(
                completion_provider=os.getenv("AGENT_ORCH_COMPLETION_PROVIDER", "echo")
                .strip()
                .lower(),
                metadata_timeout_seconds=float(
                    os.getenv("AGENT_ORCH_METADATA_TIMEOUT_SECONDS", "15.0"),
                ),
                crossref_url=os.getenv("AGENT_ORCH_CROSSREF_URL", "https://api.crossref.org"),
                semantic_scholar_url=os.getenv(
                    "AGENT_ORCH_SEMANTIC_SCHOLAR_URL",
                    "https://api.semanticscholar.org/graph/v1",
                ),
            ),
            notifier_max_delivery_attempts=int(
                os.getenv("AGENT_ORCH_NOTIFIER_MAX_DELIVERY_ATTEMPTS", "3"),
            ),
            metrics_window_hours=int(os.getenv("AGENT_ORCH_METRICS_WINDOW_HOURS", "24")),
            log_level=os.getenv("AGENT_ORCH_LOG_LEVEL", "INFO").strip().upper(),
        )

    def validate(self) -> None:
        """Raise configuration error naming the offending variable."""

        for name, value in (
            ("AGENT_ORCH_SQLITE_BUSY_TIMEOUT_MS", self.sqlite_busy_timeout_ms),
            ("AGENT_ORCH_POOL_MAX_WORKERS", self.pool.max_workers),
            ("AGENT_ORCH_BATCH_SIZE", self.pool.batch_size),
            ("AGENT_ORCH_TASK_TIMEOUT_SECONDS", self.sweeper.task_timeout_seconds),
            ("AGENT_ORCH_TIMEOUT_SWEEP_INTERVAL_SECONDS", self.sweeper.timeout_interval_seconds),
            (
                "AGENT_ORCH_RETENTION_SWEEP_INTERVAL_SECONDS",
                self.sweeper.retention_interval_seconds,
            ),
            ("AGENT_ORCH_NOTIFIER_MAX_DELIVERY_ATTEMPTS", self.notifier_max_delivery_attempts),
            ("AGENT_ORCH_METRICS_WINDOW_HOURS", self.metrics_window_hours),
            ("AGENT_ORCH_RETRY_MAX_ATTEMPTS", self.retry.max_attempts),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")

        for name, value in (
            ("AGENT_ORCH_POOL_MAX_BACKLOG", self.pool.max_backlog),
            ("AGENT_ORCH_TASK_RETENTION_DAYS", self.sweeper.task_retention_days),
            ("AGENT_ORCH_MEMORY_STALE_DAYS", self.sweeper.memory_stale_days),
            ("AGENT_ORCH_RETRY_BASE_SECONDS", self.retry.base_seconds),
            ("AGENT_ORCH_RETRY_MAX_SECONDS", self.retry.max_seconds),
        ):
            if value < 0:
                raise ValueError(f"{name} must be >= 0.")

        if self.providers.metadata_timeout_seconds <= 0:
            raise ValueError("AGENT_ORCH_METADATA_TIMEOUT_SECONDS must be > 0.")
        if self.pool.saturation_policy not in SATURATION_POLICIES:
            raise ValueError(
                "AGENT_ORCH_POOL_SATURATION_POLICY must be one of "
                f"{', '.join(SATURATION_POLICIES)}; got {self.pool.saturation_policy!r}.",
            )
        if self.providers.completion_provider not in COMPLETION_PROVIDERS:
            raise ValueError(
                "AGENT_ORCH_COMPLETION_PROVIDER must be one of "
                f"{', '.join(COMPLETION_PROVIDERS)}; got {self.providers.completion_provider!r}.",
            )
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"Invalid AGENT_ORCH_LOG_LEVEL: {self.log_level!r}")
        _validate_base_url("AGENT_ORCH_CROSSREF_URL", self.providers.crossref_url)
        _validate_base_url("AGENT_ORCH_SEMANTIC_SCHOLAR_URL", self.providers.semantic_scholar_url)


def _validate_base_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
