"""Runtime configuration for the job pipeline, ingest gate and notifications."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from call_recap.orchestrator.retry import RetryPolicy

STORE_BACKENDS = ("sqlite", "memory")
DELIVERY_STAGES = frozenset({"deliver_summary"})


@dataclass(frozen=True, slots=True)
class StorageSettings:
    """Job store and on-disk artifact locations."""

    db_path: Path = Path(".call_recap.db")
    backend: str = "sqlite"
    busy_timeout_ms: int = 5_000
    uploads_dir: Path = Path("uploads")
    artifacts_dir: Path = Path("artifacts")
    logs_dir: Path = Path("logs")

    @property
    def events_path(self) -> Path:
        return self.logs_dir / "ingest.log"

    @property
    def ledger_path(self) -> Path:
        return self.artifacts_dir / "recordings.csv"


@dataclass(frozen=True, slots=True)
class GateSettings:
    """Flags consulted by the ingest gate before any network call."""

    dry_run: bool = False
    allow_network: bool = False


@dataclass(frozen=True, slots=True)
class RetrySettings:
    """Backoff parameters for pipeline stages and outbound delivery."""

    max_retries: int = 2
    base_delay_ms: int = 50
    backoff_factor: float = 2.0
    delivery_max_retries: int = 3
    delivery_base_delay_ms: int = 100

    def policy_for(self, stage: str) -> RetryPolicy:
        """Fresh policy for one call site."""

        if stage in DELIVERY_STAGES:
            return RetryPolicy(
                max_retries=self.delivery_max_retries,
                base_delay_ms=self.delivery_base_delay_ms,
                backoff_factor=self.backoff_factor,
            )
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            backoff_factor=self.backoff_factor,
        )


@dataclass(frozen=True, slots=True)
class NotificationSettings:
    """Summary e-mail settings."""

    enabled: bool = True
    recipient: str | None = None
    from_email: str | None = None
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_secure: bool = False
    smtp_timeout_seconds: float = 30.0


@dataclass(frozen=True, slots=True)
class OpenAiSettings:
    """Transcription and analysis model settings."""

    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    transcription_model: str = "whisper-1"
    analysis_model: str = "gpt-4o-mini"
    precall_model: str = "gpt-4.1-mini"


@dataclass(frozen=True, slots=True)
class DeliverySettings:
    """Outbound HTTP and chat delivery settings."""

    slack_webhook_url: str | None = None
    http_timeout_seconds: float = 30.0


@dataclass(frozen=True, slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    storage: StorageSettings = field(default_factory=StorageSettings)
    gate: GateSettings = field(default_factory=GateSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    openai: OpenAiSettings = field(default_factory=OpenAiSettings)
    delivery: DeliverySettings = field(default_factory=DeliverySettings)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            storage=StorageSettings(
                db_path=db_path or Path(os.getenv("CALL_RECAP_DB_PATH", ".call_recap.db")),
                backend=os.getenv("CALL_RECAP_STORE_BACKEND", "sqlite").strip().lower(),
                busy_timeout_ms=int(os.getenv("CALL_RECAP_SQLITE_BUSY_TIMEOUT_MS", "5000")),
                uploads_dir=Path(os.getenv("CALL_RECAP_UPLOADS_DIR", "uploads")),
                artifacts_dir=Path(os.getenv("CALL_RECAP_ARTIFACTS_DIR", "artifacts")),
                logs_dir=Path(os.getenv("CALL_RECAP_LOGS_DIR", "logs")),
            ),
            gate=GateSettings(
                dry_run=_env_bool("CALL_RECAP_DRY_RUN", default=False),
                allow_network=_env_bool("CALL_RECAP_ALLOW_NETWORK", default=False),
            ),
            retry=RetrySettings(
                max_retries=int(os.getenv("CALL_RECAP_RETRY_MAX_RETRIES", "2")),
                base_delay_ms=int(os.getenv("CALL_RECAP_RETRY_BASE_MS", "50")),
                backoff_factor=float(os.getenv("CALL_RECAP_RETRY_FACTOR", "2")),
                delivery_max_retries=int(os.getenv("CALL_RECAP_DELIVERY_MAX_RETRIES", "3")),
                delivery_base_delay_ms=int(
                    os.getenv("CALL_RECAP_DELIVERY_RETRY_BASE_MS", "100"),
                ),
            ),
            notifications=NotificationSettings(
                enabled=_env_bool("CALL_RECAP_NOTIFY_ENABLED", default=True),
                recipient=_env_optional("CALL_RECAP_NOTIFY_EMAIL"),
                from_email=_env_optional("CALL_RECAP_FROM_EMAIL"),
                smtp_host=_env_optional("CALL_RECAP_SMTP_HOST"),
                smtp_port=int(os.getenv("CALL_RECAP_SMTP_PORT", "587")),
                smtp_user=_env_optional("CALL_RECAP_SMTP_USER"),
                smtp_password=_env_optional("CALL_RECAP_SMTP_PASSWORD"),
                smtp_secure=_env_bool("CALL_RECAP_SMTP_SECURE", default=False),
            ),
            openai=OpenAiSettings(
                api_key=(
                    _env_optional("CALL_RECAP_OPENAI_API_KEY") or _env_optional("OPENAI_API_KEY")
                ),
                base_url=os.getenv("CALL_RECAP_OPENAI_BASE_URL", "https://api.openai.com/v1"),
                transcription_model=os.getenv("CALL_RECAP_TRANSCRIPTION_MODEL", "whisper-1"),
                analysis_model=os.getenv("CALL_RECAP_ANALYSIS_MODEL", "gpt-4o-mini"),
                precall_model=os.getenv("CALL_RECAP_PRECALL_MODEL", "gpt-4.1-mini"),
            ),
            delivery=DeliverySettings(
                slack_webhook_url=_env_optional("CALL_RECAP_SLACK_WEBHOOK_URL"),
                http_timeout_seconds=float(
                    os.getenv("CALL_RECAP_HTTP_TIMEOUT_SECONDS", "30.0"),
                ),
            ),
            log_level=os.getenv("CALL_RECAP_LOG_LEVEL", "INFO").strip().upper(),
        )

    def validate(self) -> None:
        """Raise configuration error for unsupported or out-of-range values."""

        if self.storage.backend not in STORE_BACKENDS:
            raise ValueError(
                f"Unsupported CALL_RECAP_STORE_BACKEND: {self.storage.backend!r}. "
                f"Expected one of: {', '.join(STORE_BACKENDS)}.",
            )
        if self.storage.busy_timeout_ms <= 0:
            raise ValueError("CALL_RECAP_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.retry.max_retries < 0 or self.retry.delivery_max_retries < 0:
            raise ValueError("Retry counts must be >= 0.")
        if self.retry.base_delay_ms < 0 or self.retry.delivery_base_delay_ms < 0:
            raise ValueError("Retry base delays must be >= 0.")
        if self.retry.backoff_factor < 0:
            raise ValueError("CALL_RECAP_RETRY_FACTOR must be >= 0.")
        if self.delivery.http_timeout_seconds <= 0:
            raise ValueError("CALL_RECAP_HTTP_TIMEOUT_SECONDS must be > 0.")


def _env_optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
