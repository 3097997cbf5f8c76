import logging
import os
import sys
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    # Infrastructure dependencies
    postgres_user: str
    postgres_host: str
    postgres_password: str
    postgres_port: int
    postgres_db: str
    redis_host: str
    redis_port: int
    redis_db: Optional[int] = None

    # Redis connection resilience
    redis_conn_timeout: int = 5
    redis_conn_retries: int = 5
    redis_conn_retry_delay: int = 1
    redis_retry_on_timeout: bool = True
    redis_max_connections: Optional[int] = None
    redis_socket_keepalive: bool = True
    redis_health_check_interval: int = 30

    # Security
    # AUDIT_SIGNING_KEY should always be set in production. JWT_SECRET is only
    # accepted as a fallback so that existing deployments keep booting.
    # Generate with: python -m trilha.cli.generate_signing_key
    audit_signing_key: Optional[str] = None
    jwt_secret: Optional[str] = None

    # Background worker configuration
    worker_max_jobs: int = 20
    audit_job_timeout_seconds: int = 60

    # Audit queue
    audit_queue_enabled: bool = True
    audit_queue_max_attempts: int = 3
    audit_retry_base_delay_seconds: float = 2.0
    audit_retry_max_delay_seconds: float = 300.0
    audit_batch_max_size: int = 100
    audit_low_priority_defer_seconds: int = 2
    audit_dead_letter_ttl_days: int = 30

    # Request deduplication
    audit_dedup_ttl_seconds: int = 300  # 5 minutes
    audit_dedup_sweep_interval_seconds: int = 60
    audit_dedup_max_entries: int = 10000

    # Payload handling
    audit_compression_threshold_bytes: int = 1024

    # Health check thresholds
    audit_health_queue_warning: int = 100
    audit_health_queue_critical: int = 500
    audit_health_error_rate_warning: float = 0.05
    audit_health_error_rate_critical: float = 0.15
    audit_health_response_time_warning_ms: int = 1000
    audit_health_response_time_critical_ms: int = 3000

    # Used to decide what "off-hours" means when scoring risk
    audit_timezone: str = "America/Sao_Paulo"

    # Dev
    testing: bool = False
    dev: bool = False

    @model_validator(mode="after")
    def validate_audit_queue_settings(self):
        """Ensure queue and retry configuration values are sane."""
        if self.worker_max_jobs <= 0:
            logging.error(
                "WORKER_MAX_JOBS must be greater than zero. Current value: %s",
                self.worker_max_jobs,
            )
            sys.exit(1)

        if self.audit_queue_max_attempts < 1:
            logging.error(
                "AUDIT_QUEUE_MAX_ATTEMPTS must be at least 1. Current value: %s",
                self.audit_queue_max_attempts,
            )
            sys.exit(1)

        if self.audit_retry_base_delay_seconds <= 0:
            logging.error(
                "AUDIT_RETRY_BASE_DELAY_SECONDS must be greater than zero. Current value: %s",
                self.audit_retry_base_delay_seconds,
            )
            sys.exit(1)

        if self.audit_retry_max_delay_seconds < self.audit_retry_base_delay_seconds:
            logging.error(
                "AUDIT_RETRY_MAX_DELAY_SECONDS (%s) is shorter than AUDIT_RETRY_BASE_DELAY_SECONDS (%s).",
                self.audit_retry_max_delay_seconds,
                self.audit_retry_base_delay_seconds,
            )
            sys.exit(1)

        if self.audit_batch_max_size <= 0:
            logging.error(
                "AUDIT_BATCH_MAX_SIZE must be greater than zero. Current value: %s",
                self.audit_batch_max_size,
            )
            sys.exit(1)

        if self.audit_low_priority_defer_seconds < 0:
            logging.error(
                "AUDIT_LOW_PRIORITY_DEFER_SECONDS cannot be negative. Current value: %s",
                self.audit_low_priority_defer_seconds,
            )
            sys.exit(1)

        return self

    @model_validator(mode="after")
    def validate_dedup_settings(self):
        if self.audit_dedup_ttl_seconds <= 0:
            logging.error(
                "AUDIT_DEDUP_TTL_SECONDS must be greater than zero. Current value: %s",
                self.audit_dedup_ttl_seconds,
            )
            sys.exit(1)

        if self.audit_dedup_sweep_interval_seconds <= 0:
            logging.error(
                "AUDIT_DEDUP_SWEEP_INTERVAL_SECONDS must be greater than zero. Current value: %s",
                self.audit_dedup_sweep_interval_seconds,
            )
            sys.exit(1)

        if self.audit_dedup_max_entries <= 0:
            logging.error(
                "AUDIT_DEDUP_MAX_ENTRIES must be greater than zero. Current value: %s",
                self.audit_dedup_max_entries,
            )
            sys.exit(1)

        return self

    @model_validator(mode="after")
    def validate_health_thresholds(self):
        pairs = (
            ("AUDIT_HEALTH_QUEUE", self.audit_health_queue_warning, self.audit_health_queue_critical),
            (
                "AUDIT_HEALTH_ERROR_RATE",
                self.audit_health_error_rate_warning,
                self.audit_health_error_rate_critical,
            ),
            (
                "AUDIT_HEALTH_RESPONSE_TIME",
                self.audit_health_response_time_warning_ms,
                self.audit_health_response_time_critical_ms,
            ),
        )
        for name, warning, critical in pairs:
            if warning < 0 or critical < warning:
                logging.error(
                    "%s thresholds are invalid: warning=%s, critical=%s. "
                    "Both must be non-negative and warning must not exceed critical.",
                    name,
                    warning,
                    critical,
                )
                sys.exit(1)
        return self

    @model_validator(mode="after")
    def validate_audit_timezone(self):
        try:
            ZoneInfo(self.audit_timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            logging.error(
                f"Invalid AUDIT_TIMEZONE configuration: {e}\n"
                f"Example: AUDIT_TIMEZONE=America/Sao_Paulo"
            )
            sys.exit(1)
        return self

    @model_validator(mode="after")
    def validate_signing_key(self):
        """Warn when audit signatures would share the application JWT secret.

        A missing key with no fallback is not fatal here: the signature
        service raises ConfigurationError when it is first built.
        """
        if not self.audit_signing_key and self.jwt_secret:
            logging.warning(
                "AUDIT_SIGNING_KEY not set. Audit signatures will fall back to JWT_SECRET.\n"
                "A leaked JWT secret would then also compromise audit integrity. Generate a key:\n"
                "  python -m trilha.cli.generate_signing_key"
            )
        return self

    @property
    def local_timezone(self) -> ZoneInfo:
        """Timezone used for business-hours risk scoring."""
        return ZoneInfo(self.audit_timezone)

    @computed_field
    @property
    def sync_database_url(self) -> str:
        return (
            f"postgresql://{self.postgres_user}:"
            f"{self.postgres_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    @computed_field
    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:"
            f"{self.postgres_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings singleton, creating it if needed.

    Returns:
        Settings: The application settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Override settings (primarily for testing).

    Args:
        settings: The Settings instance to use.
    """
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Reset settings to None (for test cleanup)."""
    global _settings
    _settings = None


def get_loglevel():
    loglevel = os.getenv("LOGLEVEL", "INFO")

    match loglevel:
        case "INFO":
            return logging.INFO
        case "WARNING":
            return logging.WARNING
        case "ERROR":
            return logging.ERROR
        case "CRITICAL":
            return logging.CRITICAL
        case "DEBUG":
            return logging.DEBUG
        case _:
            return logging.INFO
