"""Engine configuration loaded from the environment and .env via pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


_CHOICES = {
    "environment": ("development", "testing", "production"),
    "default_locale": ("ja", "en"),
    "log_format": ("structured", "plain"),
    "log_level": ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
}


def _one_of(name: str, value: str, allowed: tuple) -> str:
    if value not in allowed:
        raise ValueError(f"{name} must be one of {', '.join(allowed)}")
    return value


def _in_range(name: str, value: int, low: int, high: int) -> int:
    if not low <= value <= high:
        raise ValueError(f"{name} must be between {low} and {high}")
    return value


class Settings(BaseSettings):
    """Every tunable of the alert engine, one flat namespace per env variable."""

    # Environment and deployment
    environment: str = "development"
    debug: bool = False

    # Batch processing
    batch_size: int = 100
    batch_max_retries: int = 3
    batch_retry_delay_ms: int = 1000
    batch_timeout_ms: int = 30000

    # Channel retry and timeouts
    retry_enabled: bool = True
    retry_base_delay_ms: int = 5000
    max_retry_attempts: int = 3
    channel_timeout_ms: int = 10000

    # Alert lifecycle
    max_delivery_attempts: int = 3
    max_alerts_per_user: int = 50
    delivery_history_limit: int = 100
    failed_alert_retry_base_minutes: int = 5
    failed_alert_retry_max_minutes: int = 1440
    preferences_cache_ttl_seconds: int = 300

    # Scheduler
    processing_interval_minutes: int = 5
    scheduler_max_workers: int = 3

    # Transports (unset gateway URL falls back to the logging transport)
    push_gateway_url: Optional[str] = None
    email_gateway_url: Optional[str] = None
    sms_gateway_url: Optional[str] = None
    gateway_auth_token: Optional[str] = None
    email_from: str = "noreply@yabaii.day"
    email_reply_to: str = "support@yabaii.day"
    storefront_base_url: str = "https://yabaii.day"
    default_locale: str = "ja"

    # Database settings
    database_url: Optional[str] = None
    data_directory: str = "data"
    database_echo_sql: bool = False
    database_pool_pre_ping: bool = True
    database_pool_recycle: int = 3600

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "structured"  # 'structured' or 'plain'
    log_file_enabled: bool = True
    log_file_path: str = "data/alertdesk.log"
    log_max_file_size: str = "10MB"
    log_backup_count: int = 5

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @field_validator("environment", "default_locale", "log_format")
    @classmethod
    def validate_lowercase_choice(cls, v, info):
        """Normalize to lower case and check against the allowed values."""
        return _one_of(info.field_name, v.lower(), _CHOICES[info.field_name])

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        return _one_of("log_level", v.upper(), _CHOICES["log_level"])

    @field_validator("batch_size")
    @classmethod
    def validate_batch_size(cls, v):
        return _in_range("batch_size", v, 1, 1000)

    @field_validator(
        "batch_retry_delay_ms",
        "batch_timeout_ms",
        "retry_base_delay_ms",
        "channel_timeout_ms",
    )
    @classmethod
    def validate_positive_duration(cls, v, info):
        if v <= 0:
            raise ValueError(f"{info.field_name} must be a positive number of milliseconds")
        return v

    @field_validator("max_retry_attempts", "max_delivery_attempts")
    @classmethod
    def validate_attempts(cls, v, info):
        return _in_range(info.field_name, v, 1, 10)

    @field_validator("processing_interval_minutes")
    @classmethod
    def validate_interval(cls, v):
        return _in_range("processing_interval_minutes", v, 1, 1440)

    def get_database_url(self) -> str:
        """Explicit DATABASE_URL, else a SQLite file inside the data directory."""
        if self.database_url:
            return self.database_url

        data_dir = Path(self.data_directory)
        data_dir.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{data_dir / 'alertdesk.db'}"

    def is_production(self) -> bool:
        """True when ENVIRONMENT is production."""
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings, read once and cached."""
    return Settings()
