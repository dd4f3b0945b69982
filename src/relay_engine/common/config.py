"""Relay-Engine configuration via pydantic-settings."""

import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from relay_engine import __version__

_INSECURE_DEFAULTS = {
    "api_key": "insecure-admin-key-change-me",
    "cron_key": "insecure-cron-key-change-me",
}


class RelaySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RELAY_")

    environment: str = "development"
    log_level: str = "INFO"

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/relay.db"

    # API
    api_title: str = "Relay-Engine"
    api_version: str = __version__
    api_key: str = "insecure-admin-key-change-me"
    cron_key: str = "insecure-cron-key-change-me"
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = ""

    # Retry policy
    max_attempts: int = 8
    backoff_base_seconds: float = 30.0
    backoff_max_seconds: float = 21600.0  # 6 hours
    backoff_jitter_ratio: float = 0.1

    # Outbound requests
    request_timeout_seconds: float = 10.0
    max_payload_bytes: int = 1024 * 1024
    require_https: bool = True
    max_error_length: int = 1000
    user_agent: str = f"Relay-Engine/{__version__}"

    # Pump
    pump_batch_size: int = 50
    pump_concurrency: int = 10
    pump_interval_seconds: float = 30.0
    # When set, the pump hands deliveries to a remote dispatcher at this base URL.
    dispatch_url: str = ""

    # Reaper
    reaper_stale_after_seconds: float = 300.0
    reaper_interval_seconds: float = 180.0
    reaper_batch_size: int = 100

    # Pagination
    default_page_size: int = 50
    max_page_size: int = 200

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.reaper_stale_after_seconds <= self.request_timeout_seconds:
            raise RuntimeError(
                "RELAY_REAPER_STALE_AFTER_SECONDS must exceed "
                "RELAY_REQUEST_TIMEOUT_SECONDS, otherwise live dispatches are reaped"
            )

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"RELAY_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "Generate secrets with: relay gen-secret"
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default keys — set RELAY_API_KEY and "
                "RELAY_CRON_KEY for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> RelaySettings:
    settings = RelaySettings()
    settings.validate_for_production()
    return settings
