"""
Configuration for Studio Sync.

Settings are read from environment variables once at startup and passed
explicitly to the components that need them.

Environment variables:
- STUDIO_DB_PATH: SQLite file backing the local store
- STUDIO_API_BASE_URL: Base URL of the generation service
- STUDIO_API_KEY_ENV: Name of the variable holding the API key
- STUDIO_TIMEOUT_SECONDS: HTTP timeout per request
- STUDIO_MAX_RETRIES / STUDIO_INITIAL_DELAY / STUDIO_MAX_JITTER: Retry executor budget
- STUDIO_MAX_SYNC_RETRIES: Sync attempts before giving up on a request
- STUDIO_POLL_INTERVAL: Seconds between operation status checks
- STUDIO_RECOVERY_WINDOW: Seconds the "recently recovered" flag stays up
- STUDIO_PROBE_URL / STUDIO_PROBE_INTERVAL: Connectivity probe target
- STUDIO_LOG_LEVEL: Logging level for the CLI
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from studio_sync.core.exceptions import ConfigurationError

DEFAULT_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class StudioConfig(BaseModel):
    """Runtime settings for the queue, the client and the sync engine."""

    db_path: Path = Path("var/studio/studio.db")
    api_base_url: str = DEFAULT_API_BASE_URL
    api_key_env: str = "API_KEY"
    timeout_seconds: float = Field(default=120.0, gt=0)

    image_model: str = "imagen-4.0-generate-001"
    edit_model: str = "gemini-2.5-flash-image"
    video_model: str = "veo-3.1-generate-preview"
    script_model: str = "gemini-2.5-flash"

    max_retries: int = Field(default=3, ge=1)
    initial_delay_seconds: float = Field(default=1.0, ge=0)
    max_jitter_seconds: float = Field(default=1.0, ge=0)
    max_sync_retries: int = Field(default=3, ge=0)
    poll_interval_seconds: float = Field(default=10.0, gt=0)
    recovery_window_seconds: float = Field(default=4.0, ge=0)

    probe_url: str | None = None
    probe_interval_seconds: float = Field(default=30.0, gt=0)

    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @property
    def effective_probe_url(self) -> str:
        return self.probe_url or self.api_base_url


_ENV_FIELDS = {
    "STUDIO_DB_PATH": "db_path",
    "STUDIO_API_BASE_URL": "api_base_url",
    "STUDIO_API_KEY_ENV": "api_key_env",
    "STUDIO_TIMEOUT_SECONDS": "timeout_seconds",
    "STUDIO_MAX_RETRIES": "max_retries",
    "STUDIO_INITIAL_DELAY": "initial_delay_seconds",
    "STUDIO_MAX_JITTER": "max_jitter_seconds",
    "STUDIO_MAX_SYNC_RETRIES": "max_sync_retries",
    "STUDIO_POLL_INTERVAL": "poll_interval_seconds",
    "STUDIO_RECOVERY_WINDOW": "recovery_window_seconds",
    "STUDIO_PROBE_URL": "probe_url",
    "STUDIO_PROBE_INTERVAL": "probe_interval_seconds",
    "STUDIO_LOG_LEVEL": "log_level",
}


def load_config(environ: dict[str, str] | None = None) -> StudioConfig:
    """
    Load configuration from environment.

    Args:
        environ: Mapping to read instead of os.environ

    Returns:
        Validated StudioConfig

    Raises:
        ConfigurationError: If a variable holds an invalid value
    """
    env = os.environ if environ is None else environ
    values = {}
    for env_var, field_name in _ENV_FIELDS.items():
        raw = env.get(env_var)
        if raw is not None and raw != "":
            values[field_name] = raw

    try:
        return StudioConfig(**values)
    except ValidationError as e:
        first = e.errors()[0]
        field_name = str(first["loc"][0]) if first.get("loc") else None
        env_var = next(
            (var for var, name in _ENV_FIELDS.items() if name == field_name), None
        )
        raise ConfigurationError(
            f"Invalid configuration value: {first['msg']}",
            env_var=env_var,
            config_key=field_name,
        ) from e


def env_credential_lookup(environ: dict[str, str] | None = None):
    """
    Build a credential lookup reading secrets from the environment.

    The returned callable maps a service identifier (an environment
    variable name) to its value, or None when unset. It reads the
    environment on every call so rotated keys are picked up.
    """

    def lookup(service: str) -> str | None:
        env = os.environ if environ is None else environ
        return env.get(service) or None

    return lookup
