"""
Process configuration for the layer relay.

Settings come from environment variables (and an optional .env file) and are
validated by pydantic-settings. Anything that fails validation is reported as
a ConfigError, which is fatal at startup.

Design decisions:
- Flat, environment-style names (PG_HOST, PORT, VIRTUAL_PATH, ...)
- ALLOWED_ORIGINS is a plain comma separated list, not JSON
- The layer table lives in its own JSON file (LAYERS_FILE), see shared/layers.py
"""

from pathlib import Path
from typing import Annotated, Any, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from shared.errors import ConfigError


DEFAULT_LAYERS_FILE = Path(__file__).parent.parent / "data" / "layers.json"

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class RelaySettings(BaseSettings):
    """
    All tunables of the relay process.

    Store connection, HTTP binding, origin allow-list, layer file and the
    knobs of the fan-out engine (queue sizes, keep-alive and reconnect timing).
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Store
    pg_host: str = "localhost"
    pg_port: int = Field(default=5432, gt=0, lt=65536)
    pg_database: str = "gis"
    pg_user: str = "postgres"
    pg_password: str = "postgres"
    pool_min_size: int = Field(default=1, ge=0)
    pool_max_size: int = Field(default=10, gt=0)
    pool_timeout: float = Field(default=2.0, gt=0)
    connect_timeout: float = Field(default=10.0, gt=0)

    # HTTP
    port: int = Field(default=3003, gt=0, lt=65536)
    virtual_path: str = ""
    allowed_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost:9966", "http://localhost:9967"]
    )

    # Layers
    layers_file: Path = DEFAULT_LAYERS_FILE

    # Fan-out engine
    subscriber_queue_size: int = Field(default=1000, gt=0)
    keepalive_interval: float = Field(default=15.0, gt=0)
    reconnect_initial_delay: float = Field(default=0.5, gt=0)
    reconnect_max_delay: float = Field(default=30.0, gt=0)
    probe_interval: float = Field(default=30.0, gt=0)

    log_level: str = "INFO"

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level {value!r}, expected one of {', '.join(LOG_LEVELS)}")
        return level

    @field_validator("virtual_path")
    @classmethod
    def _normalize_virtual_path(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if value and not value.startswith("/"):
            value = "/" + value
        return value

    def connection_parameters(self) -> dict[str, Any]:
        """Store connection parameters, without the password."""
        return {
            "host": self.pg_host,
            "port": self.pg_port,
            "database": self.pg_database,
            "user": self.pg_user,
        }


def load_settings(**overrides: Any) -> RelaySettings:
    """
    Build settings from the environment, with optional explicit overrides.

    Raises:
        ConfigError: if any value fails validation
    """
    try:
        settings = RelaySettings(**overrides)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}") from e

    if settings.pool_min_size > settings.pool_max_size:
        raise ConfigError(
            f"POOL_MIN_SIZE ({settings.pool_min_size}) exceeds "
            f"POOL_MAX_SIZE ({settings.pool_max_size})"
        )
    return settings


_default_settings: Optional[RelaySettings] = None


def get_settings() -> RelaySettings:
    """Get the process-wide settings, loading them on first use."""
    global _default_settings
    if _default_settings is None:
        _default_settings = load_settings()
    return _default_settings
