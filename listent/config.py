"""Global configuration — loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings

from listent.constants import (
    DEFAULT_POLLING_INTERVAL,
    EXTRACT_TIMEOUT_SECONDS,
    READY_TIMEOUT_SECONDS,
)


class ListentSettings(BaseSettings):
    polling_interval: float = DEFAULT_POLLING_INTERVAL
    log_level: str = "INFO"
    log_backend: str = ""  # "stream" or "syslog"; empty picks per platform

    # Daemon settings
    daemon_config_path: Path = Path("/etc/listent/daemon.toml")
    ready_timeout: float = READY_TIMEOUT_SECONDS

    # codesign subprocess timeout per binary
    extract_timeout: float = EXTRACT_TIMEOUT_SECONDS

    model_config = {"env_prefix": "LISTENT_"}


settings = ListentSettings()
