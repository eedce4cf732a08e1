"""Daemon configuration — a TOML file with [daemon] and [monitoring] tables.

    [daemon]
    polling_interval = 1.0
    auto_start = true

    [monitoring]
    path_filters = ["/Applications", "/usr/bin"]
    entitlement_filters = ["com.apple.security.*"]
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from listent.constants import DEFAULT_POLLING_INTERVAL
from listent.exceptions import ConfigurationError
from listent.monitor import patterns
from listent.monitor.models import PollingConfiguration, validate_interval


def _default_path_filters() -> list[Path]:
    return [Path("/Applications"), Path("/usr/bin"), Path("/bin")]


class DaemonSettings(BaseModel):
    polling_interval: float = DEFAULT_POLLING_INTERVAL
    auto_start: bool = True


class MonitoringSettings(BaseModel):
    path_filters: list[Path] = Field(default_factory=_default_path_filters)
    entitlement_filters: list[str] = Field(default_factory=list)  # empty = any entitlement


class DaemonConfiguration(BaseModel):
    daemon: DaemonSettings = Field(default_factory=DaemonSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @classmethod
    def default(cls) -> DaemonConfiguration:
        return cls()

    @classmethod
    def load(cls, path: Path) -> DaemonConfiguration:
        """Read and validate a configuration file. Raises ConfigurationError."""
        try:
            data = tomllib.loads(path.read_text())
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}") from None
        except OSError as e:
            raise ConfigurationError(f"Failed to read config file {path}: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Failed to parse config file {path}: {e}") from e

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid config file {path}: {e}") from e
        config.validate_settings(check_paths=True)
        return config

    @classmethod
    def load_or_default(cls, path: Path | None) -> DaemonConfiguration:
        return cls.load(path) if path is not None else cls.default()

    def validate_settings(self, check_paths: bool = False) -> None:
        validate_interval(self.daemon.polling_interval)
        patterns.validate(self.monitoring.entitlement_filters)
        if check_paths:
            for path in self.monitoring.path_filters:
                if not path.exists():
                    raise ConfigurationError(f"Monitoring path does not exist: {path}")

    def polling_configuration(self) -> PollingConfiguration:
        # Daemon output goes to the log, never to stdout
        return PollingConfiguration.build(
            interval=self.daemon.polling_interval,
            path_filters=self.monitoring.path_filters,
            entitlement_filters=self.monitoring.entitlement_filters,
            output_json=False,
            quiet_mode=False,
        )
