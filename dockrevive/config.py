import os
from dataclasses import dataclass, field
from typing import Any

import yaml
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CONFIG_YAML = """\
# dockrevive configuration

monitor:
  # Restart attempts further apart than this start a fresh count
  restart_window_seconds: 600
  # How often the engine connection is pinged
  health_check_interval_seconds: 30
  # How long shutdown waits for in-flight restarts
  shutdown_grace_seconds: 15
  # Containers that are never restarted automatically
  ignored_containers: []

restart:
  stop_timeout_seconds: 10
  settle_delay_seconds: 2
  verify_delay_seconds: 2

api:
  enabled: true
  host: 127.0.0.1
  # First port tried; the next free one below port_end is used
  port: 3000
  port_end: 3010

docker:
  # Leave empty to auto-detect the engine socket
  socket_path: ""
  connect_retries: 3
  connect_retry_delay_seconds: 1
  timeout_seconds: 120
"""


@dataclass
class MonitorConfig:
    """Configuration for the event monitor."""

    restart_window_seconds: int = 600
    health_check_interval_seconds: int = 30
    shutdown_grace_seconds: int = 15
    ignored_containers: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "MonitorConfig":
        """Create MonitorConfig from YAML dict."""
        return cls(
            restart_window_seconds=data.get("restart_window_seconds", 600),
            health_check_interval_seconds=data.get("health_check_interval_seconds", 30),
            shutdown_grace_seconds=data.get("shutdown_grace_seconds", 15),
            ignored_containers=data.get("ignored_containers") or [],
        )


@dataclass
class RestartConfig:
    """Timings of the recreate workflow."""

    stop_timeout_seconds: float = 10
    settle_delay_seconds: float = 2
    verify_delay_seconds: float = 2

    @classmethod
    def from_dict(cls, data: dict) -> "RestartConfig":
        """Create RestartConfig from YAML dict."""
        return cls(
            stop_timeout_seconds=data.get("stop_timeout_seconds", 10),
            settle_delay_seconds=data.get("settle_delay_seconds", 2),
            verify_delay_seconds=data.get("verify_delay_seconds", 2),
        )


@dataclass
class ApiConfig:
    """Configuration for the HTTP API."""

    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 3000
    port_end: int = 3010

    @classmethod
    def from_dict(cls, data: dict) -> "ApiConfig":
        """Create ApiConfig from YAML dict."""
        port = data.get("port", 3000)
        return cls(
            enabled=data.get("enabled", True),
            host=data.get("host", "127.0.0.1"),
            port=port,
            port_end=data.get("port_end", port + 10),
        )


@dataclass
class DockerConfig:
    """Configuration for the engine connection."""

    socket_path: str | None = None
    connect_retries: int = 3
    connect_retry_delay_seconds: float = 1
    timeout_seconds: int = 120

    @classmethod
    def from_dict(cls, data: dict) -> "DockerConfig":
        """Create DockerConfig from YAML dict."""
        return cls(
            socket_path=data.get("socket_path") or None,
            connect_retries=data.get("connect_retries", 3),
            connect_retry_delay_seconds=data.get("connect_retry_delay_seconds", 1),
            timeout_seconds=data.get("timeout_seconds", 120),
        )


def load_yaml_config(path: str) -> dict[str, Any]:
    """Load YAML configuration file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Dictionary with configuration values, or empty dict if file doesn't exist.
    """
    if not os.path.exists(path):
        return {}

    with open(path, encoding="utf-8") as f:
        content = f.read()
        if not content.strip():
            return {}
        return yaml.safe_load(content) or {}


def generate_default_config(path: str) -> bool:
    """Write the default config file if none exists.

    Returns:
        True if a file was created.
    """
    if os.path.exists(path):
        return False

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(DEFAULT_CONFIG_YAML)
    return True


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    docker_host: str | None = None
    config_path: str = "config/config.yaml"
    log_level: str = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> str:
        """Accept any case, reject unknown level names."""
        level = str(v).strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"LOG_LEVEL must be a standard logging level, got: {v}")
        return level


class AppConfig:
    """Application configuration combining Settings (env) and YAML config."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._yaml_config = load_yaml_config(settings.config_path)

    @property
    def settings(self) -> Settings:
        """Get the underlying Settings object."""
        return self._settings

    @property
    def log_level(self) -> str:
        return self._settings.log_level

    @property
    def monitor(self) -> MonitorConfig:
        return MonitorConfig.from_dict(self._yaml_config.get("monitor") or {})

    @property
    def restart(self) -> RestartConfig:
        return RestartConfig.from_dict(self._yaml_config.get("restart") or {})

    @property
    def api(self) -> ApiConfig:
        return ApiConfig.from_dict(self._yaml_config.get("api") or {})

    @property
    def docker(self) -> DockerConfig:
        """Docker section; DOCKER_HOST from the environment wins over the YAML socket."""
        docker_config = DockerConfig.from_dict(self._yaml_config.get("docker") or {})
        if self._settings.docker_host:
            docker_config.socket_path = self._settings.docker_host
        return docker_config
