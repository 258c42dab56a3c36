"""Application configuration management.

Loads configuration from config.yaml files and environment variables.
Environment variables take precedence over config file settings.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from idxflow.core.idx.client import IDXClientConfig

logger = logging.getLogger(__name__)

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".idxflow"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# Environment variable prefix
ENV_PREFIX = "IDXFLOW_"

DEFAULT_SCOPES = ["openid", "profile", "offline_access"]


@dataclass
class ClientSettings:
    """Identity Engine client settings."""

    issuer: str = ""
    client_id: str = ""
    client_secret: str | None = None
    redirect_uri: str = ""
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    additional_parameters: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientSettings:
        """Create ClientSettings from a dictionary."""
        scopes = data.get("scopes", DEFAULT_SCOPES)
        if isinstance(scopes, str):
            scopes = scopes.split()
        return cls(
            issuer=data.get("issuer", ""),
            client_id=data.get("client_id", ""),
            client_secret=data.get("client_secret"),
            redirect_uri=data.get("redirect_uri", ""),
            scopes=list(scopes),
            additional_parameters={str(k): str(v) for k, v in (data.get("additional_parameters") or {}).items()},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "issuer": self.issuer,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "scopes": list(self.scopes),
            "additional_parameters": dict(self.additional_parameters),
        }

    @property
    def missing(self) -> list[str]:
        """Names of required settings that are not configured."""
        return [name for name in ("issuer", "client_id", "redirect_uri") if not getattr(self, name)]

    def to_client_config(self) -> IDXClientConfig:
        """Build the client configuration used by the authentication flow.

        Raises:
            ValueError: If a required setting is missing.
        """
        if self.missing:
            raise ValueError(f"Missing client settings: {', '.join(self.missing)}")
        return IDXClientConfig(
            issuer=self.issuer,
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            scopes=list(self.scopes),
            additional_parameters=dict(self.additional_parameters),
        )


@dataclass
class HTTPSettings:
    """HTTP transport settings."""

    timeout: float = 30.0
    verify_ssl: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HTTPSettings:
        return cls(
            timeout=float(data.get("timeout", 30.0)),
            verify_ssl=data.get("verify_ssl", True),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"timeout": self.timeout, "verify_ssl": self.verify_ssl}


@dataclass
class LoggingSettings:
    """Protocol logging settings."""

    level: str = "INFO"
    trace_enabled: bool = False
    log_file: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingSettings:
        return cls(
            level=str(data.get("level", "INFO")).upper(),
            trace_enabled=data.get("trace_enabled", False),
            log_file=data.get("log_file"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "trace_enabled": self.trace_enabled,
            "log_file": self.log_file,
        }


@dataclass
class AppConfig:
    """Main application configuration."""

    client: ClientSettings = field(default_factory=ClientSettings)
    http: HTTPSettings = field(default_factory=HTTPSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> AppConfig:
        """Create AppConfig from a dictionary."""
        return cls(
            client=ClientSettings.from_dict(data.get("client") or {}),
            http=HTTPSettings.from_dict(data.get("http") or {}),
            logging=LoggingSettings.from_dict(data.get("logging") or {}),
            config_path=config_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "client": self.client.to_dict(),
            "http": self.http.to_dict(),
            "logging": self.logging.to_dict(),
        }

    def save(self, path: Path | None = None) -> Path:
        """Save configuration to a YAML file.

        Args:
            path: Path to save to. Uses config_path or default if not specified.

        Returns:
            The path written.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
        return save_path


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load application configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        AppConfig with merged settings.
    """
    config = AppConfig()

    file_path = config_path or DEFAULT_CONFIG_FILE
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
            config = AppConfig.from_dict(data, config_path=file_path)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Ignoring unreadable config file {file_path}: {e}")

    client = config.client
    for name in ("issuer", "client_id", "client_secret", "redirect_uri"):
        value = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value:
            setattr(client, name, value)

    if os.environ.get(f"{ENV_PREFIX}SCOPES"):
        client.scopes = os.environ[f"{ENV_PREFIX}SCOPES"].replace(",", " ").split()

    config.http.timeout = _get_env_float(f"{ENV_PREFIX}TIMEOUT", config.http.timeout)
    config.http.verify_ssl = _get_env_bool(f"{ENV_PREFIX}VERIFY_SSL", config.http.verify_ssl)

    if os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        config.logging.level = os.environ[f"{ENV_PREFIX}LOG_LEVEL"].upper()

    config.logging.trace_enabled = _get_env_bool(f"{ENV_PREFIX}TRACE", config.logging.trace_enabled)

    return config


def get_default_config_yaml() -> str:
    """Get the default config.yaml content as a string.

    Useful for generating example configuration files.
    """
    return """\
# idxflow Configuration File
# Environment variables override these settings (prefix: IDXFLOW_)

client:
  # Authorization server issuer, e.g. https://example.okta.com/oauth2/default
  issuer: ""

  # OAuth2 client ID of the application
  client_id: ""

  # Client secret (confidential clients only)
  # client_secret: ""

  # Redirect URI registered for the application
  redirect_uri: ""

  # Scopes to request
  scopes:
    - openid
    - profile
    - offline_access

  # Extra parameters appended to the interact request
  additional_parameters: {}

http:
  # Request timeout in seconds
  timeout: 30.0

  # Verify TLS certificates
  verify_ssl: true

logging:
  # ERROR, INFO, DEBUG or TRACE
  level: INFO

  # TRACE logs full request and response bodies, including secrets
  trace_enabled: false

  # Optional file to write logs to
  # log_file: ~/.idxflow/idxflow.log
"""
