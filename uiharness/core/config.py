"""
Configuration management for UI Harness.

Handles environment variables, configuration files, defaults and validation
for every component that takes part in a test session.
"""

import json
import os
import shlex
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional, Dict, Any, List

import yaml


VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARN", "WARNING", "ERROR"]
VALID_LOG_FORMATS = ["text", "json"]
VALID_BROWSER_PROTOCOLS = ["playwright", "cdp"]
VALID_BROWSER_NAMES = ["chromium", "firefox", "webkit"]

_PATH_FIELDS = {
    "artifacts_dir",
    "logs_dir",
    "datastore_path",
    "datastore_schema_path",
    "datastore_fixture_path",
}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_optional_float(value: str) -> Optional[float]:
    if not value.strip() or value.strip().lower() == "none":
        return None
    return float(value)


# env var -> (field name, converter)
_ENV_OVERRIDES: Dict[str, tuple] = {
    "CI": ("ci_mode", _parse_bool),
    "UI_HARNESS_LOG_LEVEL": ("log_level", str.upper),
    "UI_HARNESS_LOG_FORMAT": ("log_format", str.lower),
    "UI_HARNESS_APP_COMMAND": ("app_command", shlex.split),
    "UI_HARNESS_APP_HOST": ("app_host", str),
    "UI_HARNESS_APP_PORT": ("app_port", int),
    "UI_HARNESS_APP_HEALTH_PATH": ("app_health_path", str),
    "UI_HARNESS_SERVER_STARTUP_TIMEOUT": ("server_startup_timeout", float),
    "UI_HARNESS_BROWSER_WS_ENDPOINT": ("browser_ws_endpoint", str),
    "UI_HARNESS_BROWSER_PROTOCOL": ("browser_protocol", str.lower),
    "UI_HARNESS_BROWSER_NAME": ("browser_name", str.lower),
    "UI_HARNESS_ELEMENT_TIMEOUT": ("element_timeout", float),
    "UI_HARNESS_NAVIGATION_TIMEOUT": ("navigation_timeout", float),
    "UI_HARNESS_DATASTORE_PATH": ("datastore_path", Path),
    "UI_HARNESS_DATASTORE_SCHEMA": ("datastore_schema_path", Path),
    "UI_HARNESS_DATASTORE_FIXTURE": ("datastore_fixture_path", Path),
    "UI_HARNESS_TEST_TIMEOUT": ("test_timeout", float),
    "UI_HARNESS_COORDINATOR_TIMEOUT": ("coordinator_timeout", _parse_optional_float),
    "UI_HARNESS_ARTIFACTS_DIR": ("artifacts_dir", Path),
    "UI_HARNESS_LOGS_DIR": ("logs_dir", Path),
    "UI_HARNESS_ARTIFACT_RETENTION_DAYS": ("artifact_retention_days", int),
}


@dataclass
class Config:
    """Configuration class for UI Harness with environment variable support."""

    # Environment detection
    ci_mode: bool = field(default=False)

    # Logging configuration
    log_level: str = field(default="INFO")
    log_format: str = field(default="text")

    # Application under test
    app_command: Optional[List[str]] = field(default=None)
    app_host: str = field(default="127.0.0.1")
    app_port: int = field(default=8000)
    app_health_path: Optional[str] = field(default=None)
    app_env: Dict[str, str] = field(default_factory=dict)

    # Server readiness polling
    server_startup_timeout: float = field(default=30.0)
    server_poll_interval: float = field(default=0.25)
    server_poll_backoff: float = field(default=1.0)
    server_poll_max_interval: float = field(default=2.0)
    server_max_attempts: int = field(default=200)
    server_stop_timeout: float = field(default=5.0)

    # Browser automation
    browser_ws_endpoint: Optional[str] = field(default=None)
    browser_protocol: str = field(default="playwright")
    browser_name: str = field(default="chromium")
    browser_connect_timeout: float = field(default=30.0)
    viewport_width: int = field(default=1280)
    viewport_height: int = field(default=800)
    element_timeout: float = field(default=10.0)
    navigation_timeout: float = field(default=30.0)

    # Data store
    datastore_path: Path = field(
        default_factory=lambda: Path.cwd() / "uiharness.sqlite3"
    )
    datastore_schema_path: Optional[Path] = field(default=None)
    datastore_fixture_path: Optional[Path] = field(default=None)

    # Session budget
    test_timeout: float = field(default=120.0)
    coordinator_timeout: Optional[float] = field(default=None)

    # Artifact management
    artifact_retention_days: Optional[int] = field(default=None)
    artifact_capture_timeout: float = field(default=10.0)

    # Directory paths
    artifacts_dir: Path = field(default_factory=lambda: Path.cwd() / "artifacts")
    logs_dir: Path = field(default_factory=lambda: Path.cwd() / "logs")

    def __post_init__(self):
        """Normalize values after construction."""
        self.log_level = (self.log_level or "INFO").upper()
        if self.log_level == "WARN":
            self.log_level = "WARNING"

        # CI logs are machine-read
        if self.ci_mode and self.log_format == "text":
            self.log_format = "json"

        if self.artifact_retention_days is None:
            self.artifact_retention_days = 30 if self.ci_mode else 7

        if isinstance(self.app_command, str):
            self.app_command = shlex.split(self.app_command)

        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                setattr(self, name, Path(value))

    @property
    def is_ci_mode(self) -> bool:
        """Check if running in CI environment."""
        return self.ci_mode

    @property
    def manages_server(self) -> bool:
        """True when the harness starts the application itself."""
        return bool(self.app_command)

    @property
    def app_base_url(self) -> str:
        """Base URL the browser uses to reach the application."""
        return f"http://{self.app_host}:{self.app_port}"

    def get_log_file_path(self) -> Path:
        """Get the main log file path."""
        return self.logs_dir / "ui-harness.log"

    def get_server_log_dir(self) -> Path:
        """Get the directory holding per-session application server logs."""
        server_dir = self.logs_dir / "servers"
        server_dir.mkdir(parents=True, exist_ok=True)
        return server_dir

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for logging."""
        return {
            "ci_mode": self.ci_mode,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "app_command": self.app_command,
            "app_base_url": self.app_base_url,
            "app_health_path": self.app_health_path,
            "server_startup_timeout": self.server_startup_timeout,
            "browser_ws_endpoint": self.browser_ws_endpoint,
            "browser_protocol": self.browser_protocol,
            "browser_name": self.browser_name,
            "element_timeout": self.element_timeout,
            "navigation_timeout": self.navigation_timeout,
            "artifact_capture_timeout": self.artifact_capture_timeout,
            "datastore_path": str(self.datastore_path),
            "test_timeout": self.test_timeout,
            "artifact_retention_days": self.artifact_retention_days,
            "artifacts_dir": str(self.artifacts_dir),
            "logs_dir": str(self.logs_dir),
        }

    @staticmethod
    def _env_overrides() -> Dict[str, Any]:
        """Collect configuration values set through environment variables."""
        from .exceptions import ValidationError

        values: Dict[str, Any] = {}
        errors = []
        for env_name, (field_name, convert) in _ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = convert(raw)
            except ValueError as e:
                errors.append(f"{env_name}={raw!r}: {e}")

        if errors:
            raise ValidationError(
                "Invalid environment configuration: " + "; ".join(errors),
                validation_type="environment",
                violations=errors,
            )
        return values

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        return cls(**cls._env_overrides())

    @classmethod
    def from_file(cls, path: Path, apply_env: bool = True) -> "Config":
        """
        Create configuration from a YAML or JSON file.

        Environment variables take precedence over file values when
        ``apply_env`` is set.
        """
        from .exceptions import ValidationError

        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
            if path.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ValidationError(
                f"Could not read configuration file {path}: {e}",
                validation_type="config_file",
            ) from e

        data = data or {}
        if not isinstance(data, dict):
            raise ValidationError(
                f"Configuration file {path} must contain a mapping",
                validation_type="config_file",
            )

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError(
                f"Unknown configuration keys in {path}: {', '.join(unknown)}",
                validation_type="config_file",
                violations=unknown,
            )

        if apply_env:
            data.update(cls._env_overrides())

        return cls(**data)

    def validate(self) -> None:
        """Validate configuration and raise ValidationError if invalid."""
        from .exceptions import ValidationError

        errors = []

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(
                f"Invalid log level: {self.log_level}. Must be one of {VALID_LOG_LEVELS}"
            )

        if self.log_format not in VALID_LOG_FORMATS:
            errors.append(
                f"Invalid log format: {self.log_format}. Must be one of {VALID_LOG_FORMATS}"
            )

        if self.browser_protocol not in VALID_BROWSER_PROTOCOLS:
            errors.append(
                f"Invalid browser protocol: {self.browser_protocol}. "
                f"Must be one of {VALID_BROWSER_PROTOCOLS}"
            )

        if self.browser_name not in VALID_BROWSER_NAMES:
            errors.append(
                f"Invalid browser name: {self.browser_name}. "
                f"Must be one of {VALID_BROWSER_NAMES}"
            )
        elif self.browser_protocol == "cdp" and self.browser_name != "chromium":
            errors.append("The cdp browser protocol requires browser_name 'chromium'")

        if not 0 < self.app_port < 65536:
            errors.append(f"Invalid application port: {self.app_port}")

        if self.app_health_path and not self.app_health_path.startswith("/"):
            errors.append(
                f"Health path must start with '/': {self.app_health_path}"
            )

        positive: Dict[str, float] = {
            "server_startup_timeout": self.server_startup_timeout,
            "server_poll_interval": self.server_poll_interval,
            "server_stop_timeout": self.server_stop_timeout,
            "browser_connect_timeout": self.browser_connect_timeout,
            "element_timeout": self.element_timeout,
            "navigation_timeout": self.navigation_timeout,
            "artifact_capture_timeout": self.artifact_capture_timeout,
            "test_timeout": self.test_timeout,
        }
        for name, value in positive.items():
            if value is None or value <= 0:
                errors.append(f"{name} must be positive, got {value}")

        if self.server_poll_backoff < 1.0:
            errors.append(
                f"server_poll_backoff must be >= 1.0, got {self.server_poll_backoff}"
            )

        if self.server_max_attempts < 1:
            errors.append(
                f"server_max_attempts must be >= 1, got {self.server_max_attempts}"
            )

        for name in ("datastore_schema_path", "datastore_fixture_path"):
            value = getattr(self, name)
            if value is not None and not value.exists():
                errors.append(f"{name} does not exist: {value}")

        if errors:
            message = "Configuration validation failed: " + "; ".join(errors)
            raise ValidationError(
                message,
                validation_type="config",
                violations=errors,
            )
