"""Core components for UI Harness."""

from .config import Config
from .coordinator import ExecutionCoordinator, get_coordinator
from .exceptions import (
    HarnessError,
    ProvisioningError,
    ResetError,
    SessionError,
    SessionTimeoutError,
    ElementNotFound,
    NavigationTimeout,
    ValidationError,
)
from .logging_config import setup_logging

__all__ = [
    "Config",
    "ExecutionCoordinator",
    "get_coordinator",
    "HarnessError",
    "ProvisioningError",
    "ResetError",
    "SessionError",
    "SessionTimeoutError",
    "ElementNotFound",
    "NavigationTimeout",
    "ValidationError",
    "setup_logging",
]
