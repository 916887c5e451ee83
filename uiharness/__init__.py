"""
UI Harness - browser-driven end-to-end test orchestration

Runs each UI test in an isolated session: a freshly started application
server, a data store reset to baseline and a remote browser session, with
failure artifacts captured before everything is torn down.
"""

__version__ = "0.1.0"
__author__ = "UI Harness Team"

from .core.config import Config
from .core.exceptions import HarnessError
from .core.lifecycle import SessionContext, TestLifecycleManager
from .core.logging_config import setup_logging
from .execution.registry import ui_test

__all__ = [
    "Config",
    "HarnessError",
    "SessionContext",
    "TestLifecycleManager",
    "setup_logging",
    "ui_test",
]
