"""Browser automation sessions and the page capability."""

from .pages import PageCapability
from .session import BrowserHandle, BrowserSessionManager, ConsoleEntry

__all__ = [
    "PageCapability",
    "BrowserHandle",
    "BrowserSessionManager",
    "ConsoleEntry",
]
