"""
Browser automation session management.

Connects to a remote Playwright (or CDP) endpoint, opens an isolated browser
context pointed at the provisioned application, and records the console
transcript for failure diagnostics.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from playwright.async_api import async_playwright

from ..core.config import Config
from ..core.exceptions import SessionError
from ..core.logging_config import get_logger, log_performance, log_step


@dataclass
class ConsoleEntry:
    """One browser console message or uncaught page error."""

    level: str
    text: str
    location: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def format(self) -> str:
        line = f"{self.timestamp.isoformat()} [{self.level}] {self.text}"
        if self.location:
            line += f" ({self.location})"
        return line


@dataclass
class BrowserHandle:
    """Reference to an open remote automation session."""

    session_name: str
    base_url: str
    playwright: Any = field(default=None, repr=False)
    browser: Any = field(default=None, repr=False)
    context: Any = field(default=None, repr=False)
    page: Any = field(default=None, repr=False)
    console: List[ConsoleEntry] = field(default_factory=list)
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed: bool = False
    close_count: int = 0

    def console_transcript(self) -> str:
        return "\n".join(entry.format() for entry in self.console)


def _format_location(location: Any) -> str:
    if not location:
        return ""
    url = location.get("url", "")
    line = location.get("lineNumber")
    return f"{url}:{line}" if url and line is not None else url


class BrowserSessionManager:
    """Opens and closes browser automation sessions for test sessions."""

    def __init__(
        self,
        config: Config,
        playwright_factory: Optional[Callable[[], Any]] = None,
    ):
        self.config = config
        self.playwright_factory = playwright_factory or async_playwright
        self.logger = get_logger("ui_harness.browser")

    async def open(self, session_name: str, server_address: str) -> BrowserHandle:
        """
        Open a session pointed at ``server_address``.

        Args:
            session_name: Name of the owning test session
            server_address: Base URL of the provisioned application

        Returns:
            Handle to the open session

        Raises:
            SessionError: if no endpoint is configured or the connection fails
        """
        endpoint = self.config.browser_ws_endpoint
        protocol = self.config.browser_protocol
        if not endpoint:
            raise SessionError(
                "No browser automation endpoint configured "
                "(set UI_HARNESS_BROWSER_WS_ENDPOINT)",
                protocol=protocol,
            )

        handle = BrowserHandle(session_name=session_name, base_url=server_address)
        logger = self.logger.bind(test_name=session_name)
        start_time = time.monotonic()

        try:
            handle.playwright = await self.playwright_factory().start()
            browser_type = getattr(handle.playwright, self.config.browser_name)
            connect_timeout = self.config.browser_connect_timeout * 1000

            if protocol == "cdp":
                handle.browser = await browser_type.connect_over_cdp(
                    endpoint, timeout=connect_timeout
                )
            else:
                handle.browser = await browser_type.connect(
                    endpoint, timeout=connect_timeout
                )

            handle.context = await handle.browser.new_context(
                base_url=server_address,
                viewport={
                    "width": self.config.viewport_width,
                    "height": self.config.viewport_height,
                },
            )
            handle.context.set_default_timeout(self.config.element_timeout * 1000)
            handle.context.set_default_navigation_timeout(
                self.config.navigation_timeout * 1000
            )

            handle.page = await handle.context.new_page()
            self._record_console(handle)
        except BaseException as e:
            await self.close(handle)
            if not isinstance(e, Exception):
                raise
            raise SessionError(
                f"Could not open browser session at {endpoint}: {e}",
                endpoint=endpoint,
                protocol=protocol,
            ) from e

        log_performance(
            logger,
            "browser_open",
            time.monotonic() - start_time,
            endpoint=endpoint,
            protocol=protocol,
        )
        return handle

    @staticmethod
    def _record_console(handle: BrowserHandle) -> None:
        """Accumulate console messages and page errors on the handle."""

        def on_console(message):
            handle.console.append(
                ConsoleEntry(
                    level=message.type,
                    text=message.text,
                    location=_format_location(message.location),
                )
            )

        def on_page_error(error):
            handle.console.append(ConsoleEntry(level="pageerror", text=str(error)))

        handle.page.on("console", on_console)
        handle.page.on("pageerror", on_page_error)

    async def close(self, handle: Optional[BrowserHandle]) -> None:
        """
        Close a session.

        Safe on dead or half-open sessions; errors from the driver are logged
        and never raised.
        """
        if handle is None or handle.closed:
            return

        logger = self.logger.bind(test_name=handle.session_name)
        steps = [
            ("close_context", handle.context, "close"),
            ("close_browser", handle.browser, "close"),
            ("stop_playwright", handle.playwright, "stop"),
        ]

        for step, target, method in steps:
            if target is None:
                continue
            start_time = time.monotonic()
            try:
                await getattr(target, method)()
                log_step(logger, "browser", step, time.monotonic() - start_time, True)
            except Exception as e:
                log_step(
                    logger, "browser", step, time.monotonic() - start_time, False, error=e
                )

        handle.closed = True
        handle.close_count += 1
        handle.page = None
        handle.context = None
        handle.browser = None
        handle.playwright = None
        logger.info("Browser session closed")
