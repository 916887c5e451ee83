"""
Navigation and element-query capability for page objects.

Page objects compose a :class:`PageCapability` instead of inheriting from a
framework base class::

    class ThingPage:
        path = "/my-new-page"

        def __init__(self, capability: PageCapability):
            self.ui = capability

        async def open(self):
            await self.ui.navigate(self.path)

        async def header_text(self) -> str:
            return await self.ui.text_of("h1")

Every element lookup waits for the element with a bounded timeout because
rendering is asynchronous relative to the automation commands.
"""

from typing import Any, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..core.exceptions import ElementNotFound, NavigationTimeout
from .session import BrowserHandle


class PageCapability:
    """Shared navigation/query operations bound to one browser handle."""

    def __init__(
        self,
        handle: BrowserHandle,
        element_timeout: float = 10.0,
        navigation_timeout: float = 30.0,
    ):
        self.handle = handle
        self.element_timeout = element_timeout
        self.navigation_timeout = navigation_timeout

    @property
    def page(self) -> Any:
        return self.handle.page

    @property
    def base_url(self) -> str:
        return self.handle.base_url

    @property
    def current_url(self) -> str:
        return self.page.url

    def url_for(self, path: str) -> str:
        """Resolve ``path`` against the application base URL."""
        if path.startswith(("http://", "https://")):
            return path
        return self.base_url.rstrip("/") + "/" + path.lstrip("/")

    async def navigate(self, path: str, wait_until: str = "load") -> Any:
        """
        Navigate to ``path`` and wait for the page to load.

        Raises:
            NavigationTimeout: if navigation does not complete in time
        """
        url = self.url_for(path)
        try:
            return await self.page.goto(
                url, wait_until=wait_until, timeout=self.navigation_timeout * 1000
            )
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(
                f"Navigation to {url} did not complete within {self.navigation_timeout}s",
                url=url,
                timeout=self.navigation_timeout,
            ) from e

    async def find(
        self, selector: str, timeout: Optional[float] = None, state: str = "visible"
    ) -> Any:
        """
        Wait for the first element matching ``selector`` to reach ``state``.

        Raises:
            ElementNotFound: if the element does not appear in time
        """
        timeout = self.element_timeout if timeout is None else timeout
        locator = self.page.locator(selector).first
        try:
            await locator.wait_for(state=state, timeout=timeout * 1000)
        except PlaywrightTimeoutError as e:
            raise ElementNotFound(
                f"Element {selector!r} not {state} within {timeout}s",
                selector=selector,
                timeout=timeout,
            ) from e
        return locator

    async def text_of(self, selector: str, timeout: Optional[float] = None) -> str:
        locator = await self.find(selector, timeout=timeout)
        return (await locator.inner_text()).strip()

    async def click(self, selector: str, timeout: Optional[float] = None) -> None:
        locator = await self.find(selector, timeout=timeout)
        await locator.click()

    async def fill(
        self, selector: str, value: str, timeout: Optional[float] = None
    ) -> None:
        locator = await self.find(selector, timeout=timeout)
        await locator.fill(value)

    async def is_visible(self, selector: str) -> bool:
        """Non-waiting visibility check."""
        return await self.page.locator(selector).first.is_visible()

    async def title(self) -> str:
        return await self.page.title()
