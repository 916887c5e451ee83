"""
Tests for browser session management and the page capability.

The Playwright surface is replaced by the fakes in tests/fakes.py.
"""

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from uiharness.browser.pages import PageCapability
from uiharness.browser.session import BrowserSessionManager
from uiharness.core.exceptions import ElementNotFound, NavigationTimeout, SessionError

from fakes import FakeConsoleMessage


BASE_URL = "http://127.0.0.1:8000"


class TestBrowserSessionManager:
    """Test cases for BrowserSessionManager."""

    @pytest.mark.asyncio
    async def test_open_connects_and_configures_context(self, temp_config, fake_playwright):
        manager = BrowserSessionManager(temp_config, playwright_factory=fake_playwright)

        handle = await manager.open("tests.browser.open", BASE_URL)

        driver = fake_playwright.last
        assert driver.chromium.connect_calls == [
            ("playwright", temp_config.browser_ws_endpoint, 30000.0)
        ]
        context = driver.browser.contexts[0]
        assert context.options["base_url"] == BASE_URL
        assert context.options["viewport"] == {"width": 1280, "height": 800}
        assert context.default_timeout == 1000.0
        assert context.default_navigation_timeout == 2000.0
        assert handle.page is context.page
        assert not handle.closed

        await manager.close(handle)

    @pytest.mark.asyncio
    async def test_cdp_protocol(self, temp_config, fake_playwright):
        temp_config.browser_protocol = "cdp"
        manager = BrowserSessionManager(temp_config, playwright_factory=fake_playwright)

        handle = await manager.open("tests.browser.cdp", BASE_URL)

        assert fake_playwright.last.chromium.connect_calls[0][0] == "cdp"
        await manager.close(handle)

    @pytest.mark.asyncio
    async def test_console_and_page_errors_are_recorded(self, temp_config, fake_playwright):
        manager = BrowserSessionManager(temp_config, playwright_factory=fake_playwright)
        handle = await manager.open("tests.browser.console", BASE_URL)

        handle.page.emit(
            "console",
            FakeConsoleMessage("error", "Failed to load", {"url": "app.js", "lineNumber": 12}),
        )
        handle.page.emit("pageerror", RuntimeError("Uncaught TypeError: x is undefined"))

        transcript = handle.console_transcript()
        assert "[error] Failed to load (app.js:12)" in transcript
        assert "[pageerror] Uncaught TypeError: x is undefined" in transcript
        await manager.close(handle)

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, temp_config, fake_playwright):
        manager = BrowserSessionManager(temp_config, playwright_factory=fake_playwright)
        handle = await manager.open("tests.browser.close", BASE_URL)
        driver = fake_playwright.last
        context = driver.browser.contexts[0]

        await manager.close(handle)
        await manager.close(handle)

        assert handle.closed
        assert handle.close_count == 1
        assert context.close_count == 1
        assert driver.browser.close_count == 1
        assert driver.stop_count == 1
        assert handle.page is None

    @pytest.mark.asyncio
    async def test_close_survives_driver_errors(self, temp_config, fake_playwright):
        manager = BrowserSessionManager(temp_config, playwright_factory=fake_playwright)
        handle = await manager.open("tests.browser.dead", BASE_URL)
        driver = fake_playwright.last
        driver.browser.contexts[0].close_error = RuntimeError("Target closed")

        await manager.close(handle)

        assert handle.closed
        assert driver.browser.close_count == 1
        assert driver.stop_count == 1

    @pytest.mark.asyncio
    async def test_missing_endpoint(self, temp_config, fake_playwright):
        temp_config.browser_ws_endpoint = None
        manager = BrowserSessionManager(temp_config, playwright_factory=fake_playwright)

        with pytest.raises(SessionError) as exc_info:
            await manager.open("tests.browser.no_endpoint", BASE_URL)

        assert exc_info.value.infrastructure
        assert fake_playwright.started == []

    @pytest.mark.asyncio
    async def test_connect_failure_stops_driver(self, temp_config, fake_playwright):
        fake_playwright.connect_error = ConnectionRefusedError("connection refused")
        manager = BrowserSessionManager(temp_config, playwright_factory=fake_playwright)

        with pytest.raises(SessionError) as exc_info:
            await manager.open("tests.browser.refused", BASE_URL)

        assert exc_info.value.context["endpoint"] == temp_config.browser_ws_endpoint
        assert fake_playwright.last.stop_count == 1


class TestPageCapability:
    """Test cases for PageCapability."""

    async def _open(self, temp_config, fake_playwright):
        manager = BrowserSessionManager(temp_config, playwright_factory=fake_playwright)
        handle = await manager.open("tests.pages", BASE_URL)
        return manager, handle, PageCapability(handle, element_timeout=0.5, navigation_timeout=1.0)

    def test_url_for(self):
        handle = type("Handle", (), {"base_url": BASE_URL + "/", "page": None})()
        capability = PageCapability(handle)

        assert capability.url_for("/my-new-page") == BASE_URL + "/my-new-page"
        assert capability.url_for("things/1") == BASE_URL + "/things/1"
        assert capability.url_for("https://other.test/x") == "https://other.test/x"

    @pytest.mark.asyncio
    async def test_navigate_and_read_text(self, temp_config, fake_playwright):
        manager, handle, capability = await self._open(temp_config, fake_playwright)

        await capability.navigate("/my-new-page")

        assert handle.page.goto_calls[0] == {
            "url": BASE_URL + "/my-new-page",
            "wait_until": "load",
            "timeout": 1000.0,
        }
        assert await capability.text_of("h1") == "Thing Title"
        assert capability.current_url == BASE_URL + "/my-new-page"
        assert await capability.title() == "Things"
        assert await capability.is_visible("h1")
        assert not await capability.is_visible("h2")
        await manager.close(handle)

    @pytest.mark.asyncio
    async def test_click_and_fill(self, temp_config, fake_playwright):
        manager, handle, capability = await self._open(temp_config, fake_playwright)
        await capability.navigate("/my-new-page")

        await capability.click("h1")
        await capability.fill("h1", "typed")

        assert handle.page.clicks == ["h1"]
        assert handle.page.filled == {"h1": "typed"}
        await manager.close(handle)

    @pytest.mark.asyncio
    async def test_missing_element(self, temp_config, fake_playwright):
        manager, handle, capability = await self._open(temp_config, fake_playwright)
        await capability.navigate("/my-new-page")

        with pytest.raises(ElementNotFound) as exc_info:
            await capability.text_of("#does-not-exist", timeout=0.2)

        assert exc_info.value.context["selector"] == "#does-not-exist"
        assert not exc_info.value.infrastructure
        await manager.close(handle)

    @pytest.mark.asyncio
    async def test_navigation_timeout(self, temp_config, fake_playwright):
        manager, handle, capability = await self._open(temp_config, fake_playwright)
        handle.page.navigation_error = PlaywrightTimeoutError("Timeout 1000ms exceeded")

        with pytest.raises(NavigationTimeout) as exc_info:
            await capability.navigate("/slow")

        assert exc_info.value.context["url"] == BASE_URL + "/slow"
        await manager.close(handle)
