"""
Tests for failure artifact capture and retention.
"""

import os
import time
from pathlib import Path

import pytest

from uiharness.browser.session import BrowserSessionManager
from uiharness.execution.artifacts import (
    ArtifactCollector,
    format_stack_trace,
    safe_test_dir_name,
)
from uiharness.execution.models import (
    ArtifactKind,
    LifecycleState,
    TestOutcome,
    TestSession,
)


def failed_session(name="tests.things.thing_page_header"):
    session = TestSession(test_name=name)
    session.state = LifecycleState.FAILED
    session.outcome = TestOutcome.FAILED
    try:
        assert "Thing Title" == "My Expected Header Text"
    except AssertionError as e:
        session.error = e
        session.stack_trace = format_stack_trace(e)
    return session


async def open_browser(temp_config, fake_playwright):
    manager = BrowserSessionManager(temp_config, playwright_factory=fake_playwright)
    handle = await manager.open("tests.artifacts", "http://127.0.0.1:8000")
    await handle.page.goto("http://127.0.0.1:8000/my-new-page")
    return manager, handle


class TestCapture:
    """Test cases for ArtifactCollector.capture."""

    @pytest.mark.asyncio
    async def test_full_bundle(self, temp_config, fake_playwright):
        manager, handle = await open_browser(temp_config, fake_playwright)
        session = failed_session()
        collector = ArtifactCollector(temp_config)

        bundle = await collector.capture(session, handle, session.error)
        await manager.close(handle)

        assert not bundle.is_degraded
        assert bundle.outcome == TestOutcome.FAILED
        assert set(bundle.items) == set(ArtifactKind)
        entries = sorted(p.name for p in (temp_config.artifacts_dir).rglob("*") if p.is_file())
        assert entries == ["console.log", "dom.html", "screenshot.png", "stacktrace.txt"]

        screenshot = bundle.get(ArtifactKind.SCREENSHOT)
        assert screenshot.mime_type == "image/png"
        assert screenshot.file_size > 0
        dom = Path(bundle.get(ArtifactKind.DOM).file_path).read_text()
        assert "Thing Title" in dom
        trace = Path(bundle.get(ArtifactKind.STACK_TRACE).file_path).read_text()
        assert "AssertionError" in trace
        assert "Test: tests.things.thing_page_header" in trace

    @pytest.mark.asyncio
    async def test_degraded_bundle_keeps_other_items(self, temp_config, fake_playwright):
        manager, handle = await open_browser(temp_config, fake_playwright)
        handle.page.screenshot_error = RuntimeError("Target page crashed")
        session = failed_session()

        bundle = await ArtifactCollector(temp_config).capture(session, handle, session.error)
        await manager.close(handle)

        assert bundle.missing_items == [ArtifactKind.SCREENSHOT]
        item = bundle.get(ArtifactKind.SCREENSHOT)
        assert item.missing
        assert "Target page crashed" in item.reason
        names = sorted(p.name for p in os.scandir(bundle.directory))
        assert names == ["console.log", "dom.html", "screenshot.png.missing", "stacktrace.txt"]

    @pytest.mark.asyncio
    async def test_capture_timeout_marks_item_missing(self, temp_config, fake_playwright):
        temp_config.artifact_capture_timeout = 0.2
        manager, handle = await open_browser(temp_config, fake_playwright)
        handle.page.screenshot_delay = 5.0
        session = failed_session()

        bundle = await ArtifactCollector(temp_config).capture(session, handle, session.error)
        await manager.close(handle)

        assert bundle.missing_items == [ArtifactKind.SCREENSHOT]
        assert "timed out" in bundle.get(ArtifactKind.SCREENSHOT).reason

    @pytest.mark.asyncio
    async def test_without_browser_only_stack_trace(self, temp_config):
        session = failed_session()
        session.outcome = TestOutcome.INFRASTRUCTURE_ERROR

        bundle = await ArtifactCollector(temp_config).capture(session, None, session.error)

        assert bundle.outcome == TestOutcome.INFRASTRUCTURE_ERROR
        assert set(bundle.missing_items) == {
            ArtifactKind.SCREENSHOT,
            ArtifactKind.CONSOLE,
            ArtifactKind.DOM,
        }
        assert len(os.listdir(bundle.directory)) == 4

    @pytest.mark.asyncio
    async def test_directories_are_never_reused(self, temp_config):
        session = failed_session()
        collector = ArtifactCollector(temp_config)

        first = await collector.capture(session, None, session.error)
        second = await collector.capture(session, None, session.error)

        assert first.directory != second.directory
        assert second.directory.endswith("-1")

    @pytest.mark.asyncio
    async def test_capture_never_raises_on_unwritable_root(self, temp_config, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file in the way")
        temp_config.artifacts_dir = blocker
        session = failed_session()

        bundle = await ArtifactCollector(temp_config).capture(session, None, session.error)

        assert len(bundle.missing_items) == 4


class TestRetention:
    """Test cases for listing and cleanup."""

    @pytest.mark.asyncio
    async def test_list_and_cleanup(self, temp_config):
        collector = ArtifactCollector(temp_config)
        old = await collector.capture(failed_session("tests.old"), None, None)
        new = await collector.capture(failed_session("tests.new"), None, None)
        two_weeks_ago = time.time() - 14 * 86400
        os.utime(old.directory, (two_weeks_ago, two_weeks_ago))

        bundles = collector.list_bundles()
        assert [b["test"] for b in bundles] == ["tests.new", "tests.old"]
        assert "screenshot.png" in bundles[0]["missing"]

        preview = collector.cleanup_expired(retention_days=7, dry_run=True)
        assert preview["deleted"] == [old.directory]
        assert os.path.isdir(old.directory)

        summary = collector.cleanup_expired(retention_days=7)
        assert summary["deleted_count"] == 1
        assert not os.path.exists(old.directory)
        assert not (temp_config.artifacts_dir / "tests.old").exists()
        assert os.path.isdir(new.directory)

    def test_list_without_artifacts_dir(self, temp_config):
        assert ArtifactCollector(temp_config).list_bundles() == []


def test_safe_test_dir_name():
    assert safe_test_dir_name("tests/ui/test_things.py::test_header[chromium]") == (
        "tests_ui_test_things.py_test_header_chromium"
    )
    assert safe_test_dir_name("///") == "unnamed_test"
