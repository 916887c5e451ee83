"""
pytest integration.

Registered through the ``pytest11`` entry point. Tests request the
``ui_session`` fixture to run inside a provisioned session::

    @pytest.mark.asyncio
    async def test_thing_page(ui_session):
        await ui_session.page.navigate("/my-new-page")
        assert await ui_session.page.text_of("h1") == "My Expected Header Text"

A failing test still gets its artifact bundle and full teardown; the failure
is reported by pytest once, for the test call. Provisioning and the test body
share the ``test_timeout`` budget; a test that outlives it fails with
:class:`SessionTimeoutError` and is recorded as an infrastructure error.
"""

import asyncio
import functools
import inspect
from pathlib import Path

import pytest
import pytest_asyncio

from .core.config import Config
from .core.lifecycle import SessionContext, TestLifecycleManager


_CALL_EXCINFO = "_ui_harness_call_excinfo"


def pytest_addoption(parser):
    group = parser.getgroup("ui-harness")
    group.addoption(
        "--ui-artifacts-dir",
        action="store",
        default=None,
        help="Directory for UI test failure artifacts",
    )


def bounded_body(func, context: SessionContext):
    """Wrap an async test function so it stops at the session deadline."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        budget = asyncio.timeout_at(context.deadline)
        try:
            async with budget:
                return await func(*args, **kwargs)
        except TimeoutError as e:
            if budget.expired():
                raise context.timeout_error() from e
            raise

    return wrapper


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_call(item):
    context = getattr(item, "funcargs", {}).get("ui_session")
    original = getattr(item, "obj", None)
    bounded = (
        isinstance(context, SessionContext)
        and context.deadline is not None
        and inspect.iscoroutinefunction(original)
    )
    if bounded:
        item.obj = bounded_body(original, context)
    try:
        yield
    finally:
        if bounded:
            item.obj = original


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    report = outcome.get_result()
    if report.when == "call":
        setattr(item, _CALL_EXCINFO, call.excinfo if report.failed else None)


@pytest.fixture(scope="session")
def ui_harness_config(request) -> Config:
    config = Config.from_env()
    artifacts_dir = request.config.getoption("--ui-artifacts-dir")
    if artifacts_dir:
        config.artifacts_dir = Path(artifacts_dir)
    return config


@pytest.fixture(scope="session")
def ui_harness(ui_harness_config) -> TestLifecycleManager:
    """Lifecycle manager shared by every UI test in the pytest session."""
    return TestLifecycleManager.from_config(ui_harness_config)


@pytest_asyncio.fixture
async def ui_session(ui_harness, request):
    """Provisioned session named after the test's node id."""
    failure = None
    try:
        # Setup and teardown run in different tasks; the body is bounded in
        # pytest_runtest_call
        async with ui_harness.session(request.node.nodeid, bounded=False) as context:
            yield context
            excinfo = getattr(request.node, _CALL_EXCINFO, None)
            if excinfo is not None:
                failure = excinfo.value
                if not isinstance(failure, Exception):
                    # pytest.fail() and friends raise BaseException subclasses
                    failure = AssertionError(str(failure))
                raise failure
    except Exception as e:
        if failure is None or e is not failure:
            raise
