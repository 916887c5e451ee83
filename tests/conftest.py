"""
Pytest configuration and shared fixtures for UI Harness tests.

Provides temporary configuration, a real SQLite schema and fixture, a TCP
listener standing in for the application, and a fake Playwright driver
factory.
"""

import asyncio
import socket

import pytest
import pytest_asyncio

from uiharness.core.config import Config
from uiharness.core.coordinator import ExecutionCoordinator

from fakes import FakePlaywrightFactory


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS things (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    body TEXT
);
CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL
);
"""

FIXTURE_YAML = """
things:
  - title: Baseline Thing
    body: present after every reset
tags: []
"""


def free_port() -> int:
    """Return a TCP port nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def schema_file(tmp_path):
    path = tmp_path / "schema.sql"
    path.write_text(SCHEMA_SQL)
    return path


@pytest.fixture
def fixture_file(tmp_path):
    path = tmp_path / "baseline.yaml"
    path.write_text(FIXTURE_YAML)
    return path


@pytest.fixture
def temp_config(tmp_path, schema_file, fixture_file):
    """Create a temporary configuration for testing."""
    config = Config(
        log_level="DEBUG",
        app_port=free_port(),
        server_startup_timeout=5.0,
        server_poll_interval=0.05,
        server_stop_timeout=5.0,
        browser_ws_endpoint="ws://127.0.0.1:3000/playwright",
        element_timeout=1.0,
        navigation_timeout=2.0,
        datastore_path=tmp_path / "app.sqlite3",
        datastore_schema_path=schema_file,
        datastore_fixture_path=fixture_file,
        test_timeout=10.0,
        artifact_capture_timeout=2.0,
        artifacts_dir=tmp_path / "artifacts",
        logs_dir=tmp_path / "logs",
    )
    return config


@pytest_asyncio.fixture
async def app_listener(temp_config):
    """Plain TCP listener on the configured application port."""

    def on_connect(reader, writer):
        writer.close()

    server = await asyncio.start_server(
        on_connect, temp_config.app_host, temp_config.app_port
    )
    yield server
    server.close()
    await server.wait_closed()


@pytest.fixture
def coordinator():
    return ExecutionCoordinator(poll_interval=0.005)


@pytest.fixture
def fake_playwright():
    return FakePlaywrightFactory(
        routes={"/my-new-page": {"h1": "Thing Title", "title": "Things"}}
    )
