"""
Unit tests for main CLI interface.

Tests the run, list, artifacts and config commands and their exit codes.
"""

import json
import sys
import textwrap
from datetime import datetime, timezone
from unittest.mock import patch, AsyncMock

import pytest

from uiharness.cli import create_main_parser, main
from uiharness.core.exceptions import CoordinatorTimeoutError
from uiharness.execution import registry
from uiharness.execution.models import (
    ArtifactBundle,
    RunReport,
    SessionResult,
    TestOutcome,
)


UI_TEST_FILE = textwrap.dedent(
    '''
    from uiharness import ui_test


    @ui_test
    async def thing_page_header(ui):
        """Header shows the thing title."""


    @ui_test
    async def tag_create(ui):
        pass
    '''
)


@pytest.fixture(autouse=True)
def cli_env(monkeypatch, tmp_path):
    monkeypatch.delenv("CI", raising=False)
    monkeypatch.setenv("UI_HARNESS_BROWSER_WS_ENDPOINT", "ws://127.0.0.1:3000/playwright")
    monkeypatch.setenv("UI_HARNESS_ARTIFACTS_DIR", str(tmp_path / "artifacts"))
    monkeypatch.setenv("UI_HARNESS_LOGS_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("UI_HARNESS_DATASTORE_PATH", str(tmp_path / "app.sqlite3"))


@pytest.fixture(autouse=True)
def isolated_registry():
    saved = dict(registry._registry)
    registry.clear_registry()
    yield
    registry.clear_registry()
    registry._registry.update(saved)
    sys.modules.pop("cli_things_ui", None)


@pytest.fixture
def ui_file(tmp_path):
    path = tmp_path / "cli_things_ui.py"
    path.write_text(UI_TEST_FILE)
    return path


def make_report(*outcomes):
    now = datetime.now(timezone.utc)
    results = []
    for i, outcome in enumerate(outcomes):
        bundle = None
        if outcome.needs_artifacts:
            bundle = ArtifactBundle(
                test_name=f"t{i}", timestamp=now, directory=f"/tmp/t{i}", outcome=outcome
            )
        results.append(
            SessionResult(
                test_name=f"cli_things_ui.t{i}",
                outcome=outcome,
                started_at=now,
                completed_at=now,
                duration=0.2,
                error_type="AssertionError" if outcome == TestOutcome.FAILED else None,
                error_message="header mismatch" if outcome == TestOutcome.FAILED else None,
                bundle=bundle,
            )
        )
    return RunReport(run_id="run-1", started_at=now, results=results)


class TestRunCommand:
    """Test cases for `ui-harness run`."""

    @patch("uiharness.cli.setup_logging")
    @patch("uiharness.cli.run_suite", new_callable=AsyncMock)
    def test_all_passed(self, mock_run_suite, mock_logging, ui_file, capsys):
        mock_run_suite.return_value = make_report(TestOutcome.PASSED, TestOutcome.PASSED)

        assert main(["run", str(ui_file)]) == 0

        tests = mock_run_suite.call_args.args[0]
        assert [t.name for t in tests] == [
            "cli_things_ui.thing_page_header",
            "cli_things_ui.tag_create",
        ]
        assert mock_run_suite.call_args.kwargs["report_path"].name == "report.json"
        mock_logging.assert_called_once()
        captured = capsys.readouterr()
        assert "2 passed, 0 failed, 0 errors" in captured.out

    @patch("uiharness.cli.setup_logging")
    @patch("uiharness.cli.run_suite", new_callable=AsyncMock)
    def test_failure_exit_code(self, mock_run_suite, mock_logging, ui_file, capsys):
        mock_run_suite.return_value = make_report(TestOutcome.PASSED, TestOutcome.FAILED)

        assert main(["run", "-k", "header", str(ui_file)]) == 1

        tests = mock_run_suite.call_args.args[0]
        assert [t.name for t in tests] == ["cli_things_ui.thing_page_header"]
        assert mock_run_suite.call_args.kwargs["filter_expression"] == "header"
        captured = capsys.readouterr()
        assert "AssertionError: header mismatch" in captured.out
        assert "Artifacts: /tmp/t1" in captured.out

    @patch("uiharness.cli.setup_logging")
    @patch("uiharness.cli.run_suite", new_callable=AsyncMock)
    def test_nothing_selected(self, mock_run_suite, mock_logging, ui_file):
        assert main(["run", "-k", "does_not_match", str(ui_file)]) == 5
        mock_run_suite.assert_not_called()

    @patch("uiharness.cli.setup_logging")
    @patch("uiharness.cli.run_suite", new_callable=AsyncMock)
    def test_harness_error(self, mock_run_suite, mock_logging, ui_file, capsys):
        mock_run_suite.side_effect = CoordinatorTimeoutError("coordinator busy")

        assert main(["run", str(ui_file)]) == 1
        assert "Harness error" in capsys.readouterr().out

    @patch("uiharness.cli.setup_logging")
    @patch("uiharness.cli.run_suite", new_callable=AsyncMock)
    def test_missing_endpoint_still_runs(self, mock_run_suite, mock_logging, ui_file, monkeypatch):
        monkeypatch.delenv("UI_HARNESS_BROWSER_WS_ENDPOINT")
        mock_run_suite.return_value = make_report(TestOutcome.INFRASTRUCTURE_ERROR)

        # Each session reports SessionError instead of the run being rejected
        assert main(["run", str(ui_file)]) == 1
        manager = mock_run_suite.call_args.args[1]
        assert manager.config.browser_ws_endpoint is None

    @patch("uiharness.cli.setup_logging")
    def test_bad_filter_is_usage_error(self, mock_logging, ui_file):
        assert main(["run", "-k", "!", str(ui_file)]) == 2

    @patch("uiharness.cli.setup_logging")
    def test_missing_path_is_usage_error(self, mock_logging, tmp_path):
        assert main(["run", "no_such_ui_module_anywhere"]) == 2

    @patch("uiharness.cli.setup_logging")
    @patch("uiharness.cli.run_suite", new_callable=AsyncMock)
    def test_overrides(self, mock_run_suite, mock_logging, ui_file, tmp_path):
        mock_run_suite.return_value = make_report(TestOutcome.PASSED)
        report = tmp_path / "custom.json"

        main([
            "run", "--timeout", "15", "--artifacts-dir", str(tmp_path / "elsewhere"),
            "--report", str(report), str(ui_file),
        ])

        manager = mock_run_suite.call_args.args[1]
        assert manager.config.test_timeout == 15.0
        assert manager.config.artifacts_dir == tmp_path / "elsewhere"
        assert mock_run_suite.call_args.kwargs["report_path"] == report


class TestListCommand:
    """Test cases for `ui-harness list`."""

    def test_list(self, ui_file, capsys):
        assert main(["list", str(ui_file)]) == 0

        lines = capsys.readouterr().out.splitlines()
        assert lines == ["cli_things_ui.thing_page_header", "cli_things_ui.tag_create"]

    def test_list_verbose(self, ui_file, capsys):
        assert main(["-v", "list", "-k", "header", str(ui_file)]) == 0

        assert "Header shows the thing title." in capsys.readouterr().out

    def test_list_nothing_selected(self, ui_file):
        assert main(["list", "-k", "nope", str(ui_file)]) == 5


class TestArtifactsCommand:
    """Test cases for `ui-harness artifacts`."""

    def test_list_empty(self, capsys):
        assert main(["artifacts", "list"]) == 0
        assert "No artifact bundles" in capsys.readouterr().out

    def test_list_and_cleanup(self, tmp_path, capsys):
        bundle_dir = tmp_path / "artifacts" / "ui.things.header" / "20260101T000000000000"
        bundle_dir.mkdir(parents=True)
        (bundle_dir / "stacktrace.txt").write_text("AssertionError")
        (bundle_dir / "screenshot.png.missing").write_text("no browser")

        assert main(["artifacts", "list"]) == 0
        out = capsys.readouterr().out
        assert "ui.things.header" in out
        assert "missing: screenshot.png" in out

        assert main(["artifacts", "cleanup", "--days", "0", "--dry-run"]) == 0
        assert "Would delete 1 bundles" in capsys.readouterr().out
        assert bundle_dir.exists()

        assert main(["artifacts", "cleanup", "--days", "0"]) == 0
        assert "Deleted 1 bundles" in capsys.readouterr().out
        assert not bundle_dir.exists()

    def test_requires_subcommand(self):
        assert main(["artifacts"]) == 2


class TestConfigCommand:
    """Test cases for `ui-harness config`."""

    def test_show(self, capsys, tmp_path):
        assert main(["config", "show"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["browser_ws_endpoint"] == "ws://127.0.0.1:3000/playwright"

    def test_validate(self, capsys):
        assert main(["config", "validate"]) == 0
        out = capsys.readouterr().out
        assert "valid" in out
        assert "No browser automation endpoint" not in out

    def test_validate_warns_without_endpoint(self, monkeypatch, capsys):
        monkeypatch.delenv("UI_HARNESS_BROWSER_WS_ENDPOINT")

        assert main(["config", "validate"]) == 0
        out = capsys.readouterr().out
        assert "Configuration is valid" in out
        assert "No browser automation endpoint" in out

    def test_validate_rejects_unknown_log_level(self, monkeypatch, capsys):
        monkeypatch.setenv("UI_HARNESS_LOG_LEVEL", "chatty")

        assert main(["config", "validate"]) == 2
        assert "Invalid log level: CHATTY" in capsys.readouterr().out

    def test_validate_invalid(self, monkeypatch, capsys):
        monkeypatch.setenv("UI_HARNESS_BROWSER_PROTOCOL", "telnet")

        assert main(["config", "validate"]) == 2
        assert "Invalid browser protocol" in capsys.readouterr().out

    def test_bad_env_value(self, monkeypatch):
        monkeypatch.setenv("UI_HARNESS_APP_PORT", "not-a-port")

        assert main(["config", "show"]) == 2

    def test_config_file(self, tmp_path, capsys):
        config_file = tmp_path / "ui-harness.yaml"
        config_file.write_text("app_port: 9123\n")

        assert main(["--config", str(config_file), "config", "show"]) == 0
        assert json.loads(capsys.readouterr().out)["app_base_url"] == "http://127.0.0.1:9123"


class TestParser:
    """Test cases for argument parsing."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 2
        assert "usage" in capsys.readouterr().out

    def test_run_requires_paths(self):
        parser = create_main_parser()

        with pytest.raises(SystemExit):
            parser.parse_args(["run"])

    def test_keyboard_interrupt(self, capsys):
        with patch("uiharness.cli.cmd_list", side_effect=KeyboardInterrupt):
            assert main(["list", "x"]) == 130
