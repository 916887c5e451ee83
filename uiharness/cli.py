"""
Main CLI interface for UI Harness.

Provides commands to run and list UI tests, manage failure artifacts, and
inspect configuration.
"""

import argparse
import asyncio
import json
import sys
import uuid
from pathlib import Path
from typing import List, Optional

from .core.config import Config
from .core.exceptions import HarnessError, ValidationError
from .core.lifecycle import TestLifecycleManager
from .core.logging_config import setup_logging
from .execution.artifacts import ArtifactCollector
from .execution.models import TestOutcome
from .execution.registry import TestFilter, collect
from .execution.runner import run_suite


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_NO_TESTS = 5

_OUTCOME_ICONS = {
    TestOutcome.PASSED: "✅",
    TestOutcome.FAILED: "❌",
    TestOutcome.INFRASTRUCTURE_ERROR: "💥",
}


def _load_config(args: argparse.Namespace) -> Config:
    """Build configuration from the optional config file, env and CLI flags."""
    if getattr(args, "config", None):
        config = Config.from_file(Path(args.config))
    else:
        config = Config.from_env()

    if getattr(args, "timeout", None) is not None:
        config.test_timeout = args.timeout
    if getattr(args, "artifacts_dir", None):
        config.artifacts_dir = Path(args.artifacts_dir)
    return config


def _print_violations(error: ValidationError) -> None:
    print(f"❌ {error.message}")
    for violation in error.violations:
        print(f"   • {violation}")


def cmd_run(args: argparse.Namespace) -> int:
    """Run the selected UI tests."""
    try:
        config = _load_config(args)
        config.validate()
    except ValidationError as e:
        _print_violations(e)
        return EXIT_USAGE

    run_id = uuid.uuid4().hex
    setup_logging(config, run_id)

    try:
        selection = TestFilter(args.filter)
        tests = selection.apply(collect(args.paths))
    except ValidationError as e:
        _print_violations(e)
        return EXIT_USAGE

    if not tests:
        print("⚠️  No tests selected")
        return EXIT_NO_TESTS

    print(f"🚀 Running {len(tests)} UI tests...")
    report_path = Path(args.report) if args.report else config.artifacts_dir / "report.json"

    try:
        manager = TestLifecycleManager.from_config(config)
        report = asyncio.run(
            run_suite(
                tests,
                manager,
                filter_expression=args.filter,
                report_path=report_path,
                run_id=run_id,
            )
        )
    except HarnessError as e:
        print(f"❌ Harness error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return EXIT_FAILED

    print()
    for result in report.results:
        icon = _OUTCOME_ICONS.get(result.outcome, "•")
        print(f"{icon} {result.test_name} ({result.duration:.2f}s)")
        if result.error_message:
            print(f"   {result.error_type}: {result.error_message}")
        if result.bundle:
            print(f"   📁 Artifacts: {result.bundle.directory}")
            for kind in result.bundle.missing_items:
                print(f"   ⚠️  Missing {kind.value}")
        for teardown_error in result.teardown_errors:
            print(f"   ⚠️  Teardown: {teardown_error}")

    print()
    print(
        f"📊 {report.passed} passed, {report.failed} failed, "
        f"{report.errors} errors in {report.total} tests"
    )
    print(f"📝 Report: {report_path}")
    return report.exit_code


def cmd_list(args: argparse.Namespace) -> int:
    """List the selected UI tests without running them."""
    try:
        tests = TestFilter(args.filter).apply(collect(args.paths))
    except ValidationError as e:
        _print_violations(e)
        return EXIT_USAGE

    if not tests:
        print("⚠️  No tests selected")
        return EXIT_NO_TESTS

    for test in tests:
        if args.verbose and test.description:
            print(f"{test.name}  - {test.description}")
        else:
            print(test.name)
    return EXIT_OK


def cmd_artifacts(args: argparse.Namespace) -> int:
    """Artifact management commands."""
    try:
        config = _load_config(args)
    except ValidationError as e:
        _print_violations(e)
        return EXIT_USAGE

    collector = ArtifactCollector(config)

    if args.artifacts_command == "list":
        bundles = collector.list_bundles()
        if not bundles:
            print(f"ℹ️  No artifact bundles in {config.artifacts_dir}")
            return EXIT_OK
        print(f"📁 Artifact bundles in {config.artifacts_dir}:")
        for bundle in bundles:
            created = bundle["created_at"].strftime("%Y-%m-%d %H:%M:%S")
            line = f"   {created}  {bundle['test']}  {bundle['size']} bytes"
            if bundle["missing"]:
                line += f"  (missing: {', '.join(bundle['missing'])})"
            print(line)
        return EXIT_OK

    if args.artifacts_command == "cleanup":
        summary = collector.cleanup_expired(
            retention_days=args.days, dry_run=args.dry_run
        )
        verb = "Would delete" if args.dry_run else "Deleted"
        print(
            f"🧹 {verb} {summary['deleted_count']} bundles older than "
            f"{summary['retention_days']} days ({summary['freed_space']} bytes)"
        )
        for error in summary["errors"]:
            print(f"   ❌ {error}")
        return EXIT_FAILED if summary["errors"] else EXIT_OK

    print("❌ Specify an artifacts command: list or cleanup")
    return EXIT_USAGE


def cmd_config(args: argparse.Namespace) -> int:
    """Configuration inspection commands."""
    try:
        config = _load_config(args)
    except ValidationError as e:
        _print_violations(e)
        return EXIT_USAGE

    if args.config_command == "show":
        print(json.dumps(config.to_dict(), indent=2))
        return EXIT_OK

    if args.config_command == "validate":
        try:
            config.validate()
        except ValidationError as e:
            _print_violations(e)
            return EXIT_USAGE
        print("✅ Configuration is valid")
        if not config.browser_ws_endpoint:
            # Sessions fail with SessionError until one is set
            print("⚠️  No browser automation endpoint (UI_HARNESS_BROWSER_WS_ENDPOINT)")
        return EXIT_OK

    print("❌ Specify a config command: show or validate")
    return EXIT_USAGE


def _add_selection_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-k", "--filter",
        help="Comma-separated globs or substrings; prefix a term with ! to exclude",
    )
    parser.add_argument(
        "paths",
        nargs="+",
        help="Test files, directories or dotted module names",
    )


def create_main_parser() -> argparse.ArgumentParser:
    """Create main CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ui-harness",
        description="UI Harness - browser-driven end-to-end test orchestration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ui-harness run tests_ui/
  ui-harness run -k "thing_page,!slow" tests_ui/test_things.py
  ui-harness list tests_ui/
  ui-harness artifacts cleanup --days 3 --dry-run
  ui-harness config validate
        """,
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--config", "-c",
        help="Configuration file (YAML or JSON)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run UI tests")
    _add_selection_arguments(run_parser)
    run_parser.add_argument(
        "--timeout",
        type=float,
        help="Per-test session budget in seconds",
    )
    run_parser.add_argument(
        "--artifacts-dir",
        help="Directory for failure artifacts",
    )
    run_parser.add_argument(
        "--report",
        help="Path of the JSON run report (default: <artifacts-dir>/report.json)",
    )
    run_parser.set_defaults(func=cmd_run)

    # List command
    list_parser = subparsers.add_parser("list", help="List UI tests")
    _add_selection_arguments(list_parser)
    list_parser.set_defaults(func=cmd_list)

    # Artifacts commands
    artifacts_parser = subparsers.add_parser("artifacts", help="Manage failure artifacts")
    artifacts_subparsers = artifacts_parser.add_subparsers(dest="artifacts_command")
    artifacts_subparsers.add_parser("list", help="List artifact bundles")
    cleanup_parser = artifacts_subparsers.add_parser(
        "cleanup", help="Delete expired artifact bundles"
    )
    cleanup_parser.add_argument(
        "--days",
        type=int,
        help="Retention period in days (default: from configuration)",
    )
    cleanup_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be deleted without deleting",
    )
    artifacts_parser.set_defaults(func=cmd_artifacts)

    # Config commands
    config_parser = subparsers.add_parser("config", help="Inspect configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command")
    config_subparsers.add_parser("show", help="Show effective configuration")
    config_subparsers.add_parser("validate", help="Validate configuration")
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_main_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_USAGE

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\n⚠️  Operation cancelled by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
