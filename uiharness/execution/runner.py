"""
Sequential suite execution.
"""

import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence, Union

from ..core.lifecycle import TestLifecycleManager
from ..core.logging_config import get_logger, log_performance
from .models import RunReport
from .registry import RegisteredTest


logger = get_logger("ui_harness.runner")


async def run_suite(
    tests: Sequence[RegisteredTest],
    manager: TestLifecycleManager,
    filter_expression: Optional[str] = None,
    report_path: Optional[Union[str, Path]] = None,
    run_id: Optional[str] = None,
) -> RunReport:
    """
    Run tests one at a time through the lifecycle manager.

    Args:
        tests: Tests to run, in order
        manager: Lifecycle manager owning the sessions
        filter_expression: Selection expression, recorded in the report
        report_path: Where to write the JSON report, if anywhere
        run_id: Run identifier; generated when omitted

    Returns:
        Report with one result per test
    """
    report = RunReport(
        run_id=run_id or uuid.uuid4().hex,
        started_at=datetime.now(timezone.utc),
        filter_expression=filter_expression,
    )
    run_logger = logger.bind(run_id=report.run_id)
    start_time = time.monotonic()

    run_logger.info(
        f"Starting suite run of {len(tests)} tests",
        extra={"metadata": {"test_count": len(tests)}},
    )

    for test in tests:
        result = await manager.run(test.name, test.func, timeout=test.timeout)
        report.results.append(result)

    report.completed_at = datetime.now(timezone.utc)

    run_logger.info(
        f"Suite run completed: {report.passed} passed, {report.failed} failed, "
        f"{report.errors} errors",
        extra={"metadata": report.to_summary()},
    )
    log_performance(
        run_logger, "suite_run", time.monotonic() - start_time, total=report.total
    )

    if report_path is not None:
        write_report(report, report_path)

    return report


def write_report(report: RunReport, path: Union[str, Path]) -> Path:
    """Write ``report`` as JSON to ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
    logger.info(f"Report written to {path}")
    return path
