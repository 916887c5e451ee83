"""
Logging for UI Harness.

Every record can carry session context (test name, lifecycle state, outcome)
so that one test's server, browser and artifact activity can be followed
through an interleaved log. Output is JSON lines in CI and a compact text
format locally, where a rotating file under ``logs_dir`` is kept as well.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .config import Config


# Session attributes promoted to top-level keys of a JSON record
CONTEXT_FIELDS = ["run_id", "test_name", "state", "outcome", "duration", "artifact"]

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, keyed for log aggregation."""

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": _record_time(record).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "run_id": self.run_id,
            "message": record.getMessage(),
        }
        entry.update(
            {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}
        )

        metadata = getattr(record, "metadata", None)
        if metadata is not None:
            entry["metadata"] = metadata
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Single-line text for terminals; session name or run id as a suffix."""

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        stamp = _record_time(record).strftime("%H:%M:%S.%f")[:-3]
        test_name = getattr(record, "test_name", None)
        scope = f"test: {test_name}" if test_name else f"run: {self.run_id[:8]}"

        parts = [f"{stamp} {record.levelname:<7} {record.name} | {record.getMessage()} ({scope})"]

        metadata = getattr(record, "metadata", None)
        if metadata:
            parts.append(", ".join(f"{key}={value}" for key, value in metadata.items()))

        line = " | ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _build_handlers(config: Config, formatter: logging.Formatter) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    # CI collects stderr; a local run keeps a history on disk
    if not config.is_ci_mode:
        config.logs_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                config.get_log_file_path(),
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUPS,
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(config: Config, run_id: str) -> logging.Logger:
    """
    Configure the root logger for one harness run.

    Args:
        config: Harness configuration (level, format, CI mode, logs_dir)
        run_id: Identifier stamped on every record of this run

    Returns:
        The root logger
    """
    level = logging.getLevelName(config.log_level)
    formatter_class = StructuredFormatter if config.log_format == "json" else TextFormatter

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(level)
    for handler in _build_handlers(config, formatter_class(run_id)):
        handler.setLevel(level)
        root.addHandler(handler)

    # asyncio and aiohttp access logs are chatty at DEBUG
    for noisy in ("asyncio", "aiohttp.access"):
        logging.getLogger(noisy).setLevel(max(level, logging.INFO))

    logging.getLogger("ui_harness.logging").info(
        f"Logging configured for run {run_id}",
        extra={
            "metadata": {
                "level": config.log_level,
                "format": config.log_format,
                "ci": config.is_ci_mode,
                "log_file": None if config.is_ci_mode else str(config.get_log_file_path()),
            }
        },
    )
    return root


class ContextAdapter(logging.LoggerAdapter):
    """Adds bound session context to records; explicit ``extra`` keys win."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **context) -> "ContextAdapter":
        return ContextAdapter(self.logger, {**self.extra, **context})


def get_logger(name: str, **context) -> ContextAdapter:
    """Logger for a harness component, optionally bound to ``context``."""
    return ContextAdapter(logging.getLogger(name), context)


def log_performance(
    logger: logging.LoggerAdapter,
    operation: str,
    duration: float,
    level: int = logging.INFO,
    **metadata,
):
    """Record how long ``operation`` took, with extra fields in ``metadata``."""
    logger.log(
        level,
        f"{operation} completed in {duration:.2f}s",
        extra={"metadata": {"operation": operation, "duration": duration, **metadata}},
    )


def log_step(
    logger: logging.LoggerAdapter,
    component: str,
    step: str,
    duration: float,
    success: bool,
    error: Optional[BaseException] = None,
    **metadata,
):
    """
    Record one setup or teardown step of a session.

    Successful steps log at DEBUG; failed ones at WARNING with the error type
    and message in ``metadata``.
    """
    details: Dict[str, Any] = {
        "component": component,
        "step": step,
        "duration": duration,
        "success": success,
        **metadata,
    }
    if error is not None:
        details.update(error=str(error), error_type=type(error).__name__)

    logger.log(
        logging.DEBUG if success else logging.WARNING,
        f"{component}.{step} {'ok' if success else 'failed'} after {duration:.3f}s",
        extra={"metadata": details},
    )
