"""
Failure artifact capture and retention.

On a failed session the collector gathers a fixed bundle of diagnostics
(screenshot, console transcript, DOM snapshot, stack trace) into a directory
keyed by test name and timestamp. Capture is best-effort per item and never
raises, so it cannot mask the failure that triggered it.
"""

import asyncio
import re
import shutil
import time
import traceback
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.config import Config
from ..core.exceptions import ArtifactCaptureError
from ..core.logging_config import get_logger, log_performance
from .models import (
    ArtifactBundle,
    ArtifactItem,
    ArtifactKind,
    MISSING_SUFFIX,
    TestOutcome,
    TestSession,
)


def safe_test_dir_name(test_name: str) -> str:
    """Deterministic, filesystem-safe directory name for a test."""
    name = re.sub(r"[^A-Za-z0-9_.-]+", "_", test_name).strip("._")
    return name[:150] or "unnamed_test"


def format_stack_trace(error: Optional[BaseException]) -> str:
    if error is None:
        return ""
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


class ArtifactCollector:
    """
    Captures failure bundles and manages their retention.

    Layout: ``artifacts_dir/<test name>/<timestamp>/`` holding exactly one
    entry per bundle item, either the item itself or ``<item>.missing``.
    """

    def __init__(self, config: Config):
        self.config = config
        self.artifacts_root = config.artifacts_dir
        self.logger = get_logger("ui_harness.artifacts")

    def _prepare_directory(self, session: TestSession) -> Path:
        """Create a fresh bundle directory; existing directories are never reused."""
        timestamp = session.started_at.strftime("%Y%m%dT%H%M%S%fZ")
        base = self.artifacts_root / safe_test_dir_name(session.test_name) / timestamp
        base.parent.mkdir(parents=True, exist_ok=True)

        candidate = base
        suffix = 0
        while True:
            try:
                candidate.mkdir()
                return candidate
            except FileExistsError:
                suffix += 1
                candidate = base.with_name(f"{base.name}-{suffix}")

    async def capture(
        self,
        session: TestSession,
        handle: Any,
        error: Optional[BaseException],
    ) -> ArtifactBundle:
        """
        Gather the failure bundle for ``session``.

        Args:
            session: The failed session
            handle: Its browser handle, or None if the browser never opened
            error: The error that failed the session

        Returns:
            The written bundle; items that could not be captured are flagged
            missing
        """
        logger = self.logger.bind(test_name=session.test_name)
        start_time = time.monotonic()
        outcome = (
            session.outcome
            if session.outcome.needs_artifacts
            else TestOutcome.INFRASTRUCTURE_ERROR
        )

        directory: Optional[Path] = None
        directory_error: Optional[Exception] = None
        try:
            directory = self._prepare_directory(session)
        except OSError as e:
            directory_error = e
            logger.error(f"Could not create artifact directory: {e}")

        items: Dict[ArtifactKind, ArtifactItem] = {}
        for kind in ArtifactKind:
            if directory is None:
                items[kind] = ArtifactItem(
                    kind=kind,
                    file_path=str(
                        self.artifacts_root
                        / safe_test_dir_name(session.test_name)
                        / (kind.file_name + MISSING_SUFFIX)
                    ),
                    missing=True,
                    reason=f"artifact directory unavailable: {directory_error}",
                    mime_type=kind.mime_type,
                )
                continue
            items[kind] = await self._capture_item(
                kind, directory, session, handle, error
            )

        bundle = ArtifactBundle(
            test_name=session.test_name,
            timestamp=session.started_at,
            directory=str(directory) if directory else str(self.artifacts_root),
            outcome=outcome,
            items=items,
        )

        log_performance(
            logger,
            "artifact_capture",
            time.monotonic() - start_time,
            directory=bundle.directory,
            missing=[kind.value for kind in bundle.missing_items],
        )
        return bundle

    async def _capture_item(
        self,
        kind: ArtifactKind,
        directory: Path,
        session: TestSession,
        handle: Any,
        error: Optional[BaseException],
    ) -> ArtifactItem:
        """Capture one item in isolation; failures become a missing marker."""
        target = directory / kind.file_name
        try:
            data = await asyncio.wait_for(
                self._gather(kind, session, handle, error),
                self.config.artifact_capture_timeout,
            )
            if isinstance(data, bytes):
                target.write_bytes(data)
            else:
                target.write_text(data, encoding="utf-8")
            return ArtifactItem(
                kind=kind,
                file_path=str(target),
                file_size=target.stat().st_size,
                mime_type=kind.mime_type,
            )
        except Exception as e:
            if isinstance(e, asyncio.TimeoutError):
                reason = f"capture timed out after {self.config.artifact_capture_timeout}s"
            else:
                reason = f"{type(e).__name__}: {e}"
            capture_error = ArtifactCaptureError(
                f"Could not capture {kind.value}: {reason}",
                artifact=kind.value,
                test_name=session.test_name,
            )
            self.logger.warning(
                capture_error.message,
                extra={"test_name": session.test_name, "artifact": kind.value},
            )
            return self._write_missing_marker(kind, directory, reason)

    def _write_missing_marker(
        self, kind: ArtifactKind, directory: Path, reason: str
    ) -> ArtifactItem:
        marker = directory / (kind.file_name + MISSING_SUFFIX)
        try:
            # Drop any partial file so the directory keeps one entry per item
            (directory / kind.file_name).unlink(missing_ok=True)
            marker.write_text(reason + "\n", encoding="utf-8")
        except OSError as e:
            self.logger.error(f"Could not write missing marker {marker}: {e}")
        return ArtifactItem(
            kind=kind,
            file_path=str(marker),
            missing=True,
            reason=reason,
            mime_type=kind.mime_type,
        )

    async def _gather(
        self,
        kind: ArtifactKind,
        session: TestSession,
        handle: Any,
        error: Optional[BaseException],
    ) -> Union[bytes, str]:
        if kind == ArtifactKind.STACK_TRACE:
            trace = session.stack_trace or format_stack_trace(error)
            if not trace:
                raise ArtifactCaptureError("no error recorded for session")
            header = (
                f"Test: {session.test_name}\n"
                f"Outcome: {session.outcome.value}\n"
                f"Started: {session.started_at.isoformat()}\n\n"
            )
            return header + trace

        if handle is None:
            raise ArtifactCaptureError("browser session was never opened")

        if kind == ArtifactKind.CONSOLE:
            return handle.console_transcript() + "\n"

        page = handle.page
        if page is None:
            raise ArtifactCaptureError("browser page is not available")

        if kind == ArtifactKind.SCREENSHOT:
            return await page.screenshot(
                full_page=True,
                type="png",
                timeout=self.config.artifact_capture_timeout * 1000,
            )
        return await page.content()

    def list_bundles(self) -> List[Dict[str, Any]]:
        """List bundle directories on disk, newest first."""
        bundles = []
        if not self.artifacts_root.exists():
            return bundles

        for test_dir in self.artifacts_root.iterdir():
            if not test_dir.is_dir():
                continue
            for bundle_dir in test_dir.iterdir():
                if not bundle_dir.is_dir():
                    continue
                entries = list(bundle_dir.iterdir())
                bundles.append(
                    {
                        "test": test_dir.name,
                        "path": str(bundle_dir),
                        "created_at": datetime.fromtimestamp(
                            bundle_dir.stat().st_mtime, tz=timezone.utc
                        ),
                        "size": sum(p.stat().st_size for p in entries if p.is_file()),
                        "missing": sorted(
                            p.name[: -len(MISSING_SUFFIX)]
                            for p in entries
                            if p.name.endswith(MISSING_SUFFIX)
                        ),
                    }
                )

        bundles.sort(key=lambda b: b["created_at"], reverse=True)
        return bundles

    def cleanup_expired(
        self, retention_days: Optional[int] = None, dry_run: bool = False
    ) -> Dict[str, Any]:
        """
        Delete bundles older than the retention period.

        Args:
            retention_days: Override the configured retention period
            dry_run: If True, only report what would be deleted

        Returns:
            Cleanup summary with statistics
        """
        start_time = time.monotonic()
        if retention_days is None:
            retention_days = self.config.artifact_retention_days
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)

        deleted = []
        freed_space = 0
        errors = []

        for bundle in self.list_bundles():
            if bundle["created_at"] >= cutoff:
                continue
            if dry_run:
                self.logger.info(f"Would delete: {bundle['path']} ({bundle['size']} bytes)")
            else:
                try:
                    shutil.rmtree(bundle["path"])
                except OSError as e:
                    message = f"Failed to delete {bundle['path']}: {e}"
                    errors.append(message)
                    self.logger.error(message)
                    continue
            deleted.append(bundle["path"])
            freed_space += bundle["size"]

        if not dry_run:
            self._remove_empty_test_dirs()

        summary = {
            "deleted_count": len(deleted),
            "deleted": deleted,
            "freed_space": freed_space,
            "retention_days": retention_days,
            "duration": time.monotonic() - start_time,
            "dry_run": dry_run,
            "errors": errors,
        }
        self.logger.info(
            f"Artifact cleanup completed: {len(deleted)} bundles, {freed_space} bytes freed",
            extra={"metadata": {k: v for k, v in summary.items() if k != "deleted"}},
        )
        return summary

    def _remove_empty_test_dirs(self) -> None:
        if not self.artifacts_root.exists():
            return
        for test_dir in self.artifacts_root.iterdir():
            if test_dir.is_dir() and not any(test_dir.iterdir()):
                test_dir.rmdir()
