"""
Process-wide execution coordinator.

Only one orchestrated test session may use the shared application server,
data store and browser endpoint at a time. The coordinator owns the single
lock that gates access to them.
"""

import asyncio
import threading
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from .exceptions import CoordinatorTimeoutError
from .logging_config import get_logger


class ExecutionCoordinator:
    """
    Serializes test sessions behind a process-wide lock.

    The lock is a :class:`threading.Lock` polled from async code, so the
    coordinator stays correct when sessions are driven from different event
    loops or threads. No fairness is guaranteed beyond eventual progress.
    """

    def __init__(self, poll_interval: float = 0.01):
        self._lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._holder: Optional[str] = None
        self._acquired_at: Optional[float] = None
        self.poll_interval = poll_interval
        self.logger = get_logger("ui_harness.coordinator")

    @property
    def active_session(self) -> Optional[str]:
        """Name of the session currently holding the coordinator."""
        with self._state_lock:
            return self._holder

    @property
    def is_held(self) -> bool:
        return self._lock.locked()

    async def acquire(
        self, session_name: str, timeout: Optional[float] = None
    ) -> None:
        """
        Block until no other session is active, then mark this one active.

        Args:
            session_name: Name of the requesting test session
            timeout: Optional upper bound on the wait in seconds

        Raises:
            CoordinatorTimeoutError: if ``timeout`` elapses first
        """
        start = time.monotonic()
        waited = False

        while not self._lock.acquire(blocking=False):
            if not waited:
                self.logger.debug(
                    f"Waiting for coordinator held by {self.active_session}",
                    extra={"test_name": session_name},
                )
                waited = True
            if timeout is not None and time.monotonic() - start >= timeout:
                raise CoordinatorTimeoutError(
                    f"Timed out after {timeout:.1f}s waiting for the execution coordinator",
                    requested_by=session_name,
                    held_by=self.active_session,
                )
            await asyncio.sleep(self.poll_interval)

        with self._state_lock:
            self._holder = session_name
            self._acquired_at = time.monotonic()

        self.logger.debug(
            "Coordinator acquired",
            extra={
                "test_name": session_name,
                "metadata": {"waited": round(time.monotonic() - start, 3)},
            },
        )

    def release(self) -> None:
        """Clear the active session. Releasing an idle coordinator is a no-op."""
        with self._state_lock:
            holder = self._holder
            held_for = (
                time.monotonic() - self._acquired_at if self._acquired_at else 0.0
            )
            self._holder = None
            self._acquired_at = None

        if not self._lock.locked():
            self.logger.warning("Release requested but coordinator is not held")
            return

        self._lock.release()
        self.logger.debug(
            "Coordinator released",
            extra={"test_name": holder, "metadata": {"held_for": round(held_for, 3)}},
        )

    @asynccontextmanager
    async def hold(
        self, session_name: str, timeout: Optional[float] = None
    ) -> AsyncIterator["ExecutionCoordinator"]:
        """Scoped acquisition; the coordinator is released on every exit path."""
        await self.acquire(session_name, timeout=timeout)
        try:
            yield self
        finally:
            self.release()


_coordinator: Optional[ExecutionCoordinator] = None
_coordinator_guard = threading.Lock()


def get_coordinator() -> ExecutionCoordinator:
    """Get the process-wide coordinator instance."""
    global _coordinator
    with _coordinator_guard:
        if _coordinator is None:
            _coordinator = ExecutionCoordinator()
        return _coordinator
