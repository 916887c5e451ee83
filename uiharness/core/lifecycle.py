"""
Test lifecycle management.

Composes the coordinator, server provisioner, data store reset, browser
session manager and artifact collector around a test body. Setup happens
before the body runs; artifact capture (on failure) and teardown happen after
it, on every exit path.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional

from ..browser.pages import PageCapability
from ..browser.session import BrowserHandle, BrowserSessionManager
from ..datastore.models import ResetToken
from ..datastore.reset import DataStoreResetService
from ..datastore.store import DataSeeder, DataStore, SQLiteStore
from ..execution.artifacts import ArtifactCollector, format_stack_trace
from ..execution.models import (
    ALLOWED_TRANSITIONS,
    ArtifactBundle,
    LifecycleState,
    SessionResult,
    TestOutcome,
    TestSession,
)
from ..provisioning.models import ServerHandle
from ..provisioning.server import ServerProvisioner
from .config import Config
from .coordinator import ExecutionCoordinator, get_coordinator
from .exceptions import SessionTimeoutError, is_infrastructure_error
from .logging_config import get_logger


@dataclass
class SessionContext:
    """Everything a test body needs while its session is active."""

    session: TestSession
    server: ServerHandle
    browser: BrowserHandle
    page: PageCapability
    seed: DataSeeder
    reset_token: ResetToken
    #: Loop time at which the session budget runs out
    deadline: Optional[float] = None
    timeout: Optional[float] = None

    @property
    def base_url(self) -> str:
        return self.server.base_url

    @property
    def test_name(self) -> str:
        return self.session.test_name

    def timeout_error(self) -> SessionTimeoutError:
        return session_timeout_error(self.test_name, self.timeout, self.session.state)


def session_timeout_error(
    test_name: str, timeout: Optional[float], state: LifecycleState
) -> SessionTimeoutError:
    return SessionTimeoutError(
        f"Session exceeded its {timeout:.1f}s budget while {state.value}",
        test_name=test_name,
        timeout=timeout,
    )


TestBody = Callable[[SessionContext], Awaitable[Any]]


class TestLifecycleManager:
    """
    Runs test bodies inside fully provisioned, serialized sessions.

    Two entry points share one lifecycle:

    * :meth:`run` takes the body as a callable and returns a
      :class:`SessionResult` without raising for test or infrastructure
      failures.
    * :meth:`session` is an async context manager; the ``async with`` block
      is the body, and the original error is re-raised after teardown.
    """

    __test__ = False

    def __init__(
        self,
        config: Config,
        coordinator: Optional[ExecutionCoordinator] = None,
        provisioner: Optional[ServerProvisioner] = None,
        reset_service: Optional[DataStoreResetService] = None,
        browser_manager: Optional[BrowserSessionManager] = None,
        collector: Optional[ArtifactCollector] = None,
    ):
        self.config = config
        self.coordinator = coordinator or get_coordinator()
        self.provisioner = provisioner or ServerProvisioner(config)
        self.reset_service = reset_service or DataStoreResetService(
            SQLiteStore(config.datastore_path, config.datastore_schema_path),
            config.datastore_fixture_path,
        )
        self.browser_manager = browser_manager or BrowserSessionManager(config)
        self.collector = collector or ArtifactCollector(config)
        self.logger = get_logger("ui_harness.lifecycle")
        self.last_result: Optional[SessionResult] = None

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "TestLifecycleManager":
        """Build a manager with the default collaborators for ``config``."""
        return cls(config or Config.from_env())

    @property
    def store(self) -> DataStore:
        return self.reset_service.store

    async def run(
        self, test_name: str, body: TestBody, timeout: Optional[float] = None
    ) -> SessionResult:
        """
        Run ``body`` in a session and return its result.

        Args:
            test_name: Unique, fully qualified test name
            body: Async callable receiving the :class:`SessionContext`
            timeout: Session budget in seconds, defaults to ``config.test_timeout``

        Returns:
            The session result; failures are reported in it, not raised
        """
        results: List[SessionResult] = []
        try:
            async with self._scope(test_name, results, timeout) as context:
                await body(context)
        except Exception:
            if not results:
                raise
        return results[0]

    @asynccontextmanager
    async def session(
        self,
        test_name: str,
        timeout: Optional[float] = None,
        bounded: bool = True,
    ) -> AsyncIterator[SessionContext]:
        """
        Scoped session; the block is the test body.

        With ``bounded=False`` the budget still covers provisioning but is
        released before the block runs. Use it when the block runs in a
        different task than the one entering the session, as pytest fixtures
        do, and bound the body against ``context.deadline`` there.
        """
        results: List[SessionResult] = []
        async with self._scope(test_name, results, timeout, bounded) as context:
            yield context

    @asynccontextmanager
    async def _scope(
        self,
        test_name: str,
        results: List[SessionResult],
        timeout: Optional[float] = None,
        bounded: bool = True,
    ) -> AsyncIterator[SessionContext]:
        if timeout is None:
            timeout = self.config.test_timeout

        async with self.coordinator.hold(
            test_name, timeout=self.config.coordinator_timeout
        ):
            session = TestSession(test_name=test_name)
            logger = self.logger.bind(test_name=test_name)
            start_time = time.monotonic()
            context: Optional[SessionContext] = None
            bundle: Optional[ArtifactBundle] = None
            teardown_errors: List[str] = []

            logger.info(f"Session started: {test_name}")

            try:
                deadline = asyncio.get_running_loop().time() + timeout
                budget = asyncio.timeout_at(deadline)
                try:
                    async with budget:
                        self._transition(session, LifecycleState.PROVISIONING)
                        context = await self._provision(session)
                        context.deadline = deadline
                        context.timeout = timeout
                        self._transition(session, LifecycleState.READY)
                        self._transition(session, LifecycleState.RUNNING)
                        if not bounded:
                            budget.reschedule(None)
                        yield context
                except TimeoutError as e:
                    if budget.expired():
                        timeout_error = session_timeout_error(
                            test_name, timeout, session.state
                        )
                        timeout_error.__cause__ = e
                        self._record_error(
                            session, LifecycleState.INFRASTRUCTURE_ERROR, timeout_error
                        )
                    else:
                        self._record_body_or_setup_error(session, e)
                except Exception as e:
                    self._record_body_or_setup_error(session, e)
                else:
                    self._transition(session, LifecycleState.PASSED)
                    session.outcome = TestOutcome.PASSED

                if session.outcome.needs_artifacts:
                    self._transition(session, LifecycleState.COLLECTING)
                    bundle = await self.collector.capture(
                        session, session.browser, session.error
                    )
            finally:
                teardown_errors = await self._teardown(session, context)

            result = self._build_result(session, bundle, teardown_errors, start_time)
            self.last_result = result
            results.append(result)

        if session.error is not None:
            raise session.error

    async def _provision(self, session: TestSession) -> SessionContext:
        """Server start, then data store reset, then browser open."""
        name = session.test_name

        session.server = await self.provisioner.start(name)
        session.reset_token = await self.reset_service.reset(name)
        session.browser = await self.browser_manager.open(name, session.server.base_url)

        return SessionContext(
            session=session,
            server=session.server,
            browser=session.browser,
            page=PageCapability(
                session.browser,
                element_timeout=self.config.element_timeout,
                navigation_timeout=self.config.navigation_timeout,
            ),
            seed=DataSeeder(self.store, session.reset_token),
            reset_token=session.reset_token,
        )

    def _transition(self, session: TestSession, state: LifecycleState) -> None:
        previous = session.state
        session.transition(state)
        self.logger.debug(
            f"State: {previous.value} -> {state.value}",
            extra={"test_name": session.test_name, "state": state.value},
        )

    def _record_error(
        self, session: TestSession, state: LifecycleState, error: BaseException
    ) -> None:
        self._transition(session, state)
        session.outcome = TestOutcome(state.value)
        session.error = error
        session.stack_trace = format_stack_trace(error)
        self.logger.error(
            f"Session {state.value}: {type(error).__name__}: {error}",
            extra={
                "test_name": session.test_name,
                "outcome": session.outcome.value,
            },
        )

    def _record_body_or_setup_error(
        self, session: TestSession, error: BaseException
    ) -> None:
        """
        Errors raised by the body fail the test, unless they are
        infrastructure errors; anything raised earlier is infrastructure.
        """
        if session.state == LifecycleState.RUNNING and not is_infrastructure_error(
            error
        ):
            self._record_error(session, LifecycleState.FAILED, error)
        else:
            self._record_error(session, LifecycleState.INFRASTRUCTURE_ERROR, error)

    async def _teardown(
        self, session: TestSession, context: Optional[SessionContext]
    ) -> List[str]:
        """Close the browser and stop the server; runs on every exit path."""
        if session.state == LifecycleState.IDLE:
            return []

        if LifecycleState.TEARING_DOWN in ALLOWED_TRANSITIONS[session.state]:
            self._transition(session, LifecycleState.TEARING_DOWN)
        else:
            # Interrupted mid-flight (cancellation, KeyboardInterrupt)
            self.logger.warning(
                f"Tearing down from {session.state.value}",
                extra={"test_name": session.test_name},
            )
            session.state = LifecycleState.TEARING_DOWN
            session.state_history.append(LifecycleState.TEARING_DOWN)

        if context is not None:
            context.seed.close()

        errors: List[str] = []
        steps = [
            ("browser_close", self.browser_manager.close, session.browser),
            ("server_stop", self.provisioner.stop, session.server),
        ]
        for step, action, handle in steps:
            try:
                await action(handle)
            except Exception as e:
                errors.append(f"{step}: {type(e).__name__}: {e}")
                self.logger.error(
                    f"Teardown step {step} failed: {e}",
                    extra={"test_name": session.test_name},
                )

        self._transition(session, LifecycleState.IDLE)
        return errors

    def _build_result(
        self,
        session: TestSession,
        bundle: Optional[ArtifactBundle],
        teardown_errors: List[str],
        start_time: float,
    ) -> SessionResult:
        error = session.error
        result = SessionResult(
            test_name=session.test_name,
            outcome=session.outcome,
            started_at=session.started_at,
            completed_at=datetime.now(timezone.utc),
            duration=time.monotonic() - start_time,
            error_type=type(error).__name__ if error else None,
            error_message=str(error) if error else None,
            stack_trace=session.stack_trace,
            bundle=bundle,
            states=list(session.state_history),
            teardown_errors=teardown_errors,
        )

        self.logger.info(
            f"Session finished: {session.test_name} - {session.outcome.value}",
            extra={
                "test_name": session.test_name,
                "outcome": session.outcome.value,
                "duration": round(result.duration, 3),
                "metadata": result.to_summary(),
            },
        )
        return result
