"""
Data models for test sessions, outcomes and failure artifacts.

Session state is held in a plain dataclass because it carries live server and
browser handles; reportable records (results, bundles, run reports) are
Pydantic models.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..core.exceptions import LifecycleError


class TestOutcome(Enum):
    """Outcome of one test session."""

    __test__ = False

    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    INFRASTRUCTURE_ERROR = "infrastructure_error"

    @property
    def needs_artifacts(self) -> bool:
        return self in (TestOutcome.FAILED, TestOutcome.INFRASTRUCTURE_ERROR)


class LifecycleState(Enum):
    """States of the per-test lifecycle state machine."""

    IDLE = "idle"
    PROVISIONING = "provisioning"
    READY = "ready"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    INFRASTRUCTURE_ERROR = "infrastructure_error"
    COLLECTING = "collecting"
    TEARING_DOWN = "tearing_down"


ALLOWED_TRANSITIONS: Dict[LifecycleState, set] = {
    LifecycleState.IDLE: {LifecycleState.PROVISIONING},
    LifecycleState.PROVISIONING: {
        LifecycleState.READY,
        LifecycleState.INFRASTRUCTURE_ERROR,
    },
    LifecycleState.READY: {
        LifecycleState.RUNNING,
        LifecycleState.INFRASTRUCTURE_ERROR,
    },
    LifecycleState.RUNNING: {
        LifecycleState.PASSED,
        LifecycleState.FAILED,
        LifecycleState.INFRASTRUCTURE_ERROR,
    },
    LifecycleState.PASSED: {LifecycleState.TEARING_DOWN},
    LifecycleState.FAILED: {LifecycleState.COLLECTING},
    LifecycleState.INFRASTRUCTURE_ERROR: {LifecycleState.COLLECTING},
    LifecycleState.COLLECTING: {LifecycleState.TEARING_DOWN},
    LifecycleState.TEARING_DOWN: {LifecycleState.IDLE},
}


class ArtifactKind(Enum):
    """The four items of a failure bundle, in capture order."""

    SCREENSHOT = "screenshot"
    CONSOLE = "console"
    DOM = "dom"
    STACK_TRACE = "stack_trace"

    @property
    def file_name(self) -> str:
        return ARTIFACT_FILES[self][0]

    @property
    def mime_type(self) -> str:
        return ARTIFACT_FILES[self][1]


ARTIFACT_FILES = {
    ArtifactKind.SCREENSHOT: ("screenshot.png", "image/png"),
    ArtifactKind.CONSOLE: ("console.log", "text/plain"),
    ArtifactKind.DOM: ("dom.html", "text/html"),
    ArtifactKind.STACK_TRACE: ("stacktrace.txt", "text/plain"),
}

MISSING_SUFFIX = ".missing"


class ArtifactItem(BaseModel):
    """One captured (or missing) diagnostic item."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ArtifactKind = Field(..., description="Which bundle item this is")
    file_path: str = Field(..., description="Path of the item or of its missing marker")
    missing: bool = Field(False, description="True when capture failed")
    reason: Optional[str] = Field(None, description="Why the item is missing")
    file_size: int = Field(0, ge=0, description="File size in bytes")
    mime_type: Optional[str] = Field(None, description="MIME type of the file")


class ArtifactBundle(BaseModel):
    """Diagnostics written for one failed test session."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    test_name: str = Field(..., description="Associated test name")
    timestamp: datetime = Field(..., description="Session start timestamp")
    directory: str = Field(..., description="Directory holding the bundle")
    outcome: TestOutcome = Field(..., description="Outcome that triggered capture")
    items: Dict[ArtifactKind, ArtifactItem] = Field(default_factory=dict)

    @property
    def missing_items(self) -> List[ArtifactKind]:
        return [kind for kind, item in self.items.items() if item.missing]

    @property
    def is_degraded(self) -> bool:
        return bool(self.missing_items)

    def get(self, kind: ArtifactKind) -> Optional[ArtifactItem]:
        return self.items.get(kind)


@dataclass
class TestSession:
    """One orchestrated run of a single test."""

    __test__ = False

    test_name: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: LifecycleState = LifecycleState.IDLE
    outcome: TestOutcome = TestOutcome.PENDING
    state_history: List[LifecycleState] = field(
        default_factory=lambda: [LifecycleState.IDLE]
    )
    server: Any = None
    browser: Any = None
    reset_token: Any = None
    error: Optional[BaseException] = None
    stack_trace: Optional[str] = None

    def transition(self, new_state: LifecycleState) -> None:
        """Move to ``new_state``, rejecting transitions the lifecycle does not allow."""
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise LifecycleError(
                f"Invalid lifecycle transition {self.state.value} -> {new_state.value}",
                from_state=self.state.value,
                to_state=new_state.value,
            )
        self.state = new_state
        self.state_history.append(new_state)

    def entered(self, state: LifecycleState) -> bool:
        return state in self.state_history


class SessionResult(BaseModel):
    """Reportable result of one test session."""

    model_config = ConfigDict(extra="forbid")

    test_name: str = Field(..., description="Fully qualified test name")
    outcome: TestOutcome = Field(..., description="Final outcome")
    started_at: datetime = Field(..., description="Session start time")
    completed_at: datetime = Field(..., description="Session completion time")
    duration: float = Field(..., ge=0, description="Wall-clock duration in seconds")

    error_type: Optional[str] = Field(None, description="Error class name")
    error_message: Optional[str] = Field(None, description="Error message")
    stack_trace: Optional[str] = Field(None, description="Formatted stack trace")

    bundle: Optional[ArtifactBundle] = Field(None, description="Failure artifacts")
    states: List[LifecycleState] = Field(
        default_factory=list, description="Lifecycle states visited"
    )
    teardown_errors: List[str] = Field(
        default_factory=list, description="Errors raised while tearing down"
    )

    @model_validator(mode="after")
    def validate_bundle_matches_outcome(self):
        """A bundle exists exactly when the outcome is a failure."""
        if self.outcome == TestOutcome.PENDING:
            raise ValueError("A finished session cannot be pending")
        if self.outcome.needs_artifacts and self.bundle is None:
            raise ValueError(f"{self.outcome.value} sessions must carry a bundle")
        if not self.outcome.needs_artifacts and self.bundle is not None:
            raise ValueError("Passed sessions must not carry a bundle")
        return self

    @property
    def is_success(self) -> bool:
        return self.outcome == TestOutcome.PASSED

    def to_summary(self) -> Dict[str, Any]:
        """Create a summary dictionary for logging."""
        return {
            "test_name": self.test_name,
            "outcome": self.outcome.value,
            "duration": round(self.duration, 3),
            "error_type": self.error_type,
            "bundle": self.bundle.directory if self.bundle else None,
            "degraded": self.bundle.is_degraded if self.bundle else False,
        }


class RunReport(BaseModel):
    """Results of one suite run."""

    model_config = ConfigDict(extra="forbid")

    run_id: str = Field(..., description="Run identifier for log correlation")
    started_at: datetime = Field(..., description="Run start time")
    completed_at: Optional[datetime] = Field(None, description="Run completion time")
    filter_expression: Optional[str] = Field(None, description="Selection filter")
    results: List[SessionResult] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.outcome == TestOutcome.PASSED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.outcome == TestOutcome.FAILED)

    @property
    def errors(self) -> int:
        return sum(
            1 for r in self.results if r.outcome == TestOutcome.INFRASTRUCTURE_ERROR
        )

    @property
    def success(self) -> bool:
        return self.total > 0 and self.passed == self.total

    @property
    def exit_code(self) -> int:
        """0 when every test passed, 1 on any failure, 5 when nothing ran."""
        if self.total == 0:
            return 5
        return 0 if self.success else 1

    def to_summary(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "errors": self.errors,
            "exit_code": self.exit_code,
        }
