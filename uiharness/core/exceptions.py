"""
Base exception classes for UI Harness.

Provides a hierarchy of exceptions for the infrastructure and test-body
failures that can occur while orchestrating a browser-driven test session.
"""

from typing import Optional, Dict, Any


class HarnessError(Exception):
    """Base exception class for all UI Harness errors."""

    #: Infrastructure errors abort a session before the test body runs.
    infrastructure: bool = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


class ProvisioningError(HarnessError):
    """Raised when the application server does not become ready in time."""

    infrastructure = True

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
        attempts: Optional[int] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message, "PROVISIONING_FAILED")
        self.address = address
        self.attempts = attempts
        self.exit_code = exit_code
        self.context.update(
            {
                "address": address,
                "attempts": attempts,
                "exit_code": exit_code,
            }
        )


class ResetError(HarnessError):
    """Raised when the data store cannot be brought to its baseline."""

    infrastructure = True

    def __init__(
        self,
        message: str,
        store: Optional[str] = None,
        table: Optional[str] = None,
    ):
        super().__init__(message, "RESET_FAILED")
        self.store = store
        self.table = table
        self.context.update({"store": store, "table": table})


class SessionError(HarnessError):
    """Raised when a browser automation session cannot be opened."""

    infrastructure = True

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        protocol: Optional[str] = None,
    ):
        super().__init__(message, "SESSION_FAILED")
        self.endpoint = endpoint
        self.protocol = protocol
        self.context.update({"endpoint": endpoint, "protocol": protocol})


class SessionTimeoutError(HarnessError):
    """Raised when a test session exceeds its overall wall-clock budget."""

    infrastructure = True

    def __init__(
        self,
        message: str,
        test_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(message, "SESSION_TIMEOUT")
        self.test_name = test_name
        self.timeout = timeout
        self.context.update({"test_name": test_name, "timeout": timeout})


class CoordinatorTimeoutError(HarnessError):
    """Raised when the execution coordinator cannot be acquired in time."""

    infrastructure = True

    def __init__(
        self,
        message: str,
        requested_by: Optional[str] = None,
        held_by: Optional[str] = None,
    ):
        super().__init__(message, "COORDINATOR_TIMEOUT")
        self.requested_by = requested_by
        self.held_by = held_by
        self.context.update({"requested_by": requested_by, "held_by": held_by})


class ElementNotFound(HarnessError):
    """Raised when an element does not appear within its bounded wait."""

    def __init__(
        self,
        message: str,
        selector: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(message, "ELEMENT_NOT_FOUND")
        self.selector = selector
        self.timeout = timeout
        self.context.update({"selector": selector, "timeout": timeout})


class NavigationTimeout(HarnessError):
    """Raised when a page navigation does not complete in time."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(message, "NAVIGATION_TIMEOUT")
        self.url = url
        self.timeout = timeout
        self.context.update({"url": url, "timeout": timeout})


class ArtifactCaptureError(HarnessError):
    """Raised internally when a single diagnostic item cannot be captured."""

    def __init__(
        self,
        message: str,
        artifact: Optional[str] = None,
        test_name: Optional[str] = None,
    ):
        super().__init__(message, "ARTIFACT_CAPTURE_FAILED")
        self.artifact = artifact
        self.test_name = test_name
        self.context.update({"artifact": artifact, "test_name": test_name})


class SeedingError(HarnessError):
    """Raised when the seeding capability is misused or a write fails."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message, "SEEDING_FAILED")
        self.table = table
        self.operation = operation
        self.context.update({"table": table, "operation": operation})


class LifecycleError(HarnessError):
    """Raised on an invalid test lifecycle state transition."""

    def __init__(
        self,
        message: str,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
    ):
        super().__init__(message, "LIFECYCLE_ERROR")
        self.from_state = from_state
        self.to_state = to_state
        self.context.update({"from_state": from_state, "to_state": to_state})


class ValidationError(HarnessError):
    """Raised when validation fails."""

    def __init__(
        self,
        message: str,
        validation_type: Optional[str] = None,
        violations: Optional[list] = None,
    ):
        super().__init__(message, "VALIDATION_FAILED")
        self.validation_type = validation_type
        self.violations = violations or []
        self.context.update(
            {
                "validation_type": validation_type,
                "violations": violations,
            }
        )


def is_infrastructure_error(error: BaseException) -> bool:
    """True when ``error`` reports a broken environment rather than a failing test."""
    return isinstance(error, HarnessError) and error.infrastructure
