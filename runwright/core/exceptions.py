"""
Base exception classes for Runwright.

Provides a hierarchy of exceptions for the errors that can occur while
preparing and executing a test run.
"""

from typing import Optional, Dict, Any, List


class RunwrightError(Exception):
    """Base exception class for all Runwright errors."""

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


class ConfigError(RunwrightError):
    """Raised when the run configuration cannot be resolved."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        violations: Optional[List[str]] = None,
    ):
        super().__init__(message, "CONFIG_INVALID")
        self.field = field
        self.violations = violations or []
        self.context.update(
            {
                "field": field,
                "violations": self.violations,
            }
        )


class ServerStartError(RunwrightError):
    """Raised when the system under test cannot be brought up."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        url: Optional[str] = None,
        exit_code: Optional[int] = None,
        output: Optional[str] = None,
        error_code: str = "SERVER_START_FAILED",
    ):
        super().__init__(message, error_code)
        self.command = command
        self.url = url
        self.exit_code = exit_code
        self.output = output or ""
        self.context.update(
            {
                "command": command,
                "url": url,
                "exit_code": exit_code,
                "output": self.output,
            }
        )


class ServerStartTimeout(ServerStartError):
    """Raised when the system under test is not healthy before the deadline."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        url: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        output: Optional[str] = None,
    ):
        super().__init__(
            message,
            command=command,
            url=url,
            output=output,
            error_code="SERVER_START_TIMEOUT",
        )
        self.timeout_ms = timeout_ms
        self.context["timeout_ms"] = timeout_ms


class ServerShutdownError(RunwrightError):
    """Raised when the owned server process ignores the termination request."""

    def __init__(
        self,
        message: str,
        pid: Optional[int] = None,
        grace_period: Optional[float] = None,
    ):
        super().__init__(message, "SERVER_SHUTDOWN_FAILED")
        self.pid = pid
        self.grace_period = grace_period
        self.context.update(
            {
                "pid": pid,
                "grace_period": grace_period,
            }
        )


class AuthProvisioningError(RunwrightError):
    """Raised when the shared session state cannot be obtained."""

    def __init__(
        self,
        message: str,
        base_url: Optional[str] = None,
        storage_path: Optional[str] = None,
    ):
        super().__init__(message, "AUTH_PROVISIONING_FAILED")
        self.base_url = base_url
        self.storage_path = storage_path
        self.context.update(
            {
                "base_url": base_url,
                "storage_path": storage_path,
            }
        )


class TestExecutionError(RunwrightError):
    """Raised by an execution engine when a single attempt cannot run."""

    __test__ = False

    def __init__(
        self,
        message: str,
        unit_id: Optional[str] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message, "TEST_EXECUTION_FAILED")
        self.unit_id = unit_id
        self.exit_code = exit_code
        self.context.update(
            {
                "unit_id": unit_id,
                "exit_code": exit_code,
            }
        )


class RunInterrupted(RunwrightError):
    """Reported when a signal aborts the run before tests are dispatched."""

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message, "RUN_INTERRUPTED")
        self.reason = reason
        self.context["reason"] = reason


FATAL_ERRORS = (ConfigError, ServerStartError, AuthProvisioningError)
