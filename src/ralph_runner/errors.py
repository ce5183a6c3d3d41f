# ABOUTME: Exception hierarchy for Ralph Runner
# ABOUTME: Maps setup, parse, storage, invocation and stagnation failures to types

"""Exceptions raised by Ralph Runner components."""


class RalphError(Exception):
    """Base class for all Ralph Runner errors."""


class SetupError(RalphError):
    """Project, configuration or environment is unusable. Fatal."""


class ParseError(RalphError):
    """A persisted state file could not be parsed."""

    def __init__(self, path, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class StorageError(RalphError):
    """Reading or writing persisted state failed."""


class InvocationTimeout(RalphError):
    """The agent exceeded its wall-clock deadline on every attempt."""


class InvocationFailure(RalphError):
    """The agent exited unsuccessfully for a reason we could not classify."""


class UsageLimitReached(RalphError):
    """The provider reported that the account usage allowance is spent."""

    def __init__(self, message: str, reset_at=None):
        self.reset_at = reset_at
        super().__init__(message)


class ApiLimitReached(RalphError):
    """The provider reported a long-window API limit."""


class StagnationDetected(RalphError):
    """The circuit breaker is open; an explicit reset is required."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Circuit breaker open: {reason}")
