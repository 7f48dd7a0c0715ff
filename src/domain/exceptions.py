"""Custom exception hierarchy for the scoring engine.

Following error taxonomy: retryable, non-retryable, validation.
A duplicate request is an outcome, not an error, and has no exception.
"""


class ScoringEngineError(Exception):
    """Base exception for all application errors."""

    pass


class RetryableError(ScoringEngineError):
    """Errors that can be retried (connection loss, lock timeouts)."""

    pass


class NonRetryableError(ScoringEngineError):
    """Errors that should not be retried (validation, logic errors)."""

    pass


class ValidationError(NonRetryableError):
    """Request or data validation errors."""

    pass


class RepositoryError(RetryableError):
    """Database/storage errors."""

    pass


class BadgeCycleError(NonRetryableError):
    """A fatal step of the daily badge cycle failed."""

    def __init__(self, step: str, message: str) -> None:
        """Initialize with the failing step name."""
        self.step = step
        super().__init__(f"Badge cycle failed at {step}: {message}")
