"""Provider errors raised once retries or rotations are exhausted."""

from typing import Optional

from infrastructure.operations.result import OperationResult


class ProviderError(Exception):
    """Raised when an external provider call could not be completed.

    Attributes:
        message: human-friendly message
        response: the classified OperationResult for the last failure
    """

    def __init__(self, message: str, response: Optional[OperationResult] = None):
        super().__init__(message)
        self.message = message
        self.response = response

    @property
    def error_code(self) -> Optional[str]:
        return self.response.error_code if self.response else None


class ProviderTransientError(ProviderError):
    """Retryable failure that persisted after local retries."""


class ProviderPermanentError(ProviderError):
    """Failure that will not succeed on retry (bad payload, bad credential)."""
