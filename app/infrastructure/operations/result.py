"""Result type shared by the DynamoDB, push and AI provider boundaries.

Integrations never raise for expected failures; they return an
``OperationResult`` and the caller decides whether the status is a CAS
miss, a retry or an error to surface.
"""

from dataclasses import dataclass
from typing import Any, Optional

from infrastructure.operations.status import OperationStatus


@dataclass
class OperationResult:
    """Outcome of one integration call.

    Attributes:
        status: Coarse outcome used for control flow
        message: Text for logs and exception messages
        data: Response payload on success
        error_code: Provider code, e.g. ``ConditionalCheckFailedException``
        retry_after: Seconds the provider asked us to wait, when it did
    """

    status: OperationStatus
    message: str
    data: Optional[Any] = None
    error_code: Optional[str] = None
    retry_after: Optional[int] = None

    @property
    def is_success(self) -> bool:
        return self.status == OperationStatus.SUCCESS

    @property
    def is_transient(self) -> bool:
        return self.status == OperationStatus.TRANSIENT_ERROR

    @classmethod
    def success(cls, data: Optional[Any] = None, message: str = "ok") -> "OperationResult":
        return cls(OperationStatus.SUCCESS, message, data=data)

    @classmethod
    def error(
        cls,
        status: OperationStatus,
        message: str,
        error_code: Optional[str] = None,
        retry_after: Optional[int] = None,
        data: Optional[Any] = None,
    ) -> "OperationResult":
        return cls(status, message, data=data, error_code=error_code, retry_after=retry_after)

    @classmethod
    def transient_error(
        cls,
        message: str,
        error_code: Optional[str] = None,
        retry_after: Optional[int] = None,
    ) -> "OperationResult":
        """Timeouts, 5xx responses and throttling not tied to one key."""
        return cls.error(OperationStatus.TRANSIENT_ERROR, message, error_code, retry_after)

    @classmethod
    def permanent_error(cls, message: str, error_code: Optional[str] = None) -> "OperationResult":
        return cls.error(OperationStatus.PERMANENT_ERROR, message, error_code)
