"""Operation status enumeration.

Status codes shared by integrations and classifiers so callers can decide
between retrying, rotating a credential, or giving up.
"""

from enum import Enum


class OperationStatus(Enum):
    """Status codes for operation results.

    Attributes:
        SUCCESS: Operation completed successfully
        TRANSIENT_ERROR: Retryable error (network, timeout, server error)
        PERMANENT_ERROR: Non-retryable error (bad payload, validation)
        UNAUTHORIZED: Credential rejected by the provider
        NOT_FOUND: Resource not found
        QUOTA_EXCEEDED: Credential-scoped rate limit or quota hit
        INVALID_TOKEN: Push address no longer valid and should be pruned
    """

    SUCCESS = "success"
    TRANSIENT_ERROR = "transient_error"
    PERMANENT_ERROR = "permanent_error"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_TOKEN = "invalid_token"
