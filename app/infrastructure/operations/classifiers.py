"""Error classifiers for provider exceptions.

Converts provider-specific exceptions (AWS SDK, AI completion providers,
push providers) into standardized OperationResult objects so that raw
provider error shapes never travel past the integration boundary.

Key Functions:
- classify_aws_error(): AWS SDK errors -> OperationResult
- classify_ai_provider_error(): AI provider errors -> OperationResult
- classify_push_provider_error(): push provider errors -> OperationResult

Usage:
    from infrastructure.operations.classifiers import classify_push_provider_error

    try:
        provider.send(platform, token, payload, timeout=10)
    except Exception as exc:
        result = classify_push_provider_error(exc)
"""

from typing import Optional

from botocore.exceptions import ClientError

from infrastructure.operations.result import OperationResult
from infrastructure.operations.status import OperationStatus

QUOTA_MARKERS = ("quota", "resource_exhausted", "rate limit", "rate_limit", "too many requests")
INVALID_CREDENTIAL_MARKERS = ("api key not valid", "invalid api key", "unauthenticated", "permission_denied")
INVALID_TOKEN_MARKERS = (
    "unregistered",
    "invalid registration",
    "invalid_registration",
    "registration-token-not-registered",
    "not registered",
    "baddevicetoken",
)
TRANSIENT_MARKERS = ("timeout", "timed out", "unavailable", "connection", "temporarily")


def _status_code(exc: Exception) -> Optional[int]:
    """Extract an HTTP status code from a duck-typed provider exception.

    Providers expose the code under different names (``status_code``,
    ``status``, ``code``, ``response.status_code``); non-integer values are
    ignored.
    """
    for attr in ("status_code", "status", "http_status", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _retry_after(exc: Exception) -> Optional[int]:
    value = getattr(exc, "retry_after", None)
    if value is None:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def classify_aws_error(exc: Exception) -> OperationResult:
    """Classify AWS SDK errors into OperationResult.

    Error Code Mapping:
    - ConditionalCheckFailedException: CAS miss -> PERMANENT_ERROR with the
      original code, callers treat it as "condition not met"
    - Throttling / ProvisionedThroughputExceeded: TRANSIENT_ERROR with retry_after
    - AccessDeniedException: PERMANENT_ERROR
    - ResourceNotFoundException: NOT_FOUND
    - ValidationException: PERMANENT_ERROR
    - Other: TRANSIENT_ERROR (AWS convention)

    Args:
        exc: Exception raised by AWS SDK (boto3/botocore)

    Returns:
        OperationResult with the AWS error code preserved in ``error_code``
    """
    if not isinstance(exc, ClientError):
        return OperationResult.transient_error(
            f"AWS connection error: {type(exc).__name__}: {str(exc)}",
            error_code="CONNECTION_ERROR",
        )

    error_code = "Unknown"
    if hasattr(exc, "response") and exc.response:
        error_info = exc.response.get("Error", {})
        error_code = error_info.get("Code", "Unknown")

    if error_code == "ConditionalCheckFailedException":
        return OperationResult.permanent_error(
            "Conditional check failed", error_code=error_code
        )

    if error_code in (
        "ThrottlingException",
        "ProvisionedThroughputExceededException",
        "RequestLimitExceeded",
    ):
        return OperationResult.error(
            OperationStatus.TRANSIENT_ERROR,
            "AWS API throttled",
            error_code=error_code,
            retry_after=60,
        )

    if error_code == "AccessDeniedException":
        return OperationResult.error(
            OperationStatus.UNAUTHORIZED,
            "AWS API access denied",
            error_code=error_code,
        )

    if error_code == "ResourceNotFoundException":
        return OperationResult.error(
            OperationStatus.NOT_FOUND,
            "AWS resource not found",
            error_code=error_code,
        )

    if error_code in (
        "ValidationException",
        "InvalidParameterException",
        "BadRequestException",
    ):
        return OperationResult.permanent_error(
            f"AWS validation error: {error_code}",
            error_code=error_code,
        )

    return OperationResult.transient_error(
        f"AWS client error: {error_code}",
        error_code=error_code,
    )


def classify_ai_provider_error(exc: Exception) -> OperationResult:
    """Classify AI completion provider errors into OperationResult.

    Mapping:
    - 429, "quota", "RESOURCE_EXHAUSTED", "rate limit" -> QUOTA_EXCEEDED
      (the credential should cool down, another key may still work)
    - 401, 403, "API key not valid" -> UNAUTHORIZED (counts towards
      automatic deactivation of the key)
    - anything else -> TRANSIENT_ERROR

    Args:
        exc: Exception raised by the AI provider client

    Returns:
        OperationResult with a non-success status
    """
    status_code = _status_code(exc)
    text = f"{type(exc).__name__}: {exc}".lower()

    if status_code == 429 or any(marker in text for marker in QUOTA_MARKERS):
        return OperationResult.error(
            OperationStatus.QUOTA_EXCEEDED,
            "AI provider quota exceeded",
            error_code="QUOTA_EXCEEDED",
            retry_after=_retry_after(exc),
        )

    if status_code in (401, 403) or any(
        marker in text for marker in INVALID_CREDENTIAL_MARKERS
    ):
        return OperationResult.error(
            OperationStatus.UNAUTHORIZED,
            "AI provider rejected the credential",
            error_code="INVALID_CREDENTIAL",
        )

    return OperationResult.transient_error(
        f"AI provider error: {type(exc).__name__}: {str(exc)}",
        error_code="PROVIDER_ERROR",
    )


def classify_push_provider_error(exc: Exception) -> OperationResult:
    """Classify push provider errors into OperationResult.

    Mapping:
    - "unregistered", "invalid registration", 404 -> INVALID_TOKEN
    - 429, 5xx, timeouts, connection failures -> TRANSIENT_ERROR
    - other 4xx -> PERMANENT_ERROR (bad payload, token is kept)
    - unknown shapes -> TRANSIENT_ERROR

    Args:
        exc: Exception raised by the push provider client

    Returns:
        OperationResult with a non-success status
    """
    status_code = _status_code(exc)
    text = f"{type(exc).__name__}: {exc}".lower()

    if status_code == 404 or any(marker in text for marker in INVALID_TOKEN_MARKERS):
        return OperationResult.error(
            OperationStatus.INVALID_TOKEN,
            "Push token is no longer registered",
            error_code="INVALID_TOKEN",
        )

    if isinstance(exc, (TimeoutError, ConnectionError)):
        return OperationResult.transient_error(
            f"Push provider unreachable: {type(exc).__name__}",
            error_code="CONNECTION_ERROR",
        )

    if status_code == 429:
        return OperationResult.transient_error(
            "Push provider rate limited",
            error_code="RATE_LIMITED",
            retry_after=_retry_after(exc),
        )

    if status_code is not None and 500 <= status_code < 600:
        return OperationResult.transient_error(
            f"Push provider server error ({status_code})",
            error_code="SERVER_ERROR",
        )

    if status_code is not None and 400 <= status_code < 500:
        return OperationResult.permanent_error(
            f"Push provider rejected the payload ({status_code}): {str(exc)}",
            error_code="INVALID_PAYLOAD",
        )

    if any(marker in text for marker in TRANSIENT_MARKERS):
        return OperationResult.transient_error(
            f"Push provider unreachable: {str(exc)}",
            error_code="CONNECTION_ERROR",
        )

    return OperationResult.transient_error(
        f"Push provider error: {type(exc).__name__}: {str(exc)}",
        error_code="PROVIDER_ERROR",
    )
