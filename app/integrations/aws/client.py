"""AWS API call executor.

Centralized error handling, throttling retries, standardized
``OperationResult`` responses and optional pagination for boto3 calls.

Usage:
    result = execute_aws_api_call(
        service_name="dynamodb",
        method="get_item",
        TableName="courier_api_keys",
        Key={"id": {"S": "key-1"}},
    )
    if result.is_success:
        item = result.data.get("Item")
    elif result.error_code == "ConditionalCheckFailedException":
        ...
"""

import time
from functools import lru_cache
from typing import Any, Callable, List, Optional

import boto3  # type: ignore
from botocore.client import BaseClient  # type: ignore
from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

from infrastructure.configuration import settings
from infrastructure.logging import get_module_logger
from infrastructure.operations import OperationResult, classify_aws_error

logger = get_module_logger()

AWS_REGION = settings.aws.AWS_REGION
ENDPOINT_URL = settings.aws.ENDPOINT_URL
THROTTLING_ERRS = settings.aws.THROTTLING_ERRS

ERROR_CONFIG = {
    # Expected outcomes of conditional writes, logged at debug level only
    "expected_errors": ["ConditionalCheckFailedException"],
    "retry_errors": THROTTLING_ERRS,
    "default_max_retries": 3,
    "default_backoff_factor": 0.5,
}


def _error_code(error: Exception) -> Optional[str]:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code")
    return None


def _should_retry(error: Exception, attempt: int, max_attempts: int) -> bool:
    return _error_code(error) in ERROR_CONFIG["retry_errors"] and attempt < max_attempts


def _calculate_retry_delay(attempt: int) -> float:
    return float(ERROR_CONFIG["default_backoff_factor"]) * (2**attempt)


def _handle_final_error(error: Exception, function_name: str) -> OperationResult:
    """Classify the error left after retries and log it at the right level."""
    result = classify_aws_error(error)
    if result.error_code in ERROR_CONFIG["expected_errors"]:
        logger.debug(
            "aws_api_condition_not_met",
            function=function_name,
            error_code=result.error_code,
        )
    else:
        logger.error(
            "aws_api_error_final",
            function=function_name,
            error=str(error),
            error_code=result.error_code,
        )
    return result


@lru_cache(maxsize=None)
def get_aws_client(
    service_name: str,
    region_name: Optional[str] = None,
    endpoint_url: Optional[str] = None,
) -> BaseClient:
    """Return a boto3 client for a service, cached per region and endpoint.

    boto3 clients are thread-safe once created, so one instance is shared by
    every worker thread of the process.
    """
    session = boto3.session.Session(region_name=region_name or AWS_REGION)
    return session.client(service_name, endpoint_url=endpoint_url or ENDPOINT_URL)


def _paginate_all_results(
    client: BaseClient, method: str, keys: Optional[List[str]] = None, **kwargs
) -> List[dict]:
    paginator = client.get_paginator(method)
    results: List[dict] = []
    for page in paginator.paginate(**kwargs):
        if keys is None:
            for key, value in page.items():
                if key != "ResponseMetadata":
                    if isinstance(value, list):
                        results.extend(value)
                    else:
                        results.append(value)
        else:
            for key in keys:
                if key in page:
                    results.extend(page[key])
    return results


def execute_api_call(
    func_name: str,
    api_call: Callable[[], Any],
    max_retries: Optional[int] = None,
) -> OperationResult:
    """Module-level error handling for AWS API calls.

    Throttling errors are retried with exponential backoff; every other
    error is classified into an ``OperationResult`` immediately. The
    original AWS error code is preserved in ``error_code``.

    Args:
        func_name: Name of the calling function for logging
        api_call: The API call to execute
        max_retries: Override default max retries

    Returns:
        OperationResult with the raw boto3 response as ``data`` on success
    """
    max_retry_attempts = (
        max_retries if max_retries is not None else ERROR_CONFIG["default_max_retries"]
    )

    for attempt in range(max_retry_attempts + 1):
        try:
            result = api_call()
            if attempt > 0:
                logger.info(
                    "aws_api_retry_success",
                    function=func_name,
                    attempt=attempt + 1,
                )
            return OperationResult.success(data=result)

        except (BotoCoreError, ClientError) as e:
            if _should_retry(e, attempt, max_retry_attempts):
                delay = _calculate_retry_delay(attempt)
                logger.warning(
                    "aws_api_retrying",
                    function=func_name,
                    attempt=attempt + 1,
                    error_code=_error_code(e),
                    delay=delay,
                )
                time.sleep(delay)
                continue
            return _handle_final_error(e, func_name)

    # Unreachable: the last attempt either returns or hits _handle_final_error
    return OperationResult.transient_error(
        f"{func_name} exhausted retries", error_code="RETRIES_EXHAUSTED"
    )


def execute_aws_api_call(
    service_name: str,
    method: str,
    keys: Optional[List[str]] = None,
    force_paginate: bool = False,
    max_retries: Optional[int] = None,
    **kwargs,
) -> OperationResult:
    """Execute an AWS API call with retries and standardized results.

    Args:
        service_name: The AWS service name (e.g. "dynamodb")
        method: The client method to call (e.g. "put_item")
        keys: Page keys to collect when paginating (e.g. ["Items"])
        force_paginate: Collect every page into a list instead of one response
        max_retries: Override default max retries for throttling
        **kwargs: Parameters passed to the boto3 method

    Returns:
        OperationResult: Standardized response model for AWS integrations.
    """

    def api_call():
        client = get_aws_client(service_name)
        if force_paginate:
            return _paginate_all_results(client, method, keys, **kwargs)
        return getattr(client, method)(**kwargs)

    return execute_api_call(
        f"{service_name}_{method}",
        api_call,
        max_retries=max_retries,
    )
