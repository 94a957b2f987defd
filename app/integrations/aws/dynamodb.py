"""AWS DynamoDB operations.

Thin wrappers around ``execute_aws_api_call`` returning ``OperationResult``.
Items and keys are in DynamoDB wire format (``{"S": "..."}``).

Usage:
    result = get_item(
        table_name="courier_api_keys",
        Key={"id": {"S": "key-1"}},
    )
    if result.is_success:
        item = result.data.get("Item")
"""

from typing import Any, Dict

from integrations.aws.client import execute_aws_api_call
from infrastructure.operations import OperationResult


def get_item(table_name: str, Key: Dict[str, Any], **kwargs) -> OperationResult:
    """Get an item from a DynamoDB table.

    Returns:
        OperationResult: raw response (``Item`` absent when not found)
    """
    return execute_aws_api_call(
        service_name="dynamodb",
        method="get_item",
        TableName=table_name,
        Key=Key,
        **kwargs,
    )


def put_item(table_name: str, Item: Dict[str, Any], **kwargs) -> OperationResult:
    """Put an item into a DynamoDB table.

    Pass ``ConditionExpression`` for conditional writes; a failed condition
    is reported with ``error_code="ConditionalCheckFailedException"``.
    """
    return execute_aws_api_call(
        service_name="dynamodb",
        method="put_item",
        TableName=table_name,
        Item=Item,
        **kwargs,
    )


def update_item(table_name: str, Key: Dict[str, Any], **kwargs) -> OperationResult:
    """Update an item in a DynamoDB table."""
    return execute_aws_api_call(
        service_name="dynamodb",
        method="update_item",
        TableName=table_name,
        Key=Key,
        **kwargs,
    )


def delete_item(table_name: str, Key: Dict[str, Any], **kwargs) -> OperationResult:
    """Delete an item from a DynamoDB table."""
    return execute_aws_api_call(
        service_name="dynamodb",
        method="delete_item",
        TableName=table_name,
        Key=Key,
        **kwargs,
    )


def scan(table_name: str, **kwargs) -> OperationResult:
    """Scan a DynamoDB table, collecting every page.

    Returns:
        OperationResult: ``data`` is the list of items
    """
    return execute_aws_api_call(
        service_name="dynamodb",
        method="scan",
        TableName=table_name,
        keys=["Items"],
        force_paginate=True,
        **kwargs,
    )
