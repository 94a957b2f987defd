"""DynamoDB-backed table store for multi-instance deployments.

Each logical table maps to one DynamoDB table with partition key ``id``
(string). Conditions become ``ConditionExpression`` clauses so that every
guarded write is atomic on the server; a failed condition comes back as
``ConditionalCheckFailedException`` and is reported as an unmet condition.

Table Schema:
    PK: id (String)
    Attributes: entity fields; ``None`` fields are not stored
"""

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer  # type: ignore

from infrastructure.logging import get_module_logger
from infrastructure.operations import OperationResult
from infrastructure.persistence.conditions import Condition
from infrastructure.persistence.errors import StoreError
from infrastructure.persistence.store import Item, is_membership, matches_filters
from integrations.aws import dynamodb

logger = get_module_logger()

CONDITION_FAILED = "ConditionalCheckFailedException"
# DynamoDB caps the IN operator at 100 operands
MAX_IN_OPERANDS = 100

_COMPARATORS = {"eq": "=", "ne": "<>", "lt": "<", "le": "<=", "gt": ">", "ge": ">="}

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _to_wire_value(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_wire_value(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_to_wire_value(v) for v in value]
    return value


def _from_wire_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_wire_value(v) for k, v in value.items()}
    if isinstance(value, (list, set)):
        return [_from_wire_value(v) for v in value]
    return value


def serialize(value: Any) -> Dict[str, Any]:
    return _serializer.serialize(_to_wire_value(value))


def serialize_item(item: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: serialize(value) for key, value in item.items() if value is not None}


def deserialize_item(raw: Mapping[str, Any]) -> Item:
    return {key: _from_wire_value(_deserializer.deserialize(value)) for key, value in raw.items()}


class _Expression:
    """Accumulates placeholder names and values for one request."""

    def __init__(self) -> None:
        self.names: Dict[str, str] = {}
        self.values: Dict[str, Any] = {}

    def name(self, attribute: str) -> str:
        placeholder = f"#n{len(self.names)}"
        self.names[placeholder] = attribute
        return placeholder

    def value(self, value: Any) -> str:
        placeholder = f":v{len(self.values)}"
        self.values[placeholder] = serialize(value)
        return placeholder

    def condition(self, condition: Condition) -> str:
        name = self.name(condition.attribute)
        op = condition.op
        if op == "exists" or (op == "ne" and condition.value is None):
            return f"attribute_exists({name})"
        if op == "not_exists" or (op == "eq" and condition.value is None):
            return f"attribute_not_exists({name})"
        if op == "ne":
            return f"(attribute_not_exists({name}) OR {name} <> {self.value(condition.value)})"
        return f"{name} {_COMPARATORS[op]} {self.value(condition.value)}"

    def conditions(self, conditions: Iterable[Condition]) -> Optional[str]:
        clauses = [self.condition(condition) for condition in conditions]
        return " AND ".join(clauses) if clauses else None

    def request_kwargs(self, condition_expression: Optional[str]) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {}
        if condition_expression:
            kwargs["ConditionExpression"] = condition_expression
        if self.names:
            kwargs["ExpressionAttributeNames"] = self.names
        if self.values:
            kwargs["ExpressionAttributeValues"] = self.values
        return kwargs


class DynamoDBTableStore:
    """``TableStore`` implementation on DynamoDB.

    Args:
        table_prefix: Prefix applied to every logical table name
    """

    def __init__(self, table_prefix: str = ""):
        self.table_prefix = table_prefix
        logger.info("dynamodb_table_store_initialized", table_prefix=table_prefix)

    def _table_name(self, table: str) -> str:
        return f"{self.table_prefix}{table}"

    @staticmethod
    def _key(item_id: str) -> Dict[str, Any]:
        return {"id": {"S": item_id}}

    def _raise_unless_condition_failed(
        self, result: OperationResult, table: str, operation: str
    ) -> bool:
        """Return True for an unmet condition, raise StoreError otherwise."""
        if result.error_code == CONDITION_FAILED:
            return True
        logger.error(
            "dynamodb_store_operation_failed",
            table=table,
            operation=operation,
            error=result.message,
            error_code=result.error_code,
        )
        raise StoreError(
            f"DynamoDB {operation} on {table} failed: {result.message}",
            table=table,
            error_code=result.error_code,
        )

    def get(self, table: str, item_id: str) -> Optional[Item]:
        result = dynamodb.get_item(
            table_name=self._table_name(table),
            Key=self._key(item_id),
            ConsistentRead=True,
        )
        if not result.is_success:
            self._raise_unless_condition_failed(result, table, "get")
            return None
        raw = (result.data or {}).get("Item")
        return deserialize_item(raw) if raw else None

    def put(
        self, table: str, item: Mapping[str, Any], conditions: Iterable[Condition] = ()
    ) -> bool:
        expression = _Expression()
        condition_expression = expression.conditions(conditions)
        result = dynamodb.put_item(
            table_name=self._table_name(table),
            Item=serialize_item(item),
            **expression.request_kwargs(condition_expression),
        )
        if result.is_success:
            return True
        self._raise_unless_condition_failed(result, table, "put")
        return False

    def update(
        self,
        table: str,
        item_id: str,
        changes: Mapping[str, Any],
        conditions: Iterable[Condition] = (),
    ) -> Optional[Item]:
        if not changes:
            raise ValueError("update requires at least one change")

        expression = _Expression()
        set_clauses: List[str] = []
        remove_clauses: List[str] = []
        for attribute, value in changes.items():
            name = expression.name(attribute)
            if value is None:
                remove_clauses.append(name)
            else:
                set_clauses.append(f"{name} = {expression.value(value)}")

        update_expression = ""
        if set_clauses:
            update_expression += "SET " + ", ".join(set_clauses)
        if remove_clauses:
            update_expression += " REMOVE " + ", ".join(remove_clauses)

        # update_item would otherwise create a missing item
        guarded: Tuple[Condition, ...] = (Condition.exists("id"), *conditions)
        condition_expression = expression.conditions(guarded)

        result = dynamodb.update_item(
            table_name=self._table_name(table),
            Key=self._key(item_id),
            UpdateExpression=update_expression.strip(),
            ReturnValues="ALL_NEW",
            **expression.request_kwargs(condition_expression),
        )
        if result.is_success:
            return deserialize_item((result.data or {}).get("Attributes", {}))
        self._raise_unless_condition_failed(result, table, "update")
        return None

    def delete(
        self, table: str, item_id: str, conditions: Iterable[Condition] = ()
    ) -> bool:
        expression = _Expression()
        condition_expression = expression.conditions(conditions)
        result = dynamodb.delete_item(
            table_name=self._table_name(table),
            Key=self._key(item_id),
            ReturnValues="ALL_OLD",
            **expression.request_kwargs(condition_expression),
        )
        if result.is_success:
            return bool((result.data or {}).get("Attributes"))
        self._raise_unless_condition_failed(result, table, "delete")
        return False

    def scan(
        self, table: str, filters: Optional[Mapping[str, Any]] = None
    ) -> List[Item]:
        filters = dict(filters or {})
        if any(is_membership(value) and not value for value in filters.values()):
            return []

        expression = _Expression()
        clauses: List[str] = []
        # Oversized membership filters are applied after the scan
        local_filters: Dict[str, Any] = {}
        for attribute, expected in filters.items():
            if is_membership(expected):
                if len(expected) > MAX_IN_OPERANDS:
                    local_filters[attribute] = expected
                    continue
                name = expression.name(attribute)
                operands = ", ".join(expression.value(value) for value in expected)
                clauses.append(f"{name} IN ({operands})")
            elif expected is None:
                clauses.append(f"attribute_not_exists({expression.name(attribute)})")
            else:
                name = expression.name(attribute)
                clauses.append(f"{name} = {expression.value(expected)}")

        kwargs = expression.request_kwargs(None)
        if clauses:
            kwargs["FilterExpression"] = " AND ".join(clauses)
        result = dynamodb.scan(
            table_name=self._table_name(table),
            ConsistentRead=True,
            **kwargs,
        )
        if not result.is_success:
            self._raise_unless_condition_failed(result, table, "scan")
            return []

        items = [deserialize_item(raw) for raw in result.data or []]
        if local_filters:
            items = [item for item in items if matches_filters(item, local_filters)]
        logger.debug("table_scanned", table=table, count=len(items))
        return items
