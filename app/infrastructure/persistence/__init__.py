"""Persistence layer.

A narrow table store shared by every domain module: single-item reads and
writes guarded by conditions, plus filtered scans. Backends are selected
with ``STORE_BACKEND``.

Usage:
    from infrastructure.persistence import Condition, create_store

    store = create_store()
    claimed = store.update(
        "api_keys",
        key_id,
        {"usage_count": observed + 1},
        conditions=[Condition.eq("usage_count", observed)],
    )
"""

from infrastructure.persistence.conditions import (
    Condition,
    from_timestamp,
    to_timestamp,
    utc_now,
)
from infrastructure.persistence.errors import StoreConflict, StoreError
from infrastructure.persistence.factory import create_store
from infrastructure.persistence.memory import InMemoryTableStore
from infrastructure.persistence.dynamodb_store import DynamoDBTableStore
from infrastructure.persistence.store import TableStore

__all__ = [
    "Condition",
    "TableStore",
    "InMemoryTableStore",
    "DynamoDBTableStore",
    "create_store",
    "StoreError",
    "StoreConflict",
    "to_timestamp",
    "from_timestamp",
    "utc_now",
]
