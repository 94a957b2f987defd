"""In-memory table store.

Process-local implementation of ``TableStore`` for tests and single-process
development. A lock makes each conditional write atomic, which is the same
per-row guarantee DynamoDB provides; it does not coordinate anything beyond
a single call.
"""

import copy
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional

from infrastructure.logging import get_module_logger
from infrastructure.persistence.conditions import Condition
from infrastructure.persistence.store import Item, matches_filters

logger = get_module_logger()


class InMemoryTableStore:
    """Thread-safe dictionary-backed ``TableStore``."""

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, Item]] = {}
        self._lock = threading.Lock()

    def _table(self, table: str) -> Dict[str, Item]:
        return self._tables.setdefault(table, {})

    @staticmethod
    def _holds(item: Optional[Item], conditions: Iterable[Condition]) -> bool:
        return all(condition.matches(item) for condition in conditions)

    def get(self, table: str, item_id: str) -> Optional[Item]:
        with self._lock:
            item = self._table(table).get(item_id)
            return copy.deepcopy(item) if item is not None else None

    def put(
        self, table: str, item: Mapping[str, Any], conditions: Iterable[Condition] = ()
    ) -> bool:
        item_id = item["id"]
        with self._lock:
            rows = self._table(table)
            if not self._holds(rows.get(item_id), conditions):
                return False
            rows[item_id] = {
                key: copy.deepcopy(value)
                for key, value in item.items()
                if value is not None
            }
            return True

    def update(
        self,
        table: str,
        item_id: str,
        changes: Mapping[str, Any],
        conditions: Iterable[Condition] = (),
    ) -> Optional[Item]:
        with self._lock:
            rows = self._table(table)
            current = rows.get(item_id)
            if current is None or not self._holds(current, conditions):
                return None
            updated = dict(current)
            for key, value in changes.items():
                if value is None:
                    updated.pop(key, None)
                else:
                    updated[key] = copy.deepcopy(value)
            rows[item_id] = updated
            return copy.deepcopy(updated)

    def delete(
        self, table: str, item_id: str, conditions: Iterable[Condition] = ()
    ) -> bool:
        with self._lock:
            rows = self._table(table)
            current = rows.get(item_id)
            if current is None or not self._holds(current, conditions):
                return False
            del rows[item_id]
            return True

    def scan(
        self, table: str, filters: Optional[Mapping[str, Any]] = None
    ) -> List[Item]:
        with self._lock:
            items = [
                copy.deepcopy(item)
                for item in self._table(table).values()
                if not filters or matches_filters(item, filters)
            ]
        logger.debug("table_scanned", table=table, count=len(items))
        return items

    def clear(self) -> None:
        """Drop every table."""
        with self._lock:
            self._tables.clear()
