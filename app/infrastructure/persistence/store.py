"""Table store interface.

Every entity of the application lives in a table keyed by ``id``. The
interface is deliberately narrow so that it maps one-to-one on DynamoDB
single-item operations.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from infrastructure.persistence.conditions import Condition

Item = Dict[str, Any]


class TableStore(Protocol):
    """Storage interface shared by all repositories.

    Implementations must evaluate ``conditions`` atomically with the write
    they guard. An unmet condition is reported through the return value
    and never raises; backend failures raise ``StoreError``.

    Methods:
        get: Fetch one item by id
        put: Create or replace an item
        update: Modify attributes of an existing item
        delete: Remove an item
        scan: Return every item matching equality filters
    """

    def get(self, table: str, item_id: str) -> Optional[Item]:
        """Return the item or ``None`` when it does not exist."""
        ...

    def put(
        self, table: str, item: Mapping[str, Any], conditions: Iterable[Condition] = ()
    ) -> bool:
        """Write the whole item.

        Returns:
            True if written, False if a condition was not met
        """
        ...

    def update(
        self,
        table: str,
        item_id: str,
        changes: Mapping[str, Any],
        conditions: Iterable[Condition] = (),
    ) -> Optional[Item]:
        """Apply ``changes`` to an existing item.

        A change whose value is ``None`` removes the attribute.

        Returns:
            The item after the update, or None when the item does not exist
            or a condition was not met
        """
        ...

    def delete(
        self, table: str, item_id: str, conditions: Iterable[Condition] = ()
    ) -> bool:
        """Delete an item.

        Returns:
            True if an item was deleted, False otherwise
        """
        ...

    def scan(
        self, table: str, filters: Optional[Mapping[str, Any]] = None
    ) -> List[Item]:
        """Return items whose attributes equal the filter values.

        A list, tuple or set filter value means membership.
        """
        ...


def is_membership(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def matches_filters(item: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    for attribute, expected in filters.items():
        current = item.get(attribute)
        if is_membership(expected):
            if current not in expected:
                return False
        elif current != expected:
            return False
    return True
