"""Conditions guarding table store writes.

A write carries a list of ``Condition`` clauses that must all hold against
the currently stored item. Both backends evaluate them atomically with the
write, which is what every compare-and-swap in the application relies on.

``None`` values follow DynamoDB semantics for missing attributes: an
attribute set to ``None`` is not stored, so ``Condition.eq("lease_id", None)``
means "no lease".
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

OPERATORS = ("eq", "ne", "lt", "le", "gt", "ge", "exists", "not_exists")


@dataclass(frozen=True)
class Condition:
    """A single attribute predicate."""

    attribute: str
    op: str
    value: Any = None

    def __post_init__(self) -> None:
        if self.op not in OPERATORS:
            raise ValueError(f"Unknown condition operator: {self.op}")

    @classmethod
    def eq(cls, attribute: str, value: Any) -> "Condition":
        return cls(attribute, "eq", value)

    @classmethod
    def ne(cls, attribute: str, value: Any) -> "Condition":
        return cls(attribute, "ne", value)

    @classmethod
    def le(cls, attribute: str, value: Any) -> "Condition":
        return cls(attribute, "le", value)

    @classmethod
    def lt(cls, attribute: str, value: Any) -> "Condition":
        return cls(attribute, "lt", value)

    @classmethod
    def exists(cls, attribute: str) -> "Condition":
        return cls(attribute, "exists")

    @classmethod
    def not_exists(cls, attribute: str) -> "Condition":
        return cls(attribute, "not_exists")

    def matches(self, item: Optional[Mapping[str, Any]]) -> bool:
        """Evaluate the condition against a stored item (``None`` if absent)."""
        current = (item or {}).get(self.attribute)

        if self.op == "exists":
            return current is not None
        if self.op == "not_exists":
            return current is None
        if self.op == "eq":
            return current == self.value
        if self.op == "ne":
            return current != self.value

        if current is None or self.value is None:
            return False
        try:
            if self.op == "lt":
                return current < self.value
            if self.op == "le":
                return current <= self.value
            if self.op == "gt":
                return current > self.value
            return current >= self.value
        except TypeError:
            return False


def to_timestamp(moment: datetime) -> str:
    """Serialize a datetime as a fixed-width ISO-8601 UTC string.

    Fixed width keeps lexicographic order equal to chronological order, so
    timestamps can be compared inside store conditions.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a timestamp written by ``to_timestamp``."""
    if value is None:
        return None
    return datetime.fromisoformat(value)


def utc_now() -> datetime:
    """Current time in UTC, the default clock of every repository."""
    return datetime.now(timezone.utc)
