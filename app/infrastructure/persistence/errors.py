"""Table store errors."""

from typing import Optional


class StoreError(Exception):
    """A store backend failed for a reason other than an unmet condition."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.table = table
        self.error_code = error_code
        super().__init__(message)


class StoreConflict(StoreError):
    """A compare-and-swap loop ran out of attempts.

    Surfaced to callers as a transient condition: the same request is
    expected to succeed once contention drops.
    """

    def __init__(self, table: str, item_id: Optional[str], attempts: int):
        self.item_id = item_id
        self.attempts = attempts
        super().__init__(
            f"Conditional update on {table} lost {attempts} consecutive races",
            table=table,
            error_code="STORE_CONFLICT",
        )
