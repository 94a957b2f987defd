"""Deterministic key builder for idempotent writes."""

import hashlib
from typing import Any


class IdempotencyKeyBuilder:
    """Build deterministic idempotency keys.

    The same namespace, operation and components always produce the same
    key, independent of keyword order, so a replayed write lands on the
    row written by the first attempt.

    Example:
        >>> builder = IdempotencyKeyBuilder(namespace="delivery")
        >>> builder.build(
        ...     operation="attempt",
        ...     notification_id="n-1",
        ...     device_token_id="t-9",
        ...     epoch=1,
        ... )
        'delivery:attempt:<16 hex characters>'
    """

    def __init__(self, namespace: str, digest_length: int = 16):
        """Initialize key builder.

        Args:
            namespace: Namespace for key isolation (e.g., "delivery")
            digest_length: Number of hex characters kept from the sha256 digest
        """
        if not namespace:
            raise ValueError("namespace must not be empty")
        self.namespace = namespace
        self.digest_length = digest_length

    def digest(self, operation: str, **components: Any) -> str:
        """Return only the hash part of the key."""
        key_parts = [self.namespace, operation]
        key_parts.extend(f"{k}={v}" for k, v in sorted(components.items()))
        key_string = "|".join(str(part) for part in key_parts)
        return hashlib.sha256(key_string.encode()).hexdigest()[: self.digest_length]

    def build(self, operation: str, **components: Any) -> str:
        """Build idempotency key from components.

        Args:
            operation: Operation type (e.g., "attempt")
            **components: Key components (notification_id, epoch, ...)

        Returns:
            Key string ``<namespace>:<operation>:<digest>``
        """
        return f"{self.namespace}:{operation}:{self.digest(operation, **components)}"
