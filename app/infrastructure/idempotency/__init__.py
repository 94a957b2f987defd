"""Idempotency helpers.

Deterministic keys let a crashed or retried worker replay a write without
creating a second row: the store's ``not_exists`` condition turns the replay
into a no-op.

Usage:

    from infrastructure.idempotency import IdempotencyKeyBuilder

    builder = IdempotencyKeyBuilder(namespace="delivery")
    attempt_id = builder.build("attempt", notification_id=nid, device_token_id=tid, epoch=2)
"""

from infrastructure.idempotency.key_builder import IdempotencyKeyBuilder

__all__ = [
    "IdempotencyKeyBuilder",
]
