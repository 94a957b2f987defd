"""Delivery ledger.

Append-only record of the final delivery outcome per token per send
epoch. The row id is a deterministic hash of (notification_id,
device_token_id, epoch), so replaying an attempt after a crash or a
resumed send writes nothing new.
"""

from typing import Dict, List, Optional, Set

from infrastructure.idempotency import IdempotencyKeyBuilder
from infrastructure.logging import get_module_logger
from infrastructure.persistence import Condition, TableStore
from modules.notifications.models import DELIVERY_ATTEMPTS_TABLE, DeliveryAttempt

logger = get_module_logger()


class DeliveryLedger:
    def __init__(
        self,
        store: TableStore,
        key_builder: Optional[IdempotencyKeyBuilder] = None,
    ):
        self.store = store
        self.key_builder = key_builder or IdempotencyKeyBuilder(namespace="delivery")

    def attempt_id(self, notification_id: str, device_token_id: str, epoch: int) -> str:
        return self.key_builder.build(
            "attempt",
            notification_id=notification_id,
            device_token_id=device_token_id,
            epoch=epoch,
        )

    def record(self, attempt: DeliveryAttempt) -> bool:
        """Append an attempt.

        Returns:
            True if the row was written, False if this attempt id already
            exists (the write is a no-op)
        """
        written = self.store.put(
            DELIVERY_ATTEMPTS_TABLE,
            attempt.to_item(),
            conditions=[Condition.not_exists("id")],
        )
        if not written:
            logger.debug(
                "delivery_attempt_already_recorded",
                attempt_id=attempt.attempt_id,
                notification_id=attempt.notification_id,
            )
        return written

    def get(self, attempt_id: str) -> Optional[DeliveryAttempt]:
        item = self.store.get(DELIVERY_ATTEMPTS_TABLE, attempt_id)
        return DeliveryAttempt.from_item(item) if item else None

    def query(self, notification_id: str) -> List[DeliveryAttempt]:
        """Every attempt for a notification, oldest epoch first."""
        attempts = [
            DeliveryAttempt.from_item(item)
            for item in self.store.scan(
                DELIVERY_ATTEMPTS_TABLE, {"notification_id": notification_id}
            )
        ]
        attempts.sort(key=lambda a: (a.epoch, a.attempted_at, a.device_token_id))
        return attempts

    def for_epoch(self, notification_id: str, epoch: int) -> Dict[str, DeliveryAttempt]:
        """Attempts of one epoch keyed by device token id."""
        return {
            attempt.device_token_id: attempt
            for attempt in self.query(notification_id)
            if attempt.epoch == epoch
        }

    def latest_by_token(
        self, notification_id: str, before_epoch: Optional[int] = None
    ) -> Dict[str, DeliveryAttempt]:
        """The most recent attempt per device token.

        Args:
            before_epoch: Ignore attempts of this epoch and later
        """
        latest: Dict[str, DeliveryAttempt] = {}
        for attempt in self.query(notification_id):
            if before_epoch is not None and attempt.epoch >= before_epoch:
                continue
            latest[attempt.device_token_id] = attempt
        return latest

    def token_ids(self, notification_id: str) -> Set[str]:
        return {attempt.device_token_id for attempt in self.query(notification_id)}
