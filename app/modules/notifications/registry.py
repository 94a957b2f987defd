"""Device token registry.

Owns the lifecycle of device tokens: registration with reinstall
semantics, duplicate pruning, audience queries and invalidation.

At most one row per (user_id, platform) is canonical, the freshest one.
Duplicates may exist for a moment while a registration is in flight and
are removed by ``register`` itself or by ``prune``. Every delete of a
non-canonical row is conditional on the row not having been touched since
the operation started, so a concurrent registration is never lost.
"""

from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Tuple

from infrastructure.idempotency import IdempotencyKeyBuilder
from infrastructure.logging import get_module_logger
from infrastructure.persistence import Condition, TableStore, to_timestamp, utc_now
from modules.notifications.errors import DeviceTokenNotFound
from modules.notifications.models import (
    DEVICE_TOKENS_TABLE,
    AudienceSpec,
    DeviceStats,
    DeviceToken,
    Platform,
    PruneResult,
    TargetAudience,
)

logger = get_module_logger()

_token_ids = IdempotencyKeyBuilder(namespace="device_token", digest_length=32)


def token_row_id(user_id: str, token: str) -> str:
    """Row id for a (user, token) pair, stable across repeated registrations."""
    return _token_ids.digest("register", user_id=user_id, token=token)


class DeviceTokenRegistry:
    """Device token storage on top of the shared table store."""

    def __init__(self, store: TableStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def _load(self, filters=None) -> List[DeviceToken]:
        return [
            DeviceToken.from_item(item)
            for item in self.store.scan(DEVICE_TOKENS_TABLE, filters)
        ]

    def _delete_if_untouched(self, row: DeviceToken, snapshot: str) -> bool:
        return self.store.delete(
            DEVICE_TOKENS_TABLE,
            row.id,
            conditions=[Condition.le("last_used", snapshot)],
        )

    def get(self, token_id: str) -> DeviceToken | None:
        item = self.store.get(DEVICE_TOKENS_TABLE, token_id)
        return DeviceToken.from_item(item) if item else None

    def register(self, user_id: str, platform: Platform | str, token: str) -> DeviceToken:
        """Register a device token for a user.

        A token already known for (user_id, platform) only gets its
        ``last_used`` refreshed. A new token value is written first, then
        older rows of the same (user_id, platform) are deleted.
        """
        platform = Platform(platform)
        if not user_id or not token:
            raise ValueError("user_id and token are required")

        now = self.clock()
        stamp = to_timestamp(now)
        existing = self._load({"user_id": user_id, "platform": platform.value})
        row_id = token_row_id(user_id, token)

        refreshed = None
        if any(row.id == row_id for row in existing):
            refreshed = self.store.update(
                DEVICE_TOKENS_TABLE, row_id, {"last_used": stamp}
            )

        if refreshed is not None:
            device = DeviceToken.from_item(refreshed)
            logger.debug("device_token_refreshed", device_token_id=row_id, user_id=user_id)
        else:
            device = DeviceToken(
                id=row_id,
                user_id=user_id,
                token=token,
                platform=platform,
                created_at=now,
                last_used=now,
            )
            self.store.put(DEVICE_TOKENS_TABLE, device.to_item())
            logger.info(
                "device_token_registered",
                device_token_id=row_id,
                user_id=user_id,
                platform=platform.value,
            )

        replaced = 0
        for row in existing:
            if row.id != row_id and self._delete_if_untouched(row, stamp):
                replaced += 1
        if replaced:
            logger.info(
                "device_token_replaced",
                device_token_id=row_id,
                user_id=user_id,
                platform=platform.value,
                replaced=replaced,
            )
        return device

    def prune(self) -> PruneResult:
        """Delete every non-canonical row, keeping the freshest per (user, platform).

        The snapshot time is taken before the table is read; a row touched
        after it (a concurrent ``register``) fails the delete condition and
        is counted as skipped. Safe to run repeatedly.
        """
        snapshot = to_timestamp(self.clock())
        rows = self._load()
        result = PruneResult(examined=len(rows))

        groups: Dict[Tuple[str, str], List[DeviceToken]] = defaultdict(list)
        for row in rows:
            groups[(row.user_id, row.platform.value)].append(row)

        for group in groups.values():
            if len(group) < 2:
                continue
            keep = max(group, key=DeviceToken.freshness)
            for row in group:
                if row.id == keep.id:
                    continue
                if self._delete_if_untouched(row, snapshot):
                    result.deleted += 1
                else:
                    result.skipped += 1

        logger.info(
            "device_tokens_pruned",
            examined=result.examined,
            deleted=result.deleted,
            skipped=result.skipped,
        )
        return result

    def list_for_audience(self, spec: AudienceSpec) -> List[DeviceToken]:
        """Tokens for everyone or for exactly the given users, unique by id."""
        if spec.audience == TargetAudience.ALL:
            rows = self._load()
        elif not spec.user_ids:
            rows = []
        else:
            rows = self._load({"user_id": list(spec.user_ids)})
        unique = {row.id: row for row in rows}
        return sorted(unique.values(), key=lambda row: (row.user_id, row.platform.value, row.id))

    def invalidate(self, token_id: str) -> bool:
        """Delete a token the push provider reported as permanently invalid."""
        deleted = self.store.delete(DEVICE_TOKENS_TABLE, token_id)
        if deleted:
            logger.info("device_token_invalidated", device_token_id=token_id)
        return deleted

    def remove(self, user_id: str, token: str) -> int:
        """Forget a token on logout. Returns the number of rows removed."""
        removed = 0
        for row in self._load({"user_id": user_id, "token": token}):
            if self.store.delete(DEVICE_TOKENS_TABLE, row.id):
                removed += 1
        logger.info("device_token_removed", user_id=user_id, removed=removed)
        return removed

    def delete(self, token_id: str) -> None:
        if not self.store.delete(DEVICE_TOKENS_TABLE, token_id):
            raise DeviceTokenNotFound(token_id)
        logger.info("device_token_deleted", device_token_id=token_id)

    def list_all(self) -> List[DeviceToken]:
        return self.list_for_audience(AudienceSpec.everyone())

    def stats(self) -> DeviceStats:
        rows = self._load()
        by_platform: Dict[str, int] = {platform.value: 0 for platform in Platform}
        for row in rows:
            by_platform[row.platform.value] += 1
        return DeviceStats(
            total_devices=len(rows),
            unique_users=len({row.user_id for row in rows}),
            by_platform=by_platform,
        )
