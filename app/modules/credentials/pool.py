"""Fair, concurrency-safe rotation over a pool of API keys.

Every worker process shares the ``api_keys`` table and nothing else. A key
is claimed with a conditional update on the usage counter it observed
(plus the observed lease and cooldown), so two callers racing for the same
row cannot both win: the loser re-reads the table and selects again.

Selection order: least ``usage_count``, never-used before least recently
used, then id.
"""

import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple, TypeVar

from infrastructure.logging import get_module_logger
from infrastructure.operations import (
    OperationResult,
    ProviderPermanentError,
    ProviderTransientError,
    classify_ai_provider_error,
)
from infrastructure.persistence import (
    Condition,
    StoreConflict,
    TableStore,
    to_timestamp,
    utc_now,
)
from infrastructure.resilience import BackoffPolicy
from modules.credentials.config import KeyPoolConfig
from modules.credentials.errors import KeyQuotaExceeded, PoolExhausted
from modules.credentials.models import (
    ApiKeyRecord,
    KeyHandle,
    KeyOutcome,
    PoolSnapshot,
    ReleaseResult,
)

logger = get_module_logger()

API_KEYS_TABLE = "api_keys"

T = TypeVar("T")


class KeyRotationPool:
    """Select and release API keys stored in a shared table.

    Args:
        store: Table store holding the ``api_keys`` table
        config: Pool tuning, defaults to ``KeyPoolConfig()``
        clock: Returns the current UTC time, injectable for tests
        backoff: Cooldown policy, built from ``config`` when omitted
    """

    def __init__(
        self,
        store: TableStore,
        config: Optional[KeyPoolConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        backoff: Optional[BackoffPolicy] = None,
    ):
        self.store = store
        self.config = config or KeyPoolConfig()
        self.clock = clock
        self.backoff = backoff or BackoffPolicy(
            base_delay_seconds=self.config.cooldown_base_seconds,
            max_delay_seconds=self.config.cooldown_max_seconds,
        )

    def _load_active(self) -> List[ApiKeyRecord]:
        return [
            ApiKeyRecord.from_item(item)
            for item in self.store.scan(API_KEYS_TABLE, {"active": True})
        ]

    @staticmethod
    def _partition(
        records: List[ApiKeyRecord], now: datetime
    ) -> Tuple[List[ApiKeyRecord], PoolSnapshot]:
        snapshot = PoolSnapshot(total=len(records))
        eligible = []
        for record in records:
            if not record.active:
                continue
            snapshot.active += 1
            if record.is_cooling(now):
                snapshot.cooling += 1
            elif record.is_leased(now):
                snapshot.leased += 1
            else:
                eligible.append(record)
        snapshot.available = len(eligible)
        return eligible, snapshot

    def snapshot(self) -> PoolSnapshot:
        """Return current availability counts without claiming anything."""
        _, snapshot = self._partition(self._load_active(), self.clock())
        return snapshot

    def acquire(self, workload_class: str = "default") -> KeyHandle:
        """Claim the least used available key.

        Args:
            workload_class: Label of the calling workload, recorded on the
                handle and in logs

        Returns:
            KeyHandle holding a lease on the key

        Raises:
            PoolExhausted: No key qualifies; nothing was modified
            StoreConflict: Lost the claim race ``max_cas_attempts`` times
        """
        for attempt in range(1, self.config.max_cas_attempts + 1):
            now = self.clock()
            eligible, snapshot = self._partition(self._load_active(), now)
            if not eligible:
                logger.warning(
                    "key_pool_exhausted",
                    workload_class=workload_class,
                    active=snapshot.active,
                    cooling=snapshot.cooling,
                    leased=snapshot.leased,
                )
                raise PoolExhausted(
                    active=snapshot.active,
                    cooling=snapshot.cooling,
                    leased=snapshot.leased,
                    workload_class=workload_class,
                )

            candidate = min(eligible, key=ApiKeyRecord.selection_key)
            lease_id = uuid.uuid4().hex
            lease_expires_at = now + timedelta(seconds=self.config.lease_seconds)
            claimed = self.store.update(
                API_KEYS_TABLE,
                candidate.id,
                {
                    "usage_count": candidate.usage_count + 1,
                    "lease_id": lease_id,
                    "lease_expires_at": to_timestamp(lease_expires_at),
                    "updated_at": to_timestamp(now),
                },
                conditions=[
                    Condition.eq("active", True),
                    Condition.eq("usage_count", candidate.usage_count),
                    Condition.eq("lease_id", candidate.lease_id),
                    Condition.eq(
                        "cooldown_until",
                        to_timestamp(candidate.cooldown_until)
                        if candidate.cooldown_until
                        else None,
                    ),
                ],
            )
            if claimed is None:
                logger.debug(
                    "api_key_claim_conflict",
                    key_id=candidate.id,
                    attempt=attempt,
                    workload_class=workload_class,
                )
                continue

            logger.info(
                "api_key_acquired",
                key_id=candidate.id,
                key_name=candidate.name,
                usage_count=candidate.usage_count + 1,
                workload_class=workload_class,
                attempt=attempt,
            )
            return KeyHandle(
                key_id=candidate.id,
                name=candidate.name,
                secret=candidate.secret,
                lease_id=lease_id,
                lease_expires_at=lease_expires_at,
                usage_count=candidate.usage_count + 1,
                workload_class=workload_class,
            )

        logger.warning(
            "api_key_claim_attempts_exhausted",
            attempts=self.config.max_cas_attempts,
            workload_class=workload_class,
        )
        raise StoreConflict(API_KEYS_TABLE, None, self.config.max_cas_attempts)

    def release(self, handle: KeyHandle, outcome: KeyOutcome | str) -> ReleaseResult:
        """Report how the key performed and give it back to the pool.

        The lease is only cleared when the caller still holds it; the
        outcome's effect on the key (cooldown, failure counters) applies
        either way.

        Args:
            handle: Handle returned by ``acquire``
            outcome: success, quota_exceeded, transient_error or
                permanent_failure

        Returns:
            ReleaseResult, with ``deactivated`` set when this release
            switched the key off

        Raises:
            StoreConflict: Lost the update race ``max_cas_attempts`` times
        """
        outcome = KeyOutcome(outcome)

        for attempt in range(1, self.config.max_cas_attempts + 1):
            item = self.store.get(API_KEYS_TABLE, handle.key_id)
            if item is None:
                logger.warning(
                    "api_key_release_missing_key",
                    key_id=handle.key_id,
                    outcome=outcome.value,
                )
                return ReleaseResult(key_id=handle.key_id, outcome=outcome, applied=False)

            record = ApiKeyRecord.from_item(item)
            now = self.clock()
            lease_held = record.lease_id == handle.lease_id
            changes: dict = {"updated_at": to_timestamp(now)}
            if lease_held:
                changes["lease_id"] = None
                changes["lease_expires_at"] = None

            failure_streak = record.failure_streak
            permanent_failures = record.permanent_failures
            cooldown_until = None
            deactivated = False

            if outcome == KeyOutcome.SUCCESS:
                failure_streak = 0
                permanent_failures = 0
                changes["last_used_at"] = to_timestamp(now)
                changes["cooldown_until"] = None
            elif outcome == KeyOutcome.QUOTA_EXCEEDED:
                failure_streak += 1
                permanent_failures = 0
                cooldown_until = now + timedelta(
                    seconds=self.backoff.delay(failure_streak)
                )
                changes["cooldown_until"] = to_timestamp(cooldown_until)
            elif outcome == KeyOutcome.PERMANENT_FAILURE:
                permanent_failures += 1
                if (
                    record.active
                    and permanent_failures >= self.config.permanent_failure_threshold
                ):
                    changes["active"] = False
                    deactivated = True

            changes["failure_streak"] = failure_streak
            changes["permanent_failures"] = permanent_failures

            updated = self.store.update(
                API_KEYS_TABLE,
                handle.key_id,
                changes,
                conditions=[
                    Condition.eq("failure_streak", record.failure_streak),
                    Condition.eq("permanent_failures", record.permanent_failures),
                    Condition.eq("lease_id", record.lease_id),
                ],
            )
            if updated is None:
                logger.debug(
                    "api_key_release_conflict",
                    key_id=handle.key_id,
                    attempt=attempt,
                )
                continue

            self._log_release(
                handle,
                outcome,
                lease_held,
                cooldown_until,
                deactivated,
                permanent_failures,
            )
            return ReleaseResult(
                key_id=handle.key_id,
                outcome=outcome,
                lease_held=lease_held,
                deactivated=deactivated,
                cooldown_until=cooldown_until,
                failure_streak=failure_streak,
                permanent_failures=permanent_failures,
            )

        logger.warning(
            "api_key_release_attempts_exhausted",
            key_id=handle.key_id,
            attempts=self.config.max_cas_attempts,
        )
        raise StoreConflict(API_KEYS_TABLE, handle.key_id, self.config.max_cas_attempts)

    @staticmethod
    def _log_release(
        handle: KeyHandle,
        outcome: KeyOutcome,
        lease_held: bool,
        cooldown_until: Optional[datetime],
        deactivated: bool,
        permanent_failures: int,
    ) -> None:
        if not lease_held:
            logger.warning("api_key_lease_lost", key_id=handle.key_id, outcome=outcome.value)
        if deactivated:
            logger.error(
                "api_key_deactivated",
                key_id=handle.key_id,
                key_name=handle.name,
                permanent_failures=permanent_failures,
            )
        elif outcome == KeyOutcome.QUOTA_EXCEEDED:
            logger.warning(
                "api_key_cooling_down",
                key_id=handle.key_id,
                cooldown_until=cooldown_until.isoformat() if cooldown_until else None,
            )
        elif outcome == KeyOutcome.PERMANENT_FAILURE:
            logger.warning(
                "api_key_permanent_failure",
                key_id=handle.key_id,
                permanent_failures=permanent_failures,
            )
        else:
            logger.info("api_key_released", key_id=handle.key_id, outcome=outcome.value)

    def run(
        self,
        workload_class: str,
        call: Callable[[str], T],
        classify: Callable[[Exception], OperationResult] = classify_ai_provider_error,
        max_rotations: Optional[int] = None,
    ) -> T:
        """Acquire a key, invoke ``call`` with its secret and release it.

        Quota errors rotate to the next key, up to ``max_rotations`` extra
        keys. Exceptions raised by ``call`` are classified with ``classify``
        and never escape in their raw provider shape.

        Raises:
            PoolExhausted: No key available (possibly mid-rotation)
            KeyQuotaExceeded: Every key tried reported a quota error
            ProviderPermanentError: The provider rejected the request or key
            ProviderTransientError: The provider failed in a retryable way
        """
        rotations_allowed = (
            self.config.max_rotations if max_rotations is None else max_rotations
        )
        rotations = 0
        while True:
            handle = self.acquire(workload_class)
            try:
                value = call(handle.secret)
            except Exception as exc:  # pylint: disable=broad-except
                result = classify(exc)
                outcome = KeyOutcome.from_status(result.status)
                release = self.release(handle, outcome)
                if outcome == KeyOutcome.QUOTA_EXCEEDED:
                    if rotations < rotations_allowed:
                        rotations += 1
                        logger.info(
                            "api_key_rotated",
                            key_id=handle.key_id,
                            rotation=rotations,
                            workload_class=workload_class,
                        )
                        continue
                    raise KeyQuotaExceeded(
                        handle.key_id, rotations, release.cooldown_until
                    ) from exc
                if outcome == KeyOutcome.PERMANENT_FAILURE:
                    raise ProviderPermanentError(result.message, response=result) from exc
                raise ProviderTransientError(result.message, response=result) from exc

            self.release(handle, KeyOutcome.SUCCESS)
            return value
