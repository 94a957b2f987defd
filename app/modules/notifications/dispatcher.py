"""Fan-out dispatcher.

Sends one notification to every resolved device token:

1. Claim the notification by moving it to ``sending`` with a conditional
   update on (status, attempt_epoch); a second worker loses the race and
   gets ``DuplicateSendError``.
2. Resolve the audience and split tokens into per-platform batches.
3. Run batches on a bounded thread pool; each token gets up to
   ``max_retries`` extra calls for transient failures, then exactly one
   ledger row for the epoch.
4. Record the terminal status, setting ``sent_at`` at most once.

A ``sending`` claim older than ``sending_lease_seconds`` belongs to a
crashed worker and is resumed with the same epoch; tokens already in the
ledger for that epoch are not contacted again. A live worker renews its
claim while fanning out and stops as soon as another worker has taken it
over.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from infrastructure.logging import get_module_logger
from infrastructure.operations import OperationStatus, classify_push_provider_error
from infrastructure.persistence import Condition, TableStore, to_timestamp, utc_now
from infrastructure.resilience import BackoffPolicy
from modules.notifications.audience import AudienceResolver
from modules.notifications.config import FanoutConfig
from modules.notifications.errors import (
    DuplicateSendError,
    InvalidNotificationState,
    NoDevicesError,
    NotificationNotFound,
)
from modules.notifications.ledger import DeliveryLedger
from modules.notifications.models import (
    NOTIFICATIONS_TABLE,
    USER_NOTIFICATIONS_TABLE,
    AudienceResolution,
    DeliveryAttempt,
    DeliveryStatus,
    DeviceToken,
    Notification,
    NotificationStatus,
    SendResult,
    TargetAudience,
    UserNotification,
)
from modules.notifications.payload import build_payload
from modules.notifications.registry import DeviceTokenRegistry

logger = get_module_logger()

SENDABLE_STATUSES = (
    NotificationStatus.DRAFT,
    NotificationStatus.SCHEDULED,
    NotificationStatus.FAILED,
)

_STATUS_BY_CLASSIFICATION = {
    OperationStatus.INVALID_TOKEN: DeliveryStatus.INVALID_TOKEN,
    OperationStatus.NOT_FOUND: DeliveryStatus.INVALID_TOKEN,
    OperationStatus.PERMANENT_ERROR: DeliveryStatus.PERMANENT_ERROR,
    OperationStatus.UNAUTHORIZED: DeliveryStatus.PERMANENT_ERROR,
}


class PushProvider(Protocol):
    """Opaque push delivery capability.

    Returns ``sent``, ``invalid_token`` or ``transient_error`` (as a
    ``DeliveryStatus`` or its string value) and may raise; exceptions are
    classified by ``classify_push_provider_error``.

    Implementations must bound every call by ``timeout`` seconds and raise
    ``TimeoutError`` when it elapses. The dispatcher does not interrupt a
    provider call, so a call that ignores ``timeout`` holds one of the
    ``concurrency`` workers until it returns.
    """

    def send(
        self, platform: str, token: str, payload: Dict[str, Any], timeout: float
    ) -> Any: ...


@dataclass
class _TokenOutcome:
    token: DeviceToken
    status: DeliveryStatus
    calls: int = 0
    error: Optional[str] = None


@dataclass
class _BatchOutcome:
    outcomes: List[_TokenOutcome] = field(default_factory=list)
    skipped: List[DeviceToken] = field(default_factory=list)


@dataclass
class _Claim:
    """This worker's hold on a notification in ``sending``.

    ``started_at`` mirrors the stored ``sending_started_at``; every renewal
    is a compare-and-swap on it, shared by all batches of the fan-out.
    """

    notification: Notification
    started_at: Optional[datetime]
    lost: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)


class FanoutDispatcher:
    """Batched, bounded-concurrency push delivery with idempotent sends.

    Args:
        store: Table store holding notifications and join rows
        resolver: Audience resolver
        registry: Device token registry, used to invalidate dead tokens
        ledger: Delivery ledger
        provider: Push provider capability
        config: Fan-out tuning, defaults to ``FanoutConfig()``
        clock: Returns the current UTC time, injectable for tests
        sleep: Blocks between retries, injectable for tests
    """

    def __init__(
        self,
        store: TableStore,
        resolver: AudienceResolver,
        registry: DeviceTokenRegistry,
        ledger: DeliveryLedger,
        provider: PushProvider,
        config: Optional[FanoutConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.resolver = resolver
        self.registry = registry
        self.ledger = ledger
        self.provider = provider
        self.config = config or FanoutConfig()
        self.clock = clock
        self.sleep = sleep
        self.retry_backoff = BackoffPolicy(
            base_delay_seconds=self.config.retry_base_delay_seconds,
            max_delay_seconds=self.config.retry_max_delay_seconds,
        )

    # -- notification state ------------------------------------------------

    def _load(self, notification_id: str) -> Notification:
        item = self.store.get(NOTIFICATIONS_TABLE, notification_id)
        if item is None:
            raise NotificationNotFound(notification_id)
        return Notification.from_item(item)

    def _claim_is_live(self, notification: Notification, now: datetime) -> bool:
        started = notification.sending_started_at
        lease = timedelta(seconds=self.config.sending_lease_seconds)
        return started is not None and now - started < lease

    def _enter_sending(
        self,
        current: Notification,
        epoch: int,
        now: datetime,
    ) -> Optional[Notification]:
        """CAS the notification into ``sending`` for ``epoch``."""
        updated = self.store.update(
            NOTIFICATIONS_TABLE,
            current.id,
            {
                "status": NotificationStatus.SENDING.value,
                "attempt_epoch": epoch,
                "sending_started_at": to_timestamp(now),
                "previous_status": current.status.value,
            },
            conditions=[
                Condition.eq("status", current.status.value),
                Condition.eq("attempt_epoch", current.attempt_epoch),
            ],
        )
        return Notification.from_item(updated) if updated else None

    @staticmethod
    def _claim_conditions(epoch: int, started_at: Optional[datetime]) -> List[Condition]:
        return [
            Condition.eq("status", NotificationStatus.SENDING.value),
            Condition.eq("attempt_epoch", epoch),
            Condition.eq(
                "sending_started_at", to_timestamp(started_at) if started_at else None
            ),
        ]

    def _resume_sending(self, current: Notification, now: datetime) -> Optional[Notification]:
        """Take over an abandoned ``sending`` claim, keeping its epoch."""
        updated = self.store.update(
            NOTIFICATIONS_TABLE,
            current.id,
            {"sending_started_at": to_timestamp(now)},
            conditions=self._claim_conditions(
                current.attempt_epoch, current.sending_started_at
            ),
        )
        if updated is None:
            return None
        logger.warning(
            "notification_send_resumed",
            notification_id=current.id,
            epoch=current.attempt_epoch,
        )
        return Notification.from_item(updated)

    def _hold_claim(self, claim: _Claim) -> bool:
        """Renew the ``sending`` claim once half of its lease has elapsed.

        Returns False, for good, once another worker has taken the claim
        over; the caller must not start further provider calls.
        """
        with claim.lock:
            if claim.lost:
                return False
            now = self.clock()
            half_lease = timedelta(seconds=self.config.sending_lease_seconds / 2)
            if claim.started_at is not None and now - claim.started_at < half_lease:
                return True

            notification = claim.notification
            updated = self.store.update(
                NOTIFICATIONS_TABLE,
                notification.id,
                {"sending_started_at": to_timestamp(now)},
                conditions=self._claim_conditions(
                    notification.attempt_epoch, claim.started_at
                ),
            )
            if updated is None:
                claim.lost = True
                logger.warning(
                    "notification_claim_lost",
                    notification_id=notification.id,
                    epoch=notification.attempt_epoch,
                )
                return False
            claim.started_at = now
            return True

    def _restore_previous_status(self, notification: Notification) -> None:
        previous = notification.previous_status or NotificationStatus.DRAFT
        self.store.update(
            NOTIFICATIONS_TABLE,
            notification.id,
            {
                "status": previous.value,
                "sending_started_at": None,
                "previous_status": None,
            },
            conditions=[
                Condition.eq("status", NotificationStatus.SENDING.value),
                Condition.eq("attempt_epoch", notification.attempt_epoch),
            ],
        )

    # -- public operations -------------------------------------------------

    def send(
        self,
        notification: Notification | str,
        deadline: Optional[datetime] = None,
    ) -> SendResult:
        """Deliver a notification to its whole audience.

        Args:
            notification: The notification or its id; the stored row is
                always re-read
            deadline: No batch starts after this moment

        Raises:
            DuplicateSendError: Already sent, or another worker is sending or
                took over this send while it ran
            NoDevicesError: The audience resolved to no tokens; the
                notification keeps its previous status
            InvalidNotificationState: Status does not allow a send
            NotificationNotFound: Unknown notification id
        """
        notification_id = (
            notification.id if isinstance(notification, Notification) else notification
        )
        current = self._load(notification_id)
        if current.sent_at is not None:
            logger.info(
                "notification_duplicate_send_rejected",
                notification_id=notification_id,
                reason="already_sent",
            )
            raise DuplicateSendError(notification_id, "already_sent", current.sent_at)

        now = self.clock()
        resumed = False
        if current.status == NotificationStatus.SENDING:
            if self._claim_is_live(current, now):
                raise DuplicateSendError(notification_id, "in_progress")
            claimed = self._resume_sending(current, now)
            resumed = True
        elif current.status in SENDABLE_STATUSES:
            claimed = self._enter_sending(current, current.attempt_epoch + 1, now)
        else:
            raise InvalidNotificationState(notification_id, current.status.value, "send")

        if claimed is None:
            latest = self._load(notification_id)
            reason = "already_sent" if latest.sent_at else "in_progress"
            raise DuplicateSendError(notification_id, reason, latest.sent_at)

        try:
            resolution = self.resolver.resolve(claimed)
        except NoDevicesError:
            self._restore_previous_status(claimed)
            raise

        return self._fan_out(claimed, resolution, deadline, resumed)

    def resend_failed(
        self,
        notification: Notification | str,
        deadline: Optional[datetime] = None,
    ) -> SendResult:
        """Re-target tokens whose latest attempt ended in a transient error.

        Only allowed from ``partial_failure``. Tokens deleted since the
        previous epoch are dropped. Runs under a new epoch so the ledger
        keeps both attempts.

        Raises:
            InvalidNotificationState: Status is not ``partial_failure``
            NoDevicesError: No failed token is left to retry
            DuplicateSendError: Another worker claimed the notification first
        """
        notification_id = (
            notification.id if isinstance(notification, Notification) else notification
        )
        current = self._load(notification_id)
        now = self.clock()

        if (
            current.status == NotificationStatus.SENDING
            and current.previous_status == NotificationStatus.PARTIAL_FAILURE
        ):
            if self._claim_is_live(current, now):
                raise DuplicateSendError(notification_id, "in_progress")
            claimed = self._resume_sending(current, now)
            resumed = True
        elif current.status == NotificationStatus.PARTIAL_FAILURE:
            claimed = None
            resumed = False
        else:
            raise InvalidNotificationState(
                notification_id, current.status.value, "resend failed tokens of"
            )

        target_epoch = claimed.attempt_epoch if claimed else current.attempt_epoch + 1
        latest = self.ledger.latest_by_token(notification_id, before_epoch=target_epoch)
        tokens = []
        for token_id, attempt in sorted(latest.items()):
            if attempt.status != DeliveryStatus.TRANSIENT_ERROR:
                continue
            token = self.registry.get(token_id)
            if token is not None:
                tokens.append(token)

        if not tokens:
            if claimed is not None:
                self._restore_previous_status(claimed)
            logger.info("notification_nothing_to_resend", notification_id=notification_id)
            raise NoDevicesError(notification_id, reason="nothing_to_resend")

        if claimed is None:
            claimed = self._enter_sending(current, target_epoch, now)
            if claimed is None:
                raise DuplicateSendError(notification_id, "in_progress")

        logger.info(
            "notification_resend_started",
            notification_id=notification_id,
            epoch=claimed.attempt_epoch,
            tokens=len(tokens),
        )
        resolution = AudienceResolution(
            tokens=tokens,
            resolved_recipients=len({token.user_id for token in tokens}),
        )
        return self._fan_out(claimed, resolution, deadline, resumed)

    # -- delivery ------------------------------------------------------------

    def _batches(self, tokens: Iterable[DeviceToken]) -> List[List[DeviceToken]]:
        by_platform: Dict[str, List[DeviceToken]] = {}
        for token in tokens:
            by_platform.setdefault(token.platform.value, []).append(token)
        size = self.config.max_batch_size
        return [
            group[start : start + size]
            for _, group in sorted(by_platform.items())
            for start in range(0, len(group), size)
        ]

    def _deadline_passed(self, deadline: Optional[datetime]) -> bool:
        return deadline is not None and self.clock() >= deadline

    def _call_provider(
        self, token: DeviceToken, payload: Dict[str, Any]
    ) -> tuple[DeliveryStatus, Optional[str]]:
        try:
            returned = self.provider.send(
                token.platform.value,
                token.token,
                payload,
                timeout=self.config.call_timeout_seconds,
            )
            status = DeliveryStatus(returned)
        except Exception as exc:  # pylint: disable=broad-except
            result = classify_push_provider_error(exc)
            status = _STATUS_BY_CLASSIFICATION.get(
                result.status, DeliveryStatus.TRANSIENT_ERROR
            )
            return status, result.message
        if status == DeliveryStatus.TRANSIENT_ERROR:
            return status, "provider reported a transient error"
        if status == DeliveryStatus.INVALID_TOKEN:
            return status, "provider reported the token as invalid"
        return status, None

    def _deliver_token(
        self, token: DeviceToken, payload: Dict[str, Any]
    ) -> _TokenOutcome:
        outcome = _TokenOutcome(token=token, status=DeliveryStatus.TRANSIENT_ERROR)
        for attempt in range(self.config.max_retries + 1):
            outcome.calls += 1
            outcome.status, outcome.error = self._call_provider(token, payload)
            if outcome.status != DeliveryStatus.TRANSIENT_ERROR:
                break
            if attempt < self.config.max_retries:
                self.sleep(self.retry_backoff.delay(attempt + 1))
        return outcome

    def _record(self, notification: Notification, outcome: _TokenOutcome) -> None:
        epoch = notification.attempt_epoch
        self.ledger.record(
            DeliveryAttempt(
                attempt_id=self.ledger.attempt_id(notification.id, outcome.token.id, epoch),
                notification_id=notification.id,
                device_token_id=outcome.token.id,
                status=outcome.status,
                error=outcome.error,
                attempted_at=self.clock(),
                epoch=epoch,
                user_id=outcome.token.user_id,
                platform=outcome.token.platform,
                calls=outcome.calls,
            )
        )
        if outcome.status == DeliveryStatus.INVALID_TOKEN:
            self.registry.invalidate(outcome.token.id)

    def _run_batch(
        self,
        claim: _Claim,
        batch: List[DeviceToken],
        payload: Dict[str, Any],
        deadline: Optional[datetime],
    ) -> _BatchOutcome:
        if self._deadline_passed(deadline):
            return _BatchOutcome(skipped=list(batch))

        notification = claim.notification
        result = _BatchOutcome()
        for token in batch:
            if not self._hold_claim(claim):
                return result
            outcome = self._deliver_token(token, payload)
            self._record(notification, outcome)
            result.outcomes.append(outcome)

        logger.info(
            "fanout_batch_completed",
            notification_id=notification.id,
            epoch=notification.attempt_epoch,
            platform=batch[0].platform.value,
            size=len(batch),
            sent=sum(1 for o in result.outcomes if o.status == DeliveryStatus.SENT),
        )
        return result

    def _fan_out(
        self,
        notification: Notification,
        resolution: AudienceResolution,
        deadline: Optional[datetime],
        resumed: bool,
    ) -> SendResult:
        epoch = notification.attempt_epoch
        result = SendResult(
            notification_id=notification.id,
            status=NotificationStatus.SENDING,
            epoch=epoch,
            resumed=resumed,
            expected_recipients=resolution.expected_recipients,
            missing_recipients=resolution.missing_recipients,
        )
        sent_users = set()

        # A resumed epoch counts every recorded row, including tokens the
        # crashed worker already invalidated and that no longer resolve.
        recorded = self.ledger.for_epoch(notification.id, epoch) if resumed else {}
        for attempt in recorded.values():
            self._tally(result, attempt.device_token_id, attempt.status)
            if attempt.status == DeliveryStatus.SENT and attempt.user_id:
                sent_users.add(attempt.user_id)
        pending = [token for token in resolution.tokens if token.id not in recorded]
        result.total = len(recorded) + len(pending)

        claim = _Claim(notification=notification, started_at=notification.sending_started_at)
        payload = build_payload(notification, self.config.icon_url)
        batches = self._batches(pending)
        logger.info(
            "fanout_started",
            notification_id=notification.id,
            epoch=epoch,
            tokens=len(pending),
            batches=len(batches),
            resumed=resumed,
        )

        with ThreadPoolExecutor(max_workers=self.config.concurrency) as executor:
            futures = [
                executor.submit(self._run_batch, claim, batch, payload, deadline)
                for batch in batches
            ]
            batch_results = [future.result() for future in futures]

        if claim.lost:
            logger.warning(
                "fanout_stopped_claim_lost",
                notification_id=notification.id,
                epoch=epoch,
                attempted=sum(len(done.outcomes) for done in batch_results),
            )
            raise DuplicateSendError(notification.id, "claim_lost")

        for batch_result in batch_results:
            for outcome in batch_result.outcomes:
                self._tally(result, outcome.token.id, outcome.status)
                if outcome.status == DeliveryStatus.SENT:
                    sent_users.add(outcome.token.user_id)
            for token in batch_result.skipped:
                self._record_skipped(notification, token)
                result.skipped += 1
                result.skipped_token_ids.append(token.id)

        result.timed_out = result.skipped > 0
        if result.timed_out:
            logger.warning(
                "fanout_deadline_exceeded",
                notification_id=notification.id,
                epoch=epoch,
                skipped=result.skipped,
            )

        if notification.target_audience == TargetAudience.ALL and sent_users:
            self._materialize_recipients(notification.id, sent_users)

        self._complete(claim, result)
        return result

    def _record_skipped(self, notification: Notification, token: DeviceToken) -> None:
        """Ledger row for a token never attempted, so a resend picks it up."""
        self.ledger.record(
            DeliveryAttempt(
                attempt_id=self.ledger.attempt_id(
                    notification.id, token.id, notification.attempt_epoch
                ),
                notification_id=notification.id,
                device_token_id=token.id,
                status=DeliveryStatus.TRANSIENT_ERROR,
                error="not attempted: deadline passed",
                attempted_at=self.clock(),
                epoch=notification.attempt_epoch,
                user_id=token.user_id,
                platform=token.platform,
                calls=0,
            )
        )

    @staticmethod
    def _tally(result: SendResult, token_id: str, status: DeliveryStatus) -> None:
        if status == DeliveryStatus.SENT:
            result.sent += 1
        elif status == DeliveryStatus.INVALID_TOKEN:
            result.invalid += 1
            result.invalid_token_ids.append(token_id)
        else:
            result.failed += 1
            result.failed_token_ids.append(token_id)

    def _materialize_recipients(self, notification_id: str, user_ids: Iterable[str]) -> None:
        now = self.clock()
        for user_id in sorted(user_ids):
            row = UserNotification(
                user_id=user_id, notification_id=notification_id, created_at=now
            )
            self.store.put(
                USER_NOTIFICATIONS_TABLE,
                row.to_item(),
                conditions=[Condition.not_exists("id")],
            )

    def _complete(self, claim: _Claim, result: SendResult) -> None:
        notification = claim.notification
        if result.sent == 0:
            status = (
                NotificationStatus.PARTIAL_FAILURE
                if notification.sent_at is not None
                else NotificationStatus.FAILED
            )
        elif result.failed or result.invalid or result.skipped:
            status = NotificationStatus.PARTIAL_FAILURE
        else:
            status = NotificationStatus.SENT

        now = self.clock()
        changes: Dict[str, Any] = {
            "status": status.value,
            "sending_started_at": None,
            "previous_status": None,
        }
        conditions = self._claim_conditions(notification.attempt_epoch, claim.started_at)
        if result.sent and notification.sent_at is None:
            changes["sent_at"] = to_timestamp(now)
            conditions.append(Condition.not_exists("sent_at"))

        updated = self.store.update(
            NOTIFICATIONS_TABLE, notification.id, changes, conditions=conditions
        )
        if updated is None:
            logger.warning(
                "notification_completion_conflict",
                notification_id=notification.id,
                epoch=notification.attempt_epoch,
            )
        result.status = status

        log = logger.info if status == NotificationStatus.SENT else logger.warning
        log(
            "notification_send_completed",
            notification_id=notification.id,
            epoch=notification.attempt_epoch,
            status=status.value,
            total=result.total,
            sent=result.sent,
            failed=result.failed,
            invalid=result.invalid,
            skipped=result.skipped,
        )
