"""Unit tests for FanoutDispatcher.

Tests cover:
- Outcome accounting, ledger rows and invalid token cleanup
- The idempotent send guard (already sent, in progress, stale claims)
- Retries of transient failures and non-retried payload rejections
- Deadlines and the resend of the failed subset
"""

import threading
import time
from datetime import timedelta

import pytest

from modules.notifications import (
    DeliveryAttempt,
    DeliveryStatus,
    DuplicateSendError,
    FanoutConfig,
    InvalidNotificationState,
    NoDevicesError,
    NotificationStatus,
    Platform,
)
from modules.notifications.models import USER_NOTIFICATIONS_TABLE
from tests.factories.fakes import FakePushProvider
from tests.factories.notifications import (
    load_notification,
    make_notification,
    seed_notification,
)

pytestmark = pytest.mark.unit


class ProviderHTTPError(Exception):
    def __init__(self, status_code, message):
        super().__init__(message)
        self.status_code = status_code


def register_users(registry, count, platform=Platform.ANDROID, prefix="fcm"):
    return [
        registry.register(f"user-{i}", platform, f"{prefix}-{i}") for i in range(count)
    ]


class TestSend:
    def test_partial_failure_with_invalid_tokens(
        self, make_dispatcher, registry, ledger, memory_store
    ):
        tokens = register_users(registry, 10)
        provider = FakePushProvider(
            responses={"fcm-3": ["invalid_token"], "fcm-7": ["invalid_token"]}
        )
        seed_notification(memory_store, make_notification())

        result = make_dispatcher(provider).send("notif-1")

        assert (result.total, result.sent, result.invalid, result.failed) == (10, 8, 2, 0)
        assert result.status == NotificationStatus.PARTIAL_FAILURE
        rows = ledger.query("notif-1")
        assert len(rows) == 10
        assert sum(1 for r in rows if r.status == DeliveryStatus.SENT) == 8
        assert sum(1 for r in rows if r.status == DeliveryStatus.INVALID_TOKEN) == 2
        assert registry.get(tokens[3].id) is None
        assert registry.get(tokens[7].id) is None
        assert len(registry.list_all()) == 8
        stored = load_notification(memory_store, "notif-1")
        assert stored.sent_at is not None
        assert stored.status == NotificationStatus.PARTIAL_FAILURE
        assert stored.attempt_epoch == 1

    def test_every_token_delivered(self, dispatcher, push_provider, registry, memory_store, clock):
        register_users(registry, 3)
        seed_notification(memory_store, make_notification())

        result = dispatcher.send("notif-1")

        assert result.status == NotificationStatus.SENT
        assert result.sent == 3
        stored = load_notification(memory_store, "notif-1")
        assert stored.sent_at == clock()
        assert stored.sending_started_at is None
        platform, _, payload, timeout = push_provider.calls[0]
        assert platform == "android"
        assert payload["notification"]["title"] == "New Blog Post"
        assert timeout == 5.0

    def test_zero_devices_keeps_sent_at_unset(self, dispatcher, memory_store):
        seed_notification(memory_store, make_notification())

        with pytest.raises(NoDevicesError) as exc_info:
            dispatcher.send("notif-1")

        assert exc_info.value.reason == "no_devices"
        stored = load_notification(memory_store, "notif-1")
        assert stored.sent_at is None
        assert stored.status == NotificationStatus.DRAFT

    def test_second_send_is_rejected_without_new_ledger_rows(
        self, dispatcher, push_provider, registry, ledger, memory_store
    ):
        register_users(registry, 2)
        seed_notification(memory_store, make_notification())
        dispatcher.send("notif-1")
        calls = len(push_provider.calls)

        with pytest.raises(DuplicateSendError) as exc_info:
            dispatcher.send("notif-1")

        assert exc_info.value.reason == "already_sent"
        assert exc_info.value.sent_at is not None
        assert len(push_provider.calls) == calls
        assert len(ledger.query("notif-1")) == 2

    def test_live_sending_claim_is_in_progress(self, dispatcher, registry, memory_store, clock):
        register_users(registry, 1)
        seed_notification(
            memory_store,
            make_notification(
                status=NotificationStatus.SENDING,
                attempt_epoch=1,
                sending_started_at=clock() - timedelta(seconds=60),
                previous_status=NotificationStatus.DRAFT,
            ),
        )

        with pytest.raises(DuplicateSendError) as exc_info:
            dispatcher.send("notif-1")

        assert exc_info.value.reason == "in_progress"

    def test_abandoned_claim_resumes_same_epoch(
        self, make_dispatcher, registry, ledger, memory_store, clock
    ):
        tokens = register_users(registry, 3)
        seed_notification(
            memory_store,
            make_notification(
                status=NotificationStatus.SENDING,
                attempt_epoch=1,
                sending_started_at=clock() - timedelta(hours=1),
                previous_status=NotificationStatus.DRAFT,
            ),
        )
        ledger.record(
            DeliveryAttempt(
                attempt_id=ledger.attempt_id("notif-1", tokens[0].id, 1),
                notification_id="notif-1",
                device_token_id=tokens[0].id,
                status=DeliveryStatus.SENT,
                attempted_at=clock() - timedelta(hours=1),
                epoch=1,
                user_id=tokens[0].user_id,
                platform=Platform.ANDROID,
            )
        )
        provider = FakePushProvider()

        result = make_dispatcher(provider).send("notif-1")

        assert result.resumed is True
        assert result.epoch == 1
        assert result.sent == 3
        assert sorted(provider.tokens_called()) == ["fcm-1", "fcm-2"]
        assert len(ledger.query("notif-1")) == 3
        assert load_notification(memory_store, "notif-1").status == NotificationStatus.SENT

    def test_resumed_send_counts_tokens_invalidated_before_the_crash(
        self, make_dispatcher, registry, ledger, memory_store, clock
    ):
        tokens = register_users(registry, 3)
        seed_notification(
            memory_store,
            make_notification(
                status=NotificationStatus.SENDING,
                attempt_epoch=1,
                sending_started_at=clock() - timedelta(hours=1),
                previous_status=NotificationStatus.DRAFT,
            ),
        )
        ledger.record(
            DeliveryAttempt(
                attempt_id=ledger.attempt_id("notif-1", tokens[0].id, 1),
                notification_id="notif-1",
                device_token_id=tokens[0].id,
                status=DeliveryStatus.INVALID_TOKEN,
                attempted_at=clock() - timedelta(hours=1),
                epoch=1,
                user_id=tokens[0].user_id,
                platform=Platform.ANDROID,
            )
        )
        registry.invalidate(tokens[0].id)
        provider = FakePushProvider()

        result = make_dispatcher(provider).send("notif-1")

        assert sorted(provider.tokens_called()) == ["fcm-1", "fcm-2"]
        assert (result.total, result.sent, result.invalid, result.failed) == (3, 2, 1, 0)
        assert result.invalid_token_ids == [tokens[0].id]
        assert result.status == NotificationStatus.PARTIAL_FAILURE

    def test_partial_failure_is_only_resent_explicitly(self, dispatcher, memory_store):
        seed_notification(
            memory_store,
            make_notification(status=NotificationStatus.PARTIAL_FAILURE, attempt_epoch=1),
        )

        with pytest.raises(InvalidNotificationState):
            dispatcher.send("notif-1")


class TestRetries:
    def test_transient_errors_are_retried(
        self, make_dispatcher, registry, ledger, memory_store, sleeps
    ):
        register_users(registry, 1)
        provider = FakePushProvider(
            responses={"fcm-0": [TimeoutError("timed out"), ConnectionError("reset"), "sent"]}
        )
        seed_notification(memory_store, make_notification())

        result = make_dispatcher(provider).send("notif-1")

        assert result.status == NotificationStatus.SENT
        assert len(provider.calls) == 3
        assert len(sleeps) == 2
        assert all(0 <= delay <= 8.0 for delay in sleeps)
        assert ledger.query("notif-1")[0].calls == 3

    def test_retries_are_bounded(self, make_dispatcher, registry, ledger, memory_store):
        register_users(registry, 2)
        provider = FakePushProvider(responses={"fcm-0": ["transient_error"]})
        seed_notification(memory_store, make_notification())

        result = make_dispatcher(provider).send("notif-1")

        assert provider.tokens_called().count("fcm-0") == 3
        assert result.failed == 1
        assert result.status == NotificationStatus.PARTIAL_FAILURE
        failed = [r for r in ledger.query("notif-1") if r.status == DeliveryStatus.TRANSIENT_ERROR]
        assert len(failed) == 1
        assert failed[0].calls == 3

    def test_rejected_payload_is_not_retried_and_token_kept(
        self, make_dispatcher, registry, ledger, memory_store
    ):
        (token,) = register_users(registry, 1)
        provider = FakePushProvider(
            responses={"fcm-0": [ProviderHTTPError(400, "data values must be strings")]}
        )
        seed_notification(memory_store, make_notification())

        result = make_dispatcher(provider).send("notif-1")

        assert len(provider.calls) == 1
        assert result.failed == 1
        assert result.status == NotificationStatus.FAILED
        assert ledger.query("notif-1")[0].status == DeliveryStatus.PERMANENT_ERROR
        assert registry.get(token.id) is not None

    def test_wholly_failed_send_can_be_sent_again(self, make_dispatcher, registry, memory_store):
        register_users(registry, 2)
        seed_notification(memory_store, make_notification())
        unreachable = FakePushProvider(
            responses={"fcm-0": ["transient_error"], "fcm-1": ["transient_error"]}
        )
        make_dispatcher(unreachable).send("notif-1")
        failed = load_notification(memory_store, "notif-1")
        assert failed.status == NotificationStatus.FAILED
        assert failed.sent_at is None

        result = make_dispatcher(FakePushProvider()).send("notif-1")

        assert result.epoch == 2
        assert result.status == NotificationStatus.SENT


class TestDeadlineAndResend:
    def test_no_batch_starts_after_deadline_then_resend_completes(
        self, make_dispatcher, registry, ledger, memory_store, clock
    ):
        register_users(registry, 4)
        seed_notification(memory_store, make_notification())
        config = FanoutConfig(max_batch_size=2, concurrency=1, max_retries=0)
        slow = FakePushProvider(on_send=lambda platform, token: clock.advance(10))

        result = make_dispatcher(slow, config=config).send(
            "notif-1", deadline=clock() + timedelta(seconds=5)
        )

        assert len(slow.calls) == 2
        assert result.sent == 2
        assert result.skipped == 2
        assert result.timed_out is True
        assert result.status == NotificationStatus.PARTIAL_FAILURE
        skipped_rows = [r for r in ledger.query("notif-1") if r.calls == 0]
        assert len(skipped_rows) == 2
        assert all(r.status == DeliveryStatus.TRANSIENT_ERROR for r in skipped_rows)
        sent_at = load_notification(memory_store, "notif-1").sent_at

        provider = FakePushProvider()
        resend = make_dispatcher(provider, config=config).resend_failed("notif-1")

        assert resend.epoch == 2
        assert resend.total == 2
        assert resend.status == NotificationStatus.SENT
        assert sorted(provider.tokens_called()) == ["fcm-2", "fcm-3"]
        stored = load_notification(memory_store, "notif-1")
        assert stored.sent_at == sent_at
        assert len(ledger.query("notif-1")) == 6

    def test_resumed_resend_counts_tokens_invalidated_before_the_crash(
        self, make_dispatcher, registry, ledger, memory_store, clock
    ):
        tokens = register_users(registry, 3)
        seed_notification(
            memory_store,
            make_notification(
                status=NotificationStatus.SENDING,
                attempt_epoch=2,
                sent_at=clock() - timedelta(hours=2),
                sending_started_at=clock() - timedelta(hours=1),
                previous_status=NotificationStatus.PARTIAL_FAILURE,
            ),
        )
        history = [
            (tokens[0], 1, DeliveryStatus.TRANSIENT_ERROR),
            (tokens[1], 1, DeliveryStatus.TRANSIENT_ERROR),
            (tokens[2], 1, DeliveryStatus.SENT),
            (tokens[0], 2, DeliveryStatus.INVALID_TOKEN),
        ]
        for token, epoch, status in history:
            ledger.record(
                DeliveryAttempt(
                    attempt_id=ledger.attempt_id("notif-1", token.id, epoch),
                    notification_id="notif-1",
                    device_token_id=token.id,
                    status=status,
                    attempted_at=clock() - timedelta(hours=1),
                    epoch=epoch,
                    user_id=token.user_id,
                    platform=Platform.ANDROID,
                )
            )
        registry.invalidate(tokens[0].id)
        provider = FakePushProvider()

        result = make_dispatcher(provider).resend_failed("notif-1")

        assert result.resumed is True
        assert provider.tokens_called() == ["fcm-1"]
        assert (result.total, result.sent, result.invalid) == (2, 1, 1)
        assert result.status == NotificationStatus.PARTIAL_FAILURE

    def test_resend_requires_partial_failure(self, dispatcher, memory_store):
        seed_notification(memory_store, make_notification(status=NotificationStatus.SENT))

        with pytest.raises(InvalidNotificationState):
            dispatcher.resend_failed("notif-1")

    def test_resend_with_only_invalid_tokens_has_nothing_to_do(
        self, make_dispatcher, registry, memory_store
    ):
        register_users(registry, 2)
        seed_notification(memory_store, make_notification())
        make_dispatcher(FakePushProvider(responses={"fcm-0": ["invalid_token"]})).send("notif-1")

        with pytest.raises(NoDevicesError) as exc_info:
            make_dispatcher(FakePushProvider()).resend_failed("notif-1")

        assert exc_info.value.reason == "nothing_to_resend"
        stored = load_notification(memory_store, "notif-1")
        assert stored.status == NotificationStatus.PARTIAL_FAILURE


class TestRecipients:
    def test_audience_all_materializes_successful_recipients(
        self, make_dispatcher, registry, memory_store
    ):
        register_users(registry, 2)
        seed_notification(memory_store, make_notification())

        make_dispatcher(FakePushProvider(responses={"fcm-1": ["invalid_token"]})).send("notif-1")

        rows = memory_store.scan(USER_NOTIFICATIONS_TABLE, {"notification_id": "notif-1"})
        assert [row["user_id"] for row in rows] == ["user-0"]

    def test_batches_never_mix_platforms(self, dispatcher, registry):
        tokens = register_users(registry, 5) + register_users(
            registry, 2, platform=Platform.IOS, prefix="apns"
        )

        batches = dispatcher._batches(tokens)

        assert [len(batch) for batch in batches] == [4, 1, 2]
        assert all(len({token.platform for token in batch}) == 1 for batch in batches)


class TestClaimOwnership:
    def test_long_send_renews_its_claim(self, make_dispatcher, registry, memory_store, clock):
        register_users(registry, 3)
        seed_notification(memory_store, make_notification())
        config = FanoutConfig(max_batch_size=3, concurrency=1, max_retries=0)
        observed = []
        rival_reasons = []
        rival = make_dispatcher(FakePushProvider(), config=config)

        def slow_send(platform, token):
            observed.append(load_notification(memory_store, "notif-1").sending_started_at)
            try:
                rival.send("notif-1")
            except DuplicateSendError as exc:
                rival_reasons.append(exc.reason)
            clock.advance(500)

        start = clock()
        result = make_dispatcher(FakePushProvider(on_send=slow_send), config=config).send(
            "notif-1"
        )

        assert observed == [
            start,
            start + timedelta(seconds=500),
            start + timedelta(seconds=1000),
        ]
        assert rival_reasons == ["in_progress"] * 3
        assert result.status == NotificationStatus.SENT
        stored = load_notification(memory_store, "notif-1")
        assert stored.status == NotificationStatus.SENT
        assert stored.sending_started_at is None

    def test_worker_stops_once_its_claim_is_taken_over(
        self, make_dispatcher, registry, ledger, memory_store, clock
    ):
        register_users(registry, 6)
        seed_notification(memory_store, make_notification())
        config = FanoutConfig(max_batch_size=6, concurrency=1, max_retries=0)
        second = FakePushProvider()
        takeovers = []

        def stall_then_take_over(platform, token):
            if token == "fcm-0":
                clock.advance(901)
                takeovers.append(make_dispatcher(second, config=config).send("notif-1"))

        first = FakePushProvider(on_send=stall_then_take_over)

        with pytest.raises(DuplicateSendError) as exc_info:
            make_dispatcher(first, config=config).send("notif-1")

        assert exc_info.value.reason == "claim_lost"
        assert first.tokens_called() == ["fcm-0"]
        assert sorted(second.tokens_called()) == [f"fcm-{i}" for i in range(6)]
        (takeover,) = takeovers
        assert takeover.resumed is True
        assert takeover.sent == 6
        assert len(ledger.query("notif-1")) == 6
        assert load_notification(memory_store, "notif-1").status == NotificationStatus.SENT


class ConcurrencyTrackingProvider:
    """Counts provider calls in flight at the same time."""

    def __init__(self, delay=0.01):
        self.delay = delay
        self.in_flight = 0
        self.peak = 0
        self.calls = 0
        self._lock = threading.Lock()

    def send(self, platform, token, payload, timeout):
        with self._lock:
            self.in_flight += 1
            self.calls += 1
            self.peak = max(self.peak, self.in_flight)
        time.sleep(self.delay)
        with self._lock:
            self.in_flight -= 1
        return "sent"


class TestConcurrency:
    def test_in_flight_calls_never_exceed_concurrency(
        self, make_dispatcher, registry, memory_store
    ):
        register_users(registry, 30)
        register_users(registry, 10, platform=Platform.IOS, prefix="apns")
        seed_notification(memory_store, make_notification())
        config = FanoutConfig(max_batch_size=2, concurrency=3, max_retries=0)
        provider = ConcurrencyTrackingProvider()

        result = make_dispatcher(provider, config=config).send("notif-1")

        assert result.sent == 40
        assert provider.calls == 40
        assert 1 <= provider.peak <= config.concurrency
