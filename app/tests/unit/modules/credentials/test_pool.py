"""Unit tests for KeyRotationPool.

Tests cover:
- Least-usage selection with last-used tie breaking
- Exhaustion without side effects
- Mutual exclusion under concurrent acquires
- Lease expiry and lost leases
- Cooldown, failure streaks and automatic deactivation
- run(): rotation on quota errors and error normalization
"""

import threading
from datetime import timedelta

import pytest

from infrastructure.operations import (
    OperationStatus,
    ProviderPermanentError,
    ProviderTransientError,
)
from infrastructure.persistence import InMemoryTableStore, StoreConflict
from modules.credentials import (
    API_KEYS_TABLE,
    KeyHandle,
    KeyOutcome,
    KeyQuotaExceeded,
    KeyRotationPool,
    PoolExhausted,
)
from tests.factories.credentials import load_api_key, make_api_key, seed_api_keys

pytestmark = pytest.mark.unit


class FakeProviderError(Exception):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class TestAcquire:
    """Tests for acquire()."""

    def test_least_used_key_wins_ties_broken_by_last_used(
        self, key_pool, memory_store, clock
    ):
        seed_api_keys(
            memory_store,
            [
                make_api_key("key-a", usage_count=5, last_used_at=clock() - timedelta(hours=3)),
                make_api_key("key-b", usage_count=2, last_used_at=clock() - timedelta(hours=2)),
                make_api_key("key-c", usage_count=2, last_used_at=clock() - timedelta(hours=1)),
            ],
        )

        handle = key_pool.acquire()

        assert handle.key_id == "key-b"
        assert handle.usage_count == 3

        key_pool.release(handle, KeyOutcome.SUCCESS)

        record = load_api_key(memory_store, "key-b")
        assert record.usage_count == 3
        assert record.last_used_at == clock()
        assert record.lease_id is None

    def test_never_used_key_preferred_over_used_key(self, key_pool, memory_store, clock):
        seed_api_keys(
            memory_store,
            [
                make_api_key("key-a", usage_count=1, last_used_at=clock() - timedelta(days=30)),
                make_api_key("key-z", usage_count=1),
            ],
        )

        assert key_pool.acquire().key_id == "key-z"

    def test_inactive_keys_are_never_selected(self, key_pool, memory_store):
        seed_api_keys(
            memory_store,
            [
                make_api_key("key-a", usage_count=0, active=False),
                make_api_key("key-b", usage_count=9),
            ],
        )

        assert key_pool.acquire().key_id == "key-b"

    def test_handle_carries_secret_and_lease(self, key_pool, memory_store, clock):
        seed_api_keys(memory_store, [make_api_key("key-a", secret="sk-live-1234")])

        handle = key_pool.acquire("ask_karma")

        assert handle.secret == "sk-live-1234"
        assert handle.workload_class == "ask_karma"
        assert handle.lease_expires_at == clock() + timedelta(seconds=120)
        assert load_api_key(memory_store, "key-a").lease_id == handle.lease_id

    def test_all_keys_cooling_raises_without_mutation(self, key_pool, memory_store, clock):
        cooldown = clock() + timedelta(minutes=10)
        seed_api_keys(
            memory_store,
            [
                make_api_key("key-a", usage_count=1, cooldown_until=cooldown),
                make_api_key("key-b", usage_count=2, cooldown_until=cooldown),
                make_api_key("key-c", usage_count=3, cooldown_until=cooldown),
            ],
        )
        before = sorted(memory_store.scan(API_KEYS_TABLE), key=lambda item: item["id"])

        with pytest.raises(PoolExhausted) as exc_info:
            key_pool.acquire("rag_chat")

        after = sorted(memory_store.scan(API_KEYS_TABLE), key=lambda item: item["id"])
        assert after == before
        assert exc_info.value.active == 3
        assert exc_info.value.cooling == 3
        assert exc_info.value.leased == 0
        assert exc_info.value.workload_class == "rag_chat"

    def test_empty_pool_raises(self, key_pool):
        with pytest.raises(PoolExhausted) as exc_info:
            key_pool.acquire()

        assert exc_info.value.active == 0

    def test_expired_cooldown_makes_key_available(self, key_pool, memory_store, clock):
        seed_api_keys(
            memory_store,
            [make_api_key("key-a", cooldown_until=clock() - timedelta(seconds=1))],
        )

        assert key_pool.acquire().key_id == "key-a"

    def test_leased_key_is_skipped_until_lease_expires(self, key_pool, memory_store, clock):
        seed_api_keys(memory_store, [make_api_key("key-a")])
        first = key_pool.acquire()

        with pytest.raises(PoolExhausted) as exc_info:
            key_pool.acquire()
        assert exc_info.value.leased == 1

        clock.advance(121)
        second = key_pool.acquire()

        assert second.key_id == "key-a"
        assert second.lease_id != first.lease_id
        assert second.usage_count == 2

    def test_lost_race_moves_on_to_next_key(self, key_pool_config, clock):
        class RacingStore(InMemoryTableStore):
            """Lets a competing worker claim the candidate right before us."""

            raced = False

            def update(self, table, item_id, changes, conditions=()):
                if table == API_KEYS_TABLE and not self.raced:
                    self.raced = True
                    current = self.get(table, item_id)
                    super().update(
                        table,
                        item_id,
                        {
                            "usage_count": current["usage_count"] + 1,
                            "lease_id": "other-worker",
                            "lease_expires_at": "2999-01-01T00:00:00.000000+00:00",
                        },
                    )
                return super().update(table, item_id, changes, conditions)

        store = RacingStore()
        seed_api_keys(
            store,
            [make_api_key("key-a", usage_count=0), make_api_key("key-b", usage_count=1)],
        )
        pool = KeyRotationPool(store, config=key_pool_config, clock=clock)

        handle = pool.acquire()

        assert handle.key_id == "key-b"
        assert load_api_key(store, "key-a").lease_id == "other-worker"

    def test_persistent_conflicts_raise_store_conflict(self, key_pool_config, clock):
        class AlwaysConflicting(InMemoryTableStore):
            def update(self, table, item_id, changes, conditions=()):
                return None

        store = AlwaysConflicting()
        seed_api_keys(store, [make_api_key("key-a")])
        pool = KeyRotationPool(store, config=key_pool_config, clock=clock)

        with pytest.raises(StoreConflict) as exc_info:
            pool.acquire()

        assert exc_info.value.attempts == key_pool_config.max_cas_attempts

    def test_concurrent_acquires_never_share_a_key(self, key_pool, memory_store):
        seed_api_keys(
            memory_store,
            [make_api_key(f"key-{i}", usage_count=10) for i in range(3)],
        )
        workers = 8
        barrier = threading.Barrier(workers)
        granted = []
        refused = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                handle = key_pool.acquire("load_test")
            except (PoolExhausted, StoreConflict) as exc:
                with lock:
                    refused.append(exc)
                return
            with lock:
                granted.append(handle.key_id)

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert granted
        assert len(granted) == len(set(granted))
        assert len(granted) <= 3
        assert len(granted) + len(refused) == workers
        for key_id in granted:
            assert load_api_key(memory_store, key_id).usage_count == 11


class TestRelease:
    """Tests for release()."""

    def test_quota_outcome_applies_growing_cooldown(self, key_pool, memory_store, clock):
        seed_api_keys(memory_store, [make_api_key("key-a")])

        result = key_pool.release(key_pool.acquire(), KeyOutcome.QUOTA_EXCEEDED)

        assert result.failure_streak == 1
        assert result.cooldown_until == clock() + timedelta(seconds=30)
        record = load_api_key(memory_store, "key-a")
        assert record.is_cooling(clock())
        assert record.lease_id is None

        clock.advance(31)
        result = key_pool.release(key_pool.acquire(), KeyOutcome.QUOTA_EXCEEDED)

        assert result.failure_streak == 2
        assert result.cooldown_until == clock() + timedelta(seconds=60)

    def test_success_clears_cooldown_and_streaks(self, key_pool, memory_store, clock):
        seed_api_keys(
            memory_store,
            [make_api_key("key-a", failure_streak=4, permanent_failures=2)],
        )

        result = key_pool.release(key_pool.acquire(), KeyOutcome.SUCCESS)

        assert result.failure_streak == 0
        assert result.permanent_failures == 0
        record = load_api_key(memory_store, "key-a")
        assert record.cooldown_until is None
        assert record.last_used_at == clock()

    def test_transient_outcome_only_frees_the_lease(self, key_pool, memory_store):
        seed_api_keys(memory_store, [make_api_key("key-a", failure_streak=1)])

        result = key_pool.release(key_pool.acquire(), KeyOutcome.TRANSIENT_ERROR)

        record = load_api_key(memory_store, "key-a")
        assert result.failure_streak == 1
        assert record.failure_streak == 1
        assert record.last_used_at is None
        assert record.lease_id is None

    def test_repeated_permanent_failures_deactivate_key(self, key_pool, memory_store):
        seed_api_keys(memory_store, [make_api_key("key-a")])

        first = key_pool.release(key_pool.acquire(), KeyOutcome.PERMANENT_FAILURE)
        second = key_pool.release(key_pool.acquire(), KeyOutcome.PERMANENT_FAILURE)
        third = key_pool.release(key_pool.acquire(), KeyOutcome.PERMANENT_FAILURE)

        assert not first.deactivated and not second.deactivated
        assert third.deactivated
        assert third.permanent_failures == 3
        assert load_api_key(memory_store, "key-a").active is False
        assert key_pool.snapshot().active == 0

    def test_success_between_permanent_failures_resets_count(self, key_pool, memory_store):
        seed_api_keys(memory_store, [make_api_key("key-a")])

        key_pool.release(key_pool.acquire(), KeyOutcome.PERMANENT_FAILURE)
        key_pool.release(key_pool.acquire(), KeyOutcome.PERMANENT_FAILURE)
        key_pool.release(key_pool.acquire(), KeyOutcome.SUCCESS)
        result = key_pool.release(key_pool.acquire(), KeyOutcome.PERMANENT_FAILURE)

        assert result.permanent_failures == 1
        assert load_api_key(memory_store, "key-a").active is True

    def test_release_after_lease_expired_keeps_new_holder_lease(
        self, key_pool, memory_store, clock
    ):
        seed_api_keys(memory_store, [make_api_key("key-a")])
        stale = key_pool.acquire()
        clock.advance(121)
        current = key_pool.acquire()

        result = key_pool.release(stale, KeyOutcome.SUCCESS)

        assert result.lease_held is False
        assert load_api_key(memory_store, "key-a").lease_id == current.lease_id

    def test_release_of_deleted_key_is_not_applied(self, key_pool):
        handle = KeyHandle(key_id="gone", name="gone", secret="x", lease_id="l-1")

        result = key_pool.release(handle, "success")

        assert result.applied is False
        assert result.outcome == KeyOutcome.SUCCESS

    def test_unknown_outcome_is_rejected(self, key_pool, memory_store):
        seed_api_keys(memory_store, [make_api_key("key-a")])

        with pytest.raises(ValueError):
            key_pool.release(key_pool.acquire(), "exploded")


class TestSnapshot:
    def test_counts_cooling_and_leased_keys(self, key_pool, memory_store, clock):
        seed_api_keys(
            memory_store,
            [
                make_api_key("key-a", cooldown_until=clock() + timedelta(minutes=1)),
                make_api_key("key-b"),
                make_api_key("key-c"),
                make_api_key("key-d", active=False),
            ],
        )
        key_pool.acquire()

        snapshot = key_pool.snapshot()

        assert snapshot.active == 3
        assert snapshot.cooling == 1
        assert snapshot.leased == 1
        assert snapshot.available == 1


class TestRun:
    """Tests for run()."""

    def test_quota_error_rotates_to_next_key(self, key_pool, memory_store, clock):
        seed_api_keys(
            memory_store,
            [
                make_api_key("key-a", secret="sk-aaaa", usage_count=0),
                make_api_key("key-b", secret="sk-bbbb", usage_count=1),
            ],
        )

        def call(secret):
            if secret == "sk-aaaa":
                raise FakeProviderError("RESOURCE_EXHAUSTED", status_code=429)
            return f"answer from {secret}"

        assert key_pool.run("ask_karma", call) == "answer from sk-bbbb"

        key_a = load_api_key(memory_store, "key-a")
        key_b = load_api_key(memory_store, "key-b")
        assert key_a.is_cooling(clock())
        assert key_a.failure_streak == 1
        assert key_b.usage_count == 2
        assert key_b.lease_id is None

    def test_quota_on_every_rotation_raises_key_quota_exceeded(
        self, key_pool, memory_store
    ):
        seed_api_keys(
            memory_store,
            [make_api_key(f"key-{i}", usage_count=i) for i in range(3)],
        )
        error = FakeProviderError("quota exceeded", status_code=429)

        def call(secret):
            raise error

        with pytest.raises(KeyQuotaExceeded) as exc_info:
            key_pool.run("ask_karma", call, max_rotations=1)

        assert exc_info.value.key_id == "key-1"
        assert exc_info.value.rotations == 1
        assert exc_info.value.__cause__ is error
        assert load_api_key(memory_store, "key-2").usage_count == 2

    def test_rotation_surfaces_exhaustion(self, key_pool, memory_store):
        seed_api_keys(memory_store, [make_api_key("key-a")])

        def call(secret):
            raise FakeProviderError("429 Too Many Requests", status_code=429)

        with pytest.raises(PoolExhausted) as exc_info:
            key_pool.run("ask_karma", call)

        assert exc_info.value.cooling == 1

    def test_rejected_credential_raises_permanent_error(self, key_pool, memory_store):
        seed_api_keys(memory_store, [make_api_key("key-a")])

        def call(secret):
            raise FakeProviderError("API key not valid", status_code=400)

        with pytest.raises(ProviderPermanentError) as exc_info:
            key_pool.run("ask_karma", call)

        assert exc_info.value.error_code == "INVALID_CREDENTIAL"
        assert isinstance(exc_info.value.__cause__, FakeProviderError)
        assert load_api_key(memory_store, "key-a").permanent_failures == 1

    def test_unknown_failure_raises_transient_error(self, key_pool, memory_store):
        seed_api_keys(memory_store, [make_api_key("key-a")])

        def call(secret):
            raise RuntimeError("upstream reset")

        with pytest.raises(ProviderTransientError):
            key_pool.run("ask_karma", call)

        record = load_api_key(memory_store, "key-a")
        assert record.lease_id is None
        assert record.failure_streak == 0
        assert record.permanent_failures == 0


class TestKeyOutcome:
    @pytest.mark.parametrize(
        "status,outcome",
        [
            (OperationStatus.SUCCESS, KeyOutcome.SUCCESS),
            (OperationStatus.QUOTA_EXCEEDED, KeyOutcome.QUOTA_EXCEEDED),
            (OperationStatus.TRANSIENT_ERROR, KeyOutcome.TRANSIENT_ERROR),
            (OperationStatus.UNAUTHORIZED, KeyOutcome.PERMANENT_FAILURE),
            (OperationStatus.PERMANENT_ERROR, KeyOutcome.PERMANENT_FAILURE),
        ],
    )
    def test_from_status(self, status, outcome):
        assert KeyOutcome.from_status(status) == outcome
