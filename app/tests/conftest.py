import sys
from pathlib import Path

# Make the application root importable regardless of how pytest was invoked
project_root = str(Path(__file__).resolve().parents[1])
if project_root not in sys.path:
    sys.path.insert(0, project_root)

import pytest

from infrastructure.persistence import InMemoryTableStore
from infrastructure.resilience import BackoffPolicy
from modules.credentials import ApiKeyService, KeyPoolConfig, KeyRotationPool
from modules.notifications import (
    AudienceResolver,
    DeliveryLedger,
    DeviceTokenRegistry,
    FanoutConfig,
    FanoutDispatcher,
    NotificationService,
)
from tests.factories.fakes import FakeClock, FakePushProvider


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return InMemoryTableStore()


@pytest.fixture
def key_pool_config():
    return KeyPoolConfig(
        max_cas_attempts=5,
        lease_seconds=120,
        cooldown_base_seconds=30,
        cooldown_max_seconds=3600,
        permanent_failure_threshold=3,
        max_rotations=3,
    )


@pytest.fixture
def key_pool(memory_store, key_pool_config, clock):
    """Pool with deterministic (un-jittered) cooldowns."""
    return KeyRotationPool(
        memory_store,
        config=key_pool_config,
        clock=clock,
        backoff=BackoffPolicy(
            base_delay_seconds=key_pool_config.cooldown_base_seconds,
            max_delay_seconds=key_pool_config.cooldown_max_seconds,
            jitter=False,
        ),
    )


@pytest.fixture
def api_key_service(memory_store, clock):
    return ApiKeyService(memory_store, clock=clock)


@pytest.fixture
def registry(memory_store, clock):
    return DeviceTokenRegistry(memory_store, clock=clock)


@pytest.fixture
def ledger(memory_store):
    return DeliveryLedger(memory_store)


@pytest.fixture
def push_provider():
    return FakePushProvider()


@pytest.fixture
def fanout_config():
    return FanoutConfig(
        max_batch_size=4,
        concurrency=3,
        max_retries=2,
        retry_base_delay_seconds=0.5,
        retry_max_delay_seconds=8.0,
        call_timeout_seconds=5.0,
        sending_lease_seconds=900,
        icon_url="https://cdn.example.com/icon.png",
    )


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_dispatcher(memory_store, registry, ledger, fanout_config, clock, sleeps):
    def _make(provider, config=None):
        return FanoutDispatcher(
            store=memory_store,
            resolver=AudienceResolver(registry, memory_store),
            registry=registry,
            ledger=ledger,
            provider=provider,
            config=config or fanout_config,
            clock=clock,
            sleep=sleeps.append,
        )

    return _make


@pytest.fixture
def dispatcher(make_dispatcher, push_provider):
    return make_dispatcher(push_provider)


@pytest.fixture
def notification_service(memory_store, dispatcher, ledger, clock):
    return NotificationService(memory_store, dispatcher=dispatcher, ledger=ledger, clock=clock)
