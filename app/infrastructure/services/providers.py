"""
Factory functions for dependency injection.

Provides application-scoped singleton providers for the table store, the
key pool and the notification services.
"""

from functools import lru_cache

from infrastructure.configuration import Settings
from infrastructure.persistence import TableStore, create_store
from integrations.push.dry_run import DryRunPushProvider
from modules.credentials import ApiKeyService, KeyPoolConfig, KeyRotationPool
from modules.notifications import (
    AudienceResolver,
    DeliveryLedger,
    DeviceTokenRegistry,
    FanoutConfig,
    FanoutDispatcher,
    NotificationService,
    PushProvider,
)


@lru_cache
def get_settings() -> Settings:
    """
    Get application-scoped settings singleton.

    The @lru_cache decorator ensures only ONE instance is created per process.

    Application code should use the DI type alias for testability:
        from infrastructure.services import SettingsDep
        @router.get("/version")
        def version(settings: SettingsDep):
            return {"version": settings.GIT_SHA}

    Returns:
        Settings: Cached settings instance loaded from environment.
    """
    return Settings()


@lru_cache
def get_store() -> TableStore:
    """Get the application-scoped table store selected by STORE_BACKEND."""
    return create_store(get_settings().store.backend)


@lru_cache
def get_key_pool() -> KeyRotationPool:
    return KeyRotationPool(
        get_store(), config=KeyPoolConfig.from_settings(get_settings().key_pool)
    )


@lru_cache
def get_api_key_service() -> ApiKeyService:
    return ApiKeyService(get_store())


@lru_cache
def get_device_registry() -> DeviceTokenRegistry:
    return DeviceTokenRegistry(get_store())


@lru_cache
def get_delivery_ledger() -> DeliveryLedger:
    return DeliveryLedger(get_store())


@lru_cache
def get_push_provider() -> PushProvider:
    """Get the push provider; override in deployments that deliver for real."""
    return DryRunPushProvider()


@lru_cache
def get_dispatcher() -> FanoutDispatcher:
    store = get_store()
    registry = get_device_registry()
    return FanoutDispatcher(
        store=store,
        resolver=AudienceResolver(registry, store),
        registry=registry,
        ledger=get_delivery_ledger(),
        provider=get_push_provider(),
        config=FanoutConfig.from_settings(get_settings().fanout),
    )


@lru_cache
def get_notification_service() -> NotificationService:
    return NotificationService(
        get_store(), dispatcher=get_dispatcher(), ledger=get_delivery_ledger()
    )
