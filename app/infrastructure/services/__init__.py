"""
Dependency injection services.

Provides type aliases and provider functions for FastAPI dependency injection.
"""

from infrastructure.services.dependencies import (
    SettingsDep,
    KeyPoolDep,
    ApiKeyServiceDep,
    DeviceRegistryDep,
    NotificationServiceDep,
)
from infrastructure.services.providers import (
    get_settings,
    get_store,
    get_key_pool,
    get_api_key_service,
    get_device_registry,
    get_delivery_ledger,
    get_push_provider,
    get_dispatcher,
    get_notification_service,
)

__all__ = [
    "SettingsDep",
    "KeyPoolDep",
    "ApiKeyServiceDep",
    "DeviceRegistryDep",
    "NotificationServiceDep",
    "get_settings",
    "get_store",
    "get_key_pool",
    "get_api_key_service",
    "get_device_registry",
    "get_delivery_ledger",
    "get_push_provider",
    "get_dispatcher",
    "get_notification_service",
]
