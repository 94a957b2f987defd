"""
Type aliases for FastAPI dependency injection.

Provides annotated type hints for common infrastructure dependencies.
"""

from typing import Annotated
from fastapi import Depends
from infrastructure.configuration import Settings
from infrastructure.services.providers import (
    get_settings,
    get_key_pool,
    get_api_key_service,
    get_device_registry,
    get_notification_service,
)
from modules.credentials import ApiKeyService, KeyRotationPool
from modules.notifications import DeviceTokenRegistry, NotificationService

# Settings dependency
SettingsDep = Annotated[Settings, Depends(get_settings)]

# Key pool and operator service for the api_keys table
KeyPoolDep = Annotated[KeyRotationPool, Depends(get_key_pool)]
ApiKeyServiceDep = Annotated[ApiKeyService, Depends(get_api_key_service)]

# Device tokens and notifications
DeviceRegistryDep = Annotated[DeviceTokenRegistry, Depends(get_device_registry)]
NotificationServiceDep = Annotated[
    NotificationService, Depends(get_notification_service)
]

__all__ = [
    "SettingsDep",
    "KeyPoolDep",
    "ApiKeyServiceDep",
    "DeviceRegistryDep",
    "NotificationServiceDep",
]
