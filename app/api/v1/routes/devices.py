from typing import List

from fastapi import APIRouter, status

from infrastructure.services import DeviceRegistryDep
from modules.notifications.schemas import (
    DeviceStatsResponse,
    DeviceTokenResponse,
    PruneResponse,
    RegisterDeviceRequest,
    RemoveDeviceRequest,
)

router = APIRouter(prefix="/devices", tags=["Devices"])


@router.post("", response_model=DeviceTokenResponse)
def register_device(body: RegisterDeviceRequest, registry: DeviceRegistryDep):
    """Register a token, or refresh it when the user already has it."""
    row = registry.register(body.user_id, body.platform, body.token)
    return DeviceTokenResponse.model_validate(row)


@router.get("", response_model=List[DeviceTokenResponse])
def list_devices(registry: DeviceRegistryDep):
    return [DeviceTokenResponse.model_validate(row) for row in registry.list_all()]


@router.get("/stats", response_model=DeviceStatsResponse)
def device_stats(registry: DeviceRegistryDep):
    return DeviceStatsResponse.model_validate(registry.stats())


@router.post("/cleanup", response_model=PruneResponse)
def cleanup_stale_tokens(registry: DeviceRegistryDep):
    """Keep only the freshest token per (user, platform); safe to repeat."""
    return PruneResponse.model_validate(registry.prune())


@router.post("/logout")
def remove_device(body: RemoveDeviceRequest, registry: DeviceRegistryDep):
    return {"removed": registry.remove(body.user_id, body.token)}


@router.delete("/{token_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_device(token_id: str, registry: DeviceRegistryDep):
    registry.delete(token_id)
