from typing import List

from fastapi import APIRouter, Request, status

from api.dependencies.rate_limits import get_limiter
from infrastructure.logging import get_module_logger
from infrastructure.services import ApiKeyServiceDep, KeyPoolDep
from modules.credentials import ApiKeyRecord, ApiKeyService, ApiKeySummary, KeyHandle
from modules.credentials.schemas import (
    ApiKeyResponse,
    CreateApiKeyRequest,
    LeaseRequest,
    LeaseResponse,
    PoolStatusResponse,
    ReleaseRequest,
    ReleaseResponse,
)

logger = get_module_logger()
router = APIRouter(prefix="/keys", tags=["API Keys"])
limiter = get_limiter()


def _summary(service: ApiKeyService, record: ApiKeyRecord) -> ApiKeyResponse:
    return ApiKeyResponse.model_validate(
        ApiKeySummary.from_record(record, service.clock())
    )


@router.get("", response_model=List[ApiKeyResponse])
def list_keys(service: ApiKeyServiceDep):
    """List every pooled key with usage statistics; secrets are masked."""
    return [ApiKeyResponse.model_validate(summary) for summary in service.list_keys()]


@router.post("", response_model=ApiKeyResponse, status_code=status.HTTP_201_CREATED)
def create_key(body: CreateApiKeyRequest, service: ApiKeyServiceDep):
    record = service.create_api_key(body.name, body.secret, notes=body.notes)
    return _summary(service, record)


@router.get("/pool", response_model=PoolStatusResponse)
def pool_status(pool: KeyPoolDep):
    """Counts of active, cooling and leased keys."""
    return PoolStatusResponse.model_validate(pool.snapshot())


@router.post("/lease", response_model=LeaseResponse)
@limiter.limit("120/minute")
def lease_key(request: Request, body: LeaseRequest, pool: KeyPoolDep):  # pylint: disable=unused-argument
    """Claim the least used available key.

    The caller must report back through ``/keys/{key_id}/release``; an
    unreleased lease expires on its own.
    """
    return LeaseResponse.model_validate(pool.acquire(body.workload_class))


@router.post("/{key_id}/release", response_model=ReleaseResponse)
def release_key(key_id: str, body: ReleaseRequest, pool: KeyPoolDep):
    handle = KeyHandle(key_id=key_id, name="", secret="", lease_id=body.lease_id)
    return ReleaseResponse.model_validate(pool.release(handle, body.outcome))


@router.post("/{key_id}/activate", response_model=ApiKeyResponse)
def activate_key(key_id: str, service: ApiKeyServiceDep):
    return _summary(service, service.activate_api_key(key_id))


@router.post("/{key_id}/deactivate", response_model=ApiKeyResponse)
def deactivate_key(key_id: str, service: ApiKeyServiceDep):
    return _summary(service, service.deactivate_api_key(key_id))


@router.post("/{key_id}/reset", response_model=ApiKeyResponse)
def reset_key_usage(key_id: str, service: ApiKeyServiceDep):
    return _summary(service, service.reset_key_usage(key_id))


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_key(key_id: str, service: ApiKeyServiceDep):
    service.delete_api_key(key_id)
