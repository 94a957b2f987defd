"""API contracts for the key pool (Pydantic, validated)."""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field

from modules.credentials.models import KeyOutcome


class CreateApiKeyRequest(BaseModel):
    """Schema for adding a key to the pool."""

    name: Annotated[
        str,
        Field(
            ...,
            min_length=1,
            max_length=128,
            description="Unique operator-facing key name",
            json_schema_extra={"example": "gemini-primary"},
        ),
    ]
    secret: Annotated[str, Field(..., min_length=1, description="The API key")]
    notes: Optional[str] = Field(default=None, max_length=1000)


class ApiKeyResponse(BaseModel):
    """A key as shown to operators; the secret is masked."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    masked_secret: str
    active: bool
    usage_count: int
    last_used_at: Optional[datetime] = None
    cooldown_until: Optional[datetime] = None
    in_cooldown: bool = False
    leased: bool = False
    failure_streak: int = 0
    permanent_failures: int = 0
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class LeaseRequest(BaseModel):
    workload_class: str = Field(
        default="default",
        min_length=1,
        max_length=64,
        json_schema_extra={"example": "ask_karma"},
    )


class LeaseResponse(BaseModel):
    """A claimed key; the caller must release it with ``lease_id``."""

    model_config = ConfigDict(from_attributes=True)

    key_id: str
    name: str
    secret: str
    lease_id: str
    lease_expires_at: Optional[datetime] = None
    workload_class: str


class ReleaseRequest(BaseModel):
    lease_id: str = Field(..., min_length=1)
    outcome: KeyOutcome


class ReleaseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key_id: str
    outcome: KeyOutcome
    applied: bool
    lease_held: bool
    deactivated: bool
    cooldown_until: Optional[datetime] = None
    failure_streak: int
    permanent_failures: int


class PoolStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    active: int
    cooling: int
    leased: int
    available: int
