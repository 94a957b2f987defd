"""Data models for the API key pool.

Lightweight dataclasses (not Pydantic) used by the pool and the service
layer. ``to_item``/``from_item`` convert to and from the flat dictionaries
stored in the ``api_keys`` table; timestamps are stored as fixed-width ISO
strings so they can be compared inside store conditions.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from infrastructure.operations import OperationStatus
from infrastructure.persistence import from_timestamp, to_timestamp


def _ts(value: Optional[datetime]) -> Optional[str]:
    return to_timestamp(value) if value is not None else None


class KeyOutcome(str, Enum):
    """Outcome reported by a key holder on release."""

    SUCCESS = "success"
    QUOTA_EXCEEDED = "quota_exceeded"
    TRANSIENT_ERROR = "transient_error"
    PERMANENT_FAILURE = "permanent_failure"

    @classmethod
    def from_status(cls, status: OperationStatus) -> "KeyOutcome":
        """Map a classified provider status onto a release outcome."""
        if status == OperationStatus.SUCCESS:
            return cls.SUCCESS
        if status == OperationStatus.QUOTA_EXCEEDED:
            return cls.QUOTA_EXCEEDED
        if status == OperationStatus.TRANSIENT_ERROR:
            return cls.TRANSIENT_ERROR
        return cls.PERMANENT_FAILURE


@dataclass
class ApiKeyRecord:
    """A pooled third-party API credential.

    Attributes:
        id: Unique identifier of the key
        name: Operator-facing unique name
        secret: The credential itself
        active: Whether the key may be handed out
        usage_count: Number of successful claims, only reset by an operator
        last_used_at: Last successful use
        cooldown_until: Key is skipped until this moment
        notes: Free-form operator notes
        failure_streak: Consecutive quota failures, drives the cooldown
        permanent_failures: Consecutive permanent failures
        lease_id: Claim token of the current holder
        lease_expires_at: Moment the current claim lapses
    """

    id: str
    name: str
    secret: str = field(repr=False)
    active: bool = True
    usage_count: int = 0
    last_used_at: Optional[datetime] = None
    cooldown_until: Optional[datetime] = None
    notes: Optional[str] = None
    failure_streak: int = 0
    permanent_failures: int = 0
    lease_id: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_cooling(self, now: datetime) -> bool:
        return self.cooldown_until is not None and self.cooldown_until > now

    def is_leased(self, now: datetime) -> bool:
        return (
            self.lease_id is not None
            and self.lease_expires_at is not None
            and self.lease_expires_at > now
        )

    def selection_key(self) -> tuple:
        """Least used first, never-used before least recently used, then id."""
        return (
            self.usage_count,
            self.last_used_at is not None,
            self.last_used_at or datetime.min,
            self.id,
        )

    @property
    def masked_secret(self) -> str:
        if len(self.secret) <= 4:
            return "****"
        return f"****{self.secret[-4:]}"

    def to_item(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "secret": self.secret,
            "active": self.active,
            "usage_count": self.usage_count,
            "last_used_at": _ts(self.last_used_at),
            "cooldown_until": _ts(self.cooldown_until),
            "notes": self.notes,
            "failure_streak": self.failure_streak,
            "permanent_failures": self.permanent_failures,
            "lease_id": self.lease_id,
            "lease_expires_at": _ts(self.lease_expires_at),
            "created_at": _ts(self.created_at),
            "updated_at": _ts(self.updated_at),
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "ApiKeyRecord":
        return cls(
            id=item["id"],
            name=item["name"],
            secret=item["secret"],
            active=bool(item.get("active", False)),
            usage_count=int(item.get("usage_count", 0)),
            last_used_at=from_timestamp(item.get("last_used_at")),
            cooldown_until=from_timestamp(item.get("cooldown_until")),
            notes=item.get("notes"),
            failure_streak=int(item.get("failure_streak", 0)),
            permanent_failures=int(item.get("permanent_failures", 0)),
            lease_id=item.get("lease_id"),
            lease_expires_at=from_timestamp(item.get("lease_expires_at")),
            created_at=from_timestamp(item.get("created_at")),
            updated_at=from_timestamp(item.get("updated_at")),
        )


@dataclass(frozen=True)
class KeyHandle:
    """A claimed key, returned by ``acquire`` and passed back to ``release``."""

    key_id: str
    name: str
    secret: str = field(repr=False)
    lease_id: str = ""
    lease_expires_at: Optional[datetime] = None
    usage_count: int = 0
    workload_class: str = "default"


@dataclass
class ReleaseResult:
    """What a release did to the key.

    Attributes:
        key_id: The released key
        outcome: Outcome reported by the holder
        applied: False when the key no longer exists
        lease_held: False when the lease had already lapsed and was re-claimed
        deactivated: The key was switched off by this release
        cooldown_until: Cooldown set by a quota release
    """

    key_id: str
    outcome: KeyOutcome
    applied: bool = True
    lease_held: bool = True
    deactivated: bool = False
    cooldown_until: Optional[datetime] = None
    failure_streak: int = 0
    permanent_failures: int = 0


@dataclass
class PoolSnapshot:
    """Counts describing why a pool could or could not serve a request."""

    total: int = 0
    active: int = 0
    cooling: int = 0
    leased: int = 0
    available: int = 0
