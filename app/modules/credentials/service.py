"""Service layer for API key administration.

Operator-facing operations on the ``api_keys`` table. Secrets never leave
this layer unmasked except through ``create_api_key``'s return value.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from infrastructure.logging import get_module_logger
from infrastructure.persistence import Condition, TableStore, to_timestamp, utc_now
from modules.credentials.errors import ApiKeyNotFound, DuplicateApiKeyName
from modules.credentials.models import ApiKeyRecord
from modules.credentials.pool import API_KEYS_TABLE

logger = get_module_logger()


@dataclass
class ApiKeySummary:
    """Operator view of a key with the secret masked."""

    id: str
    name: str
    masked_secret: str
    active: bool
    usage_count: int
    last_used_at: Optional[datetime]
    cooldown_until: Optional[datetime]
    in_cooldown: bool
    leased: bool
    failure_streak: int
    permanent_failures: int
    notes: Optional[str]
    created_at: Optional[datetime]

    @classmethod
    def from_record(cls, record: ApiKeyRecord, now: datetime) -> "ApiKeySummary":
        return cls(
            id=record.id,
            name=record.name,
            masked_secret=record.masked_secret,
            active=record.active,
            usage_count=record.usage_count,
            last_used_at=record.last_used_at,
            cooldown_until=record.cooldown_until,
            in_cooldown=record.is_cooling(now),
            leased=record.is_leased(now),
            failure_streak=record.failure_streak,
            permanent_failures=record.permanent_failures,
            notes=record.notes,
            created_at=record.created_at,
        )


class ApiKeyService:
    """Create, list and toggle pooled API keys."""

    def __init__(self, store: TableStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def _require(self, key_id: str) -> ApiKeyRecord:
        item = self.store.get(API_KEYS_TABLE, key_id)
        if item is None:
            raise ApiKeyNotFound(key_id)
        return ApiKeyRecord.from_item(item)

    def _set(self, key_id: str, **changes) -> ApiKeyRecord:
        changes["updated_at"] = to_timestamp(self.clock())
        updated = self.store.update(API_KEYS_TABLE, key_id, changes)
        if updated is None:
            raise ApiKeyNotFound(key_id)
        return ApiKeyRecord.from_item(updated)

    def create_api_key(
        self, name: str, secret: str, notes: Optional[str] = None
    ) -> ApiKeyRecord:
        """Add a key to the pool.

        Raises:
            DuplicateApiKeyName: A key with this name already exists
        """
        name = name.strip()
        if not name or not secret:
            raise ValueError("name and secret are required")
        if self.store.scan(API_KEYS_TABLE, {"name": name}):
            raise DuplicateApiKeyName(name)

        now = self.clock()
        record = ApiKeyRecord(
            id=uuid.uuid4().hex,
            name=name,
            secret=secret,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.store.put(
            API_KEYS_TABLE, record.to_item(), conditions=[Condition.not_exists("id")]
        )
        logger.info("api_key_created", key_id=record.id, key_name=name)
        return record

    def deactivate_api_key(self, key_id: str) -> ApiKeyRecord:
        record = self._set(key_id, active=False)
        logger.info("api_key_deactivated_by_operator", key_id=key_id)
        return record

    def activate_api_key(self, key_id: str) -> ApiKeyRecord:
        """Re-enable a key and forget its failure history."""
        record = self._set(
            key_id,
            active=True,
            failure_streak=0,
            permanent_failures=0,
            cooldown_until=None,
        )
        logger.info("api_key_activated", key_id=key_id)
        return record

    def reset_key_usage(self, key_id: str) -> ApiKeyRecord:
        """Operator reset, the only way ``usage_count`` ever goes down."""
        record = self._set(key_id, usage_count=0)
        logger.info("api_key_usage_reset", key_id=key_id)
        return record

    def delete_api_key(self, key_id: str) -> None:
        if not self.store.delete(API_KEYS_TABLE, key_id):
            raise ApiKeyNotFound(key_id)
        logger.info("api_key_deleted", key_id=key_id)

    def get_key_by_name(self, name: str) -> ApiKeyRecord:
        items = self.store.scan(API_KEYS_TABLE, {"name": name})
        if not items:
            raise ApiKeyNotFound(name)
        return ApiKeyRecord.from_item(items[0])

    def list_keys(self) -> List[ApiKeySummary]:
        """Every key with usage statistics, least used first."""
        now = self.clock()
        records = [
            ApiKeyRecord.from_item(item) for item in self.store.scan(API_KEYS_TABLE)
        ]
        records.sort(key=ApiKeyRecord.selection_key)
        return [ApiKeySummary.from_record(record, now) for record in records]
