"""API key pool.

Fair, concurrency-safe rotation over interchangeable third-party API keys
stored in a shared table, plus the operator service that manages them.
"""

from modules.credentials.config import KeyPoolConfig
from modules.credentials.consumer import AIProvider, complete_with_rotation
from modules.credentials.errors import (
    ApiKeyNotFound,
    DuplicateApiKeyName,
    KeyQuotaExceeded,
    PoolExhausted,
)
from modules.credentials.models import (
    ApiKeyRecord,
    KeyHandle,
    KeyOutcome,
    PoolSnapshot,
    ReleaseResult,
)
from modules.credentials.pool import API_KEYS_TABLE, KeyRotationPool
from modules.credentials.service import ApiKeyService, ApiKeySummary

__all__ = [
    "API_KEYS_TABLE",
    "AIProvider",
    "ApiKeyNotFound",
    "ApiKeyRecord",
    "ApiKeyService",
    "ApiKeySummary",
    "DuplicateApiKeyName",
    "KeyHandle",
    "KeyOutcome",
    "KeyPoolConfig",
    "KeyQuotaExceeded",
    "KeyRotationPool",
    "PoolExhausted",
    "PoolSnapshot",
    "ReleaseResult",
    "complete_with_rotation",
]
