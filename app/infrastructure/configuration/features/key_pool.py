"""API key rotation pool feature settings."""

from pydantic import Field

from infrastructure.configuration.base import FeatureSettings


class KeyPoolSettings(FeatureSettings):
    """Configuration for the API key rotation pool.

    Environment Variables:
        KEY_POOL_MAX_CAS_ATTEMPTS: Conditional-update attempts before giving up (default: 5)
        KEY_POOL_LEASE_SECONDS: How long an acquired key stays claimed (default: 120s)
        KEY_POOL_COOLDOWN_BASE_SECONDS: First cooldown after a quota error (default: 30s)
        KEY_POOL_COOLDOWN_MAX_SECONDS: Cooldown cap (default: 3600s = 1h)
        KEY_POOL_PERMANENT_FAILURE_THRESHOLD: Consecutive permanent failures
            before a key is deactivated (default: 3)
        KEY_POOL_MAX_ROTATIONS: Keys tried per AI call when keys hit quota (default: 3)

    Cooldown Backoff:
        Delay calculation: uniform(0, min(base * 2 ^ (streak - 1), max))

        Example with defaults (base=30s, max=3600s):
            Streak 1: up to 30s
            Streak 2: up to 60s
            Streak 3: up to 120s
            Streak 8+: up to 3600s

    Example:
        ```python
        from infrastructure.services import get_settings

        settings = get_settings()
        lease = settings.key_pool.lease_seconds
        ```
    """

    max_cas_attempts: int = Field(
        default=5,
        alias="KEY_POOL_MAX_CAS_ATTEMPTS",
        description="Conditional update attempts before raising StoreConflict",
    )
    lease_seconds: int = Field(
        default=120,
        alias="KEY_POOL_LEASE_SECONDS",
        description="Claim duration for an acquired key (seconds)",
    )
    cooldown_base_seconds: float = Field(
        default=30,
        alias="KEY_POOL_COOLDOWN_BASE_SECONDS",
        description="Base cooldown after a quota error (seconds)",
    )
    cooldown_max_seconds: float = Field(
        default=3600,
        alias="KEY_POOL_COOLDOWN_MAX_SECONDS",
        description="Maximum cooldown after repeated quota errors (seconds, 1 hour)",
    )
    permanent_failure_threshold: int = Field(
        default=3,
        alias="KEY_POOL_PERMANENT_FAILURE_THRESHOLD",
        description="Consecutive permanent failures before deactivating a key",
    )
    max_rotations: int = Field(
        default=3,
        alias="KEY_POOL_MAX_ROTATIONS",
        description="Keys tried for a single AI call when keys report quota errors",
    )
