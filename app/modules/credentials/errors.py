"""Errors for the credentials module."""

from datetime import datetime
from typing import Optional


class PoolExhausted(Exception):
    """No active key is out of cooldown and free of a live lease.

    Callers are expected to degrade (queue, retry later) rather than fail.

    Attributes:
        active: number of active keys
        cooling: active keys currently in cooldown
        leased: active keys held by another caller
        workload_class: the workload that asked for a key
    """

    def __init__(
        self,
        active: int,
        cooling: int,
        leased: int,
        workload_class: str = "default",
    ):
        self.active = active
        self.cooling = cooling
        self.leased = leased
        self.workload_class = workload_class
        super().__init__(
            f"No API key available for '{workload_class}' "
            f"(active={active}, cooling={cooling}, leased={leased})"
        )


class KeyQuotaExceeded(Exception):
    """Quota errors persisted across every rotation allowed for one call.

    Attributes:
        key_id: the last key that reported the quota error
        rotations: number of keys tried after the first one
        cooldown_until: cooldown applied to the last key
    """

    def __init__(
        self,
        key_id: str,
        rotations: int,
        cooldown_until: Optional[datetime] = None,
    ):
        self.key_id = key_id
        self.rotations = rotations
        self.cooldown_until = cooldown_until
        super().__init__(
            f"API key {key_id} exceeded its quota after {rotations} rotation(s)"
        )


class ApiKeyNotFound(Exception):
    """Raised when an API key id does not exist."""

    def __init__(self, key_id: str):
        self.key_id = key_id
        super().__init__(f"API key not found: {key_id}")


class DuplicateApiKeyName(Exception):
    """Raised when creating a key whose name is already taken."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"API key name already exists: {name}")
