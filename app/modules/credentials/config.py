"""Key pool configuration."""

from dataclasses import dataclass

from infrastructure.configuration.features import KeyPoolSettings


@dataclass
class KeyPoolConfig:
    """Configuration for key selection, leases and penalties.

    Attributes:
        max_cas_attempts: Conditional-update attempts before StoreConflict
        lease_seconds: How long a holder may keep a key without releasing it
        cooldown_base_seconds: Cooldown ceiling after the first quota error
        cooldown_max_seconds: Cap for the exponential cooldown
        permanent_failure_threshold: Consecutive permanent failures before
            the key is deactivated
        max_rotations: Extra keys tried by ``run`` after quota errors
    """

    max_cas_attempts: int = 5
    lease_seconds: int = 120
    cooldown_base_seconds: float = 30.0
    cooldown_max_seconds: float = 3600.0
    permanent_failure_threshold: int = 3
    max_rotations: int = 3

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_cas_attempts < 1:
            raise ValueError("max_cas_attempts must be at least 1")
        if self.lease_seconds < 1:
            raise ValueError("lease_seconds must be at least 1")
        if self.cooldown_base_seconds <= 0:
            raise ValueError("cooldown_base_seconds must be positive")
        if self.cooldown_max_seconds < self.cooldown_base_seconds:
            raise ValueError("cooldown_max_seconds must be >= cooldown_base_seconds")
        if self.permanent_failure_threshold < 1:
            raise ValueError("permanent_failure_threshold must be at least 1")
        if self.max_rotations < 0:
            raise ValueError("max_rotations must be >= 0")

    @classmethod
    def from_settings(cls, settings: KeyPoolSettings) -> "KeyPoolConfig":
        return cls(
            max_cas_attempts=settings.max_cas_attempts,
            lease_seconds=settings.lease_seconds,
            cooldown_base_seconds=settings.cooldown_base_seconds,
            cooldown_max_seconds=settings.cooldown_max_seconds,
            permanent_failure_threshold=settings.permanent_failure_threshold,
            max_rotations=settings.max_rotations,
        )
