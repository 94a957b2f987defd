"""Feature settings __init__ - exports all feature settings."""

from infrastructure.configuration.features.key_pool import KeyPoolSettings
from infrastructure.configuration.features.fanout import FanoutSettings

__all__ = [
    "KeyPoolSettings",
    "FanoutSettings",
]
