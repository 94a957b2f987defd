"""Push notification fan-out feature settings."""

from pydantic import Field

from infrastructure.configuration.base import FeatureSettings


class FanoutSettings(FeatureSettings):
    """Configuration for push notification fan-out.

    Environment Variables:
        FANOUT_MAX_BATCH_SIZE: Tokens per provider batch (default: 500)
        FANOUT_CONCURRENCY: Batches in flight at once (default: 10)
        FANOUT_MAX_RETRIES: Retries for a transient token failure (default: 3)
        FANOUT_RETRY_BASE_DELAY_SECONDS: Base retry backoff (default: 0.5s)
        FANOUT_RETRY_MAX_DELAY_SECONDS: Retry backoff cap (default: 8s)
        FANOUT_CALL_TIMEOUT_SECONDS: Timeout for a single provider call (default: 10s)
        FANOUT_SENDING_LEASE_SECONDS: Age after which a stuck send may be
            resumed by another worker (default: 900s)
        FANOUT_NOTIFICATION_ICON_URL: Small icon attached to Android pushes

    Example:
        ```python
        from infrastructure.services import get_settings

        settings = get_settings()
        width = settings.fanout.concurrency
        ```
    """

    max_batch_size: int = Field(default=500, alias="FANOUT_MAX_BATCH_SIZE")
    concurrency: int = Field(default=10, alias="FANOUT_CONCURRENCY")
    max_retries: int = Field(default=3, alias="FANOUT_MAX_RETRIES")
    retry_base_delay_seconds: float = Field(
        default=0.5, alias="FANOUT_RETRY_BASE_DELAY_SECONDS"
    )
    retry_max_delay_seconds: float = Field(
        default=8.0, alias="FANOUT_RETRY_MAX_DELAY_SECONDS"
    )
    call_timeout_seconds: float = Field(
        default=10.0, alias="FANOUT_CALL_TIMEOUT_SECONDS"
    )
    sending_lease_seconds: int = Field(
        default=900, alias="FANOUT_SENDING_LEASE_SECONDS"
    )
    notification_icon_url: str = Field(
        default="", alias="FANOUT_NOTIFICATION_ICON_URL"
    )
