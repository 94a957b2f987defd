"""Fan-out configuration."""

from dataclasses import dataclass

from infrastructure.configuration.features import FanoutSettings


@dataclass
class FanoutConfig:
    """Configuration for batched push delivery.

    Attributes:
        max_batch_size: Tokens per batch, batches never mix platforms
        concurrency: Batches in flight at once
        max_retries: Extra provider calls after a transient failure
        retry_base_delay_seconds: Delay before the first retry
        retry_max_delay_seconds: Cap for the exponential retry delay
        call_timeout_seconds: Timeout handed to every provider call
        sending_lease_seconds: Age after which a ``sending`` claim is
            considered abandoned and may be resumed
        icon_url: Android notification icon, omitted when empty
    """

    max_batch_size: int = 500
    concurrency: int = 10
    max_retries: int = 3
    retry_base_delay_seconds: float = 0.5
    retry_max_delay_seconds: float = 8.0
    call_timeout_seconds: float = 10.0
    sending_lease_seconds: int = 900
    icon_url: str = ""

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ValueError(
                "retry_max_delay_seconds must be >= retry_base_delay_seconds"
            )
        if self.call_timeout_seconds <= 0:
            raise ValueError("call_timeout_seconds must be positive")
        if self.sending_lease_seconds < 1:
            raise ValueError("sending_lease_seconds must be at least 1")

    @classmethod
    def from_settings(cls, settings: FanoutSettings) -> "FanoutConfig":
        return cls(
            max_batch_size=settings.max_batch_size,
            concurrency=settings.concurrency,
            max_retries=settings.max_retries,
            retry_base_delay_seconds=settings.retry_base_delay_seconds,
            retry_max_delay_seconds=settings.retry_max_delay_seconds,
            call_timeout_seconds=settings.call_timeout_seconds,
            sending_lease_seconds=settings.sending_lease_seconds,
            icon_url=settings.notification_icon_url,
        )
