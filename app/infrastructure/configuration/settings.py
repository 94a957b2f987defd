"""Courier configuration settings - main aggregator."""

from pydantic_settings import BaseSettings, SettingsConfigDict

from infrastructure.configuration.integrations import AwsSettings
from infrastructure.configuration.features import FanoutSettings, KeyPoolSettings
from infrastructure.configuration.infrastructure import ServerSettings, StoreSettings


class Settings(BaseSettings):
    """Courier configuration settings - main aggregator.

    Aggregates all domain-specific settings into a single configuration object:

    - **Integrations**: AWS (DynamoDB) access
    - **Features**: key rotation pool and push fan-out tuning
    - **Infrastructure**: table store backend and HTTP server

    Environment Variables:
        PREFIX: Environment prefix for non-production deployments
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
        GIT_SHA: Git commit SHA for deployment tracking

    Example:
        ```python
        from infrastructure.services import get_settings

        settings = get_settings()

        if settings.store.backend == "dynamodb":
            region = settings.aws.AWS_REGION

        width = settings.fanout.concurrency
        ```
    """

    PREFIX: str = ""
    LOG_LEVEL: str = "INFO"
    GIT_SHA: str = "Unknown"

    aws: AwsSettings

    key_pool: KeyPoolSettings
    fanout: FanoutSettings

    store: StoreSettings
    server: ServerSettings

    @property
    def is_production(self) -> bool:
        """Check if the application is running in production.

        Returns:
            True if PREFIX is empty (production), False otherwise.
        """
        return not bool(self.PREFIX)

    def __init__(self, **kwargs):
        """Initialize Settings with automatic subsettings instantiation.

        Args:
            **kwargs: Optional overrides for specific settings sections.
        """
        settings_map = {
            "aws": AwsSettings,
            "key_pool": KeyPoolSettings,
            "fanout": FanoutSettings,
            "store": StoreSettings,
            "server": ServerSettings,
        }

        for setting_name, setting_class in settings_map.items():
            if setting_name not in kwargs:
                kwargs[setting_name] = setting_class()

        super().__init__(**kwargs)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
