"""Shared table store infrastructure settings."""

from pydantic import Field

from infrastructure.configuration.base import InfrastructureSettings


class StoreSettings(InfrastructureSettings):
    """Table store configuration.

    Environment Variables:
        STORE_BACKEND: Backend type - 'memory' or 'dynamodb' (default: memory)
        STORE_TABLE_PREFIX: Prefix applied to every table name (default: courier_)

    Store Backends:
        - memory: Process-local tables (development, testing)
        - dynamodb: DynamoDB tables shared by every worker (production)

    Example:
        ```python
        from infrastructure.services import get_settings

        settings = get_settings()

        if settings.store.backend == "dynamodb":
            table = settings.store.table_name("api_keys")
        ```
    """

    backend: str = Field(
        default="memory",
        alias="STORE_BACKEND",
        description="Store backend: 'memory' or 'dynamodb'",
    )
    table_prefix: str = Field(
        default="courier_",
        alias="STORE_TABLE_PREFIX",
        description="Prefix for DynamoDB table names",
    )

    def table_name(self, table: str) -> str:
        """Return the physical table name for a logical table."""
        return f"{self.table_prefix}{table}"
