"""Factory for creating table stores based on configuration."""

from infrastructure.configuration import settings
from infrastructure.logging import get_module_logger
from infrastructure.persistence.dynamodb_store import DynamoDBTableStore
from infrastructure.persistence.memory import InMemoryTableStore
from infrastructure.persistence.store import TableStore

logger = get_module_logger()


def create_store(backend: str | None = None) -> TableStore:
    """Create the table store selected by configuration.

    Args:
        backend: Optional backend override (memory, dynamodb).
            If None, uses settings.store.backend

    Returns:
        TableStore implementation

    Raises:
        ValueError: If an unknown backend is specified

    Examples:
        >>> store = create_store()  # Uses settings.store.backend
        >>> store = create_store(backend="memory")  # Force memory
    """
    backend = backend or settings.store.backend

    if backend == "memory":
        logger.info("creating_in_memory_table_store")
        return InMemoryTableStore()

    if backend == "dynamodb":
        logger.info(
            "creating_dynamodb_table_store",
            table_prefix=settings.store.table_prefix,
        )
        return DynamoDBTableStore(table_prefix=settings.store.table_prefix)

    raise ValueError(f"Unknown store backend: {backend}. Supported: memory, dynamodb")
