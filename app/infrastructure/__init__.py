"""Infrastructure modules for the Courier application.

Centralized infrastructure components:
- configuration: Settings management (settings, Settings)
- logging: Structured logging (get_module_logger, logger)
- operations: Operation results, error classification and provider errors
- persistence: Table store interface with memory and DynamoDB backends
- idempotency: Deterministic idempotency keys
- resilience: Exponential backoff
- services: Dependency injection services (SettingsDep, get_settings, ...)
"""

# Configuration
from infrastructure.configuration import settings

# Logging
from infrastructure.logging import get_module_logger, logger

# Operations
from infrastructure.operations.result import OperationResult
from infrastructure.operations.status import OperationStatus

__all__ = [
    # Configuration
    "settings",
    # Logging
    "get_module_logger",
    "logger",
    # Operations
    "OperationResult",
    "OperationStatus",
]
