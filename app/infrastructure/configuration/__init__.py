"""Infrastructure configuration module - public API.

Centralized configuration for Courier using Pydantic BaseSettings with
domain-based organization.

Exports:
    settings: Singleton Settings instance (main configuration object)
    Settings: Main settings class (for testing/overrides)

Example:
    ```python
    from infrastructure.services import get_settings

    settings = get_settings()

    backend = settings.store.backend
    batch_size = settings.fanout.max_batch_size
    ```
"""

from infrastructure.configuration.settings import Settings, settings

__all__ = ["Settings", "settings"]
