"""Server infrastructure settings."""

from pydantic import Field

from infrastructure.configuration.base import InfrastructureSettings


class ServerSettings(InfrastructureSettings):
    """Server and application runtime configuration.

    Environment Variables:
        BACKEND_URL: Backend API base URL (default: http://127.0.0.1:8000)
        ALLOWED_ORIGINS: Origins allowed by CORS outside production

    Example:
        ```python
        from infrastructure.services import get_settings

        backend_url = get_settings().server.BACKEND_URL
        ```
    """

    BACKEND_URL: str = Field(default="http://127.0.0.1:8000", alias="BACKEND_URL")
    ALLOWED_ORIGINS: list[str] = Field(
        default=["http://localhost:5173", "http://127.0.0.1:8000"],
        alias="ALLOWED_ORIGINS",
    )
