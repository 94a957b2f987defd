"""AI provider consumer of the key pool."""

from typing import Protocol

from infrastructure.logging import get_module_logger
from modules.credentials.pool import KeyRotationPool

logger = get_module_logger()


class AIProvider(Protocol):
    """Opaque text-completion capability.

    ``complete`` may raise any exception; errors are classified by
    ``classify_ai_provider_error`` at the pool boundary.
    """

    def complete(self, prompt: str, credential: str) -> str: ...


def complete_with_rotation(
    pool: KeyRotationPool,
    provider: AIProvider,
    prompt: str,
    workload_class: str = "default",
) -> str:
    """Run one completion on the least used key, rotating on quota errors.

    Raises:
        PoolExhausted: No key available
        KeyQuotaExceeded: Every rotation hit a quota error
        ProviderPermanentError: The provider rejected the request or key
        ProviderTransientError: The provider failed in a retryable way
    """
    text = pool.run(
        workload_class,
        lambda credential: provider.complete(prompt, credential),
    )
    logger.debug(
        "ai_completion_succeeded",
        workload_class=workload_class,
        response_length=len(text),
    )
    return text
