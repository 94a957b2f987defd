"""Structured logging for Courier.

    from infrastructure.logging import get_module_logger

    logger = get_module_logger()
    logger.info("api_key_acquired", key_id=key_id, workload_class="rag_chat")
"""

from infrastructure.logging.context import bind_request_context, get_correlation_id
from infrastructure.logging.formatters import (
    SENSITIVE_PATTERNS,
    add_app_info,
    mask_sensitive_data,
    truncate_large_values,
)
from infrastructure.logging.setup import configure_logging, get_module_logger, logger

__all__ = [
    "configure_logging",
    "get_module_logger",
    "logger",
    "bind_request_context",
    "get_correlation_id",
    "add_app_info",
    "mask_sensitive_data",
    "truncate_large_values",
    "SENSITIVE_PATTERNS",
]
