"""structlog processors used by ``configure_logging``."""

from typing import Any, Callable, Dict, FrozenSet, Optional

EventDict = Dict[str, Any]
ProcessorFn = Callable[[Any, str, EventDict], EventDict]

# Exact keys, or ``_<pattern>`` suffixes, whose values are redacted.
# "token" matches ``token`` and ``push_token`` but not ``device_token_id``.
SENSITIVE_PATTERNS: FrozenSet[str] = frozenset(
    {
        "token",
        "secret",
        "api_key",
        "apikey",
        "password",
        "credential",
        "authorization",
        "private_key",
        "cookie",
        "jwt",
        "bearer",
    }
)


def add_app_info(app_name: str, app_version: str = "unknown") -> ProcessorFn:
    def processor(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
        event_dict["app_name"] = app_name
        event_dict["app_version"] = app_version
        return event_dict

    return processor


def mask_sensitive_data(
    mask_value: str = "***REDACTED***",
    additional_patterns: Optional[FrozenSet[str]] = None,
) -> ProcessorFn:
    """Redact push tokens, key secrets and similar values.

    Matching is case-insensitive on the key name; ``None`` values are kept
    so "no token" remains visible in the logs.
    """
    patterns = SENSITIVE_PATTERNS | (additional_patterns or frozenset())

    def is_sensitive(key: str) -> bool:
        lowered = key.lower()
        return any(
            lowered == pattern or lowered.endswith("_" + pattern) for pattern in patterns
        )

    def processor(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
        return {
            key: mask_value if value is not None and is_sensitive(key) else value
            for key, value in event_dict.items()
        }

    return processor


def truncate_large_values(max_length: int = 500) -> ProcessorFn:
    """Cut long strings, e.g. provider error bodies, to ``max_length``."""

    def processor(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
        for key, value in event_dict.items():
            if isinstance(value, str) and len(value) > max_length:
                event_dict[key] = (
                    f"{value[:max_length]}...[truncated, {len(value)} chars total]"
                )
        return event_dict

    return processor
