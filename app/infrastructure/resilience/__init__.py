"""Resilience patterns.

Backoff policies used when a credential cools down after a quota error and
when a push delivery is retried after a transient failure.
"""

from infrastructure.resilience.backoff import BackoffPolicy

__all__ = [
    "BackoffPolicy",
]
