"""Operation result types and status enums.

Standardized result types shared by integrations, including status enums,
the result dataclass, error classifiers for provider exceptions and the
provider errors raised once local recovery is exhausted.
"""

from infrastructure.operations.classifiers import (
    classify_aws_error,
    classify_ai_provider_error,
    classify_push_provider_error,
)
from infrastructure.operations.errors import (
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
)
from infrastructure.operations.result import OperationResult
from infrastructure.operations.status import OperationStatus

__all__ = [
    "OperationResult",
    "OperationStatus",
    "ProviderError",
    "ProviderPermanentError",
    "ProviderTransientError",
    "classify_aws_error",
    "classify_ai_provider_error",
    "classify_push_provider_error",
]
