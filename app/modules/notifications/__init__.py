"""Push notification fan-out.

Device token registry, audience resolution, batched delivery with an
idempotent send guard, and the append-only delivery ledger.
"""

from modules.notifications.audience import AudienceResolver
from modules.notifications.config import FanoutConfig
from modules.notifications.dispatcher import FanoutDispatcher, PushProvider
from modules.notifications.errors import (
    DeviceTokenNotFound,
    DuplicateSendError,
    InvalidNotificationState,
    NoDevicesError,
    NotificationNotFound,
    TemplateNotFound,
)
from modules.notifications.ledger import DeliveryLedger
from modules.notifications.models import (
    AudienceResolution,
    AudienceSpec,
    DeliveryAttempt,
    DeliveryStatus,
    DeviceStats,
    DeviceToken,
    Notification,
    NotificationStatus,
    Platform,
    Priority,
    PruneResult,
    SendResult,
    TargetAudience,
    UserNotification,
)
from modules.notifications.registry import DeviceTokenRegistry
from modules.notifications.service import (
    CreatedNotification,
    NotificationService,
    ScheduledRunResult,
)

__all__ = [
    "AudienceResolution",
    "AudienceResolver",
    "AudienceSpec",
    "CreatedNotification",
    "DeliveryAttempt",
    "DeliveryLedger",
    "DeliveryStatus",
    "DeviceStats",
    "DeviceToken",
    "DeviceTokenNotFound",
    "DeviceTokenRegistry",
    "DuplicateSendError",
    "FanoutConfig",
    "FanoutDispatcher",
    "InvalidNotificationState",
    "NoDevicesError",
    "Notification",
    "NotificationNotFound",
    "NotificationService",
    "NotificationStatus",
    "Platform",
    "Priority",
    "PruneResult",
    "PushProvider",
    "ScheduledRunResult",
    "SendResult",
    "TargetAudience",
    "TemplateNotFound",
    "UserNotification",
]
