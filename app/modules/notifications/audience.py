"""Audience resolution: notification targeting to device tokens."""

from infrastructure.logging import get_module_logger
from infrastructure.persistence import TableStore
from modules.notifications.errors import NoDevicesError
from modules.notifications.models import (
    USER_NOTIFICATIONS_TABLE,
    AudienceResolution,
    AudienceSpec,
    Notification,
    TargetAudience,
)
from modules.notifications.registry import DeviceTokenRegistry

logger = get_module_logger()


class AudienceResolver:
    """Expand a notification's target into a deduplicated token set.

    ``specific`` notifications are resolved through their
    ``user_notifications`` rows. Fewer rows than ``expected_recipients``
    means some rows were never written at creation time; resolution still
    proceeds and the shortfall is reported on the result.
    """

    def __init__(self, registry: DeviceTokenRegistry, store: TableStore):
        self.registry = registry
        self.store = store

    def recipient_ids(self, notification_id: str) -> list[str]:
        rows = self.store.scan(
            USER_NOTIFICATIONS_TABLE, {"notification_id": notification_id}
        )
        return sorted({row["user_id"] for row in rows})

    def resolve(self, notification: Notification) -> AudienceResolution:
        """Resolve the notification's audience.

        Raises:
            NoDevicesError: Nothing to deliver to (reason ``no_recipients``
                for a specific notification without join rows, otherwise
                ``no_devices``)
        """
        if notification.target_audience == TargetAudience.ALL:
            tokens = self.registry.list_for_audience(AudienceSpec.everyone())
            resolution = AudienceResolution(
                tokens=tokens,
                resolved_recipients=len({token.user_id for token in tokens}),
            )
        else:
            user_ids = self.recipient_ids(notification.id)
            if not user_ids:
                logger.warning(
                    "audience_has_no_recipients", notification_id=notification.id
                )
                raise NoDevicesError(notification.id, reason="no_recipients")
            resolution = AudienceResolution(
                tokens=self.registry.list_for_audience(AudienceSpec.specific(user_ids)),
                expected_recipients=notification.expected_recipients,
                resolved_recipients=len(user_ids),
            )
            if resolution.missing_recipients:
                logger.warning(
                    "audience_recipients_missing",
                    notification_id=notification.id,
                    expected=resolution.expected_recipients,
                    resolved=resolution.resolved_recipients,
                )

        if not resolution.tokens:
            logger.warning(
                "audience_has_no_devices",
                notification_id=notification.id,
                target_audience=notification.target_audience.value,
            )
            raise NoDevicesError(notification.id, reason="no_devices")

        logger.info(
            "audience_resolved",
            notification_id=notification.id,
            target_audience=notification.target_audience.value,
            tokens=len(resolution.tokens),
            recipients=resolution.resolved_recipients,
        )
        return resolution
