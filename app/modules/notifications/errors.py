"""Errors for the notifications module."""

from datetime import datetime
from typing import Optional


class NoDevicesError(Exception):
    """A notification resolved to no device tokens.

    Attributes:
        notification_id: the notification being sent
        reason: ``no_recipients`` (specific notification without join rows),
            ``no_devices`` (recipients have no tokens) or ``nothing_to_resend``
    """

    def __init__(self, notification_id: str, reason: str = "no_devices"):
        self.notification_id = notification_id
        self.reason = reason
        super().__init__(f"Notification {notification_id} has no devices ({reason})")


class DuplicateSendError(Exception):
    """The idempotency guard tripped; nothing was sent.

    Attributes:
        reason: ``already_sent``, ``in_progress`` or ``claim_lost`` (another
            worker took over a running send, which stopped early)
        sent_at: when the notification was sent, if it was
    """

    def __init__(
        self,
        notification_id: str,
        reason: str = "already_sent",
        sent_at: Optional[datetime] = None,
    ):
        self.notification_id = notification_id
        self.reason = reason
        self.sent_at = sent_at
        super().__init__(f"Notification {notification_id} not sent again ({reason})")


class NotificationNotFound(Exception):
    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Notification not found: {notification_id}")


class InvalidNotificationState(Exception):
    """The requested operation is not allowed from the current status."""

    def __init__(self, notification_id: str, status: str, operation: str):
        self.notification_id = notification_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} notification {notification_id} in status {status}"
        )


class DeviceTokenNotFound(Exception):
    def __init__(self, token_id: str):
        self.token_id = token_id
        super().__init__(f"Device token not found: {token_id}")


class TemplateNotFound(Exception):
    def __init__(self, template_name: str):
        self.template_name = template_name
        super().__init__(f"Notification template not found: {template_name}")
