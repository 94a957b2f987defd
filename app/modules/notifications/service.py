"""Service layer for notifications and device tokens.

Synchronous operations called by the HTTP layer and by scheduled jobs.
Each returns a typed result or raises one of the module's named errors.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from infrastructure.logging import get_module_logger
from infrastructure.persistence import StoreError, TableStore, to_timestamp, utc_now
from modules.notifications.dispatcher import FanoutDispatcher
from modules.notifications.errors import (
    DuplicateSendError,
    NoDevicesError,
    NotificationNotFound,
)
from modules.notifications.ledger import DeliveryLedger
from modules.notifications.models import (
    NOTIFICATIONS_TABLE,
    USER_NOTIFICATIONS_TABLE,
    DeliveryAttempt,
    Notification,
    NotificationStatus,
    Priority,
    SendResult,
    TargetAudience,
    UserNotification,
)
from modules.notifications.templates import get_template

logger = get_module_logger()


def _sort_stamp(moment: Optional[datetime]) -> str:
    return to_timestamp(moment) if moment is not None else ""


@dataclass
class CreatedNotification:
    """A new notification and the recipients whose join row failed."""

    notification: Notification
    failed_user_ids: List[str] = field(default_factory=list)


@dataclass
class ScheduledRunResult:
    """Outcome of one pass over due scheduled notifications."""

    results: List[SendResult] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class NotificationService:
    def __init__(
        self,
        store: TableStore,
        dispatcher: FanoutDispatcher,
        ledger: DeliveryLedger,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.ledger = ledger
        self.clock = clock

    def create_notification(
        self,
        title: Optional[str] = None,
        message: Optional[str] = None,
        type: Optional[str] = None,
        priority: Optional[Priority | str] = None,
        target_audience: TargetAudience | str = TargetAudience.ALL,
        user_ids: Optional[Iterable[str]] = None,
        image_url: Optional[str] = None,
        link: Optional[str] = None,
        scheduled_at: Optional[datetime] = None,
        template_name: Optional[str] = None,
    ) -> CreatedNotification:
        """Create a notification, optionally from a template.

        Explicit arguments override template values. ``specific``
        notifications get one ``user_notifications`` row per user; users
        whose row could not be written are returned in
        ``failed_user_ids`` and show up later as a recipient shortfall.

        Raises:
            TemplateNotFound: Unknown template name
            ValueError: Missing title/message or empty specific audience
        """
        if template_name:
            template = get_template(template_name)
            title = title or template.title
            message = message or template.message
            type = type or template.type
            priority = priority or template.priority
            link = link or template.link

        if not title or not message:
            raise ValueError("title and message are required")

        target_audience = TargetAudience(target_audience)
        recipients = list(dict.fromkeys(user_ids or []))
        if target_audience == TargetAudience.SPECIFIC and not recipients:
            raise ValueError("specific notifications need at least one user id")

        now = self.clock()
        notification = Notification(
            id=uuid.uuid4().hex,
            title=title,
            message=message,
            type=type or "info",
            priority=Priority(priority or Priority.NORMAL),
            target_audience=target_audience,
            image_url=image_url or None,
            link=link or None,
            scheduled_at=scheduled_at,
            template_name=template_name,
            status=(
                NotificationStatus.SCHEDULED
                if scheduled_at is not None and scheduled_at > now
                else NotificationStatus.DRAFT
            ),
            expected_recipients=(
                len(recipients) if target_audience == TargetAudience.SPECIFIC else None
            ),
            created_at=now,
        )
        self.store.put(NOTIFICATIONS_TABLE, notification.to_item())

        failed_user_ids = []
        if target_audience == TargetAudience.SPECIFIC:
            for user_id in recipients:
                row = UserNotification(
                    user_id=user_id, notification_id=notification.id, created_at=now
                )
                try:
                    self.store.put(USER_NOTIFICATIONS_TABLE, row.to_item())
                except StoreError as exc:
                    logger.error(
                        "user_notification_write_failed",
                        notification_id=notification.id,
                        user_id=user_id,
                        error=str(exc),
                    )
                    failed_user_ids.append(user_id)

        logger.info(
            "notification_created",
            notification_id=notification.id,
            target_audience=target_audience.value,
            status=notification.status.value,
            recipients=len(recipients),
            failed_recipients=len(failed_user_ids),
        )
        return CreatedNotification(notification=notification, failed_user_ids=failed_user_ids)

    def get_notification(self, notification_id: str) -> Notification:
        item = self.store.get(NOTIFICATIONS_TABLE, notification_id)
        if item is None:
            raise NotificationNotFound(notification_id)
        return Notification.from_item(item)

    def list_notifications(self) -> List[Notification]:
        """Every notification, newest first."""
        notifications = [
            Notification.from_item(item) for item in self.store.scan(NOTIFICATIONS_TABLE)
        ]
        notifications.sort(key=lambda n: (_sort_stamp(n.created_at), n.id), reverse=True)
        return notifications

    def delete_notification(self, notification_id: str) -> int:
        """Delete a notification and its user notifications.

        Delivery attempts are kept as audit history.

        Returns:
            Number of user notification rows removed
        """
        self.get_notification(notification_id)
        removed = 0
        for row in self.store.scan(
            USER_NOTIFICATIONS_TABLE, {"notification_id": notification_id}
        ):
            if self.store.delete(USER_NOTIFICATIONS_TABLE, row["id"]):
                removed += 1
        if not self.store.delete(NOTIFICATIONS_TABLE, notification_id):
            raise NotificationNotFound(notification_id)
        logger.info(
            "notification_deleted",
            notification_id=notification_id,
            user_notifications_removed=removed,
        )
        return removed

    def send_notification(
        self, notification_id: str, deadline_seconds: Optional[float] = None
    ) -> SendResult:
        deadline = (
            self.clock() + timedelta(seconds=deadline_seconds)
            if deadline_seconds is not None
            else None
        )
        return self.dispatcher.send(notification_id, deadline=deadline)

    def resend_failed(
        self, notification_id: str, deadline_seconds: Optional[float] = None
    ) -> SendResult:
        deadline = (
            self.clock() + timedelta(seconds=deadline_seconds)
            if deadline_seconds is not None
            else None
        )
        return self.dispatcher.resend_failed(notification_id, deadline=deadline)

    def delivery_report(self, notification_id: str) -> List[DeliveryAttempt]:
        self.get_notification(notification_id)
        return self.ledger.query(notification_id)

    def list_user_notifications(self, user_id: str) -> List[UserNotification]:
        rows = [
            UserNotification.from_item(item)
            for item in self.store.scan(USER_NOTIFICATIONS_TABLE, {"user_id": user_id})
        ]
        rows.sort(key=lambda r: (_sort_stamp(r.created_at), r.notification_id), reverse=True)
        return rows

    def mark_notification_read(self, notification_id: str, user_id: str) -> UserNotification:
        """Mark a user's copy of a notification as read.

        Raises:
            NotificationNotFound: The user was never a recipient
        """
        row_id = UserNotification(user_id=user_id, notification_id=notification_id).id
        updated = self.store.update(
            USER_NOTIFICATIONS_TABLE,
            row_id,
            {"is_read": True, "read_at": to_timestamp(self.clock())},
        )
        if updated is None:
            raise NotificationNotFound(notification_id)
        return UserNotification.from_item(updated)

    def send_due_notifications(self) -> ScheduledRunResult:
        """Send every scheduled notification whose time has come."""
        now = self.clock()
        run = ScheduledRunResult()
        due = [
            Notification.from_item(item)
            for item in self.store.scan(
                NOTIFICATIONS_TABLE, {"status": NotificationStatus.SCHEDULED.value}
            )
        ]
        for notification in due:
            if notification.scheduled_at is not None and notification.scheduled_at > now:
                continue
            try:
                run.results.append(self.dispatcher.send(notification.id))
            except (DuplicateSendError, NoDevicesError) as exc:
                logger.warning(
                    "scheduled_notification_skipped",
                    notification_id=notification.id,
                    error=str(exc),
                )
                run.skipped.append(notification.id)
        logger.info(
            "scheduled_notifications_processed",
            sent=len(run.results),
            skipped=len(run.skipped),
        )
        return run
