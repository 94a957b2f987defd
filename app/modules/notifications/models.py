"""Data models for push fan-out.

Lightweight dataclasses shared by the registry, resolver, dispatcher and
ledger. Each persisted model converts to and from the flat dictionaries
stored in its table with ``to_item``/``from_item``.

Tables:
  - device_tokens: DeviceToken
  - notifications: Notification
  - user_notifications: UserNotification (id ``<notification_id>:<user_id>``)
  - delivery_attempts: DeliveryAttempt (id is the attempt id)
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from infrastructure.persistence import from_timestamp, to_timestamp

DEVICE_TOKENS_TABLE = "device_tokens"
NOTIFICATIONS_TABLE = "notifications"
USER_NOTIFICATIONS_TABLE = "user_notifications"
DELIVERY_ATTEMPTS_TABLE = "delivery_attempts"


def _ts(value: Optional[datetime]) -> Optional[str]:
    return to_timestamp(value) if value is not None else None


class Platform(str, Enum):
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


class Priority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class TargetAudience(str, Enum):
    ALL = "all"
    SPECIFIC = "specific"


class NotificationStatus(str, Enum):
    """Notification lifecycle.

    draft/scheduled -> sending -> sent | partial_failure | failed.
    ``failed`` may be sent again explicitly; ``partial_failure`` only
    through a resend of the failed subset.
    """

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


class DeliveryStatus(str, Enum):
    """Final outcome for one token within one send epoch.

    ``permanent_error`` covers payloads the provider rejected; the token is
    kept and the attempt is not retried.
    """

    SENT = "sent"
    INVALID_TOKEN = "invalid_token"
    TRANSIENT_ERROR = "transient_error"
    PERMANENT_ERROR = "permanent_error"


@dataclass
class DeviceToken:
    """One installed app instance able to receive pushes."""

    id: str
    user_id: str
    token: str = field(repr=False)
    platform: Platform
    created_at: datetime
    last_used: Optional[datetime] = None

    def freshness(self) -> Tuple[datetime, datetime, str]:
        """Ordering key: newest ``last_used`` (or ``created_at``) wins, then id."""
        return (self.last_used or self.created_at, self.created_at, self.id)

    def to_item(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "token": self.token,
            "platform": self.platform.value,
            "created_at": to_timestamp(self.created_at),
            "last_used": _ts(self.last_used or self.created_at),
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "DeviceToken":
        return cls(
            id=item["id"],
            user_id=item["user_id"],
            token=item["token"],
            platform=Platform(item["platform"]),
            created_at=from_timestamp(item["created_at"]),
            last_used=from_timestamp(item.get("last_used")),
        )


@dataclass
class Notification:
    """A push notification authored by an operator.

    Attributes:
        attempt_epoch: Incremented by every send or resend; part of the
            delivery attempt id
        expected_recipients: Users requested for ``specific`` targeting
        sending_started_at: When the current ``sending`` claim was taken
        previous_status: Status to restore if a send finds no devices
    """

    id: str
    title: str
    message: str
    type: str = "info"
    priority: Priority = Priority.NORMAL
    target_audience: TargetAudience = TargetAudience.ALL
    image_url: Optional[str] = None
    link: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    template_name: Optional[str] = None
    status: NotificationStatus = NotificationStatus.DRAFT
    attempt_epoch: int = 0
    expected_recipients: Optional[int] = None
    sending_started_at: Optional[datetime] = None
    previous_status: Optional[NotificationStatus] = None
    created_at: Optional[datetime] = None

    def to_item(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "priority": self.priority.value,
            "target_audience": self.target_audience.value,
            "image_url": self.image_url,
            "link": self.link,
            "scheduled_at": _ts(self.scheduled_at),
            "sent_at": _ts(self.sent_at),
            "template_name": self.template_name,
            "status": self.status.value,
            "attempt_epoch": self.attempt_epoch,
            "expected_recipients": self.expected_recipients,
            "sending_started_at": _ts(self.sending_started_at),
            "previous_status": self.previous_status.value if self.previous_status else None,
            "created_at": _ts(self.created_at),
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Notification":
        previous = item.get("previous_status")
        expected = item.get("expected_recipients")
        return cls(
            id=item["id"],
            title=item["title"],
            message=item["message"],
            type=item.get("type", "info"),
            priority=Priority(item.get("priority", Priority.NORMAL.value)),
            target_audience=TargetAudience(
                item.get("target_audience", TargetAudience.ALL.value)
            ),
            image_url=item.get("image_url"),
            link=item.get("link"),
            scheduled_at=from_timestamp(item.get("scheduled_at")),
            sent_at=from_timestamp(item.get("sent_at")),
            template_name=item.get("template_name"),
            status=NotificationStatus(item.get("status", NotificationStatus.DRAFT.value)),
            attempt_epoch=int(item.get("attempt_epoch", 0)),
            expected_recipients=int(expected) if expected is not None else None,
            sending_started_at=from_timestamp(item.get("sending_started_at")),
            previous_status=NotificationStatus(previous) if previous else None,
            created_at=from_timestamp(item.get("created_at")),
        )


@dataclass
class UserNotification:
    """Join row linking a notification to one recipient."""

    user_id: str
    notification_id: str
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        return f"{self.notification_id}:{self.user_id}"

    def to_item(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "notification_id": self.notification_id,
            "is_read": self.is_read,
            "read_at": _ts(self.read_at),
            "created_at": _ts(self.created_at),
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "UserNotification":
        return cls(
            user_id=item["user_id"],
            notification_id=item["notification_id"],
            is_read=bool(item.get("is_read", False)),
            read_at=from_timestamp(item.get("read_at")),
            created_at=from_timestamp(item.get("created_at")),
        )


@dataclass
class DeliveryAttempt:
    """Ledger row: the final outcome for one token in one epoch."""

    attempt_id: str
    notification_id: str
    device_token_id: str
    status: DeliveryStatus
    attempted_at: datetime
    epoch: int
    error: Optional[str] = None
    user_id: Optional[str] = None
    platform: Optional[Platform] = None
    calls: int = 1

    def to_item(self) -> Dict[str, Any]:
        return {
            "id": self.attempt_id,
            "notification_id": self.notification_id,
            "device_token_id": self.device_token_id,
            "status": self.status.value,
            "error": self.error,
            "attempted_at": to_timestamp(self.attempted_at),
            "epoch": self.epoch,
            "user_id": self.user_id,
            "platform": self.platform.value if self.platform else None,
            "calls": self.calls,
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "DeliveryAttempt":
        platform = item.get("platform")
        return cls(
            attempt_id=item["id"],
            notification_id=item["notification_id"],
            device_token_id=item["device_token_id"],
            status=DeliveryStatus(item["status"]),
            error=item.get("error"),
            attempted_at=from_timestamp(item["attempted_at"]),
            epoch=int(item["epoch"]),
            user_id=item.get("user_id"),
            platform=Platform(platform) if platform else None,
            calls=int(item.get("calls", 1)),
        )


@dataclass(frozen=True)
class AudienceSpec:
    """Audience target: everyone, or an explicit user list."""

    audience: TargetAudience
    user_ids: Tuple[str, ...] = ()

    @classmethod
    def everyone(cls) -> "AudienceSpec":
        return cls(TargetAudience.ALL)

    @classmethod
    def specific(cls, user_ids) -> "AudienceSpec":
        return cls(TargetAudience.SPECIFIC, tuple(dict.fromkeys(user_ids)))


@dataclass
class AudienceResolution:
    """Tokens a notification resolves to, with targeting diagnostics."""

    tokens: List[DeviceToken]
    expected_recipients: Optional[int] = None
    resolved_recipients: int = 0

    @property
    def missing_recipients(self) -> int:
        """Requested users whose join rows were never written."""
        if self.expected_recipients is None:
            return 0
        return max(self.expected_recipients - self.resolved_recipients, 0)


@dataclass
class SendResult:
    """Aggregate outcome of one send or resend.

    ``sent + failed + invalid + skipped == total`` always holds.
    """

    notification_id: str
    status: NotificationStatus
    epoch: int
    total: int = 0
    sent: int = 0
    failed: int = 0
    invalid: int = 0
    skipped: int = 0
    timed_out: bool = False
    resumed: bool = False
    expected_recipients: Optional[int] = None
    missing_recipients: int = 0
    failed_token_ids: List[str] = field(default_factory=list)
    invalid_token_ids: List[str] = field(default_factory=list)
    skipped_token_ids: List[str] = field(default_factory=list)


@dataclass
class PruneResult:
    """Outcome of a duplicate-token cleanup."""

    examined: int = 0
    deleted: int = 0
    skipped: int = 0


@dataclass
class DeviceStats:
    total_devices: int = 0
    unique_users: int = 0
    by_platform: Dict[str, int] = field(default_factory=dict)
