"""Push payload construction.

The payload is provider-neutral but follows the FCM v1 message layout
(``notification``/``data``/``android``); the device token itself is passed
to the provider separately.
"""

from typing import Any, Dict

from modules.notifications.models import Notification, Priority


def android_priority(priority: Priority) -> str:
    """Android delivery priority: ``low`` maps to normal, everything else to high."""
    return "normal" if priority == Priority.LOW else "high"


def build_payload(notification: Notification, icon_url: str = "") -> Dict[str, Any]:
    """Build the push payload for a notification.

    ``data`` values are strings only, as required by FCM.
    """
    display: Dict[str, Any] = {
        "title": notification.title,
        "body": notification.message,
    }
    android_display: Dict[str, Any] = {
        "sound": "default",
        "channel_id": "default",
    }
    if icon_url:
        android_display["icon"] = icon_url
    if notification.image_url:
        display["image"] = notification.image_url
        android_display["image"] = notification.image_url

    return {
        "notification": display,
        "data": {
            "notification_id": notification.id,
            "type": notification.type or "info",
            "link": notification.link or "",
            "priority": notification.priority.value,
            "template_name": notification.template_name or "",
        },
        "android": {
            "priority": android_priority(notification.priority),
            "notification": android_display,
        },
    }
