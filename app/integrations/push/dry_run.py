"""Push provider that records deliveries in the log instead of sending them.

Used as the default provider in development and for local runs of the
API; production deployments inject a real provider.
"""

from typing import Any, Dict

from infrastructure.logging import get_module_logger

logger = get_module_logger()


class DryRunPushProvider:
    def send(
        self, platform: str, token: str, payload: Dict[str, Any], timeout: float
    ) -> str:
        logger.info(
            "push_dry_run",
            platform=platform,
            notification_id=payload.get("data", {}).get("notification_id"),
            timeout=timeout,
        )
        return "sent"
