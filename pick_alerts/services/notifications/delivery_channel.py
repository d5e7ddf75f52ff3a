from typing import Optional, Union

from .permission_gate import PermissionGate
from .ports import NotificationPlatform
from .templates import requires_interaction
from pick_alerts.config.settings import settings
from pick_alerts.schemas.client_message_schemas import ScheduleMessage
from pick_alerts.schemas.notification_schemas import (
    NotificationPayload,
    ScheduledNotificationItem,
)
from pick_alerts.utils.errors import DeliveryError
from pick_alerts.utils.logging import get_logger

logger = get_logger()


def build_payload(
    record: Union[ScheduledNotificationItem, ScheduleMessage],
    icon: Optional[str] = None,
    badge: Optional[str] = None,
) -> NotificationPayload:
    """Display payload of a scheduled record, tagged with its dedup tag"""
    return NotificationPayload(
        title=record.title,
        body=record.body,
        tag=record.dedup_tag,
        icon=icon or settings.NOTIFICATION_ICON,
        badge=badge or settings.NOTIFICATION_BADGE,
        require_interaction=requires_interaction(record.channel_type),
        data={
            "event_id": record.event_id,
            "record_id": record.id,
            "channel_type": record.channel_type.value,
        },
    )


class DeliveryChannel:
    """The single "show notification" primitive used by both timer sets.

    Every display carries the record's dedup tag, so a foreground and a
    background fire of the same alert leave one visible notification.
    """

    def __init__(
        self,
        platform: NotificationPlatform,
        permission_gate: PermissionGate,
        background=None,
    ):
        self.platform = platform
        self.permission_gate = permission_gate
        self.background = background

    @property
    def background_reachable(self) -> bool:
        return self.background is not None and self.background.is_active

    async def display(self, payload: NotificationPayload) -> bool:
        """
        Show one notification.

        Returns False without displaying when permission is not granted.
        Raises DeliveryError when the platform rejects the display; callers
        log it and do not retry.
        """
        if not self.permission_gate.is_granted:
            logger.debug(f"Permission not granted, dropping notification {payload.tag}")
            return False

        try:
            if self.background_reachable:
                await self.background.show(payload)
            else:
                await self.platform.show_notification(payload)
        except Exception as e:
            raise DeliveryError(f"Failed to display notification {payload.tag}: {e}")

        logger.debug(f"Displayed notification {payload.tag}")
        return True
