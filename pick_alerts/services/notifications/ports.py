"""Interfaces of the collaborators the notification engine does not own."""

from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from pick_alerts.schemas.notification_schemas import (
    NotificationPayload,
    NotificationPreferencesSchema,
    ScheduledNotificationCreate,
    ScheduledNotificationItem,
    UpcomingEvent,
)


class NotificationPlatform(Protocol):
    """Host notification capability (browser, desktop shell, push relay).

    `permission()` uses the platform vocabulary: "default", "granted" or "denied".
    Showing a notification whose tag matches a visible one replaces it.
    """

    def is_supported(self) -> bool: ...

    def permission(self) -> str: ...

    async def request_permission(self) -> str: ...

    async def show_notification(self, payload: NotificationPayload) -> None: ...

    async def close_notification(self, tag: str) -> None: ...


class ClientWindow(Protocol):
    """An open foreground session as seen from the background context."""

    url: str

    async def post_message(self, message: str) -> None: ...

    async def focus(self) -> None: ...


class ClientRegistry(Protocol):
    async def match_all(self) -> List[ClientWindow]: ...

    async def open_window(self, url: str) -> Optional[ClientWindow]: ...


class EventSource(Protocol):
    async def list_upcoming_events(self) -> List[UpcomingEvent]: ...


class PreferenceSource(Protocol):
    async def get_preferences(self, user_id: str) -> NotificationPreferencesSchema: ...


class NotificationStore(Protocol):
    async def create_many(
        self, records: Sequence[ScheduledNotificationCreate]
    ) -> int: ...

    async def list_pending(
        self, user_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> List[ScheduledNotificationItem]: ...

    async def list_overdue(
        self, user_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> List[ScheduledNotificationItem]: ...

    async def mark_sent(self, notification_id: str) -> bool: ...

    async def delete_by_event(self, event_id: str) -> List[str]: ...
