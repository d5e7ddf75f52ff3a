"""
Background delivery context.

Runs independently of any foreground session. It keeps its own best-effort
timer set seeded by SCHEDULE/CANCEL messages and shows notifications without
touching the store. Server pushes are displayed here too, and notification
clicks are routed back into the app.
Its state is a cache only. A recreated context starts empty and is re-seeded
by the next foreground resync.
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Set, Union

from pydantic import ValidationError

from .delivery_channel import build_payload
from .ports import ClientRegistry, NotificationPlatform
from pick_alerts.config.settings import settings
from pick_alerts.schemas.client_message_schemas import (
    CancelMessage,
    NavigateMessage,
    ScheduleMessage,
    dump_client_message,
    parse_client_message,
)
from pick_alerts.schemas.notification_schemas import (
    NotificationAction,
    NotificationPayload,
    PushMessage,
)
from pick_alerts.utils.datetime_utils import seconds_until, utc_now
from pick_alerts.utils.logging import get_logger

logger = get_logger()

VIEW_ACTION = "view"
CLOSE_ACTION = "close"

PUSH_ACTIONS = [
    NotificationAction(action=VIEW_ACTION, title="View pick"),
    NotificationAction(action=CLOSE_ACTION, title="Close"),
]


class BackgroundDeliveryContext:
    def __init__(
        self,
        platform: NotificationPlatform,
        clients: ClientRegistry,
        clock: Callable[[], datetime] = utc_now,
        feed_path: str = settings.APP_FEED_PATH,
        retention: float = settings.NOTIFICATION_RESYNC_INTERVAL_SECONDS,
    ):
        self.platform = platform
        self.clients = clients
        self.feed_path = feed_path
        self.retention = retention
        self._clock = clock
        self._timers: Dict[str, asyncio.Task] = {}
        # Fired record id -> scheduled time; kept one resync window past that time
        self._fired: Dict[str, datetime] = {}
        self._active = True

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def armed_ids(self) -> Set[str]:
        return set(self._timers)

    @property
    def fired_ids(self) -> Set[str]:
        return set(self._fired)

    async def post_message(self, message: Union[str, bytes, Dict[str, Any], Any]) -> None:
        """Entry point for foreground -> background messages"""
        if not self._active:
            logger.debug("Background context terminated, message dropped")
            return

        if isinstance(message, (str, bytes, dict)):
            try:
                message = parse_client_message(message)
            except ValidationError as e:
                logger.warning(f"Ignoring malformed client message: {e}")
                return

        if isinstance(message, ScheduleMessage):
            await self._schedule(message)
        elif isinstance(message, CancelMessage):
            self._cancel(message.id)
        else:
            logger.warning(f"Unexpected message for background context: {message!r}")

    async def _schedule(self, message: ScheduleMessage) -> None:
        self._prune_fired()
        if message.id in self._timers or message.id in self._fired:
            return

        delay = seconds_until(message.scheduled_time, self._clock())
        if delay <= 0:
            await self._display(message)
            return

        self._timers[message.id] = asyncio.create_task(
            self._fire_after(message, delay)
        )
        logger.debug(f"Background timer armed for {message.id} in {delay:.0f}s")

    def _prune_fired(self) -> None:
        horizon = self._clock() - timedelta(seconds=self.retention)
        for record_id, scheduled_time in list(self._fired.items()):
            if scheduled_time < horizon:
                del self._fired[record_id]

    def _cancel(self, record_id: str) -> None:
        timer = self._timers.pop(record_id, None)
        if timer is not None:
            timer.cancel()
            logger.debug(f"Background timer cancelled for {record_id}")

    async def _fire_after(self, message: ScheduleMessage, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timers.pop(message.id, None)
        await self._display(message)

    async def _display(self, message: ScheduleMessage) -> None:
        self._fired[message.id] = message.scheduled_time
        try:
            await self.platform.show_notification(build_payload(message))
        except Exception as e:
            logger.error(f"Background display of {message.dedup_tag} failed: {e}")

    async def show(self, payload: NotificationPayload) -> None:
        """Display on behalf of a foreground session"""
        await self.platform.show_notification(payload)

    async def handle_push(self, data: Union[str, bytes, Dict[str, Any], None]) -> None:
        """
        Display a server push. The payload carries the view/close actions and,
        when it names an event, the event id the click navigates to.
        """
        if not data:
            return

        try:
            if isinstance(data, (str, bytes)):
                push = PushMessage.model_validate_json(data)
            else:
                push = PushMessage.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed push: {e}")
            return

        event_id = push.event_id or push.data.get("eventId") or push.data.get("betId")
        push_data = dict(push.data)
        if event_id:
            push_data["event_id"] = str(event_id)
        if push.url:
            push_data["url"] = push.url

        payload = NotificationPayload(
            title=push.title or settings.PUSH_DEFAULT_TITLE,
            body=push.body,
            tag=f"pick-{push_data['event_id']}-push" if event_id else f"push-{uuid.uuid4()}",
            icon=settings.NOTIFICATION_ICON,
            badge=settings.NOTIFICATION_BADGE,
            vibrate=settings.PUSH_VIBRATE_PATTERN,
            actions=PUSH_ACTIONS,
            data=push_data,
        )
        try:
            await self.platform.show_notification(payload)
        except Exception as e:
            logger.error(f"Push display of {payload.tag} failed: {e}")

    async def handle_click(
        self, payload: NotificationPayload, action: Optional[str] = None
    ) -> None:
        """
        Close the clicked notification, then bring the user to the event.

        An open feed client receives NAVIGATE and gets focus; without one a new
        client is opened on the event anchor of the feed. A notification with no
        event just brings up the feed.
        """
        await self.platform.close_notification(payload.tag)
        if action == CLOSE_ACTION:
            return

        event_id = payload.data.get("event_id")

        for client in await self.clients.match_all():
            if self.feed_path in client.url:
                if event_id:
                    await client.post_message(
                        dump_client_message(NavigateMessage(event_id=event_id))
                    )
                await client.focus()
                return

        if event_id:
            await self.clients.open_window(f"{self.feed_path}#pick-{event_id}")
        else:
            await self.clients.open_window(self.feed_path)

    def terminate(self) -> None:
        """Tear down: every armed timer is lost"""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._fired.clear()
        self._active = False
        logger.info("Background delivery context terminated")
