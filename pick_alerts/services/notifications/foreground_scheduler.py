import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Set

from .background_context import BackgroundDeliveryContext
from .delivery_channel import DeliveryChannel, build_payload
from .permission_gate import PermissionGate
from .schedule_service import ServiceProvider
from pick_alerts.config.settings import settings
from pick_alerts.schemas.client_message_schemas import (
    CancelMessage,
    ScheduleMessage,
    dump_client_message,
)
from pick_alerts.schemas.notification_schemas import (
    ScheduledNotificationItem,
    UpcomingEvent,
)
from pick_alerts.utils.datetime_utils import seconds_until, utc_now
from pick_alerts.utils.errors import DeliveryError, StoreUnavailableError
from pick_alerts.utils.logging import get_logger

logger = get_logger()


class ForegroundScheduler:
    """
    Per-session scheduler: the store is polled, local timers fire.

    Every resync loads the user's unsent records. Future ones get one timer each
    (never re-armed); elapsed ones that no timer covers fire at once. A forced
    resync (activation, page visible again, network back) also fires elapsed
    records whose timer is still armed. Each resync re-seeds the background
    context with SCHEDULE messages so a recreated context catches up.
    """

    def __init__(
        self,
        user_id: str,
        service_provider: ServiceProvider,
        delivery_channel: DeliveryChannel,
        permission_gate: PermissionGate,
        background: Optional[BackgroundDeliveryContext] = None,
        clock: Callable[[], datetime] = utc_now,
        resync_interval: float = settings.NOTIFICATION_RESYNC_INTERVAL_SECONDS,
    ):
        self.user_id = user_id
        self.service_provider = service_provider
        self.delivery_channel = delivery_channel
        self.permission_gate = permission_gate
        self.background = background
        self.resync_interval = resync_interval
        self._clock = clock

        self._armed: Dict[str, ScheduledNotificationItem] = {}
        self._timers: Dict[str, asyncio.Task] = {}
        self._in_flight: Set[str] = set()
        # Delivered record id -> scheduled time, pruned once out of the overdue window
        self._delivered: Dict[str, datetime] = {}
        # Events cancelled in this session; their rows may outlive a store outage
        self._cancelled_events: Set[str] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._resync_lock = asyncio.Lock()

    @property
    def is_active(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def armed_ids(self) -> Set[str]:
        return set(self._timers)

    @property
    def delivered_ids(self) -> Set[str]:
        return set(self._delivered)

    # Lifecycle

    async def init(self) -> None:
        """Load and arm pending records, then start the repeating resync tick."""
        if self.is_active:
            return
        self._stop_event.clear()
        await self.resync(force=True)
        self._loop_task = asyncio.create_task(self._run())
        logger.info(f"Foreground scheduler started for user {self.user_id}")

    async def dispose(self) -> None:
        self._stop_event.set()
        tasks = list(self._timers.values())
        if self._loop_task is not None:
            tasks.append(self._loop_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._loop_task = None
        self._timers.clear()
        self._armed.clear()
        logger.info(f"Foreground scheduler stopped for user {self.user_id}")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.resync_interval
                )
            except asyncio.TimeoutError:
                await self.resync()

    # Resync

    async def resync(self, force: bool = False) -> int:
        """
        Diff the store against armed timers and catch up on elapsed records.
        Returns the number of newly armed records. Store failures are logged and
        retried on the next tick.
        """
        async with self._resync_lock:
            now = self._clock()
            try:
                async with self.service_provider() as service:
                    pending = await service.store.list_pending(self.user_id, now)
                    overdue = await service.store.list_overdue(self.user_id, now)
            except StoreUnavailableError as e:
                logger.warning(f"Resync skipped, store unavailable: {e.message}")
                return 0
            except Exception:
                logger.exception("Unexpected error during notification resync")
                return 0

            armed = 0
            pending = self._without_cancelled(pending)
            overdue = self._without_cancelled(overdue)

            for record in pending:
                if record.id in self._timers or record.id in self._delivered:
                    continue
                self._arm(record, now)
                armed += 1

            if armed:
                logger.debug(f"Armed {armed} new notifications for {self.user_id}")

            await self._seed_background()

            for record in overdue:
                if record.id in self._timers and not force:
                    continue
                await self._fire(record)

            self._prune_delivered(now)

            return armed

    def _without_cancelled(
        self, records: List[ScheduledNotificationItem]
    ) -> List[ScheduledNotificationItem]:
        return [
            record for record in records if record.event_id not in self._cancelled_events
        ]

    def _prune_delivered(self, now: datetime) -> None:
        horizon = now - timedelta(seconds=self.resync_interval)
        for record_id, scheduled_time in list(self._delivered.items()):
            if scheduled_time < horizon:
                del self._delivered[record_id]

    async def force_resync(self) -> int:
        return await self.resync(force=True)

    async def on_visibility_change(self, visible: bool) -> None:
        """Page shown again: timers may have been throttled while hidden."""
        if not visible:
            return
        self.permission_gate.refresh()
        await self.force_resync()

    async def _seed_background(self) -> None:
        if self.background is None or not self.background.is_active:
            return
        for record in list(self._armed.values()):
            await self.background.post_message(
                dump_client_message(ScheduleMessage.from_record(record))
            )

    # Timers

    def _arm(self, record: ScheduledNotificationItem, now: datetime) -> None:
        delay = max(seconds_until(record.scheduled_time, now), 0.0)
        self._armed[record.id] = record
        self._timers[record.id] = asyncio.create_task(self._fire_after(record, delay))

    def _disarm(self, record_id: str) -> None:
        self._armed.pop(record_id, None)
        timer = self._timers.pop(record_id, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _fire_after(self, record: ScheduledNotificationItem, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timers.pop(record.id, None)
        await self._fire(record)

    async def _fire(self, record: ScheduledNotificationItem) -> None:
        """Display then mark sent; at most once per record per session."""
        if record.id in self._delivered or record.id in self._in_flight:
            return

        self._in_flight.add(record.id)
        self._disarm(record.id)
        try:
            try:
                displayed = await self.delivery_channel.display(build_payload(record))
            except DeliveryError as e:
                logger.error(e.message)
                displayed = True

            if not displayed:
                return

            try:
                async with self.service_provider() as service:
                    await service.store.mark_sent(record.id)
                self._delivered[record.id] = record.scheduled_time
            except StoreUnavailableError as e:
                # Stays unsent in the store; the next forced resync delivers it again
                logger.warning(f"Could not mark {record.id} as sent: {e.message}")
        finally:
            self._in_flight.discard(record.id)

    # Scheduling requests from the session

    async def schedule_events(self, events: Sequence[UpcomingEvent]) -> int:
        """Create alerts of the given events for the session user; needs permission."""
        if not self.permission_gate.is_granted:
            logger.info(
                f"Notification permission {self.permission_gate.state.value}, "
                "events not scheduled"
            )
            return 0

        self._cancelled_events.difference_update(event.id for event in events)
        try:
            async with self.service_provider() as service:
                results = await service.schedule_upcoming(
                    events, [self.user_id], self._clock()
                )
        except StoreUnavailableError as e:
            logger.warning(f"Scheduling failed, store unavailable: {e.message}")
            return 0

        await self.resync()
        return sum(results.values())

    async def cancel_event(self, event_id: str) -> List[str]:
        """Drop the event's unsent records, local timers and background timers."""
        self._cancelled_events.add(event_id)
        try:
            async with self.service_provider() as service:
                deleted_ids = await service.cancel_event(event_id)
        except StoreUnavailableError as e:
            logger.warning(f"Could not delete records of event {event_id}: {e.message}")
            deleted_ids = []

        armed_ids = [
            record_id
            for record_id, record in self._armed.items()
            if record.event_id == event_id
        ]
        for record_id in dict.fromkeys([*deleted_ids, *armed_ids]):
            self._disarm(record_id)
            if self.background is not None and self.background.is_active:
                await self.background.post_message(
                    dump_client_message(CancelMessage(id=record_id))
                )
        return deleted_ids
