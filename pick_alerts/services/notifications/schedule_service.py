from contextlib import asynccontextmanager
from datetime import datetime
from typing import (
    AsyncContextManager,
    AsyncIterator,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
)

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .planner import plan
from .ports import NotificationStore, PreferenceSource
from .preference_service import DefaultPreferenceSource, PreferenceService
from .store import InMemoryNotificationStore, ScheduledNotificationStore
from .templates import construct_message
from pick_alerts.db.models import build_dedup_tag
from pick_alerts.db.session import get_async_session
from pick_alerts.schemas.notification_schemas import (
    ScheduledNotificationCreate,
    UpcomingEvent,
)
from pick_alerts.utils.datetime_utils import utc_now
from pick_alerts.utils.logging import get_logger

logger = get_logger()

ServiceProvider = Callable[[], AsyncContextManager["NotificationScheduleService"]]


class NotificationScheduleService:
    """Creation side of the engine: preferences -> planner -> renderer -> store"""

    def __init__(self, store: NotificationStore, preferences: PreferenceSource):
        self.store = store
        self.preferences = preferences

    async def build_records(
        self, event: UpcomingEvent, user_ids: Iterable[str], now: datetime
    ) -> List[ScheduledNotificationCreate]:
        records = []
        # dict.fromkeys keeps order and drops repeated users
        for user_id in dict.fromkeys(user_ids):
            prefs = await self.preferences.get_preferences(user_id)
            if not prefs.allows_any():
                continue

            for fire_time in plan(event, now, prefs):
                message = construct_message(fire_time.channel_type, event)
                records.append(
                    ScheduledNotificationCreate(
                        event_id=event.id,
                        user_id=user_id,
                        channel_type=fire_time.channel_type,
                        scheduled_time=fire_time.fire_at,
                        title=message["subject"],
                        body=message["body"],
                        dedup_tag=build_dedup_tag(event.id, fire_time.channel_type),
                    )
                )
        return records

    async def schedule_event(
        self,
        event: UpcomingEvent,
        user_ids: Sequence[str],
        now: Optional[datetime] = None,
    ) -> int:
        """
        Create the future alerts of one event for the given users.

        Re-running it for the same event is harmless: existing unsent records
        are left as they are. Returns the number of records created.
        """
        now = now or utc_now()
        records = await self.build_records(event, user_ids, now)
        if not records:
            logger.debug(f"Nothing to schedule for event {event.id}")
            return 0

        created = await self.store.create_many(records)
        logger.info(
            f"Scheduled {created} notifications for event {event.id} "
            f"across {len(user_ids)} users"
        )
        return created

    async def schedule_upcoming(
        self,
        events: Sequence[UpcomingEvent],
        user_ids: Sequence[str],
        now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """Schedule every upcoming event; returns created counts per event id."""
        now = now or utc_now()
        results = {}
        for event in events:
            results[event.id] = await self.schedule_event(event, user_ids, now)
        return results

    async def cancel_event(self, event_id: str) -> List[str]:
        """Delete the unsent records of a cancelled event; returns their ids."""
        return await self.store.delete_by_event(event_id)


@asynccontextmanager
async def sql_schedule_service(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[NotificationScheduleService]:
    """Schedule service over one database session, closed on exit"""
    async with session_factory() as session:
        yield NotificationScheduleService(
            ScheduledNotificationStore(session), PreferenceService(session)
        )


def get_schedule_service(
    db: AsyncSession = Depends(get_async_session),
) -> NotificationScheduleService:
    return NotificationScheduleService(
        ScheduledNotificationStore(db), PreferenceService(db)
    )


def sql_service_provider(
    session_factory: async_sessionmaker[AsyncSession],
) -> ServiceProvider:
    """Provider opening a fresh session for every use (foreground scheduler)"""
    return lambda: sql_schedule_service(session_factory)


def in_memory_service_provider(
    store: Optional[NotificationStore] = None,
    preferences: Optional[PreferenceSource] = None,
) -> ServiceProvider:
    """Degraded client-only mode: one shared non-durable store, default preferences"""
    service = NotificationScheduleService(
        store or InMemoryNotificationStore(),
        preferences or DefaultPreferenceSource(),
    )

    @asynccontextmanager
    async def provide() -> AsyncIterator[NotificationScheduleService]:
        yield service

    return provide
