import asyncio
from typing import Optional

from pick_alerts.celery import celery
from pick_alerts.db.session import task_session_factory
from pick_alerts.services.notifications.event_source import HttpEventSource
from pick_alerts.services.notifications.ports import EventSource
from pick_alerts.services.notifications.push_token_service import PushTokenService
from pick_alerts.services.notifications.schedule_service import sql_schedule_service
from pick_alerts.utils.context import request_id_scope
from pick_alerts.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def upcoming_events_scheduler_task(self, request_id: str):
    """
    Periodic task creating the alerts of every upcoming event.

    Runs every few minutes (UPCOMING_EVENTS_SCAN_MINUTES) to:
    1. Fetch published events with a future start from the event service
    2. Collect the users holding an active push token
    3. Create the 30min / 5min / live records each user's preferences allow

    Creation is idempotent, so events seen on a previous run only gain the
    records of users who registered since.

    Args:
        request_id: Request ID for tracking purposes
    """
    return asyncio.run(_async_upcoming_events_scheduler(request_id))


async def _async_upcoming_events_scheduler(
    request_id: str, event_source: Optional[EventSource] = None
):
    logger = get_logger().bind(request_id=request_id)
    event_source = event_source or HttpEventSource()

    with request_id_scope(request_id):
        try:
            logger.info("Starting upcoming events scheduler task")

            events = await event_source.list_upcoming_events()
            if not events:
                logger.info("No upcoming events to schedule")
                return {
                    "success": True,
                    "event_count": 0,
                    "created_count": 0,
                    "request_id": request_id,
                }

            async with task_session_factory() as session_factory:
                async with session_factory() as db_session:
                    user_ids = await PushTokenService(db_session).list_active_user_ids()

                if not user_ids:
                    logger.info("No users with an active push token")
                    return {
                        "success": True,
                        "event_count": len(events),
                        "created_count": 0,
                        "request_id": request_id,
                    }

                async with sql_schedule_service(session_factory) as service:
                    results = await service.schedule_upcoming(events, user_ids)

            created_count = sum(results.values())
            logger.info(
                f"Upcoming events scheduler task completed: {created_count} notifications "
                f"for {len(events)} events and {len(user_ids)} users"
            )

            return {
                "success": True,
                "event_count": len(events),
                "user_count": len(user_ids),
                "created_count": created_count,
                "request_id": request_id,
            }
        except Exception as e:
            logger.opt(exception=True).error(
                f"Upcoming events scheduler task exception: {e}"
            )
            return {"success": False, "error": str(e), "request_id": request_id}
