import asyncio

from pick_alerts.celery import celery
from pick_alerts.db.session import task_session_factory
from pick_alerts.services.notifications.store import ScheduledNotificationStore
from pick_alerts.utils.context import request_id_scope
from pick_alerts.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=30)
def cancel_event_notifications_task(self, request_id: str, event_id: str):
    """
    Celery task removing the unsent notifications of a cancelled event.

    Already sent records are kept as history. Timers armed earlier in open
    sessions may still fire; marking a deleted record as sent is a no-op.

    Args:
        request_id: The request ID from the original HTTP request
        event_id: External ID of the cancelled event
    """
    return asyncio.run(_async_cancel_event_notifications(request_id, event_id))


async def _async_cancel_event_notifications(request_id: str, event_id: str):
    logger = get_logger().bind(request_id=request_id)

    with request_id_scope(request_id):
        try:
            async with task_session_factory() as session_factory:
                async with session_factory() as db_session:
                    deleted_ids = await ScheduledNotificationStore(
                        db_session
                    ).delete_by_event(event_id)

            logger.info(
                f"Cancelled {len(deleted_ids)} pending notifications of event {event_id}"
            )
            return {
                "success": True,
                "event_id": event_id,
                "deleted_count": len(deleted_ids),
                "request_id": request_id,
            }
        except Exception as e:
            logger.error(f"Event cancellation task exception {event_id}: {e}")
            return {
                "success": False,
                "error": str(e),
                "event_id": event_id,
                "request_id": request_id,
            }
