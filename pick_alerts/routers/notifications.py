from typing import Annotated
from fastapi import APIRouter, Depends, Request, status

from pick_alerts.schemas.notification_schemas import (
    ScheduleEventRequest,
    ScheduleEventResponse,
)
from pick_alerts.services.notifications.schedule_service import (
    NotificationScheduleService,
    get_schedule_service,
)
from pick_alerts.services.notifications.store import (
    ScheduledNotificationStore,
    get_scheduled_notification_store,
)
from pick_alerts.tasks import cancel_event_notifications_task
from pick_alerts.utils.errors import BusinessLogicError
from pick_alerts.utils.logging import get_logger
from pick_alerts.utils.responses import ResponseBuilder

notifications_router = APIRouter()
logger = get_logger()


@notifications_router.get("/pending")
async def list_all_pending(
    request: Request,
    store: Annotated[ScheduledNotificationStore, Depends(get_scheduled_notification_store)],
):
    """
    Administrative view of every unsent notification that is still ahead.
    Read-only.
    """
    records = await store.list_pending()
    return ResponseBuilder.success(
        request=request,
        data=[record.model_dump(by_alias=True) for record in records],
        message=f"Retrieved {len(records)} pending notifications",
    )


@notifications_router.get("/stats")
async def get_notification_stats(
    request: Request,
    store: Annotated[ScheduledNotificationStore, Depends(get_scheduled_notification_store)],
):
    stats = await store.get_stats()
    return ResponseBuilder.success(
        request=request,
        data=stats.model_dump(by_alias=True),
        message="Notification statistics retrieved",
    )


@notifications_router.get("/users/{user_id}/pending")
async def list_user_pending(
    request: Request,
    user_id: str,
    store: Annotated[ScheduledNotificationStore, Depends(get_scheduled_notification_store)],
):
    """Unsent future notifications of one user, as loaded by foreground sessions"""
    records = await store.list_pending(user_id=user_id)
    return ResponseBuilder.success(
        request=request,
        data=[record.model_dump(by_alias=True) for record in records],
        message=f"Retrieved {len(records)} pending notifications",
    )


@notifications_router.post("/events/{event_id}")
async def schedule_event_notifications(
    request: Request,
    event_id: str,
    body: ScheduleEventRequest,
    service: Annotated[NotificationScheduleService, Depends(get_schedule_service)],
):
    """Plan and store the alerts of one event for the given users"""
    if body.event.id != event_id:
        raise BusinessLogicError(
            f"Event ID mismatch: path {event_id}, body {body.event.id}",
            error_code="EVENT_ID_MISMATCH",
        )

    created = await service.schedule_event(body.event, body.user_ids)
    response = ScheduleEventResponse(event_id=event_id, created_count=created)
    return ResponseBuilder.success(
        request=request,
        data=response.model_dump(by_alias=True),
        message=f"Scheduled {created} notifications",
        status_code=status.HTTP_201_CREATED,
    )


@notifications_router.delete("/events/{event_id}")
async def cancel_event_notifications(request: Request, event_id: str):
    """Remove the unsent notifications of a cancelled event in the background"""
    task = cancel_event_notifications_task.delay(request.state.request_id, event_id)  # type: ignore
    logger.info(f"Dispatched cancellation of event {event_id} notifications")
    return ResponseBuilder.success(
        request=request,
        data={"eventId": event_id, "taskId": task.id},
        message="Event cancellation scheduled",
        status_code=status.HTTP_202_ACCEPTED,
    )


# Declared after the /events routes so that "/events/sent" never matches it
@notifications_router.post("/{notification_id}/sent")
async def mark_notification_sent(
    request: Request,
    notification_id: str,
    store: Annotated[ScheduledNotificationStore, Depends(get_scheduled_notification_store)],
):
    """
    Mark a notification as delivered.

    Idempotent: repeating the call, or calling it for a notification removed
    in the meantime, still succeeds.
    """
    await store.mark_sent(notification_id)
    return ResponseBuilder.success(
        request=request,
        data={"id": notification_id, "sent": True},
        message="Notification marked as sent",
    )
