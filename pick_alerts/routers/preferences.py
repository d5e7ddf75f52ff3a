from typing import Annotated
from fastapi import APIRouter, Depends, Request

from pick_alerts.schemas.notification_schemas import UpdateNotificationPreferencesRequest
from pick_alerts.services.notifications.preference_service import (
    PreferenceService,
    get_preference_service,
)
from pick_alerts.utils.responses import ResponseBuilder

preferences_router = APIRouter()


@preferences_router.get("/users/{user_id}")
async def get_preferences(
    request: Request,
    user_id: str,
    service: Annotated[PreferenceService, Depends(get_preference_service)],
):
    """Channel flags of a user; all enabled on first access"""
    preferences = await service.get_preferences(user_id)
    return ResponseBuilder.success(
        request=request,
        data=preferences.model_dump(by_alias=True),
        message="Notification preferences retrieved",
    )


@preferences_router.put("/users/{user_id}")
async def update_preferences(
    request: Request,
    user_id: str,
    body: UpdateNotificationPreferencesRequest,
    service: Annotated[PreferenceService, Depends(get_preference_service)],
):
    """
    Update channel flags. Only future scheduling is affected; notifications
    already scheduled stay as they are.
    """
    preferences = await service.update_preferences(user_id, body)
    return ResponseBuilder.success(
        request=request,
        data=preferences.model_dump(by_alias=True),
        message="Notification preferences updated",
    )
