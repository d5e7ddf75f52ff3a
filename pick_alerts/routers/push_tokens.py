from typing import Annotated
from fastapi import APIRouter, Depends, Request, status

from pick_alerts.schemas.notification_schemas import RegisterPushTokenRequest
from pick_alerts.services.notifications.push_token_service import (
    PushTokenService,
    get_push_token_service,
)
from pick_alerts.utils.responses import ResponseBuilder

push_tokens_router = APIRouter()


@push_tokens_router.post("/")
async def register_push_token(
    request: Request,
    body: RegisterPushTokenRequest,
    service: Annotated[PushTokenService, Depends(get_push_token_service)],
):
    token = await service.register(body)
    return ResponseBuilder.success(
        request=request,
        data={
            "id": token.id,
            "userId": token.user_id,
            "provider": token.provider,
            "isActive": token.is_active,
        },
        message="Push token registered",
        status_code=status.HTTP_201_CREATED,
    )


@push_tokens_router.delete("/users/{user_id}")
async def deactivate_push_tokens(
    request: Request,
    user_id: str,
    service: Annotated[PushTokenService, Depends(get_push_token_service)],
):
    """Unsubscribe: the user stops receiving newly scheduled alerts"""
    count = await service.deactivate_for_user(user_id)
    return ResponseBuilder.success(
        request=request,
        data={"userId": user_id, "deactivatedCount": count},
        message=f"Deactivated {count} push tokens",
    )
