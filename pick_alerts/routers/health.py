from fastapi import APIRouter, Request

from pick_alerts.config.settings import settings
from pick_alerts.utils.responses import ResponseBuilder

health_router = APIRouter()


@health_router.get("/")
async def health_check(request: Request):
    """
    Basic health check endpoint

    Also the target of the connectivity probe used by foreground sessions
    """
    return ResponseBuilder.success(
        request=request,
        data={"status": "healthy", "service": settings.NAME, "version": settings.VERSION},
        message="Service is running",
    )
