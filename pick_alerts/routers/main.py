from fastapi import APIRouter

from .health import health_router
from .notifications import notifications_router
from .preferences import preferences_router
from .push_tokens import push_tokens_router

main_router = APIRouter()

# Include sub-routers
main_router.include_router(health_router, prefix="/health", tags=["Health Checks"])
main_router.include_router(
    notifications_router, prefix="/notifications", tags=["Notifications"]
)
main_router.include_router(
    preferences_router, prefix="/preferences", tags=["Notification Preferences"]
)
main_router.include_router(
    push_tokens_router, prefix="/push-tokens", tags=["Push Tokens"]
)
