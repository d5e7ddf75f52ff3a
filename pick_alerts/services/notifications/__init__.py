from .background_context import BackgroundDeliveryContext
from .connectivity_monitor import ConnectivityMonitor, http_probe
from .delivery_channel import DeliveryChannel, build_payload
from .event_source import HttpEventSource
from .foreground_scheduler import ForegroundScheduler
from .permission_gate import PermissionGate, PermissionState
from .planner import FireTime, plan
from .preference_service import DefaultPreferenceSource, PreferenceService
from .push_token_service import PushTokenService
from .schedule_service import (
    NotificationScheduleService,
    in_memory_service_provider,
    sql_service_provider,
)
from .store import InMemoryNotificationStore, ScheduledNotificationStore

__all__ = [
    "BackgroundDeliveryContext",
    "ConnectivityMonitor",
    "http_probe",
    "DeliveryChannel",
    "build_payload",
    "HttpEventSource",
    "ForegroundScheduler",
    "PermissionGate",
    "PermissionState",
    "FireTime",
    "plan",
    "DefaultPreferenceSource",
    "PreferenceService",
    "PushTokenService",
    "NotificationScheduleService",
    "in_memory_service_provider",
    "sql_service_provider",
    "InMemoryNotificationStore",
    "ScheduledNotificationStore",
]
