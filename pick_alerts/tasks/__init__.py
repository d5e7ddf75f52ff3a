from .background import *
from .cron import *

__all__ = [
    "cancel_event_notifications_task",
    # Scheduled/Cron Tasks
    "upcoming_events_scheduler_task",
]
