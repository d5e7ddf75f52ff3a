from .event_cancellation import cancel_event_notifications_task

__all__ = [
    "cancel_event_notifications_task",
]
