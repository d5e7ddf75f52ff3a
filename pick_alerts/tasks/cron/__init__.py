from .upcoming_events_scheduler import upcoming_events_scheduler_task

__all__ = [
    "upcoming_events_scheduler_task",
]
