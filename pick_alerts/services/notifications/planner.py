"""
Fire-time planning for pick alerts.

An event gets at most one alert per channel type: 30 minutes before the
start, 5 minutes before, and at the start. Offsets whose absolute time has
already passed are dropped, never caught up: a "30 minutes to go" alert
arriving after that window closed is worse than no alert.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from pick_alerts.db.models import ChannelType
from pick_alerts.schemas.notification_schemas import (
    NotificationPreferencesSchema,
    UpcomingEvent,
)
from pick_alerts.utils.datetime_utils import to_utc


@dataclass(frozen=True)
class FireTime:
    channel_type: ChannelType
    fire_at: datetime


def plan(
    event: UpcomingEvent,
    now: datetime,
    prefs: Optional[NotificationPreferencesSchema] = None,
) -> List[FireTime]:
    """Future fire times for an event, filtered by the user's preferences.

    Events without a usable start time, and events already started, plan nothing.
    """
    prefs = prefs or NotificationPreferencesSchema()
    start = event.start_time
    if not isinstance(start, datetime):
        return []

    start = to_utc(start)
    now = to_utc(now)
    if start <= now:
        return []

    fire_times = []
    for channel_type in ChannelType:
        if not prefs.allows(channel_type):
            continue
        fire_at = start - channel_type.offset
        if fire_at > now:
            fire_times.append(FireTime(channel_type=channel_type, fire_at=fire_at))
    return fire_times
