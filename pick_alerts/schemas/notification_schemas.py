from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import AliasChoices, Field, field_validator

from pick_alerts.db.models import ChannelType
from pick_alerts.schemas.camel_base_model import CamelCaseBaseModel as BaseModel
from pick_alerts.utils.datetime_utils import parse_utc, to_utc


class EventSelection(BaseModel):
    home_team: Optional[str] = Field(default=None, description="Home team label")
    away_team: Optional[str] = Field(default=None, description="Away team label")
    market: Optional[str] = Field(default=None, description="Market of the selection")


class UpcomingEvent(BaseModel):
    """An event needing notification, as supplied by the event source"""

    id: str = Field(..., description="External event ID")
    title: str = Field(..., description="Event title")
    start_time: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("startTime", "start_time", "startsAt", "starts_at"),
        description="Event start, UTC; None when missing or unparseable",
    )
    selections: List[EventSelection] = Field(
        default_factory=list,
        validation_alias=AliasChoices("selections", "betSelections", "bet_selections"),
    )

    @field_validator("id", mode="before")
    def coerce_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("start_time", mode="before")
    def parse_start_time(cls, v: Any) -> Optional[datetime]:
        # A broken start time excludes the event from planning instead of failing validation
        return parse_utc(v)

    @property
    def primary_market(self) -> Optional[str]:
        return self.selections[0].market if self.selections else None


class NotificationPreferencesSchema(BaseModel):
    master: bool = Field(default=True, description="Master on/off switch")
    thirty_min: bool = Field(default=True, alias="30min")
    five_min: bool = Field(default=True, alias="5min")
    live: bool = Field(default=True, alias="live")

    def allows(self, channel_type: ChannelType) -> bool:
        """Whether new alerts of this channel may be created"""
        if not self.master:
            return False
        return {
            ChannelType.THIRTY_MIN: self.thirty_min,
            ChannelType.FIVE_MIN: self.five_min,
            ChannelType.LIVE: self.live,
        }[channel_type]

    def allows_any(self) -> bool:
        return any(self.allows(channel_type) for channel_type in ChannelType)


class UpdateNotificationPreferencesRequest(BaseModel):
    master: Optional[bool] = None
    thirty_min: Optional[bool] = Field(default=None, alias="30min")
    five_min: Optional[bool] = Field(default=None, alias="5min")
    live: Optional[bool] = Field(default=None, alias="live")


class ScheduledNotificationCreate(BaseModel):
    event_id: str
    user_id: str
    channel_type: ChannelType
    scheduled_time: datetime
    title: str
    body: str
    dedup_tag: str

    @property
    def key(self) -> tuple:
        return (self.event_id, self.user_id, self.channel_type)


class ScheduledNotificationItem(ScheduledNotificationCreate):
    id: str = Field(..., description="Scheduled notification ID")
    sent: bool = Field(default=False, description="Whether it has been delivered")
    created_at: Optional[datetime] = None

    @field_validator("scheduled_time", mode="after")
    def ensure_utc(cls, v: datetime) -> datetime:
        return to_utc(v)


class NotificationStatsResponse(BaseModel):
    total: int
    pending: int
    overdue: int
    sent: int


class NotificationAction(BaseModel):
    action: str
    title: str


class NotificationPayload(BaseModel):
    """What the display primitive receives"""

    title: str
    body: str
    tag: str
    icon: Optional[str] = None
    badge: Optional[str] = None
    require_interaction: bool = False
    vibrate: Optional[List[int]] = None
    actions: List[NotificationAction] = Field(default_factory=list)
    data: Dict[str, Any] = Field(default_factory=dict)


class PushMessage(BaseModel):
    """Server push as received by the background context"""

    title: Optional[str] = None
    body: str = ""
    event_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("eventId", "event_id", "betId")
    )
    url: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("event_id", mode="before")
    def coerce_event_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class ScheduleEventRequest(BaseModel):
    event: UpcomingEvent
    user_ids: List[str] = Field(..., min_length=1)


class ScheduleEventResponse(BaseModel):
    event_id: str
    created_count: int


class RegisterPushTokenRequest(BaseModel):
    user_id: str
    token: str = Field(..., min_length=1, max_length=500)
    provider: str = Field(default="fcm", max_length=20)
    device_info: Optional[Dict[str, Any]] = None
