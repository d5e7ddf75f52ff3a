from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Union
from pydantic import Field, TypeAdapter

from pick_alerts.db.models import ChannelType
from pick_alerts.schemas.camel_base_model import CamelCaseBaseModel as BaseModel
from pick_alerts.schemas.notification_schemas import ScheduledNotificationItem


class ScheduleMessage(BaseModel):
    """Foreground -> background: arm a display timer for one record"""

    type: Literal["SCHEDULE"] = "SCHEDULE"
    id: str
    event_id: str
    channel_type: ChannelType
    scheduled_time: datetime
    title: str
    body: str
    dedup_tag: str

    @classmethod
    def from_record(cls, record: ScheduledNotificationItem) -> "ScheduleMessage":
        return cls(
            id=record.id,
            event_id=record.event_id,
            channel_type=record.channel_type,
            scheduled_time=record.scheduled_time,
            title=record.title,
            body=record.body,
            dedup_tag=record.dedup_tag,
        )


class CancelMessage(BaseModel):
    """Foreground -> background: disarm the timer for one record"""

    type: Literal["CANCEL"] = "CANCEL"
    id: str


class NavigateMessage(BaseModel):
    """Background -> foreground: the user clicked an alert"""

    type: Literal["NAVIGATE"] = "NAVIGATE"
    event_id: str


ClientMessage = Annotated[
    Union[ScheduleMessage, CancelMessage, NavigateMessage],
    Field(discriminator="type"),
]

_client_message_adapter = TypeAdapter(ClientMessage)


def parse_client_message(raw: Union[str, bytes, Dict[str, Any]]):
    """Decode a wire message (JSON text or dict) into its typed model."""
    if isinstance(raw, (str, bytes)):
        return _client_message_adapter.validate_json(raw)
    return _client_message_adapter.validate_python(raw)


def dump_client_message(message: BaseModel) -> str:
    return message.model_dump_json(by_alias=True)
