from typing import Optional
from datetime import datetime, timedelta
import uuid
from sqlalchemy import (
    String,
    Boolean,
    Text,
    Enum,
    Index,
    func,
    text,
    UniqueConstraint,
    DateTime,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import enum


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


# Enums
class ChannelType(enum.Enum):
    THIRTY_MIN = "30min"
    FIVE_MIN = "5min"
    LIVE = "live"

    @property
    def offset(self) -> timedelta:
        """How long before the event start this channel fires"""
        return CHANNEL_OFFSETS[self]


CHANNEL_OFFSETS = {
    ChannelType.THIRTY_MIN: timedelta(minutes=30),
    ChannelType.FIVE_MIN: timedelta(minutes=5),
    ChannelType.LIVE: timedelta(0),
}


def build_dedup_tag(event_id: str, channel_type: ChannelType) -> str:
    """Deterministic tag shared by every display of one (event, channel) alert."""
    return f"pick-{event_id}-{channel_type.value}"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


# Models
class ScheduledNotification(Base, AuditMixin):
    __tablename__ = "scheduled_notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    # Event and user live in other systems; only their identifiers are kept here
    event_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    channel_type: Mapped[ChannelType] = mapped_column(
        Enum(ChannelType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    # Stored as naive UTC, never updated after insert
    scheduled_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dedup_tag: Mapped[str] = mapped_column(String(160), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)

    # Constraints
    __table_args__ = (
        # At most one unsent row per (event, user, channel)
        Index(
            "uq_sched_notif_unsent_event_user_channel",
            "event_id",
            "user_id",
            "channel_type",
            unique=True,
            sqlite_where=text("sent = 0"),
            postgresql_where=text("sent = false"),
        ),
        Index("idx_sched_notif_user_sent_time", "user_id", "sent", "scheduled_time"),
        Index("idx_sched_notif_event_id", "event_id"),
        Index("idx_sched_notif_scheduled_time", "scheduled_time"),
    )


class NotificationPreferences(Base, AuditMixin):
    __tablename__ = "notification_preferences"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    master: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    thirty_min: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    five_min: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    live: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Constraints
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_notif_prefs_user_id"),
    )


class PushToken(Base, AuditMixin):
    __tablename__ = "push_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), default="fcm", nullable=False)
    token: Mapped[str] = mapped_column(String(500), nullable=False)
    # JSON stored as Text - serialize/deserialize in application
    device_info: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Constraints
    __table_args__ = (
        UniqueConstraint("provider", "token", name="uq_push_tokens_provider_token"),
        Index("idx_push_tokens_user_active", "user_id", "is_active"),
    )
