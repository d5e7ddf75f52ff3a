from typing import Any, Dict

from pick_alerts.db.models import ChannelType
from pick_alerts.schemas.notification_schemas import UpcomingEvent
from pick_alerts.utils.logging import get_logger

logger = get_logger()


CHANNEL_TEMPLATES: Dict[ChannelType, Dict[str, Any]] = {
    ChannelType.THIRTY_MIN: {
        "subject": "⚽ Pick available in 30 min",
        "body": "{title} - {market}",
        "require_interaction": False,
    },
    ChannelType.FIVE_MIN: {
        "subject": "🔥 Pick starting now!",
        "body": "{title} - Only 5 minutes left",
        "require_interaction": True,
    },
    ChannelType.LIVE: {
        "subject": "🚨 Match is live!",
        "body": "{title} - The pick is active",
        "require_interaction": True,
    },
}

DEFAULT_MARKET = "New pick"


def requires_interaction(channel_type: ChannelType) -> bool:
    return CHANNEL_TEMPLATES[channel_type]["require_interaction"]


def build_message_data(event: UpcomingEvent) -> Dict[str, Any]:
    selection = event.selections[0] if event.selections else None
    return {
        "event_id": event.id,
        "title": event.title,
        "market": event.primary_market or DEFAULT_MARKET,
        "home_team": (selection.home_team if selection else None) or "",
        "away_team": (selection.away_team if selection else None) or "",
    }


def construct_message(channel_type: ChannelType, event: UpcomingEvent) -> Dict[str, str]:
    """Render subject and body once, at scheduling time"""
    template = CHANNEL_TEMPLATES[channel_type]
    data = build_message_data(event)
    try:
        return {
            "subject": template["subject"].format(**data),
            "body": template["body"].format(**data),
        }
    except (KeyError, IndexError) as e:
        logger.error(f"Template error for {channel_type.value}: missing {e}")
        return {"subject": template["subject"], "body": event.title}
