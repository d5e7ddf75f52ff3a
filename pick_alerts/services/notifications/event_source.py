from datetime import datetime
from typing import Any, List, Optional

import httpx
from pydantic import ValidationError

from pick_alerts.config.settings import settings
from pick_alerts.schemas.notification_schemas import UpcomingEvent
from pick_alerts.utils.datetime_utils import utc_now
from pick_alerts.utils.errors import BusinessLogicError
from pick_alerts.utils.logging import get_logger

logger = get_logger()


class HttpEventSource:
    """Reads published upcoming events from the external event service."""

    def __init__(
        self,
        url: str = settings.EVENTS_API_URL,
        timeout: float = settings.EVENTS_API_TIMEOUT,
    ):
        self.url = url
        self.timeout = timeout

    async def list_upcoming_events(
        self, now: Optional[datetime] = None
    ) -> List[UpcomingEvent]:
        now = now or utc_now()
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(self.url, timeout=self.timeout)
        except httpx.RequestError as e:
            raise BusinessLogicError(
                f"Event service unreachable: {e}", error_code="EVENT_SOURCE_UNREACHABLE"
            )

        if response.status_code != 200:
            raise BusinessLogicError(
                f"Failed to fetch upcoming events: {response.status_code} - {response.text}",
                error_code="EVENT_SOURCE_FAILED",
            )

        try:
            body = response.json()
        except ValueError as e:
            raise BusinessLogicError(
                f"Event service returned a non-JSON body: {e}",
                error_code="EVENT_SOURCE_FAILED",
            )

        events = []
        for item in self._extract_items(body):
            try:
                event = UpcomingEvent.model_validate(item)
            except ValidationError as e:
                logger.warning(f"Skipping malformed event from event service: {e}")
                continue
            if event.start_time is None or event.start_time <= now:
                continue
            events.append(event)

        logger.info(f"Fetched {len(events)} upcoming events")
        return events

    @staticmethod
    def _extract_items(body: Any) -> List[Any]:
        if isinstance(body, list):
            return body
        if isinstance(body, dict):
            for key in ("events", "data"):
                if isinstance(body.get(key), list):
                    return body[key]
        return []
