import pytest
from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, patch

from pick_alerts.db.models import PushToken
from pick_alerts.schemas.notification_schemas import UpcomingEvent
from pick_alerts.services.notifications.store import ScheduledNotificationStore
from pick_alerts.tasks.background.event_cancellation import (
    _async_cancel_event_notifications,
    cancel_event_notifications_task,
)
from pick_alerts.tasks.cron.upcoming_events_scheduler import (
    _async_upcoming_events_scheduler,
    upcoming_events_scheduler_task,
)
from pick_alerts.utils.datetime_utils import utc_now

from tests.fakes import FakeEventSource


def _factory_patch(session_factory):
    @asynccontextmanager
    async def fake_task_session_factory():
        yield session_factory

    return fake_task_session_factory


def _upcoming_event(event_id="evt-1001"):
    return UpcomingEvent(
        id=event_id,
        title="Real Madrid vs Barcelona",
        start_time=utc_now() + timedelta(hours=2),
    )


async def _add_tokens(db_session, *user_ids, active=True):
    for index, user_id in enumerate(user_ids):
        db_session.add(
            PushToken(user_id=user_id, token=f"token-{user_id}-{index}", is_active=active)
        )
    await db_session.commit()


class TestUpcomingEventsScheduler:
    @pytest.mark.asyncio
    async def test_schedules_every_active_token_holder(self, session_factory, db_session):
        await _add_tokens(db_session, "user-1", "user-2")
        await _add_tokens(db_session, "user-gone", active=False)

        with patch(
            "pick_alerts.tasks.cron.upcoming_events_scheduler.task_session_factory",
            _factory_patch(session_factory),
        ):
            result = await _async_upcoming_events_scheduler(
                "test_request_id", event_source=FakeEventSource([_upcoming_event()])
            )

        assert result["success"] is True
        assert result["created_count"] == 6
        assert result["user_count"] == 2

        pending = await ScheduledNotificationStore(db_session).list_pending()
        assert {record.user_id for record in pending} == {"user-1", "user-2"}

    @pytest.mark.asyncio
    async def test_repeated_runs_create_nothing_new(self, session_factory, db_session):
        await _add_tokens(db_session, "user-1")
        source = FakeEventSource([_upcoming_event()])

        with patch(
            "pick_alerts.tasks.cron.upcoming_events_scheduler.task_session_factory",
            _factory_patch(session_factory),
        ):
            first = await _async_upcoming_events_scheduler("run-1", event_source=source)
            second = await _async_upcoming_events_scheduler("run-2", event_source=source)

        assert first["created_count"] == 3
        assert second["created_count"] == 0

    @pytest.mark.asyncio
    async def test_no_events(self):
        result = await _async_upcoming_events_scheduler(
            "test_request_id", event_source=FakeEventSource([])
        )

        assert result == {
            "success": True,
            "event_count": 0,
            "created_count": 0,
            "request_id": "test_request_id",
        }

    @pytest.mark.asyncio
    async def test_event_source_failure_is_reported(self):
        source = FakeEventSource([])
        source.list_upcoming_events = AsyncMock(side_effect=RuntimeError("service down"))

        result = await _async_upcoming_events_scheduler("test_request_id", event_source=source)

        assert result["success"] is False
        assert "service down" in result["error"]

    @patch("pick_alerts.tasks.cron.upcoming_events_scheduler._async_upcoming_events_scheduler")
    def test_task_runs_the_async_implementation(self, mock_impl):
        mock_impl.return_value = {"success": True, "request_id": "cron"}

        result = upcoming_events_scheduler_task("cron")

        assert result == {"success": True, "request_id": "cron"}
        mock_impl.assert_called_once_with("cron")


class TestEventCancellation:
    @pytest.mark.asyncio
    async def test_removes_unsent_records(self, session_factory, db_session):
        await _add_tokens(db_session, "user-1")
        with patch(
            "pick_alerts.tasks.cron.upcoming_events_scheduler.task_session_factory",
            _factory_patch(session_factory),
        ):
            await _async_upcoming_events_scheduler(
                "schedule", event_source=FakeEventSource([_upcoming_event()])
            )

        with patch(
            "pick_alerts.tasks.background.event_cancellation.task_session_factory",
            _factory_patch(session_factory),
        ):
            result = await _async_cancel_event_notifications("cancel", "evt-1001")

        assert result["success"] is True
        assert result["deleted_count"] == 3
        assert await ScheduledNotificationStore(db_session).list_pending() == []

    @patch("pick_alerts.tasks.background.event_cancellation._async_cancel_event_notifications")
    def test_task_runs_the_async_implementation(self, mock_impl):
        mock_impl.return_value = {"success": True, "deleted_count": 0}

        result = cancel_event_notifications_task("req-1", "evt-1001")

        assert result["success"] is True
        mock_impl.assert_called_once_with("req-1", "evt-1001")
