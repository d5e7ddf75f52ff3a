import json
import pytest
from datetime import timedelta

from pick_alerts.db.models import ChannelType, build_dedup_tag
from pick_alerts.schemas.client_message_schemas import (
    CancelMessage,
    NavigateMessage,
    ScheduleMessage,
    dump_client_message,
    parse_client_message,
)
from pick_alerts.schemas.notification_schemas import NotificationPayload
from pick_alerts.services.notifications.background_context import (
    BackgroundDeliveryContext,
)
from pick_alerts.services.notifications.delivery_channel import (
    DeliveryChannel,
    build_payload,
)
from pick_alerts.services.notifications.permission_gate import PermissionGate

from tests.fakes import FakeClientRegistry, FakeClientWindow, FakePlatform


def _schedule_message(
    clock, record_id="rec-1", minutes_ahead=30, channel_type=ChannelType.THIRTY_MIN
):
    return ScheduleMessage(
        id=record_id,
        event_id="evt-1001",
        channel_type=channel_type,
        scheduled_time=clock() + timedelta(minutes=minutes_ahead),
        title="⚽ Pick available in 30 min",
        body="Real Madrid vs Barcelona - Over 2.5 goals",
        dedup_tag=build_dedup_tag("evt-1001", channel_type),
    )


def _click_payload(event_id="evt-1001"):
    return NotificationPayload(
        title="🔥 Pick starting now!",
        body="Real Madrid vs Barcelona - Only 5 minutes left",
        tag=f"pick-{event_id}-5min",
        data={"event_id": event_id, "record_id": "rec-1", "channel_type": "5min"},
    )


@pytest.fixture
def background(platform, client_registry, clock):
    context = BackgroundDeliveryContext(platform, client_registry, clock=clock)
    yield context
    context.terminate()


class TestClientMessages:
    def test_schedule_message_wire_format(self, clock):
        raw = dump_client_message(_schedule_message(clock))
        body = json.loads(raw)

        assert body["type"] == "SCHEDULE"
        assert body["eventId"] == "evt-1001"
        assert body["channelType"] == "30min"
        assert body["dedupTag"] == "pick-evt-1001-30min"

        parsed = parse_client_message(raw)
        assert isinstance(parsed, ScheduleMessage)
        assert parsed.scheduled_time == clock() + timedelta(minutes=30)

    def test_discriminated_parsing(self):
        assert isinstance(parse_client_message({"type": "CANCEL", "id": "rec-1"}), CancelMessage)
        navigate = parse_client_message('{"type": "NAVIGATE", "eventId": "evt-9"}')
        assert isinstance(navigate, NavigateMessage)
        assert navigate.event_id == "evt-9"


class TestScheduleAndCancel:
    @pytest.mark.asyncio
    async def test_schedule_arms_one_timer_per_record(self, background, clock):
        message = _schedule_message(clock)

        await background.post_message(dump_client_message(message))
        await background.post_message(dump_client_message(message))

        assert background.armed_ids == {"rec-1"}

    @pytest.mark.asyncio
    async def test_elapsed_schedule_displays_immediately(self, background, platform, clock):
        await background.post_message(_schedule_message(clock, minutes_ahead=-1))

        assert platform.shown_tags() == ["pick-evt-1001-30min"]
        assert background.armed_ids == set()

        # A repeated SCHEDULE of a fired record is ignored
        await background.post_message(_schedule_message(clock, minutes_ahead=-1))
        assert len(platform.shown) == 1

    @pytest.mark.asyncio
    async def test_cancel_disarms(self, background, clock):
        await background.post_message(_schedule_message(clock))

        await background.post_message(dump_client_message(CancelMessage(id="rec-1")))

        assert background.armed_ids == set()

    @pytest.mark.asyncio
    async def test_cancel_of_unknown_record_is_satisfied(self, background):
        await background.post_message({"type": "CANCEL", "id": "never-seen"})

        assert background.armed_ids == set()

    @pytest.mark.asyncio
    async def test_malformed_message_is_ignored(self, background):
        await background.post_message('{"type": "SCHEDULE", "id": "rec-1"}')

        assert background.armed_ids == set()

    @pytest.mark.asyncio
    async def test_fired_ids_are_pruned_after_the_retention_window(
        self, platform, client_registry, clock
    ):
        background = BackgroundDeliveryContext(
            platform, client_registry, clock=clock, retention=60
        )
        try:
            await background.post_message(_schedule_message(clock, minutes_ahead=0))
            assert background.fired_ids == {"rec-1"}

            clock.advance(minutes=2)
            await background.post_message(_schedule_message(clock, record_id="rec-2"))

            assert background.fired_ids == set()
            assert background.armed_ids == {"rec-2"}
        finally:
            background.terminate()

    @pytest.mark.asyncio
    async def test_terminated_context_forgets_everything(self, background, clock):
        await background.post_message(_schedule_message(clock))

        background.terminate()
        await background.post_message(_schedule_message(clock, record_id="rec-2"))

        assert not background.is_active
        assert background.armed_ids == set()


class TestClickRouting:
    @pytest.mark.asyncio
    async def test_close_action_only_closes(self, background, platform, client_registry):
        await background.handle_click(_click_payload(), action="close")

        assert platform.closed == ["pick-evt-1001-5min"]
        assert client_registry.opened == []

    @pytest.mark.asyncio
    async def test_open_feed_client_is_navigated_and_focused(self, platform, clock):
        other = FakeClientWindow("https://app.example.com/profile")
        feed = FakeClientWindow("https://app.example.com/feed")
        registry = FakeClientRegistry([other, feed])
        background = BackgroundDeliveryContext(platform, registry, clock=clock)

        await background.handle_click(_click_payload())

        assert feed.focused
        assert parse_client_message(feed.messages[0]) == NavigateMessage(event_id="evt-1001")
        assert other.messages == []
        assert registry.opened == []

    @pytest.mark.asyncio
    async def test_without_feed_client_a_window_is_opened(
        self, background, platform, client_registry
    ):
        await background.handle_click(_click_payload())

        assert platform.closed == ["pick-evt-1001-5min"]
        assert client_registry.opened == ["/feed#pick-evt-1001"]


    @pytest.mark.asyncio
    async def test_view_action_navigates(self, platform, clock):
        feed = FakeClientWindow("https://app.example.com/feed")
        background = BackgroundDeliveryContext(platform, FakeClientRegistry([feed]), clock=clock)

        await background.handle_click(_click_payload(), action="view")

        assert feed.focused
        assert len(feed.messages) == 1

    @pytest.mark.asyncio
    async def test_click_without_event_opens_the_feed(self, background, client_registry):
        payload = NotificationPayload(title="New pick", body="Check the feed", tag="push-1")

        await background.handle_click(payload)

        assert client_registry.opened == ["/feed"]


class TestServerPush:
    @pytest.mark.asyncio
    async def test_push_is_displayed_with_actions(self, background, platform):
        await background.handle_push(
            json.dumps(
                {
                    "title": "New pick",
                    "body": "Real Madrid vs Barcelona - Over 2.5 goals",
                    "eventId": "evt-1001",
                }
            )
        )

        shown = platform.shown[0]
        assert shown.tag == "pick-evt-1001-push"
        assert [action.action for action in shown.actions] == ["view", "close"]
        assert shown.vibrate == [200, 100, 200]
        assert shown.icon == "/icons/icon-192x192.png"
        assert shown.data["event_id"] == "evt-1001"

    @pytest.mark.asyncio
    async def test_event_id_is_read_from_nested_data(self, background, platform):
        await background.handle_push(
            {"body": "Inter vs Milan", "data": {"betId": 77, "sport": "football"}}
        )

        shown = platform.shown[0]
        assert shown.title == "New pick"
        assert shown.tag == "pick-77-push"
        assert shown.data["event_id"] == "77"
        assert shown.data["sport"] == "football"

    @pytest.mark.asyncio
    async def test_clicking_a_push_navigates_to_its_event(
        self, background, platform, client_registry
    ):
        await background.handle_push({"title": "New pick", "eventId": "evt-9"})

        await background.handle_click(platform.shown[0])

        assert platform.closed == ["pick-evt-9-push"]
        assert client_registry.opened == ["/feed#pick-evt-9"]

    @pytest.mark.asyncio
    async def test_empty_or_malformed_push_is_ignored(self, background, platform):
        await background.handle_push(None)
        await background.handle_push("")
        await background.handle_push({"title": ["not", "a", "title"]})

        assert platform.shown == []


class TestSameTagDeduplication:
    @pytest.mark.asyncio
    async def test_foreground_and_background_race_leaves_one_notification(
        self, background, platform, permission_gate, clock
    ):
        """Both timer sets fire the same alert; the shared tag collapses them."""
        message = _schedule_message(clock, minutes_ahead=0)
        channel = DeliveryChannel(platform, permission_gate, background)

        await background.post_message(message)
        assert await channel.display(build_payload(message)) is True

        assert len(platform.shown) == 2
        assert list(platform.visible) == ["pick-evt-1001-30min"]

    @pytest.mark.asyncio
    async def test_display_refused_without_permission(self, background, clock):
        platform = FakePlatform(permission="default")
        channel = DeliveryChannel(platform, PermissionGate(platform))

        assert await channel.display(build_payload(_schedule_message(clock))) is False
        assert platform.shown == []
