import asyncio
import pytest
from datetime import timedelta

from pick_alerts.db.models import ChannelType, build_dedup_tag
from pick_alerts.schemas.notification_schemas import ScheduledNotificationCreate
from pick_alerts.services.notifications.background_context import (
    BackgroundDeliveryContext,
)
from pick_alerts.services.notifications.delivery_channel import DeliveryChannel
from pick_alerts.services.notifications.foreground_scheduler import ForegroundScheduler
from pick_alerts.services.notifications.permission_gate import PermissionGate
from pick_alerts.services.notifications.schedule_service import (
    in_memory_service_provider,
    sql_service_provider,
)
from pick_alerts.services.notifications.store import InMemoryNotificationStore

from tests.fakes import FakeClientRegistry, FakePlatform, FlakyStore


def _scheduler(
    provider, platform, clock, background=None, user_id="user-1", resync_interval=3600
):
    gate = PermissionGate(platform)
    channel = DeliveryChannel(platform, gate, background)
    return ForegroundScheduler(
        user_id,
        provider,
        channel,
        gate,
        background=background,
        clock=clock,
        resync_interval=resync_interval,
    )


async def _seed(provider, event, clock, user_ids=("user-1",)):
    async with provider() as service:
        return await service.schedule_event(event, list(user_ids), now=clock())


def _live_record(due, event_id="evt-1001", user_id="user-1"):
    return ScheduledNotificationCreate(
        event_id=event_id,
        user_id=user_id,
        channel_type=ChannelType.LIVE,
        scheduled_time=due,
        title="🚨 Match is live!",
        body="Real Madrid vs Barcelona - The pick is active",
        dedup_tag=build_dedup_tag(event_id, ChannelType.LIVE),
    )


class TestResync:
    @pytest.mark.asyncio
    async def test_init_arms_pending_records_once(
        self, session_factory, platform, clock, sample_event
    ):
        provider = sql_service_provider(session_factory)
        await _seed(provider, sample_event, clock, ["user-1", "user-2"])
        scheduler = _scheduler(provider, platform, clock)

        await scheduler.init()
        try:
            assert scheduler.is_active
            assert len(scheduler.armed_ids) == 3

            # Already armed records are never armed twice
            assert await scheduler.resync() == 0
            assert len(scheduler.armed_ids) == 3
        finally:
            await scheduler.dispose()

        assert not scheduler.is_active
        assert scheduler.armed_ids == set()

    @pytest.mark.asyncio
    async def test_new_records_are_picked_up_without_reload(
        self, platform, clock, sample_event
    ):
        provider = in_memory_service_provider()
        scheduler = _scheduler(provider, platform, clock)
        await scheduler.init()
        try:
            assert scheduler.armed_ids == set()

            await _seed(provider, sample_event, clock)

            assert await scheduler.resync() == 3
        finally:
            await scheduler.dispose()

    @pytest.mark.asyncio
    async def test_store_outage_is_retried_next_tick(self, platform, clock, sample_event):
        flaky = FlakyStore(InMemoryNotificationStore())
        provider = in_memory_service_provider(store=flaky)
        await _seed(provider, sample_event, clock)
        scheduler = _scheduler(provider, platform, clock)

        flaky.fail_reads = True
        try:
            assert await scheduler.resync() == 0
            assert scheduler.armed_ids == set()

            flaky.fail_reads = False
            assert await scheduler.resync() == 3
        finally:
            await scheduler.dispose()


class TestFiring:
    @pytest.mark.asyncio
    async def test_timer_displays_and_marks_sent(self, platform, clock):
        store = InMemoryNotificationStore()
        provider = in_memory_service_provider(store=store)
        due = clock() + timedelta(milliseconds=50)
        await store.create_many([_live_record(due)])
        scheduler = _scheduler(provider, platform, clock)

        await scheduler.init()
        try:
            await asyncio.sleep(0.3)
        finally:
            await scheduler.dispose()

        assert platform.shown_tags() == ["pick-evt-1001-live"]
        assert platform.shown[0].require_interaction is True
        assert platform.shown[0].data["event_id"] == "evt-1001"
        clock.advance(minutes=1)
        assert await store.list_overdue("user-1", now=clock()) == []

    @pytest.mark.asyncio
    async def test_suspended_tab_catches_up_exactly_once(
        self, session_factory, platform, clock, sample_event
    ):
        """Timers throttled while hidden: the overdue alert fires once on return."""
        provider = sql_service_provider(session_factory)
        await _seed(provider, sample_event, clock)
        scheduler = _scheduler(provider, platform, clock)
        await scheduler.init()
        try:
            clock.advance(minutes=31)

            await scheduler.on_visibility_change(True)
            await scheduler.on_visibility_change(True)

            assert platform.shown_tags() == ["pick-evt-1001-30min"]
            assert len(scheduler.armed_ids) == 2
        finally:
            await scheduler.dispose()

        async with provider() as service:
            assert await service.store.list_overdue("user-1", now=clock()) == []

    @pytest.mark.asyncio
    async def test_record_elapsed_between_ticks_fires_on_next_tick(self, platform, clock):
        """Inserted after one tick and due before the next: no timer ever covered it."""
        store = InMemoryNotificationStore()
        provider = in_memory_service_provider(store=store)
        scheduler = _scheduler(provider, platform, clock)
        await scheduler.init()
        try:
            await store.create_many([_live_record(clock() + timedelta(seconds=20))])
            clock.advance(seconds=60)

            await scheduler.resync()
            await scheduler.resync()
        finally:
            await scheduler.dispose()

        assert platform.shown_tags() == ["pick-evt-1001-live"]
        assert await store.list_overdue("user-1", now=clock()) == []

    @pytest.mark.asyncio
    async def test_reload_after_fire_time_delivers_on_init(self, platform, clock):
        store = InMemoryNotificationStore()
        provider = in_memory_service_provider(store=store)
        await store.create_many([_live_record(clock() - timedelta(minutes=2))])
        scheduler = _scheduler(provider, platform, clock)

        await scheduler.init()
        try:
            assert platform.shown_tags() == ["pick-evt-1001-live"]
            await scheduler.resync()
        finally:
            await scheduler.dispose()

        assert platform.shown_tags() == ["pick-evt-1001-live"]
        assert await store.list_overdue("user-1", now=clock()) == []

    @pytest.mark.asyncio
    async def test_delivered_ids_are_pruned_after_one_resync_window(
        self, platform, clock
    ):
        store = InMemoryNotificationStore()
        provider = in_memory_service_provider(store=store)
        await store.create_many([_live_record(clock() - timedelta(seconds=20))])
        scheduler = _scheduler(provider, platform, clock, resync_interval=60)

        try:
            await scheduler.force_resync()
            assert len(scheduler.delivered_ids) == 1

            clock.advance(minutes=2)
            await scheduler.resync()

            assert scheduler.delivered_ids == set()
            assert platform.shown_tags() == ["pick-evt-1001-live"]
        finally:
            await scheduler.dispose()

    @pytest.mark.asyncio
    async def test_hidden_page_does_not_resync(self, platform, clock, sample_event):
        provider = in_memory_service_provider()
        await _seed(provider, sample_event, clock)
        scheduler = _scheduler(provider, platform, clock)

        await scheduler.on_visibility_change(False)

        assert scheduler.armed_ids == set()

    @pytest.mark.asyncio
    async def test_failed_mark_sent_is_delivered_again(
        self, platform, clock, sample_event
    ):
        flaky = FlakyStore(InMemoryNotificationStore())
        provider = in_memory_service_provider(store=flaky)
        await _seed(provider, sample_event, clock)
        scheduler = _scheduler(provider, platform, clock)
        clock.advance(minutes=31)

        flaky.fail_mark_sent = True
        try:
            await scheduler.force_resync()
            assert len(await flaky.list_overdue("user-1", now=clock())) == 1

            flaky.fail_mark_sent = False
            await scheduler.force_resync()
        finally:
            await scheduler.dispose()

        # Shown twice, collapsed onto one visible notification by the tag
        assert platform.shown_tags() == ["pick-evt-1001-30min"] * 2
        assert list(platform.visible) == ["pick-evt-1001-30min"]
        assert await flaky.list_overdue("user-1", now=clock()) == []

    @pytest.mark.asyncio
    async def test_revoked_permission_leaves_record_unsent(
        self, platform, clock, sample_event
    ):
        store = InMemoryNotificationStore()
        provider = in_memory_service_provider(store=store)
        await _seed(provider, sample_event, clock)
        scheduler = _scheduler(provider, platform, clock)
        clock.advance(minutes=31)
        platform.set_permission("denied")

        try:
            await scheduler.on_visibility_change(True)
        finally:
            await scheduler.dispose()

        assert platform.shown == []
        assert len(await store.list_overdue("user-1", now=clock())) == 1

    @pytest.mark.asyncio
    async def test_display_failure_is_not_retried(self, platform, clock, sample_event):
        store = InMemoryNotificationStore()
        provider = in_memory_service_provider(store=store)
        await _seed(provider, sample_event, clock)
        scheduler = _scheduler(provider, platform, clock)
        clock.advance(minutes=31)
        platform.fail_display = True

        try:
            await scheduler.force_resync()
        finally:
            await scheduler.dispose()

        assert await store.list_overdue("user-1", now=clock()) == []


class TestSchedulingRequests:
    @pytest.mark.asyncio
    async def test_denied_permission_creates_no_records(self, clock, sample_event):
        store = InMemoryNotificationStore()
        provider = in_memory_service_provider(store=store)
        scheduler = _scheduler(provider, FakePlatform(permission="denied"), clock)

        created = await scheduler.schedule_events([sample_event])

        assert created == 0
        assert await store.list_pending(now=clock()) == []

    @pytest.mark.asyncio
    async def test_granted_permission_schedules_and_arms(
        self, platform, clock, sample_event
    ):
        provider = in_memory_service_provider()
        scheduler = _scheduler(provider, platform, clock)

        try:
            created = await scheduler.schedule_events([sample_event])
            assert created == 3
            assert len(scheduler.armed_ids) == 3
        finally:
            await scheduler.dispose()

    @pytest.mark.asyncio
    async def test_cancel_event_disarms_both_timer_sets(
        self, platform, clock, sample_event
    ):
        provider = in_memory_service_provider()
        background = BackgroundDeliveryContext(platform, FakeClientRegistry(), clock=clock)
        scheduler = _scheduler(provider, platform, clock, background=background)

        try:
            await scheduler.schedule_events([sample_event])
            assert len(background.armed_ids) == 3

            deleted = await scheduler.cancel_event("evt-1001")

            assert len(deleted) == 3
            assert scheduler.armed_ids == set()
            assert background.armed_ids == set()
        finally:
            await scheduler.dispose()
            background.terminate()

    @pytest.mark.asyncio
    async def test_cancel_during_store_outage_still_disarms(
        self, platform, clock, sample_event
    ):
        flaky = FlakyStore(InMemoryNotificationStore())
        provider = in_memory_service_provider(store=flaky)
        background = BackgroundDeliveryContext(platform, FakeClientRegistry(), clock=clock)
        scheduler = _scheduler(provider, platform, clock, background=background)

        try:
            await scheduler.schedule_events([sample_event])
            flaky.fail_deletes = True

            deleted = await scheduler.cancel_event("evt-1001")

            assert deleted == []
            assert scheduler.armed_ids == set()
            assert background.armed_ids == set()

            # The rows survived the outage but are not armed again
            assert await scheduler.resync() == 0
            assert scheduler.armed_ids == set()
        finally:
            await scheduler.dispose()
            background.terminate()


class TestBackgroundSeeding:
    @pytest.mark.asyncio
    async def test_every_resync_reseeds_a_recreated_context(
        self, platform, clock, sample_event
    ):
        provider = in_memory_service_provider()
        await _seed(provider, sample_event, clock)
        registry = FakeClientRegistry()
        background = BackgroundDeliveryContext(platform, registry, clock=clock)
        scheduler = _scheduler(provider, platform, clock, background=background)

        try:
            await scheduler.init()
            assert background.armed_ids == scheduler.armed_ids

            background.terminate()
            recreated = BackgroundDeliveryContext(platform, registry, clock=clock)
            scheduler.background = recreated
            assert recreated.armed_ids == set()

            await scheduler.resync()

            assert recreated.armed_ids == scheduler.armed_ids
        finally:
            await scheduler.dispose()
            scheduler.background.terminate()
