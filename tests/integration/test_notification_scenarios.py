# =============================================================================
# tests/integration/test_notification_scenarios.py
# Integration Tests for the notification bell (baseline, live events, focus)
# =============================================================================

import pytest

from ministry_core.data.supabase_client import MutationOp
from ministry_core.notifications import (
    NotificationChannel,
    NotificationChannelRegistry,
    PlyerNotifier,
    Toaster,
)


class SilentToaster(Toaster):
    def __init__(self):
        self.count = 0

    def show(self, title, message, icon=None):
        self.count += 1


@pytest.fixture
def toaster():
    return SilentToaster()


@pytest.fixture
def registry(remote, toaster):
    return NotificationChannelRegistry(
        remote,
        factory=lambda r, p: NotificationChannel(r, p, toaster=toaster, desktop=PlyerNotifier()),
    )


@pytest.fixture
def announcements(backend):
    backend.seed("announcements", [{"id": "a1"}, {"id": "a2"}, {"id": "a3"}])
    backend.seed("announcement_reads", [{"announcement_id": "a1", "user_id": "user-head"}])
    return backend


class TestNotificationBellIntegration:
    """
    Tests the flow:
    1. subscribe, then baseline
    2. live INSERT events
    3. focus correction pass
    4. logout
    """

    @pytest.mark.asyncio
    async def test_insert_during_baseline_counted_once(self, registry, announcements, backend, unit_head):
        fired = []

        def publish_during_baseline(query):
            if fired or query.table != "announcement_reads":
                return
            fired.append(query.table)
            backend.seed("announcements", [{"id": "a9"}])
            backend.emit_insert("announcements", {"id": "a9"})
        backend.before_execute = publish_during_baseline

        channel = await registry.open(unit_head)

        assert fired
        assert channel.unread_count == 3

    @pytest.mark.asyncio
    async def test_counter_never_negative(self, registry, backend, unit_head):
        backend.seed("announcements", [{"id": "a1"}])
        backend.seed("announcement_reads", [{"announcement_id": "a1", "user_id": "user-head"}])
        channel = await registry.open(unit_head)

        backend.emit_insert("announcement_reads", {"announcement_id": "a7", "user_id": "user-head"})
        backend.emit_insert("announcement_reads", {"announcement_id": "a8", "user_id": "user-head"})

        assert channel.unread_count == 0

    @pytest.mark.asyncio
    async def test_one_subscription_per_user(self, registry, remote, announcements, backend, toaster, unit_head):
        await registry.open(unit_head)
        await registry.open(unit_head)
        await registry.open(unit_head)

        await remote.mutate("announcements", MutationOp.INSERT, {"id": "a4", "title": "Retreat"})

        assert remote.open_channels == ["bell:user-head"]
        assert toaster.count == 1
        assert registry.get(unit_head.id).unread_count == 3

    @pytest.mark.asyncio
    async def test_focus_recovers_dropped_events(self, registry, announcements, backend, unit_head):
        channel = await registry.open(unit_head)
        backend.stalled = True

        for announcement_id in ("a4", "a5", "a6"):
            backend.seed("announcements", [{"id": announcement_id}])
            backend.emit_insert("announcements", {"id": announcement_id})

        assert backend.dropped_events == 3
        assert channel.unread_count == 2

        backend.stalled = False
        await channel.on_focus()

        assert channel.unread_count == 5

    @pytest.mark.asyncio
    async def test_executive_pending_requests(self, registry, remote, backend, toaster, smr, unit_head):
        backend.seed("financial_requests", [{"id": 1, "unit_id": "u1", "amount": 40, "status": "pending"}])
        executive = await registry.open(smr)
        member = await registry.open(unit_head)

        await remote.mutate(
            "requests", MutationOp.INSERT, {"unit_id": "u1", "amount": 75, "status": "pending"}
        )

        assert executive.pending_count == 2
        assert member.pending_count == 0
        assert toaster.count == 1

    @pytest.mark.asyncio
    async def test_personal_notification_round_trip(self, registry, remote, backend, unit_head):
        channel = await registry.open(unit_head)

        await remote.mutate("notifications", MutationOp.INSERT, {
            "id": "n1", "user_id": "user-head", "title": "Request approved",
            "message": "Your request was approved", "link": "/finance", "is_read": False,
        })
        removed = await channel.mark_read("n1")
        await channel.on_focus()

        assert removed.link == "/finance"
        assert channel.notifications == []

    @pytest.mark.asyncio
    async def test_logout_stops_delivery(self, registry, announcements, backend, toaster, unit_head):
        channel = await registry.open(unit_head)

        await registry.close_all()
        backend.emit_insert("announcements", {"id": "a4"})

        assert toaster.count == 0
        assert channel.state.total == 0
        assert backend.channels == []
