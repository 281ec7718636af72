# =============================================================================
# tests/unit/test_supabase_client.py
# Unit Tests for the Remote Store Client
# =============================================================================

import asyncio

import httpx
import pytest
from postgrest.exceptions import APIError

from fakes import FakeAuthError, api_error, offline_error

from ministry_core.data.backend_config import BackendConfig
from ministry_core.data.filters import Filter
from ministry_core.data.models import Member
from ministry_core.data.supabase_client import (
    ChangeEvent,
    EventFilter,
    MutationOp,
    RemoteStoreClient,
    classify_error,
)
from ministry_core.errors import (
    AuthFailure,
    NetworkFailure,
    QueryFailure,
    RecordValidationError,
    SubscriptionError,
)


class TestClassifyError:
    """Backend exceptions mapped onto the sync-core taxonomy"""

    def test_transport_errors_are_network_failures(self):
        assert isinstance(classify_error(offline_error(), "fetch"), NetworkFailure)
        assert isinstance(classify_error(asyncio.TimeoutError(), "fetch"), NetworkFailure)
        assert isinstance(classify_error(ConnectionResetError(), "fetch"), NetworkFailure)

    def test_jwt_codes_are_auth_failures(self):
        error = classify_error(api_error("JWT expired", code="PGRST301"), "fetch", "members")
        assert isinstance(error, AuthFailure)
        assert error.details["collection"] == "members"

    def test_constraint_violation_keeps_backend_message(self):
        raw = api_error('insert or update on table "attendance" violates foreign key constraint')
        error = classify_error(raw, "insert", "attendance_logs")

        assert isinstance(error, QueryFailure)
        assert error.message == raw.message
        assert error.backend_code == "23503"

    def test_http_status_errors(self):
        request = httpx.Request("GET", "https://fake.supabase.co")
        unauthorized = httpx.HTTPStatusError("401", request=request, response=httpx.Response(401, request=request))
        server = httpx.HTTPStatusError("500", request=request, response=httpx.Response(500, request=request))

        assert isinstance(classify_error(unauthorized, "fetch"), AuthFailure)
        assert classify_error(server, "fetch").backend_code == "500"

    def test_status_attribute_auth_error(self):
        assert isinstance(classify_error(FakeAuthError("expired", status=401), "fetch"), AuthFailure)

    def test_already_classified_passes_through(self):
        original = NetworkFailure("down")
        assert classify_error(original, "fetch") is original


class TestFetch:
    """Typed, scoped reads"""

    @pytest.mark.asyncio
    async def test_fetch_returns_typed_synced_records(self, remote, backend, unit_members):
        backend.seed("members", unit_members)

        members = await remote.fetch("members")

        assert [m.id for m in members] == ["m1", "m2", "m3", "m4"]
        assert all(isinstance(m, Member) and m.synced for m in members)

    @pytest.mark.asyncio
    async def test_fetch_scoped_to_callers_unit(self, remote, backend, unit_members, unit_head):
        backend.seed("members", unit_members)

        members = await remote.fetch("members", scope=unit_head)

        assert {m.unit_id for m in members} == {"u1"}

    @pytest.mark.asyncio
    async def test_fetch_for_unitless_profile_makes_no_call(self, remote, backend, unitless):
        assert await remote.fetch("members", scope=unitless) == []
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_fetch_pages_through_all_rows(self, backend):
        remote = RemoteStoreClient(backend, BackendConfig(url="u", key="k", page_size=2))
        backend.seed("members", [
            {"id": f"m{i}", "unit_id": "u1", "full_name": f"Member {i}"} for i in range(5)
        ])

        members = await remote.fetch("members")

        assert len(members) == 5
        assert backend.calls.count(("members", "select")) == 3

    @pytest.mark.asyncio
    async def test_fetch_with_limit_and_order(self, remote, backend, unit_members):
        backend.seed("members", unit_members)

        members = await remote.fetch("members", order_by="full_name", descending=True, limit=2)

        assert [m.full_name for m in members] == ["Dayo Ade", "Chi Okafor"]

    @pytest.mark.asyncio
    async def test_invalid_row_raises_validation_error(self, remote, backend):
        backend.seed("members", [{"id": "m1", "unit_id": "u1"}])

        with pytest.raises(RecordValidationError):
            await remote.fetch("members")

    @pytest.mark.asyncio
    async def test_network_failure_propagates(self, remote, backend):
        backend.offline = True

        with pytest.raises(NetworkFailure):
            await remote.fetch("members")

    @pytest.mark.asyncio
    async def test_count_is_server_side(self, remote, backend, smr):
        backend.seed("financial_requests", [
            {"unit_id": "u1", "amount": 10, "status": "pending"},
            {"unit_id": "u2", "amount": 20, "status": "pending"},
            {"unit_id": "u2", "amount": 30, "status": "paid"},
        ])

        assert await remote.count("requests", Filter.eq("status", "pending"), scope=smr) == 2

    @pytest.mark.asyncio
    async def test_load_profile(self, remote, backend):
        backend.seed("profiles", [{"id": "user-1", "role": "unit_pastor", "unit_id": "u3"}])

        profile = await remote.load_profile("user-1")
        assert profile.unit_id == "u3"

        with pytest.raises(QueryFailure):
            await remote.load_profile("user-missing")


class TestMutate:
    """Insert / update / delete"""

    @pytest.mark.asyncio
    async def test_insert_assigns_ids(self, remote, backend):
        rows = await remote.mutate("finances", MutationOp.INSERT, [
            {"unit_id": "u1", "type": "income", "amount": 100},
            {"unit_id": "u1", "type": "expense", "amount": 40},
        ])

        assert [r.id for r in rows] == [1, 2]
        assert len(backend.rows("finances")) == 2

    @pytest.mark.asyncio
    async def test_insert_record_strips_local_fields(self, remote, backend):
        await remote.mutate("members", MutationOp.INSERT, Member(id="m9", unit_id="u1", full_name="New", synced=True))

        assert "synced" not in backend.rows("members")[0]

    @pytest.mark.asyncio
    async def test_update_requires_match(self, remote):
        with pytest.raises(QueryFailure):
            await remote.mutate("members", MutationOp.UPDATE, {"full_name": "X"})

    @pytest.mark.asyncio
    async def test_delete_requires_match(self, remote):
        with pytest.raises(QueryFailure):
            await remote.mutate("members", MutationOp.DELETE, match=Filter())

    @pytest.mark.asyncio
    async def test_update_by_id(self, remote, backend, unit_members):
        backend.seed("members", unit_members)

        rows = await remote.mutate(
            "members", MutationOp.UPDATE, {"id": "m1", "full_name": "Ada O."}, match=Filter.eq("id", "m1")
        )

        assert rows[0].full_name == "Ada O."
        assert backend.rows("members")[0]["id"] == "m1"

    @pytest.mark.asyncio
    async def test_constraint_violation_surfaces_verbatim(self, remote, backend):
        backend.fail(api_error("null value in column \"member_id\" violates not-null constraint", code="23502"))

        with pytest.raises(QueryFailure) as exc_info:
            await remote.mutate("souls", MutationOp.INSERT, {"unit_id": "u1", "total_count": 1})

        assert "not-null constraint" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, APIError)


class TestStorageAndAuth:
    """Uploads and password sessions"""

    @pytest.mark.asyncio
    async def test_upload_returns_public_url(self, remote, backend):
        url = await remote.upload("receipts", "u1/r1.png", b"\x89PNG", content_type="image/png")

        assert url.endswith("/receipts/u1/r1.png")
        assert backend.files[("receipts", "u1/r1.png")][1] == {"content-type": "image/png"}

    @pytest.mark.asyncio
    async def test_upload_offline(self, remote, backend):
        backend.offline = True

        with pytest.raises(NetworkFailure):
            await remote.upload("member_photos", "m1.jpg", b"jpg")

    @pytest.mark.asyncio
    async def test_sign_in(self, remote, backend):
        backend.auth.users["head@church.org"] = ("secret", "user-head")

        session = await remote.sign_in("head@church.org", "secret")

        assert session.user_id == "user-head"
        assert session.access_token == "token-user-head"

    @pytest.mark.asyncio
    async def test_bad_password_is_auth_failure(self, remote, backend):
        backend.auth.users["head@church.org"] = ("secret", "user-head")

        with pytest.raises(AuthFailure):
            await remote.sign_in("head@church.org", "wrong")


class TestChangeFeed:
    """Subscriptions and payload normalization"""

    def test_change_event_from_realtime_payload(self):
        event = ChangeEvent.from_payload(
            {"data": {"type": "insert", "table": "announcements", "record": {"id": "a1"}}}
        )
        assert event == ChangeEvent("announcements", "INSERT", {"id": "a1"})

    @pytest.mark.parametrize("payload", [None, {}, {"data": {"table": "x"}}, {"data": {"type": "INSERT", "table": "x", "record": 3}}])
    def test_malformed_payloads(self, payload):
        with pytest.raises(ValueError):
            ChangeEvent.from_payload(payload)

    @pytest.mark.asyncio
    async def test_duplicate_channel_key_refused(self, remote):
        events = []
        handle = await remote.subscribe("bell:u", [EventFilter("announcements")], events.append)

        with pytest.raises(SubscriptionError):
            await remote.subscribe("bell:u", [EventFilter("announcements")], events.append)

        await handle.close()
        again = await remote.subscribe("bell:u", [EventFilter("announcements")], events.append)
        assert remote.open_channels == ["bell:u"]
        await again.close()

    @pytest.mark.asyncio
    async def test_events_delivered_until_closed(self, remote, backend):
        events = []
        handle = await remote.subscribe(
            "bell:user-1", [EventFilter.for_user("notifications", "user-1")], events.append
        )

        backend.emit_insert("notifications", {"id": "n1", "user_id": "user-1"})
        backend.emit_insert("notifications", {"id": "n2", "user_id": "someone-else"})
        await handle.close()
        await handle.close()
        backend.emit_insert("notifications", {"id": "n3", "user_id": "user-1"})

        assert [e.record["id"] for e in events] == ["n1"]
        assert len(backend.removed_channels) == 1

    @pytest.mark.asyncio
    async def test_malformed_payload_and_handler_errors_are_dropped(self, remote, backend):
        seen = []

        def handler(event):
            seen.append(event)
            raise RuntimeError("render failed")

        await remote.subscribe("bell:x", [EventFilter("announcements")], handler)

        backend.emit_raw({"garbage": True})
        backend.emit_insert("announcements", {"id": "a1"})

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_failed_subscribe_releases_key(self, remote, backend):
        backend.subscribe_error = RuntimeError("channel error")

        with pytest.raises(SubscriptionError):
            await remote.subscribe("bell:y", [EventFilter("announcements")], lambda e: None)

        backend.subscribe_error = None
        await remote.subscribe("bell:y", [EventFilter("announcements")], lambda e: None)
        await remote.close_all_subscriptions()
        assert remote.open_channels == []
