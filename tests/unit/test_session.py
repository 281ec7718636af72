# =============================================================================
# tests/unit/test_session.py
# Unit Tests for the signed-in session lifecycle
# =============================================================================

import sqlite3

import pytest

from fakes import api_error

from ministry_core.errors import AuthFailure, MirrorWriteError
from ministry_core.notifications import ChannelStatus
from ministry_core.offline.local_mirror import SCHEMA_VERSION, LocalMirror
from ministry_core.state import (
    MinistrySession,
    get_active_session,
    init_state,
    set_active_session,
)


@pytest.fixture
def accounts(backend):
    backend.auth.users["head@church.org"] = ("s3cret", "user-head")
    backend.seed("profiles", [
        {"id": "user-head", "role": "unit_head", "full_name": "Unit Head", "unit_id": "u1"},
    ])
    return backend


@pytest.fixture
def session(remote, backend_config, mock_streamlit):
    return MinistrySession(remote, backend_config)


class TestMinistrySession:

    @pytest.mark.asyncio
    async def test_start_opens_mirror_and_channel(self, session, accounts):
        profile = await session.start("head@church.org", "s3cret")

        assert profile.unit_id == "u1"
        assert session.is_active
        assert session.mirror.is_open
        assert session.channel.status is ChannelStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_bad_credentials(self, session, accounts):
        with pytest.raises(AuthFailure):
            await session.start("head@church.org", "wrong")

        assert not session.is_active

    @pytest.mark.asyncio
    async def test_channel_failure_is_not_fatal(self, session, accounts, mock_streamlit):
        accounts.subscribe_error = RuntimeError("realtime unavailable")

        await session.start("head@church.org", "s3cret")

        assert session.is_active
        assert session.channel is None
        mock_streamlit.toast.assert_called_once()

    @pytest.mark.asyncio
    async def test_channel_query_failure_is_not_fatal(self, session, accounts, mock_streamlit):
        accounts.fail(api_error("permission denied for table announcements", code="42501"), table="announcements")

        await session.start("head@church.org", "s3cret")

        assert session.is_active
        assert session.mirror.is_open
        assert session.channel is None
        mock_streamlit.toast.assert_called_once()

    @pytest.mark.asyncio
    async def test_channel_auth_failure_abandons_start(self, session, accounts, backend):
        accounts.fail(api_error("JWT expired", code="PGRST301"), table="announcements")

        with pytest.raises(AuthFailure):
            await session.start("head@church.org", "s3cret")

        assert not session.is_active
        assert session.auth is None
        assert session.mirror is None
        assert backend.auth.signed_in is None
        assert backend.channels == []

    @pytest.mark.asyncio
    async def test_mirror_failure_signs_out(self, remote, backend_config, accounts, tmp_path):
        path = tmp_path / "future.db"
        conn = sqlite3.connect(str(path))
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
        conn.close()
        session = MinistrySession(remote, backend_config, mirror=LocalMirror(path))

        with pytest.raises(MirrorWriteError):
            await session.start("head@church.org", "s3cret")

        assert not session.is_active
        assert session.sync is None
        assert accounts.auth.signed_in is None

    @pytest.mark.asyncio
    async def test_end_releases_everything(self, session, accounts, backend):
        await session.start("head@church.org", "s3cret")
        mirror = session.mirror

        await session.end()

        assert not session.is_active
        assert not mirror.is_open
        assert backend.channels == []
        assert backend.auth.signed_in is None

    @pytest.mark.asyncio
    async def test_reload_profile_reopens_channel(self, session, accounts, backend):
        await session.start("head@church.org", "s3cret")
        backend.tables["profiles"][0]["unit_id"] = "u2"

        profile = await session.reload_profile()

        assert profile.unit_id == "u2"
        assert len(backend.channels) == 1
        assert len(backend.removed_channels) == 1

    @pytest.mark.asyncio
    async def test_reload_before_start(self, session):
        with pytest.raises(RuntimeError):
            await session.reload_profile()


class TestSessionState:

    @pytest.mark.asyncio
    async def test_active_session_round_trip(self, session, accounts, mock_streamlit):
        init_state()
        assert get_active_session() is None

        await session.start("head@church.org", "s3cret")
        set_active_session(session)

        assert get_active_session() is session
        assert mock_streamlit.session_state["role"] == "unit_head"
        assert mock_streamlit.session_state["authenticated"] is True

        set_active_session(None)
        assert mock_streamlit.session_state["user_id"] is None
