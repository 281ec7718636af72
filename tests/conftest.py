# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from datetime import date
from unittest.mock import MagicMock

from fakes import FakeSupabase

from ministry_core.data.backend_config import BackendConfig
from ministry_core.data.models import Profile, Role
from ministry_core.data.supabase_client import RemoteStoreClient
from ministry_core.offline.local_mirror import LocalMirror
from ministry_core.offline.sync_engine import MirrorSync


# Modules that talk to Streamlit directly
STREAMLIT_MODULES = [
    "ministry_core.errors.handlers",
    "ministry_core.data.backend_config",
    "ministry_core.notifications.alerts",
    "ministry_core.state.session",
]


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def today():
    return date(2024, 3, 15)


@pytest.fixture
def unit_members():
    """Members of unit u1 and one member of unit u2"""
    return [
        {"id": "m1", "unit_id": "u1", "full_name": "Ada Obi", "gender": "Female", "dob": "1990-03-21"},
        {"id": "m2", "unit_id": "u1", "full_name": "Ben Eze", "gender": "Male", "dob": "1988-03-02"},
        {"id": "m3", "unit_id": "u1", "full_name": "Chi Okafor", "gender": "male", "dob": "1995-07-11"},
        {"id": "m4", "unit_id": "u2", "full_name": "Dayo Ade", "gender": "Female", "dob": "1992-03-09"},
    ]


@pytest.fixture
def unit_head():
    return Profile(id="user-head", role=Role.UNIT_HEAD, full_name="Unit Head", unit_id="u1")


@pytest.fixture
def other_unit_head():
    return Profile(id="user-other", role=Role.UNIT_HEAD, full_name="Other Head", unit_id="u2")


@pytest.fixture
def smr():
    return Profile(id="user-smr", role=Role.SMR, full_name="Senior Minister")


@pytest.fixture
def unitless():
    return Profile(id="user-new", role=Role.EVANGELIST, full_name="New Evangelist")


# =============================================================================
# BACKEND / STORE FIXTURES
# =============================================================================

@pytest.fixture
def backend_config(tmp_path):
    return BackendConfig(
        url="https://fake.supabase.co",
        key="anon-key",
        mirror_path=tmp_path / "mirror.db",
    )


@pytest.fixture
def backend():
    """In-memory Supabase"""
    return FakeSupabase()


@pytest.fixture
def remote(backend, backend_config):
    return RemoteStoreClient(backend, backend_config)


@pytest.fixture
def mirror(tmp_path):
    """Fresh Local Mirror per test"""
    store = LocalMirror(tmp_path / "mirror.db")
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def sync(remote, mirror):
    return MirrorSync(remote, mirror)


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_streamlit(monkeypatch):
    """Mock Streamlit for testing"""
    import importlib

    mock_st = MagicMock()
    mock_st.session_state = {}
    mock_st.secrets = {}
    mock_st.cache_data = lambda f: f
    mock_st.cache_resource = lambda f: f

    for name in STREAMLIT_MODULES:
        monkeypatch.setattr(importlib.import_module(name), "st", mock_st)

    yield mock_st


@pytest.fixture(autouse=True)
def desktop_notification(monkeypatch):
    """Replace plyer's notification facade so no OS notification is shown"""
    fake = MagicMock()
    monkeypatch.setattr("ministry_core.notifications.alerts.notification", fake)
    return fake
