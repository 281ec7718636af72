# =============================================================================
# ministry_core/state/session.py
# Signed-in session lifecycle and Streamlit session-state registry
# =============================================================================
"""
MinistrySession owns everything that lives exactly as long as a sign-in:
the profile, the Local Mirror, the MirrorSync service and the user's
notification channel.

    session = await MinistrySession.connect(load_backend_config())
    await session.start(email, password)
    set_active_session(session)
    ...
    await session.end()
"""

from __future__ import annotations
from typing import Optional

import streamlit as st

from ministry_core.data.backend_config import BackendConfig
from ministry_core.data.models import Profile
from ministry_core.data.supabase_client import AuthSession, RemoteStoreClient
from ministry_core.errors import AuthFailure, MinistryError, handle_error
from ministry_core.logging import LogContext, get_logger
from ministry_core.notifications import NotificationChannel, NotificationChannelRegistry
from ministry_core.offline.local_mirror import LocalMirror
from ministry_core.offline.sync_engine import MirrorSync

logger = get_logger(__name__)

ACTIVE_SESSION_KEY = "ministry_session"

# Central registry for session-state keys used across the app.
SESSION_DEFAULTS = {
    ACTIVE_SESSION_KEY: None,
    "authenticated": False,
    "user_id": None,
    "role": None,
    "unit_id": None,
    "reauth_required": False,
}


class MinistrySession:
    """Explicit start/end lifecycle for one signed-in user."""

    def __init__(
        self,
        remote: RemoteStoreClient,
        config: BackendConfig,
        registry: Optional[NotificationChannelRegistry] = None,
        mirror: Optional[LocalMirror] = None,
    ):
        self.remote = remote
        self.config = config
        self.registry = registry or NotificationChannelRegistry(remote)
        self._mirror = mirror
        self.auth: Optional[AuthSession] = None
        self.profile: Optional[Profile] = None
        self.mirror: Optional[LocalMirror] = None
        self.sync: Optional[MirrorSync] = None

    @classmethod
    async def connect(cls, config: BackendConfig) -> MinistrySession:
        remote = await RemoteStoreClient.connect(config)
        return cls(remote, config)

    @property
    def is_active(self) -> bool:
        return self.profile is not None

    @property
    def channel(self) -> Optional[NotificationChannel]:
        if self.profile is None:
            return None
        return self.registry.get(self.profile.id)

    async def start(self, email: str, password: str) -> Profile:
        """
        Sign in, load the profile, open the mirror and the notification channel.

        A channel that cannot open is reported and the session continues
        without live counts. Any other failure signs out again and leaves
        the session inactive.

        Raises:
            AuthFailure: bad credentials, missing session, or rejected by the channel
            NetworkFailure / QueryFailure: profile could not be loaded
            MirrorWriteError: the mirror could not be opened
        """
        try:
            with LogContext(logger, f"start session for {email}"):
                self.auth = await self.remote.sign_in(email, password)
                self.profile = await self.remote.load_profile(self.auth.user_id)

                self.mirror = self._mirror or LocalMirror(self.config.mirror_path)
                self.mirror.initialize()
                self.sync = MirrorSync(self.remote, self.mirror)

                await self._open_channel()
        except Exception:
            await self._abandon()
            raise
        return self.profile

    async def reload_profile(self) -> Profile:
        """Refetch the profile (role or unit may have changed) and reopen the channel."""
        if self.auth is None:
            raise RuntimeError("Session has not been started")
        self.profile = await self.remote.load_profile(self.auth.user_id)
        await self._open_channel()
        return self.profile

    async def _open_channel(self) -> None:
        try:
            await self.registry.open(self.profile)
        except AuthFailure:
            raise
        except MinistryError as e:
            handle_error(e, user_message="Live notifications are unavailable")

    async def _abandon(self) -> None:
        """Undo a partial start."""
        await self.registry.close_all()
        if self.mirror is not None:
            self.mirror.close()
        if self.auth is not None:
            try:
                await self.remote.sign_out()
            except MinistryError as e:
                logger.warning(f"Sign-out after failed start did not complete: {e}")
        self.auth = None
        self.profile = None
        self.mirror = None
        self.sync = None

    async def end(self) -> None:
        """Close the channel and the mirror, then sign out. Mirror data stays on disk."""
        await self.registry.close_all()
        if self.mirror is not None:
            self.mirror.close()
        try:
            if self.auth is not None:
                await self.remote.sign_out()
        finally:
            logger.info(f"Session ended for {self.profile.id if self.profile else '-'}")
            self.auth = None
            self.profile = None
            self.mirror = None
            self.sync = None


# =============================================================================
# STREAMLIT SESSION STATE
# =============================================================================

def init_state() -> None:
    """Initialize session state with defaults."""
    for k, v in SESSION_DEFAULTS.items():
        if k not in st.session_state:
            st.session_state[k] = v


def get_active_session() -> Optional[MinistrySession]:
    return st.session_state.get(ACTIVE_SESSION_KEY)


def set_active_session(session: Optional[MinistrySession]) -> None:
    """Store (or clear) the session and mirror its identity into session state."""
    st.session_state[ACTIVE_SESSION_KEY] = session
    profile = session.profile if session is not None else None
    st.session_state["authenticated"] = profile is not None
    st.session_state["user_id"] = profile.id if profile else None
    st.session_state["role"] = profile.role.value if profile else None
    st.session_state["unit_id"] = profile.unit_id if profile else None
    if profile is not None:
        st.session_state["reauth_required"] = False
