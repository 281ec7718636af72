# =============================================================================
# ministry_core/state/__init__.py
# Session lifecycle
# =============================================================================

from .session import (
    SESSION_DEFAULTS,
    MinistrySession,
    get_active_session,
    init_state,
    set_active_session,
)

__all__ = [
    "SESSION_DEFAULTS",
    "MinistrySession",
    "init_state",
    "get_active_session",
    "set_active_session",
]
