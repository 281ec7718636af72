# =============================================================================
# ministry_core/notifications/__init__.py
# Live Notification Channel
# =============================================================================

from .alerts import DesktopNotifier, NotificationPermission, PlyerNotifier, StreamlitToaster, Toaster
from .channel import ChannelStatus, NotificationChannel, NotificationState
from .registry import NotificationChannelRegistry

__all__ = [
    "ChannelStatus",
    "NotificationChannel",
    "NotificationState",
    "NotificationChannelRegistry",
    "Toaster",
    "StreamlitToaster",
    "DesktopNotifier",
    "PlyerNotifier",
    "NotificationPermission",
]
