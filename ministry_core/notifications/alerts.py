# =============================================================================
# ministry_core/notifications/alerts.py
# Transient toasts and OS-level desktop notifications
# =============================================================================

from __future__ import annotations
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

import streamlit as st
from plyer import notification

from ministry_core.logging import get_logger

logger = get_logger(__name__)


class Toaster(ABC):
    """Shows a short-lived in-app message."""

    @abstractmethod
    def show(self, title: str, message: str, icon: Optional[str] = None) -> None:
        ...


class StreamlitToaster(Toaster):
    """Toast through ``st.toast``; outside a script run the call is only logged."""

    def show(self, title: str, message: str, icon: Optional[str] = None) -> None:
        try:
            st.toast(f"**{title}**\n\n{message}", icon=icon)
        except Exception as e:
            logger.debug(f"Toast not shown ({title}): {e}")


class NotificationPermission(Enum):
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"
    UNSUPPORTED = "unsupported"


class DesktopNotifier(ABC):
    """
    OS-level notification surface.

    Permission is requested once, on the first notification that needs it.
    When it is denied, or the platform turns out to have no notification
    support, notifications are skipped silently.
    """

    def __init__(self):
        self.permission = NotificationPermission.DEFAULT

    def _request(self) -> NotificationPermission:
        return NotificationPermission.GRANTED

    @abstractmethod
    def _deliver(self, title: str, body: str) -> None:
        ...

    def notify(self, title: str, body: str) -> bool:
        """Returns True when the notification was delivered."""
        if self.permission is NotificationPermission.DEFAULT:
            self.permission = self._request()
            logger.debug(f"Desktop notification permission: {self.permission.value}")

        if self.permission is not NotificationPermission.GRANTED:
            return False

        try:
            self._deliver(title, body)
        except NotImplementedError:
            self.permission = NotificationPermission.UNSUPPORTED
            logger.debug("Desktop notifications are not supported on this platform")
            return False
        except Exception as e:
            logger.warning(f"Desktop notification failed: {e}")
            return False
        return True


class PlyerNotifier(DesktopNotifier):
    """
    Cross-platform notifications through ``plyer``.

    Usage:
        notifier = PlyerNotifier()
        notifier.notify("New Announcement", "Leadership posted an update.")
    """

    def __init__(self, app_name: str = "Ministry Admin", timeout: int = 5):
        super().__init__()
        self.app_name = app_name
        self.timeout = timeout

    def _deliver(self, title: str, body: str) -> None:
        notification.notify(
            title=title,
            message=body,
            app_name=self.app_name,
            timeout=self.timeout,
        )
