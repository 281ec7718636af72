# =============================================================================
# ministry_core/notifications/channel.py
# Live Notification Channel - per-user counters fed by the change feed
# =============================================================================
"""
NotificationChannel keeps three user-facing numbers current over ONE change
feed subscription per signed-in user:

- unread announcements (non-executive roles only)
- pending financial requests (executive roles only)
- unread personal notifications, newest first

State machine:
    DISCONNECTED -> CONNECTING (subscribe + baseline) -> CONNECTED -> DISCONNECTED

Events that arrive while a baseline is being fetched (on connect or on
focus) are held back and replayed once the baseline is in place. Every
matcher de-duplicates by row id, so a held event the baseline already
counted is dropped on replay. A focus event reruns the baseline; there is
no other reconciliation.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from ministry_core.data.filters import Filter
from ministry_core.data.models import (
    AnnouncementRead,
    Notification,
    Profile,
    Record,
    get_collection,
)
from ministry_core.data.supabase_client import (
    ChangeEvent,
    EventFilter,
    MutationOp,
    RemoteStoreClient,
    SubscriptionHandle,
)
from ministry_core.errors import MinistryError, SubscriptionError
from ministry_core.logging import get_logger
from ministry_core.notifications.alerts import DesktopNotifier, PlyerNotifier, StreamlitToaster, Toaster

logger = get_logger(__name__)

ANNOUNCEMENT_TITLE = "New Announcement"
ANNOUNCEMENT_BODY = "Leadership posted an update."
REQUEST_TITLE = "New Financial Request"
REQUEST_BODY = "A new request needs your review."


class ChannelStatus(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class NotificationState:
    """Snapshot handed to the UI."""
    unread_count: int = 0
    pending_count: int = 0
    notifications: Tuple[Notification, ...] = ()

    @property
    def total(self) -> int:
        return self.unread_count + self.pending_count + len(self.notifications)


def _remote(collection: str) -> str:
    return get_collection(collection).remote_table


class NotificationChannel:
    """
    Usage:
        channel = NotificationChannel(remote, profile)
        await channel.connect()
        channel.subscribe(lambda state: render_bell(state))
        ...
        await channel.on_focus()     # window regained focus
        await channel.close()        # logout
    """

    def __init__(
        self,
        remote: RemoteStoreClient,
        profile: Profile,
        toaster: Optional[Toaster] = None,
        desktop: Optional[DesktopNotifier] = None,
    ):
        self._remote = remote
        self.profile = profile
        self._toaster = toaster or StreamlitToaster()
        self._desktop = desktop or PlyerNotifier()
        self._handle: Optional[SubscriptionHandle] = None
        self._listeners: List[Callable[[NotificationState], None]] = []
        self._buffer: Optional[List[ChangeEvent]] = None
        self.status = ChannelStatus.DISCONNECTED
        self._reset()

        self._matchers: Dict[str, Callable[[ChangeEvent], None]] = {
            _remote("announcements"): self._on_announcement,
            _remote("announcement_reads"): self._on_read_receipt,
            _remote("notifications"): self._on_notification,
            _remote("requests"): self._on_request,
        }

    def _reset(self) -> None:
        self._unread = 0
        self._pending = 0
        self._notifications: List[Notification] = []
        self._known_announcements: Set[str] = set()
        self._read_announcements: Set[str] = set()
        self._seen_requests: Set[str] = set()
        self._dismissed: Set[str] = set()

    @property
    def key(self) -> str:
        return f"bell:{self.profile.id}"

    @property
    def is_executive(self) -> bool:
        return self.profile.is_executive

    @property
    def state(self) -> NotificationState:
        return NotificationState(
            unread_count=self._unread,
            pending_count=self._pending,
            notifications=tuple(self._notifications),
        )

    @property
    def unread_count(self) -> int:
        return self._unread

    @property
    def pending_count(self) -> int:
        return self._pending

    @property
    def notifications(self) -> List[Notification]:
        return list(self._notifications)

    def event_filters(self) -> List[EventFilter]:
        return [
            EventFilter(_remote("announcements")),
            EventFilter.for_user(_remote("announcement_reads"), self.profile.id),
            EventFilter.for_user(_remote("notifications"), self.profile.id),
            EventFilter(_remote("requests")),
        ]

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def connect(self) -> None:
        """
        Open the subscription, then take the baseline.

        Raises:
            SubscriptionError: already connected, or the channel cannot open
            NetworkFailure / AuthFailure / QueryFailure: baseline fetch failed
        """
        if self.status is not ChannelStatus.DISCONNECTED:
            raise SubscriptionError(
                f"Channel {self.key} is already {self.status.value}",
                channel_key=self.key,
                operation="connect",
            )

        self.status = ChannelStatus.CONNECTING
        self._buffer = []
        try:
            self._handle = await self._remote.subscribe(self.key, self.event_filters(), self._on_event)
            await self._load_baseline()
        except MinistryError:
            await self._teardown()
            raise

        self.status = ChannelStatus.CONNECTED
        self._replay()
        logger.info(
            f"{self.key} connected: unread={self._unread} pending={self._pending} "
            f"notifications={len(self._notifications)}"
        )
        self._notify_listeners()

    async def on_focus(self) -> None:
        """Correction pass: replace all counters with a fresh baseline."""
        if self.status is not ChannelStatus.CONNECTED or self._buffer is not None:
            return
        self._buffer = []
        try:
            await self._load_baseline()
        finally:
            self._replay()
        logger.debug(f"{self.key} reconciled on focus")
        self._notify_listeners()

    async def close(self) -> None:
        """Tear down the subscription and clear every counter."""
        if self.status is ChannelStatus.DISCONNECTED and self._handle is None:
            return
        await self._teardown()
        logger.info(f"{self.key} closed")
        self._notify_listeners()

    async def _teardown(self) -> None:
        handle, self._handle = self._handle, None
        self.status = ChannelStatus.DISCONNECTED
        self._buffer = None
        self._reset()
        if handle is not None:
            await handle.close()

    async def _load_baseline(self) -> None:
        user_id = self.profile.id

        if self.is_executive:
            unread = 0
            known: Set[str] = set()
            read: Set[str] = set()
            pending = await self._remote.count(
                "requests", Filter.eq("status", "pending"), scope=self.profile
            )
            # requests announced before the count returned are in the count
            seen = self._buffered_keys("requests")
        else:
            receipts = await self._remote.fetch("announcement_reads", Filter.eq("user_id", user_id))
            announcements = await self._remote.fetch("announcements")
            read = {str(r.announcement_id) for r in receipts if r.announcement_id is not None}
            known = {a.key for a in announcements}
            unread = len(known - read)
            pending = 0
            seen = set()

        notifications = await self._remote.fetch(
            "notifications",
            Filter.eq("user_id", user_id).and_("is_read", "eq", False),
            order_by="created_at",
            descending=True,
        )

        self._unread = unread
        self._known_announcements = known
        self._read_announcements = read
        self._pending = pending
        self._seen_requests = seen
        self._notifications = [n for n in notifications if n.key not in self._dismissed]

    # =========================================================================
    # EVENT MATCHERS
    # =========================================================================

    def _on_event(self, event: ChangeEvent) -> None:
        if self._buffer is not None:
            self._buffer.append(event)
            return
        if self.status is not ChannelStatus.CONNECTED:
            logger.debug(f"{self.key} ignoring {event.table} event while {self.status.value}")
            return
        self._dispatch(event)

    def _dispatch(self, event: ChangeEvent) -> None:
        if event.event_type != "INSERT":
            return
        matcher = self._matchers.get(event.table)
        if matcher is None:
            logger.debug(f"{self.key} has no matcher for {event.table}")
            return
        try:
            matcher(event)
        except Exception:
            logger.exception(f"{self.key} failed to handle {event.table} event")

    def _replay(self) -> None:
        held, self._buffer = self._buffer or [], None
        if self.status is not ChannelStatus.CONNECTED:
            return
        if held:
            logger.debug(f"{self.key} replaying {len(held)} event(s) held during baseline")
        for event in held:
            self._dispatch(event)

    def _buffered_keys(self, collection: str) -> Set[str]:
        table = _remote(collection)
        keys: Set[str] = set()
        for event in self._buffer or []:
            if event.table != table or event.event_type != "INSERT":
                continue
            record = self._parse(collection, event)
            if record is not None and record.key is not None:
                keys.add(record.key)
        return keys

    def _parse(self, collection: str, event: ChangeEvent) -> Optional[Record]:
        try:
            return get_collection(collection).record_type.from_row(event.record)
        except MinistryError as e:
            logger.warning(f"{self.key} dropping malformed {collection} event: {e}")
            return None

    def _on_announcement(self, event: ChangeEvent) -> None:
        if self.is_executive:
            return
        announcement = self._parse("announcements", event)
        if announcement is None or announcement.key in self._known_announcements:
            return
        self._known_announcements.add(announcement.key)
        self._unread += 1
        self._alert(ANNOUNCEMENT_TITLE, ANNOUNCEMENT_BODY)
        self._notify_listeners()

    def _on_read_receipt(self, event: ChangeEvent) -> None:
        if self.is_executive:
            return
        receipt = self._parse("announcement_reads", event)
        if not isinstance(receipt, AnnouncementRead) or receipt.user_id != self.profile.id:
            return
        announcement_id = str(receipt.announcement_id)
        if announcement_id in self._read_announcements:
            return
        self._read_announcements.add(announcement_id)
        self._unread = max(0, self._unread - 1)
        self._notify_listeners()

    def _on_notification(self, event: ChangeEvent) -> None:
        notification = self._parse("notifications", event)
        if not isinstance(notification, Notification) or notification.user_id != self.profile.id:
            return
        if notification.is_read or notification.key in self._dismissed:
            return
        if any(n.key == notification.key for n in self._notifications):
            return
        self._notifications.insert(0, notification)
        title = notification.title or "Notification"
        message = notification.message or ""
        self._alert(title, message)
        self._notify_listeners()

    def _on_request(self, event: ChangeEvent) -> None:
        if not self.is_executive:
            return
        request = self._parse("requests", event)
        if request is None or request.status != "pending":
            return
        if request.key is not None:
            if request.key in self._seen_requests:
                return
            self._seen_requests.add(request.key)
        self._pending += 1
        self._alert(REQUEST_TITLE, REQUEST_BODY)
        self._notify_listeners()

    def _alert(self, title: str, body: str) -> None:
        self._toaster.show(title, body)
        self._desktop.notify(title, body)

    # =========================================================================
    # ACTIONS
    # =========================================================================

    async def mark_read(self, notification_id) -> Optional[Notification]:
        """
        Remove a personal notification immediately, then persist ``is_read``.

        On failure the notification is put back where it was and the error
        is re-raised. Returns the removed notification (its ``link`` is
        where the UI navigates), or None if it was not listed.
        """
        key = str(notification_id)
        index = next((i for i, n in enumerate(self._notifications) if n.key == key), None)
        if index is None:
            return None

        removed = self._notifications.pop(index)
        self._dismissed.add(key)
        self._notify_listeners()

        try:
            await self._remote.mutate(
                "notifications",
                MutationOp.UPDATE,
                {"is_read": True},
                match=Filter.eq("id", notification_id),
            )
        except MinistryError:
            self._dismissed.discard(key)
            self._notifications.insert(min(index, len(self._notifications)), removed)
            self._notify_listeners()
            raise
        return removed

    async def mark_announcement_read(self, announcement_id) -> None:
        """Insert the read receipt; the counter drops now, not on the echo event."""
        if self.is_executive:
            return
        key = str(announcement_id)
        if key in self._read_announcements:
            return
        await self._remote.mutate(
            "announcement_reads",
            MutationOp.INSERT,
            {"announcement_id": announcement_id, "user_id": self.profile.id},
        )
        if key in self._read_announcements:
            # echo event already applied
            return
        self._read_announcements.add(key)
        self._unread = max(0, self._unread - 1)
        self._notify_listeners()

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def subscribe(self, callback: Callable[[NotificationState], None]) -> Callable[[], None]:
        """Register a state listener; returns a function that removes it."""
        if callback not in self._listeners:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify_listeners(self) -> None:
        state = self.state
        for callback in list(self._listeners):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Error in notification listener: {e}")
