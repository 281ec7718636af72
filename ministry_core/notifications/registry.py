# =============================================================================
# ministry_core/notifications/registry.py
# One notification channel per signed-in user
# =============================================================================

from __future__ import annotations
import asyncio
from typing import Callable, Dict, Optional

from ministry_core.data.models import Profile
from ministry_core.data.supabase_client import RemoteStoreClient
from ministry_core.logging import get_logger
from ministry_core.notifications.channel import NotificationChannel

logger = get_logger(__name__)

ChannelFactory = Callable[[RemoteStoreClient, Profile], NotificationChannel]


class NotificationChannelRegistry:
    """
    Keyed by user id. Opening a channel for a user who already has one
    closes the old channel first, so events are never delivered twice.

    Usage:
        registry = NotificationChannelRegistry(remote)
        channel = await registry.open(profile)
        ...
        await registry.close_all()
    """

    def __init__(self, remote: RemoteStoreClient, factory: Optional[ChannelFactory] = None):
        self._remote = remote
        self._factory = factory or NotificationChannel
        self._channels: Dict[str, NotificationChannel] = {}
        self._lock = asyncio.Lock()

    def get(self, user_id: str) -> Optional[NotificationChannel]:
        return self._channels.get(user_id)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._channels

    def __len__(self) -> int:
        return len(self._channels)

    async def open(self, profile: Profile) -> NotificationChannel:
        """Replace any existing channel for ``profile.id`` and connect a new one."""
        async with self._lock:
            previous = self._channels.pop(profile.id, None)
            if previous is not None:
                logger.info(f"Replacing notification channel for {profile.id}")
                await previous.close()

            channel = self._factory(self._remote, profile)
            await channel.connect()
            self._channels[profile.id] = channel
            return channel

    async def close(self, user_id: str) -> None:
        async with self._lock:
            channel = self._channels.pop(user_id, None)
            if channel is not None:
                await channel.close()

    async def close_all(self) -> None:
        async with self._lock:
            channels, self._channels = list(self._channels.values()), {}
            for channel in channels:
                await channel.close()
