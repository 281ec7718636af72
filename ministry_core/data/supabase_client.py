# =============================================================================
# ministry_core/data/supabase_client.py
# Remote Store Client - single gateway to the Supabase backend
# Handles typed queries, mutations, storage, auth and the change feed
# =============================================================================
"""
RemoteStoreClient wraps supabase's AsyncClient.

Every backend call goes through here so that:
- rows are validated into typed records at the boundary,
- tenant scoping is applied to every unit-owned query,
- backend exceptions are classified into NetworkFailure / AuthFailure /
  QueryFailure and propagated (nothing is retried or swallowed).
"""

from __future__ import annotations
import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, AuthError, acreate_client

from ministry_core.data.backend_config import BackendConfig
from ministry_core.data.filters import Filter, scope_filter, visible_to
from ministry_core.data.models import (
    CollectionSpec,
    Profile,
    Record,
    get_collection,
)
from ministry_core.errors import (
    AuthFailure,
    MinistryError,
    NetworkFailure,
    QueryFailure,
    SubscriptionError,
)
from ministry_core.logging import get_logger

logger = get_logger(__name__)

# PostgREST codes raised for an expired or invalid JWT
AUTH_ERROR_CODES = {"PGRST301", "PGRST302", "401", "403"}


# =============================================================================
# CLIENT FACTORY
# =============================================================================

_clients: Dict[Tuple[str, str], AsyncClient] = {}


async def get_supabase_client(config: BackendConfig) -> AsyncClient:
    """
    Create (once per url/key) and return the async Supabase client.

    Raises:
        NetworkFailure / AuthFailure / QueryFailure when the client cannot be built
    """
    cache_key = (config.url, config.key)
    if cache_key not in _clients:
        try:
            _clients[cache_key] = await acreate_client(config.url, config.key)
        except Exception as e:
            raise classify_error(e, "connect") from e
        logger.info(f"Supabase client created for {config.url}")
    return _clients[cache_key]


def reset_supabase_clients() -> None:
    """Forget cached clients (logout, tests)."""
    _clients.clear()


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================

def classify_error(
    error: Exception,
    operation: str,
    collection: Optional[str] = None,
) -> MinistryError:
    """Map a backend/transport exception onto the sync-core taxonomy."""
    if isinstance(error, MinistryError):
        return error

    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError, ConnectionError, OSError)):
        return NetworkFailure(
            f"Network unavailable during {operation}: {error}",
            operation=operation,
            collection=collection,
        )

    if isinstance(error, AuthError):
        return AuthFailure(str(error) or "Session is no longer valid", operation=operation, collection=collection)

    if isinstance(error, APIError):
        code = str(error.code) if error.code is not None else None
        message = error.message or str(error)
        if code in AUTH_ERROR_CODES:
            return AuthFailure(message, operation=operation, collection=collection)
        return QueryFailure(message, backend_code=code, operation=operation, collection=collection)

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in (401, 403):
            return AuthFailure(str(error), operation=operation, collection=collection)
        return QueryFailure(str(error), backend_code=str(status), operation=operation, collection=collection)

    status = getattr(error, "status", None)
    if status in (401, 403):
        return AuthFailure(str(error), operation=operation, collection=collection)

    return QueryFailure(str(error), operation=operation, collection=collection)


# =============================================================================
# VALUE TYPES
# =============================================================================

class MutationOp(Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class AuthSession:
    user_id: str
    email: Optional[str] = None
    access_token: Optional[str] = None


@dataclass(frozen=True)
class EventFilter:
    """One postgres_changes binding on a channel."""
    table: str
    event: str = "INSERT"
    schema: str = "public"
    filter: Optional[str] = None

    @classmethod
    def for_user(cls, table: str, user_id: str, event: str = "INSERT") -> EventFilter:
        return cls(table=table, event=event, filter=f"user_id=eq.{user_id}")


@dataclass(frozen=True)
class ChangeEvent:
    """A normalized change-feed message."""
    table: str
    event_type: str
    record: Dict[str, Any]

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> ChangeEvent:
        """
        Accepts the realtime shape ``{"data": {"type", "table", "record"}}``
        and the flat ``{"eventType", "table", "new"}`` shape.

        Raises:
            ValueError: when the payload carries no table, type or record
        """
        if not isinstance(payload, dict):
            raise ValueError(f"payload is {type(payload).__name__}, expected object")
        data = payload.get("data", payload)
        if not isinstance(data, dict):
            raise ValueError("payload data is not an object")
        record = data.get("record", data.get("new"))
        event_type = data.get("type") or data.get("eventType")
        table = data.get("table")
        if not table or not event_type:
            raise ValueError("payload has no table or event type")
        if not isinstance(record, dict):
            raise ValueError("payload has no record")
        return cls(table=table, event_type=str(event_type).upper(), record=record)


class SubscriptionHandle:
    """
    An open change-feed channel. Must be closed explicitly; nothing releases a
    forgotten handle.
    """

    def __init__(self, key: str, channel: Any, owner: RemoteStoreClient):
        self.key = key
        self._channel = channel
        self._owner = owner
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._owner._release(self)

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<SubscriptionHandle {self.key} {state}>"


Payload = Union[Record, Dict[str, Any]]


def _to_payload(item: Payload) -> Dict[str, Any]:
    return item.to_row() if isinstance(item, Record) else dict(item)


# =============================================================================
# REMOTE STORE CLIENT
# =============================================================================

class RemoteStoreClient:
    """
    Typed gateway to query, mutation, storage, auth and change-feed operations.

    Usage:
        remote = await RemoteStoreClient.connect(load_backend_config())
        members = await remote.fetch("members", scope=profile)
    """

    def __init__(self, client: AsyncClient, config: Optional[BackendConfig] = None):
        self._client = client
        self.page_size = config.page_size if config else 1000
        self._subscriptions: Dict[str, Optional[SubscriptionHandle]] = {}

    @classmethod
    async def connect(cls, config: BackendConfig) -> RemoteStoreClient:
        client = await get_supabase_client(config)
        return cls(client, config)

    async def _execute(self, request, operation: str, collection: Optional[str] = None):
        try:
            return await request.execute()
        except Exception as e:
            logger.warning(f"{operation} on {collection or '-'} failed: {e}")
            raise classify_error(e, operation, collection) from e

    def _coerce(self, spec: CollectionSpec, rows: Iterable[Dict[str, Any]]) -> List[Record]:
        records = []
        for row in rows:
            record = spec.record_type.from_row(row)
            record.synced = True
            records.append(record)
        return records

    # =========================================================================
    # READS
    # =========================================================================

    async def fetch(
        self,
        collection: str,
        where: Optional[Filter] = None,
        *,
        scope: Optional[Profile] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """
        Fetch rows matching ``where``, narrowed to ``scope``'s unit.

        Fetches ALL matching rows in ``page_size`` batches unless ``limit``
        is given.
        """
        spec = get_collection(collection)
        effective = scope_filter(spec, where, scope)
        if effective is None:
            logger.debug(f"{scope.id if scope else '-'} has no unit; {collection} is empty")
            return []

        def build():
            request = effective.apply(self._client.table(spec.remote_table).select("*"))
            return request.order(order_by or "id", desc=descending)

        rows: List[Dict[str, Any]] = []
        if limit is not None:
            response = await self._execute(build().limit(limit), "fetch", collection)
            rows = response.data or []
        else:
            offset = 0
            while True:
                request = build().range(offset, offset + self.page_size - 1)
                response = await self._execute(request, "fetch", collection)
                batch = response.data or []
                rows.extend(batch)
                if len(batch) < self.page_size:
                    break
                offset += self.page_size

        visible = [row for row in rows if visible_to(spec, row, scope)]
        if len(visible) != len(rows):
            logger.warning(
                f"Dropped {len(rows) - len(visible)} {collection} rows outside unit {scope.unit_id}"
            )
        return self._coerce(spec, visible)

    async def count(
        self,
        collection: str,
        where: Optional[Filter] = None,
        *,
        scope: Optional[Profile] = None,
    ) -> int:
        """Server-side count, no rows transferred."""
        spec = get_collection(collection)
        effective = scope_filter(spec, where, scope)
        if effective is None:
            return 0
        request = effective.apply(
            self._client.table(spec.remote_table).select("*", count="exact", head=True)
        )
        response = await self._execute(request, "count", collection)
        return response.count or 0

    async def load_profile(self, user_id: str) -> Profile:
        request = self._client.table("profiles").select("*").eq("id", user_id).limit(1)
        response = await self._execute(request, "load_profile", "profiles")
        if not response.data:
            raise QueryFailure(f"No profile for user {user_id}", operation="load_profile", collection="profiles")
        return Profile.from_row(response.data[0])

    # =========================================================================
    # WRITES
    # =========================================================================

    async def mutate(
        self,
        collection: str,
        op: MutationOp,
        payload: Union[Payload, Sequence[Payload], None] = None,
        *,
        match: Optional[Filter] = None,
    ) -> List[Record]:
        """
        Insert, update or delete rows. Not transactional across calls.

        Update and delete require a non-empty ``match`` filter.
        """
        spec = get_collection(collection)
        table = self._client.table(spec.remote_table)
        operation = op.value

        if op is MutationOp.INSERT:
            if payload is None:
                raise QueryFailure("Insert needs a payload", operation=operation, collection=collection)
            items = payload if isinstance(payload, (list, tuple)) else [payload]
            if not items:
                return []
            request = table.insert([_to_payload(item) for item in items])
        else:
            if not match:
                raise QueryFailure(
                    f"{operation} without a match filter is refused",
                    operation=operation,
                    collection=collection,
                )
            if op is MutationOp.UPDATE:
                if payload is None or isinstance(payload, (list, tuple)):
                    raise QueryFailure("Update needs a single payload", operation=operation, collection=collection)
                values = _to_payload(payload)
                values.pop("id", None)
                request = match.apply(table.update(values))
            else:
                request = match.apply(table.delete())

        response = await self._execute(request, operation, collection)
        return self._coerce(spec, response.data or [])

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> str:
        """Upload a file and return its public URL. No MIME/size checks."""
        bucket_api = self._client.storage.from_(bucket)
        options = {"content-type": content_type} if content_type else None
        try:
            await bucket_api.upload(path, data, options)
            url = bucket_api.get_public_url(path)
            if inspect.isawaitable(url):
                url = await url
        except Exception as e:
            raise classify_error(e, "upload", bucket) from e
        logger.info(f"Uploaded {len(data)} bytes to {bucket}/{path}")
        return url

    # =========================================================================
    # AUTH
    # =========================================================================

    async def sign_in(self, email: str, password: str) -> AuthSession:
        try:
            response = await self._client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except Exception as e:
            raise classify_error(e, "sign_in") from e

        user = getattr(response, "user", None)
        if user is None:
            raise AuthFailure("Sign-in returned no user", operation="sign_in")
        session = getattr(response, "session", None)
        return AuthSession(
            user_id=str(user.id),
            email=getattr(user, "email", None),
            access_token=getattr(session, "access_token", None),
        )

    async def sign_out(self) -> None:
        try:
            await self._client.auth.sign_out()
        except Exception as e:
            raise classify_error(e, "sign_out") from e

    # =========================================================================
    # CHANGE FEED
    # =========================================================================

    @property
    def open_channels(self) -> List[str]:
        return [key for key, handle in self._subscriptions.items() if handle is not None]

    async def subscribe(
        self,
        channel_key: str,
        event_filters: Sequence[EventFilter],
        callback: Callable[[ChangeEvent], None],
    ) -> SubscriptionHandle:
        """
        Open exactly one channel for ``channel_key``.

        Raises:
            SubscriptionError: when the key is already open or the channel fails
        """
        if channel_key in self._subscriptions:
            raise SubscriptionError(
                f"Channel {channel_key} is already open",
                channel_key=channel_key,
                operation="subscribe",
            )
        self._subscriptions[channel_key] = None  # reserve the key across the await

        dispatch = self._dispatcher(channel_key, callback)
        try:
            channel = self._client.channel(channel_key)
            for event_filter in event_filters:
                channel.on_postgres_changes(
                    event_filter.event,
                    callback=dispatch,
                    table=event_filter.table,
                    schema=event_filter.schema,
                    filter=event_filter.filter,
                )
            await channel.subscribe()
        except Exception as e:
            self._subscriptions.pop(channel_key, None)
            error = classify_error(e, "subscribe")
            if isinstance(error, QueryFailure):
                raise SubscriptionError(str(e), channel_key=channel_key, operation="subscribe") from e
            raise error from e

        handle = SubscriptionHandle(channel_key, channel, self)
        self._subscriptions[channel_key] = handle
        logger.info(f"Subscribed {channel_key} to {[f.table for f in event_filters]}")
        return handle

    def _dispatcher(self, channel_key: str, callback: Callable[[ChangeEvent], None]):
        def dispatch(payload: Dict[str, Any]) -> None:
            try:
                event = ChangeEvent.from_payload(payload)
            except ValueError as e:
                logger.warning(f"Dropping malformed payload on {channel_key}: {e}")
                return
            try:
                callback(event)
            except Exception:
                logger.exception(f"Change handler on {channel_key} failed for {event.table}")

        return dispatch

    async def _release(self, handle: SubscriptionHandle) -> None:
        if self._subscriptions.get(handle.key) is handle:
            del self._subscriptions[handle.key]
        try:
            await self._client.remove_channel(handle._channel)
        except Exception as e:
            raise classify_error(e, "unsubscribe") from e
        logger.info(f"Unsubscribed {handle.key}")

    async def close_all_subscriptions(self) -> None:
        for handle in [h for h in self._subscriptions.values() if h is not None]:
            await handle.close()
