# =============================================================================
# ministry_core/offline/sync_engine.py
# Remote -> Mirror synchronization
# =============================================================================
"""
MirrorSync - the fetch / write-to-mirror / reactive-read pattern as a service.

Features:
- Remote snapshot refresh (exact replace or upsert)
- Remote-first writes: the mirror is updated only after the backend accepts
- Delete-then-insert group replace with explicit partial-failure reporting
- Cancellation tokens so a dismissed screen never commits a late result
- Sync status tracking and state-change callbacks
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from ministry_core.data.filters import Filter, scope_filter
from ministry_core.data.models import Profile, Record, RecordId, get_collection
from ministry_core.data.supabase_client import MutationOp, RemoteStoreClient
from ministry_core.errors import (
    ConfigurationError,
    MinistryError,
    OperationCancelled,
    PartialMutationError,
)
from ministry_core.logging import LogContext, get_logger
from ministry_core.offline.local_mirror import LocalMirror

logger = get_logger(__name__)

REFRESH_MODES = ("replace", "upsert")


class CancellationToken:
    """
    Cooperative cancellation flag owned by the caller (usually a screen).

    Usage:
        token = CancellationToken()
        task = asyncio.create_task(sync.refresh("members", profile=p, token=token))
        ...
        token.cancel()   # screen dismissed; nothing will be committed
    """

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self, operation: Optional[str] = None) -> None:
        if self._cancelled:
            raise OperationCancelled(operation=operation)


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    failed_count: int = 0
    total_synced: int = 0
    last_error: Optional[str] = None


@dataclass
class SyncReport:
    """What one sync operation did to the mirror."""
    collection: str
    fetched: int = 0
    written: int = 0
    removed: int = 0
    stale_keys: List[str] = field(default_factory=list)


class MirrorSync:
    """
    Keeps the Local Mirror in step with the backend.

    Usage:
        sync = MirrorSync(remote, mirror)
        await sync.refresh("members", profile=profile)
        members = mirror.query("members", scope=profile)
    """

    def __init__(self, remote: RemoteStoreClient, mirror: LocalMirror):
        self._remote = remote
        self._mirror = mirror
        self._state = SyncState()
        self._in_flight = 0
        self._callbacks: List[Callable[[SyncState], None]] = []

    @property
    def state(self) -> SyncState:
        """Get current sync state."""
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    @staticmethod
    def _mirrored_spec(collection: str):
        spec = get_collection(collection)
        if not spec.mirrored:
            raise ConfigurationError(
                f"{collection} is not mirrored locally",
                config_key="collection",
            )
        return spec

    @contextmanager
    def _tracking(self, operation: str):
        self._in_flight += 1
        self._state.is_syncing = True
        self._state.last_sync = datetime.now()
        self._notify_callbacks()
        try:
            yield
        except OperationCancelled:
            logger.info(f"{operation} cancelled; result discarded")
            raise
        except MinistryError as e:
            self._state.failed_count += 1
            self._state.last_error = e.message
            raise
        else:
            self._state.last_sync_success = datetime.now()
            self._state.last_error = None
        finally:
            self._in_flight -= 1
            self._state.is_syncing = self._in_flight > 0
            self._notify_callbacks()

    # =========================================================================
    # PULL
    # =========================================================================

    async def refresh(
        self,
        collection: str,
        where: Optional[Filter] = None,
        *,
        profile: Optional[Profile] = None,
        mode: str = "replace",
        token: Optional[CancellationToken] = None,
    ) -> SyncReport:
        """
        Fetch ``collection`` from the backend and write it to the mirror.

        ``replace`` makes the scoped slice of the mirror exactly match the
        remote snapshot; ``upsert`` only adds and overwrites. On remote
        failure the mirror keeps serving its previous rows and the error
        propagates.

        Raises:
            NetworkFailure / AuthFailure / QueryFailure from the fetch
            OperationCancelled: when ``token`` was cancelled before commit
        """
        if mode not in REFRESH_MODES:
            raise ConfigurationError(
                f"Unknown refresh mode: {mode}",
                config_key="mode",
                details={"supported": REFRESH_MODES},
            )
        spec = self._mirrored_spec(collection)
        token = token or CancellationToken()

        with self._tracking(f"refresh {collection}"), LogContext(logger, f"refresh {collection}"):
            records = await self._remote.fetch(collection, where, scope=profile)
            token.raise_if_cancelled("refresh")

            report = SyncReport(collection, fetched=len(records))
            effective = scope_filter(spec, where, profile)
            if effective is None:
                # No unit: nothing is visible, leave the mirror alone
                return report

            if mode == "replace":
                written = self._mirror.replace(collection, records, where=effective or None)
            else:
                written = self._mirror.bulk_put(collection, records)

            report.written = written.written
            report.removed = written.removed
            report.stale_keys = written.stale_keys
            self._state.total_synced += written.written
            self._mirror.set_setting(f"last_refresh:{collection}", datetime.now().isoformat())

        return report

    async def refresh_all(
        self,
        collections: Sequence[str],
        *,
        profile: Optional[Profile] = None,
        token: Optional[CancellationToken] = None,
    ) -> Dict[str, Union[SyncReport, MinistryError]]:
        """
        Refresh several collections; one failing collection does not stop
        the others. Cancellation stops the whole pass.
        """
        results: Dict[str, Union[SyncReport, MinistryError]] = {}
        for collection in collections:
            try:
                results[collection] = await self.refresh(collection, profile=profile, token=token)
            except OperationCancelled:
                raise
            except MinistryError as e:
                logger.error(f"Error refreshing {collection}: {e}")
                results[collection] = e
        return results

    def last_refreshed(self, collection: str) -> Optional[datetime]:
        value = self._mirror.get_setting(f"last_refresh:{collection}")
        return datetime.fromisoformat(value) if value else None

    # =========================================================================
    # PUSH
    # =========================================================================

    async def save(
        self,
        collection: str,
        record: Union[Record, Dict[str, Any]],
        *,
        profile: Optional[Profile] = None,
        token: Optional[CancellationToken] = None,
    ) -> Record:
        """
        Insert (new id) or update (id already mirrored) remotely, then commit
        the backend's copy to the mirror.
        """
        spec = self._mirrored_spec(collection)
        token = token or CancellationToken()
        owns_unit = profile is not None and spec.unit_field == "unit_id"
        if not isinstance(record, Record):
            row = dict(record)
            if owns_unit and row.get("unit_id") is None:
                row["unit_id"] = profile.unit_id
            record = spec.record_type.from_row(row)
        elif owns_unit and record.unit_id is None:
            record.unit_id = profile.unit_id

        is_update = record.id is not None and self._mirror.get(collection, record.id) is not None

        with self._tracking(f"save {collection}"):
            if is_update:
                rows = await self._remote.mutate(
                    collection, MutationOp.UPDATE, record, match=Filter.eq("id", record.id)
                )
            else:
                rows = await self._remote.mutate(collection, MutationOp.INSERT, record)
            token.raise_if_cancelled("save")

            stored = rows[0] if rows else record
            stored.synced = True
            stored = self._mirror.put(collection, stored)
            self._state.total_synced += 1

        logger.info(f"{'Updated' if is_update else 'Inserted'} {collection}/{stored.key}")
        return stored

    async def delete(
        self,
        collection: str,
        record_id: RecordId,
        *,
        token: Optional[CancellationToken] = None,
    ) -> bool:
        """Delete remotely, then from the mirror. Returns True if a mirror row was removed."""
        self._mirrored_spec(collection)
        token = token or CancellationToken()

        with self._tracking(f"delete {collection}"):
            await self._remote.mutate(collection, MutationOp.DELETE, match=Filter.eq("id", record_id))
            token.raise_if_cancelled("delete")
            removed = self._mirror.delete(collection, record_id)

        logger.info(f"Deleted {collection}/{record_id}")
        return removed

    async def replace_group(
        self,
        collection: str,
        match: Filter,
        records: Sequence[Union[Record, Dict[str, Any]]],
        *,
        profile: Optional[Profile] = None,
        token: Optional[CancellationToken] = None,
    ) -> SyncReport:
        """
        Replace every remote row matching ``match`` with ``records``
        (delete, then insert), then mirror the inserted rows.

        The two remote steps are not atomic. When the delete succeeds and the
        insert fails the deletion stays applied, the mirror keeps its old
        rows and PartialMutationError is raised.
        """
        spec = self._mirrored_spec(collection)
        token = token or CancellationToken()
        effective = scope_filter(spec, match, profile)
        if not effective:
            raise ConfigurationError(
                f"replace_group on {collection} needs a non-empty match inside the caller's unit",
                config_key="match",
            )

        with self._tracking(f"replace_group {collection}"):
            await self._remote.mutate(collection, MutationOp.DELETE, match=effective)
            try:
                inserted = await self._remote.mutate(collection, MutationOp.INSERT, list(records))
            except MinistryError as e:
                logger.error(
                    f"replace_group on {collection}: delete applied, insert failed: {e.message}"
                )
                raise PartialMutationError(
                    f"Previous {collection} rows were deleted but the new rows were not saved: {e.message}",
                    collection=collection,
                    completed_steps=["delete"],
                    failed_step="insert",
                ) from e
            token.raise_if_cancelled("replace_group")

            written = self._mirror.replace(collection, inserted, where=effective)
            self._state.total_synced += written.written

        return SyncReport(
            collection,
            fetched=len(inserted),
            written=written.written,
            removed=written.removed,
            stale_keys=written.stale_keys,
        )

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for sync state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        """Notify all registered callbacks."""
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        return {
            "is_syncing": self._state.is_syncing,
            "last_sync": self._state.last_sync.isoformat() if self._state.last_sync else None,
            "last_success": self._state.last_sync_success.isoformat() if self._state.last_sync_success else None,
            "failed_count": self._state.failed_count,
            "total_synced": self._state.total_synced,
            "last_error": self._state.last_error,
        }
