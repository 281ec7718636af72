# =============================================================================
# ministry_core/offline/__init__.py
# Local Mirror and synchronization
# =============================================================================
"""
Offline-tolerant reads.

    ┌──────────────────┐  fetch   ┌──────────────┐  replace/bulk_put  ┌─────────────┐
    │ RemoteStoreClient│ ───────► │  MirrorSync  │ ─────────────────► │ LocalMirror │
    │    (Supabase)    │ ◄─────── │              │                    │  (SQLite)   │
    └──────────────────┘  mutate  └──────────────┘                    └─────────────┘
                                                                            │
                                                                       LiveQuery
                                                                      (screens)

Usage:
    mirror = LocalMirror(config.mirror_path)
    mirror.initialize()
    sync = MirrorSync(remote, mirror)
    await sync.refresh("members", profile=profile)
    members = mirror.query("members", scope=profile)
"""

from ministry_core.offline.live_query import LiveQuery
from ministry_core.offline.local_mirror import (
    MIGRATIONS,
    SCHEMA_VERSION,
    LocalMirror,
    MirrorWriteReport,
)
from ministry_core.offline.sync_engine import (
    CancellationToken,
    MirrorSync,
    SyncReport,
    SyncState,
)

__all__ = [
    "LiveQuery",
    "LocalMirror",
    "MirrorWriteReport",
    "MIGRATIONS",
    "SCHEMA_VERSION",
    "CancellationToken",
    "MirrorSync",
    "SyncReport",
    "SyncState",
]
