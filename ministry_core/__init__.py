# =============================================================================
# ministry_core/__init__.py
# Data-sync and notification core for the Ministry admin platform
# =============================================================================
"""
ministry_core - the client-side consistency layer shared by every screen.

Components:
- data.supabase_client.RemoteStoreClient: single gateway to the backend
- offline.local_mirror.LocalMirror: on-device keyed record store
- offline.sync_engine.MirrorSync: fetch -> mirror -> reactive read pattern
- notifications.channel.NotificationChannel: live per-user counters
- state.session.MinistrySession: explicit session lifecycle
"""

__version__ = "0.1.0"
