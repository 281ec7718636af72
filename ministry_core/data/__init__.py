# =============================================================================
# ministry_core/data/__init__.py
# Records, filters and the Remote Store Client
# =============================================================================

from .models import (
    COLLECTIONS,
    EXECUTIVE_ROLES,
    MIRRORED_COLLECTIONS,
    CollectionSpec,
    Profile,
    Record,
    Role,
    get_collection,
)
from .filters import Filter, Predicate, scope_filter, visible_to
from .backend_config import BackendConfig, load_backend_config
from .supabase_client import (
    AuthSession,
    ChangeEvent,
    EventFilter,
    MutationOp,
    RemoteStoreClient,
    SubscriptionHandle,
    classify_error,
    get_supabase_client,
)

__all__ = [
    "COLLECTIONS",
    "EXECUTIVE_ROLES",
    "MIRRORED_COLLECTIONS",
    "CollectionSpec",
    "Profile",
    "Record",
    "Role",
    "get_collection",
    "Filter",
    "Predicate",
    "scope_filter",
    "visible_to",
    "BackendConfig",
    "load_backend_config",
    "AuthSession",
    "ChangeEvent",
    "EventFilter",
    "MutationOp",
    "RemoteStoreClient",
    "SubscriptionHandle",
    "classify_error",
    "get_supabase_client",
]
