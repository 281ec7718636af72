# =============================================================================
# ministry_core/errors/__init__.py
# Centralized Error Handling for the Ministry sync core
# =============================================================================

from .exceptions import (
    MinistryError,
    RemoteStoreError,
    NetworkFailure,
    AuthFailure,
    QueryFailure,
    RecordValidationError,
    SubscriptionError,
    OperationCancelled,
    PartialMutationError,
    MirrorWriteError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "MinistryError",
    "RemoteStoreError",
    "NetworkFailure",
    "AuthFailure",
    "QueryFailure",
    "RecordValidationError",
    "SubscriptionError",
    "OperationCancelled",
    "PartialMutationError",
    "MirrorWriteError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "ErrorContext",
]
