# =============================================================================
# ministry_core/errors/exceptions.py
# Custom Exception Hierarchy for the Ministry sync core
# =============================================================================

from typing import Optional, Dict, Any


class MinistryError(Exception):
    """
    Base exception for all sync-core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "NET_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "MIN_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# REMOTE STORE EXCEPTIONS
# =============================================================================

class RemoteStoreError(MinistryError):
    """Raised by the Remote Store Client for any failed backend call"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        collection: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        if collection:
            details["collection"] = collection
        kwargs.setdefault("code", "REMOTE_000")

        super().__init__(message=message, details=details, **kwargs)


class NetworkFailure(RemoteStoreError):
    """Transient connectivity loss; the Mirror keeps serving its last snapshot"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message=message, code="NET_001", **kwargs)


class AuthFailure(RemoteStoreError):
    """Session invalid or expired; callers redirect to re-authentication"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message=message, code="AUTH_001", **kwargs)


class QueryFailure(RemoteStoreError):
    """
    Backend rejected a query or mutation (constraint violation, bad filter).

    ``message`` is the backend's own text so it can be shown verbatim.
    """

    def __init__(self, message: str, backend_code: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if backend_code:
            details["backend_code"] = backend_code
        kwargs.setdefault("code", "QUERY_001")
        super().__init__(message=message, details=details, **kwargs)
        self.backend_code = backend_code


class RecordValidationError(QueryFailure):
    """A backend row could not be coerced into its record type"""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        field: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        super().__init__(
            message=message,
            collection=collection,
            details=details,
            code="QUERY_002",
            **kwargs,
        )


class SubscriptionError(RemoteStoreError):
    """Raised when a change-feed channel cannot be opened"""

    def __init__(self, message: str, channel_key: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if channel_key:
            details["channel_key"] = channel_key
        super().__init__(message=message, code="RT_001", details=details, **kwargs)


# =============================================================================
# SYNC EXCEPTIONS
# =============================================================================

class OperationCancelled(MinistryError):
    """The caller cancelled the operation before its results were committed"""

    def __init__(self, message: str = "Operation cancelled", operation: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(message=message, code="SYNC_001", details=details, **kwargs)


class PartialMutationError(MinistryError):
    """
    A multi-step remote write stopped partway.

    The steps listed in ``completed_steps`` were applied remotely and are not
    rolled back.
    """

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        completed_steps: Optional[list] = None,
        failed_step: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if collection:
            details["collection"] = collection
        if completed_steps:
            details["completed_steps"] = completed_steps
        if failed_step:
            details["failed_step"] = failed_step
        super().__init__(message=message, code="SYNC_002", details=details, **kwargs)
        self.completed_steps = completed_steps or []
        self.failed_step = failed_step


# =============================================================================
# LOCAL MIRROR EXCEPTIONS
# =============================================================================

class MirrorWriteError(MinistryError):
    """Local store failure (disk full, locked file, corrupted schema)"""

    def __init__(self, message: str, collection: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if collection:
            details["collection"] = collection
        super().__init__(
            message=message,
            code="MIRROR_001",
            details=details,
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(MinistryError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
