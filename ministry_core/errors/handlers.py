# =============================================================================
# ministry_core/errors/handlers.py
# Error Handling Utilities for the Ministry sync core
# =============================================================================

from __future__ import annotations
import traceback
from typing import Optional
import streamlit as st

from ministry_core.logging import get_logger
from .exceptions import MinistryError, AuthFailure

logger = get_logger(__name__)

# Session-state flag read by the page router to send the user back to login
REAUTH_FLAG = "reauth_required"


def handle_error(
    error: Exception,
    show_user_message: bool = True,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> None:
    """
    Centralized error handling function.

    Failures surface as dismissible toasts. An AuthFailure also flags the
    session for re-authentication; no local data is purged.

    Args:
        error: The exception to handle
        show_user_message: Whether to display a toast to the user
        log_error: Whether to log the error
        user_message: Custom message to show user (uses error message if None)
    """
    if isinstance(error, MinistryError):
        message = user_message or error.message
        code = error.code
        details = error.details
        recoverable = error.recoverable
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        logger.error(
            f"[{code}] {message}",
            extra={"details": details},
            exc_info=error,
        )

    if isinstance(error, AuthFailure):
        st.session_state[REAUTH_FLAG] = True

    if show_user_message:
        if recoverable:
            st.toast(f"Error: {message}", icon="⚠️")
        else:
            st.toast(f"Critical Error: {message}. Please contact support.", icon="🛑")


class ErrorContext:
    """
    Context manager for error handling with automatic logging and user feedback.

    A dialog whose sole purpose is the wrapped mutation checks ``failed`` and
    stays open so the user can retry.

    Usage:
        with ErrorContext("Saving attendance session") as ctx:
            await sync.replace_group("attendance_logs", match, logs, profile=profile)
        if not ctx.failed:
            close_dialog()
    """

    def __init__(
        self,
        operation: str,
        recoverable: bool = True,
        show_success: bool = False,
        success_message: Optional[str] = None,
    ):
        self.operation = operation
        self.recoverable = recoverable
        self.show_success = show_success
        self.success_message = success_message
        self.failed = False
        self.error: Optional[BaseException] = None

    def __enter__(self) -> ErrorContext:
        logger.info(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            self.failed = True
            self.error = exc_val
            if isinstance(exc_val, MinistryError):
                handle_error(exc_val)
            else:
                handle_error(
                    exc_val,
                    user_message=f"Error during: {self.operation}",
                )

            # Suppress exception if recoverable
            return self.recoverable

        logger.info(f"Completed: {self.operation}")
        if self.show_success:
            st.toast(self.success_message or f"{self.operation} completed", icon="✅")

        return False
