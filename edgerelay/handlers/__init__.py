"""Process-wide handlers shared by every relay session."""

from .error_handler import (
    ErrorContext,
    ErrorHandler,
    ErrorInfo,
    ErrorSeverity,
    get_error_handler,
    handle_error,
)

__all__ = [
    "ErrorContext",
    "ErrorHandler",
    "ErrorInfo",
    "ErrorSeverity",
    "get_error_handler",
    "handle_error",
]
