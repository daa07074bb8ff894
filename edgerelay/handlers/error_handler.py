"""
Process-wide error reporting for relay sessions.

Relay sessions report every error they absorb or escalate through
``handle_error``. The handler picks the log level from the severity,
counts errors per context for ``/health``, and passes an ErrorInfo record
to any callbacks registered for that context (or for all contexts).

    handler = get_error_handler()
    handler.register_handler(page_on_call, ErrorContext.CREDENTIAL)

    await handle_error(
        exc,
        ErrorContext.UPSTREAM,
        ErrorSeverity.HIGH,
        "establish",
        session_id=session_id,
    )
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from edgerelay.config.logging_config import configure_logging


class ErrorContext(Enum):
    """Which side of the relay an error came from."""

    DEVICE = "device"
    UPSTREAM = "upstream"
    CREDENTIAL = "credential"
    RECORDING = "recording"
    SESSION = "session"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_LOG_LEVELS = {
    ErrorSeverity.LOW: logging.DEBUG,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


@dataclass
class ErrorInfo:
    """One reported error, as passed to callbacks."""

    error: Exception
    context: ErrorContext
    severity: ErrorSeverity
    operation: str
    metadata: Dict[str, Any]
    timestamp: datetime

    @property
    def session_id(self) -> Optional[str]:
        return self.metadata.get("session_id")


class ErrorHandler:
    """Logs, counts and dispatches errors reported by relay sessions."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or configure_logging("error_handler")
        self._callbacks: Dict[Optional[ErrorContext], List[Callable]] = {None: []}
        self._callbacks.update({context: [] for context in ErrorContext})
        self._lock = threading.Lock()
        self._counts: Dict[ErrorContext, int] = {context: 0 for context in ErrorContext}

    def register_handler(
        self,
        handler: Callable[[ErrorInfo], Any],
        context: Optional[ErrorContext] = None,
    ) -> None:
        """Call ``handler`` for errors in ``context``, or for every error if None.

        Handlers may be plain functions or coroutine functions.
        """
        self._callbacks[context].append(handler)
        scope = context.value if context else "all contexts"
        self.logger.debug(f"Registered error callback for {scope}")

    async def handle_error(
        self,
        error: Exception,
        context: ErrorContext = ErrorContext.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        operation: str = "unknown",
        **metadata,
    ) -> ErrorInfo:
        """
        Log and count ``error`` then run the matching callbacks.

        Args:
            error: The exception being reported
            context: Which side of the relay it came from
            severity: Selects the log level
            operation: Short name of the failed step (e.g. ``establish``)
            **metadata: Extra fields kept on the ErrorInfo, usually ``session_id``

        Returns:
            ErrorInfo: The record handed to callbacks
        """
        info = ErrorInfo(
            error=error,
            context=context,
            severity=severity,
            operation=operation,
            metadata=metadata,
            timestamp=datetime.now(),
        )

        with self._lock:
            self._counts[context] += 1

        prefix = f"[{info.session_id}] " if info.session_id else ""
        self.logger.log(
            _LOG_LEVELS[severity], f"{prefix}{context.value} error in {operation}: {error}"
        )

        await self._run_callbacks(self._callbacks[context], info)
        await self._run_callbacks(self._callbacks[None], info)
        return info

    async def _run_callbacks(self, callbacks: List[Callable], info: ErrorInfo) -> None:
        # A failing callback must not stop the others or the reporting session.
        for callback in list(callbacks):
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(info)
                else:
                    callback(info)
            except Exception as callback_error:
                self.logger.error(f"Error callback {callback!r} failed: {callback_error}")

    def get_error_stats(self) -> Dict[str, Any]:
        with self._lock:
            counts = {context.value: count for context, count in self._counts.items()}
        return {
            "error_counts": counts,
            "total_errors": sum(counts.values()),
            "callbacks": sum(len(callbacks) for callbacks in self._callbacks.values()),
        }

    def reset_stats(self) -> None:
        with self._lock:
            self._counts = {context: 0 for context in ErrorContext}


_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Return the process-wide ErrorHandler, creating it on first use."""
    global _error_handler
    if _error_handler is None:
        _error_handler = ErrorHandler()
    return _error_handler


async def handle_error(
    error: Exception,
    context: ErrorContext = ErrorContext.UNKNOWN,
    severity: ErrorSeverity = ErrorSeverity.MEDIUM,
    operation: str = "unknown",
    **metadata,
) -> ErrorInfo:
    """Report an error to the process-wide ErrorHandler."""
    return await get_error_handler().handle_error(
        error, context, severity, operation, **metadata
    )
