"""
Registry of live relay sessions.

Each accepted device connection gets exactly one RelaySession, and with it
exactly one upstream link. The registry enforces the configured session
cap, keeps the shared RelayStats and lets the server shut every session
down cleanly.
"""

import asyncio
import json
import uuid
from typing import Any, Callable, Dict, Optional

from edgerelay.config.logging_config import configure_logging
from edgerelay.config.models import ApplicationConfig
from edgerelay.models.device_api import ErrorMessage
from edgerelay.models.session_state import SessionState
from edgerelay.relay_session import RelaySession
from edgerelay.stats import RelayStats

logger = configure_logging("session_registry")

# Close code sent to devices rejected at capacity ("try again later")
CLOSE_TRY_AGAIN_LATER = 1013

SessionFactory = Callable[..., RelaySession]


class SessionRegistry:
    """Creates, tracks and shuts down relay sessions."""

    def __init__(
        self,
        config: Optional[ApplicationConfig] = None,
        stats: Optional[RelayStats] = None,
        session_factory: Optional[SessionFactory] = None,
    ):
        self.config = config or ApplicationConfig()
        self.stats = stats or RelayStats()
        self._session_factory = session_factory or RelaySession
        self._sessions: Dict[str, RelaySession] = {}

    @property
    def max_sessions(self) -> int:
        return self.config.server.max_sessions

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def get_session(self, session_id: str) -> Optional[RelaySession]:
        return self._sessions.get(session_id)

    async def handle_connection(self, websocket: Any) -> Optional[SessionState]:
        """Run a relay session for an accepted device socket.

        Returns the session's final state, or None if the device was
        rejected because the registry is full.
        """
        if self.active_count >= self.max_sessions:
            self.stats.increment("sessions_rejected")
            logger.warning(
                f"Rejecting device connection: {self.active_count}/{self.max_sessions} sessions active"
            )
            try:
                await websocket.send_text(
                    json.dumps(
                        ErrorMessage(error="Relay at capacity, try again later").model_dump(
                            mode="json"
                        )
                    )
                )
                await websocket.close(code=CLOSE_TRY_AGAIN_LATER)
            except Exception as e:
                logger.debug(f"Error rejecting device connection: {e}")
            return None

        session_id = str(uuid.uuid4())
        session = self._session_factory(
            websocket, config=self.config, session_id=session_id, stats=self.stats
        )
        self._sessions[session_id] = session
        self.stats.session_opened()
        logger.info(f"Session {session_id} registered ({self.active_count} active)")

        try:
            return await session.run()
        finally:
            self._sessions.pop(session_id, None)
            self.stats.session_ended(failed=session.state == SessionState.FAILED)
            logger.info(
                f"Session {session_id} unregistered in {session.state.value} "
                f"({self.active_count} active)"
            )

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Ask every session to finish its segment and close."""
        sessions = list(self._sessions.values())
        if not sessions:
            return
        logger.info(f"Shutting down {len(sessions)} relay sessions")
        for session in sessions:
            session.request_close()

        deadline = asyncio.get_running_loop().time() + timeout
        while self._sessions and asyncio.get_running_loop().time() < deadline:
            await asyncio.sleep(0.05)

        for session in list(self._sessions.values()):
            logger.warning(f"Session {session.session_id} did not close in time")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active_sessions": self.active_count,
            "max_sessions": self.max_sessions,
            "counters": self.stats.snapshot(),
            "sessions": [s.get_status() for s in self._sessions.values()],
        }
