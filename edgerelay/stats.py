"""Process-wide relay counters shared by all sessions."""

import threading
import time
from typing import Dict


class RelayStats:
    """Thread-safe counters for the /stats and /health endpoints."""

    COUNTERS = (
        "sessions_started",
        "sessions_closed",
        "sessions_failed",
        "sessions_rejected",
        "audio_chunks_received",
        "audio_bytes_received",
        "batches_sent",
        "bytes_sent",
        "commits_sent",
        "responses_requested",
        "transcripts_delivered",
        "upstream_events",
        "malformed_upstream_events",
    )

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {name: 0 for name in self.COUNTERS}
        self._active = 0
        self.started_at = time.time()

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + amount

    def session_opened(self) -> None:
        with self._lock:
            self._active += 1
            self._counters["sessions_started"] += 1

    def session_ended(self, failed: bool) -> None:
        with self._lock:
            self._active = max(0, self._active - 1)
            self._counters["sessions_failed" if failed else "sessions_closed"] += 1

    @property
    def active_sessions(self) -> int:
        with self._lock:
            return self._active

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            data = dict(self._counters)
            data["active_sessions"] = self._active
        data["uptime_seconds"] = int(time.time() - self.started_at)
        return data

    def reset(self) -> None:
        with self._lock:
            self._counters = {name: 0 for name in self.COUNTERS}
            self._active = 0
