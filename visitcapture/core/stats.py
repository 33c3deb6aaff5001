"""Pipeline statistics.

In-memory counters for capture sessions, compression, compositing and
submissions, plus the set of operators with a session currently in flight.
No framework dependencies.
"""

from __future__ import annotations

import threading
import time
from collections import Counter


class PipelineStats:
    """Thread-safe pipeline counters."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()

        # Counters
        self.sessions_started: Counter[str] = Counter()
        self.blocked: Counter[str] = Counter()
        self.failed: Counter[str] = Counter()
        self.captures: int = 0
        self.compression_attempts: int = 0
        self.compression_failures: int = 0
        self.compositing_failures: int = 0
        self.submissions_ok: int = 0
        self.submissions_rejected: int = 0
        self.submissions_network_errors: int = 0
        self.bytes_submitted: int = 0

        self._active_operators: set[str] = set()

    def record_session_started(self, operator_id: str, mode: str) -> None:
        with self._lock:
            self.sessions_started[mode] += 1
            self._active_operators.add(operator_id)

    def record_session_ended(self, operator_id: str) -> None:
        with self._lock:
            self._active_operators.discard(operator_id)

    def record_blocked(self, reason: str) -> None:
        with self._lock:
            self.blocked[reason] += 1

    def record_failed(self, reason: str) -> None:
        with self._lock:
            self.failed[reason] += 1

    def record_capture(self) -> None:
        with self._lock:
            self.captures += 1

    def record_compression(self, attempts: int, ok: bool) -> None:
        with self._lock:
            self.compression_attempts += attempts
            if not ok:
                self.compression_failures += 1

    def record_compositing_failure(self) -> None:
        with self._lock:
            self.compositing_failures += 1

    def record_submission(self, outcome: str, size_bytes: int = 0) -> None:
        """``outcome`` is "ok", "rejected" or "network_error"."""
        with self._lock:
            if outcome == "ok":
                self.submissions_ok += 1
                self.bytes_submitted += size_bytes
            elif outcome == "rejected":
                self.submissions_rejected += 1
            else:
                self.submissions_network_errors += 1

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        with self._lock:
            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "sessions_started": dict(self.sessions_started),
                "active_sessions": len(self._active_operators),
                "captures": self.captures,
                "compression_attempts": self.compression_attempts,
                "compression_failures": self.compression_failures,
                "compositing_failures": self.compositing_failures,
                "blocked": dict(self.blocked),
                "failed": dict(self.failed),
                "submissions": {
                    "ok": self.submissions_ok,
                    "rejected": self.submissions_rejected,
                    "network_errors": self.submissions_network_errors,
                    "bytes": self.bytes_submitted,
                },
            }
