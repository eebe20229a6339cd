"""
Single-use bookkeeping for post-login grace markers.

A grace marker is a signed JWT (see ``create_grace_marker``) with a few
seconds of lifetime. The page guard accepts each marker's ``jti`` once;
consumed ids are forgotten after the marker itself would have expired.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone


class GraceMarkerRegistry:
    def __init__(self) -> None:
        self._consumed: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def consume(self, jti: str, expires_at: datetime) -> bool:
        """Return True the first time ``jti`` is seen, False on every replay."""
        now = datetime.now(timezone.utc)
        with self._lock:
            for stale in [k for k, exp in self._consumed.items() if exp <= now]:
                del self._consumed[stale]
            if jti in self._consumed:
                return False
            self._consumed[jti] = expires_at
            return True

    def reset(self) -> None:
        with self._lock:
            self._consumed.clear()


grace_markers = GraceMarkerRegistry()
