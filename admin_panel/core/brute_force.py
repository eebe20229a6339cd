"""
In-process brute-force protection for both steps of admin login.

Failures are counted per identifier (``ip:email``). After
``BRUTE_FORCE_MAX_ATTEMPTS`` failures inside the window the identifier is
blocked until the window lapses or a successful login clears it. Lapsed
entries are dropped whenever a new failure is recorded.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from admin_panel.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class _Attempts:
    count: int
    last_attempt: datetime


class BruteForceProtection:
    def __init__(self, max_attempts: int | None = None, window: timedelta | None = None) -> None:
        self._max_attempts = max_attempts or settings.BRUTE_FORCE_MAX_ATTEMPTS
        self._window = window or timedelta(minutes=settings.BRUTE_FORCE_WINDOW_MINUTES)
        self._attempts: dict[str, _Attempts] = {}
        self._lock = threading.Lock()

    def _live(self, identifier: str, now: datetime) -> _Attempts | None:
        entry = self._attempts.get(identifier)
        if entry is not None and now - entry.last_attempt > self._window:
            del self._attempts[identifier]
            return None
        return entry

    def _sweep(self, now: datetime) -> None:
        for stale in [k for k, e in self._attempts.items() if now - e.last_attempt > self._window]:
            del self._attempts[stale]

    def record_failure(self, identifier: str) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            self._sweep(now)
            entry = self._live(identifier, now)
            if entry is None:
                self._attempts[identifier] = _Attempts(count=1, last_attempt=now)
                return
            entry.count += 1
            entry.last_attempt = now
            if entry.count == self._max_attempts:
                logger.warning("Brute force protection: blocked %s", identifier)

    def is_blocked(self, identifier: str) -> bool:
        with self._lock:
            entry = self._live(identifier, datetime.now(timezone.utc))
            return entry is not None and entry.count >= self._max_attempts

    def clear(self, identifier: str) -> None:
        with self._lock:
            self._attempts.pop(identifier, None)

    def reset(self) -> None:
        with self._lock:
            self._attempts.clear()


brute_force = BruteForceProtection()
