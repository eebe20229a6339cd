"""
Client-side session persistence.

``SessionStorage`` is the single write path for a client session: every
write persists the token and user profile *and* mirrors the token into
the HTTP cookie jar, every clear removes both. Subclasses only decide
where the persisted copy lives.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import httpx

from admin_panel.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredSession:
    token: str
    user: dict[str, Any]


class SessionStorage:
    def __init__(self) -> None:
        self._cookies: httpx.Cookies | None = None

    def bind(self, cookies: httpx.Cookies) -> None:
        """Attach the cookie jar that mirrors the persisted token."""
        self._cookies = cookies

    # ── public API ──────────────────────────────────────────────────
    def load(self) -> StoredSession | None:
        stored = self._read()
        if stored is not None:
            self._mirror(stored.token)
        return stored

    def write(self, session: StoredSession) -> None:
        self._persist(session)
        self._mirror(session.token)

    def clear(self) -> None:
        self._erase()
        if self._cookies is not None:
            self._cookies.delete(settings.ADMIN_TOKEN_COOKIE)
            self._cookies.delete(settings.SESSION_COOKIE)

    def _mirror(self, token: str) -> None:
        if self._cookies is not None:
            self._cookies.set(settings.ADMIN_TOKEN_COOKIE, token)

    # ── backend hooks ───────────────────────────────────────────────
    def _read(self) -> StoredSession | None:
        raise NotImplementedError

    def _persist(self, session: StoredSession) -> None:
        raise NotImplementedError

    def _erase(self) -> None:
        raise NotImplementedError


class MemorySessionStorage(SessionStorage):
    """Lives as long as the process, like browser session storage."""

    def __init__(self) -> None:
        super().__init__()
        self._session: StoredSession | None = None

    def _read(self) -> StoredSession | None:
        return self._session

    def _persist(self, session: StoredSession) -> None:
        self._session = session

    def _erase(self) -> None:
        self._session = None


class FileSessionStorage(SessionStorage):
    """JSON file on disk, surviving restarts like browser local storage."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)

    def _read(self) -> StoredSession | None:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, exc)
            return None
        if not isinstance(raw, dict) or not raw.get("token"):
            return None
        return StoredSession(token=raw["token"], user=raw.get("user") or {})

    def _persist(self, session: StoredSession) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(asdict(session)), encoding="utf-8")
        tmp.replace(self.path)

    def _erase(self) -> None:
        self.path.unlink(missing_ok=True)
