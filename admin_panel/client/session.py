"""
Client session store for the admin panel.

``AdminSession`` drives the two-step login protocol against the API,
keeps the token and user profile in observable state, and persists them
through a ``SessionStorage``. State is injected (client, storage,
navigation callback) rather than held in module globals.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

import httpx

from admin_panel.client.storage import MemorySessionStorage, SessionStorage, StoredSession
from admin_panel.core.config import settings
from admin_panel.core.exceptions import LOGIN_FAILED, MFA_FAILED
from admin_panel.core.roles import can_access_panel, parse_role

logger = logging.getLogger(__name__)

_AUTH = f"{settings.API_PREFIX}/auth"


class SessionError(Exception):
    pass


class AuthenticationFailed(SessionError):
    """The server rejected the request; the user may try again."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class BackendUnavailable(SessionError):
    """Network failure or 5xx. An existing session is left untouched."""


@dataclass(frozen=True)
class SessionState:
    token: str | None = None
    user: dict[str, Any] | None = None
    is_loading: bool = True

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


@dataclass(frozen=True)
class LoginResult:
    requires_mfa: bool = False
    mfa_login_token: str | None = None


def _is_panel_user(user: object) -> bool:
    if not isinstance(user, dict):
        return False
    role = parse_role(user.get("role"))
    return role is not None and can_access_panel(role)


class AdminSession:
    def __init__(
        self,
        client: httpx.AsyncClient,
        storage: SessionStorage | None = None,
        on_navigate: Callable[[str], None] | None = None,
        login_path: str = settings.LOGIN_PATH,
    ) -> None:
        self._client = client
        self._storage = storage or MemorySessionStorage()
        self._storage.bind(client.cookies)
        self._on_navigate = on_navigate
        self._login_path = login_path
        self._state = SessionState()
        self._listeners: list[Callable[[SessionState], None]] = []

    # ── observable state ────────────────────────────────────────────
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    def subscribe(self, listener: Callable[[SessionState], None]) -> Callable[[], None]:
        """Register a state listener; returns a function that unregisters it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _set_state(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            listener(self._state)

    # ── transport ───────────────────────────────────────────────────
    async def _request(
        self, method: str, path: str, *, auth: bool = False, json: dict | None = None
    ) -> httpx.Response:
        headers = {}
        if auth and self._state.token:
            headers["Authorization"] = f"Bearer {self._state.token}"
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.TransportError as exc:
            raise BackendUnavailable("Could not reach the server, please retry") from exc
        if response.status_code >= 500:
            raise BackendUnavailable("Server error, please retry")
        return response

    @staticmethod
    def _body(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def _call(
        self, method: str, path: str, failure: str, json: dict | None = None
    ) -> dict[str, Any]:
        response = await self._request(method, path, auth=True, json=json)
        body = self._body(response)
        if not response.is_success:
            raise AuthenticationFailed(body.get("message") or failure, response.status_code)
        return body

    # ── lifecycle ───────────────────────────────────────────────────
    async def initialize(self) -> SessionState:
        """Restore a persisted session and re-validate it against the profile endpoint."""
        stored = self._storage.load()
        if stored is None:
            self._set_state(token=None, user=None, is_loading=False)
            return self._state

        self._set_state(token=stored.token)
        try:
            response = await self._request("GET", f"{_AUTH}/profile", auth=True)
        except BackendUnavailable as exc:
            logger.warning("Auth check failed, keeping stored session: %s", exc)
            self._set_state(user=stored.user or None, is_loading=False)
            return self._state

        body = self._body(response)
        user = body.get("data")
        if response.is_success and body.get("success") and _is_panel_user(user):
            self._storage.write(StoredSession(token=stored.token, user=user))
            self._set_state(user=user, is_loading=False)
        else:
            self._clear()
        return self._state

    def _establish(self, body: dict[str, Any]) -> None:
        data = body.get("data") or {}
        token, user = data.get("token"), data.get("user")
        if not token or not _is_panel_user(user):
            raise AuthenticationFailed(
                "Access denied. This dashboard is for administrators only.", 403
            )
        self._storage.write(StoredSession(token=token, user=user))
        self._set_state(token=token, user=user, is_loading=False)

    async def login(self, email: str, password: str) -> LoginResult:
        response = await self._request(
            "POST", f"{_AUTH}/admin-login", json={"email": email, "password": password}
        )
        body = self._body(response)
        if not response.is_success:
            raise AuthenticationFailed(body.get("message") or LOGIN_FAILED, response.status_code)
        if body.get("requiresMFA"):
            return LoginResult(requires_mfa=True, mfa_login_token=body.get("mfaLoginToken"))
        self._establish(body)
        return LoginResult()

    async def login_with_mfa(self, code: str, mfa_login_token: str) -> None:
        response = await self._request(
            "POST",
            f"{_AUTH}/admin-login",
            json={"mfaToken": code, "mfaLoginToken": mfa_login_token},
        )
        body = self._body(response)
        if not response.is_success:
            raise AuthenticationFailed(body.get("message") or MFA_FAILED, response.status_code)
        self._establish(body)

    def _clear(self) -> None:
        self._storage.clear()
        self._set_state(token=None, user=None, is_loading=False)

    async def logout(self) -> None:
        """Notify the server if possible, then always drop the local session."""
        try:
            if self._state.token:
                await self._request("POST", f"{_AUTH}/enhanced-logout", auth=True)
        except BackendUnavailable as exc:
            logger.warning("Logout request failed: %s", exc)
        finally:
            self._clear()
            if self._on_navigate is not None:
                self._on_navigate(self._login_path)

    # ── MFA management ──────────────────────────────────────────────
    async def setup_mfa(self) -> dict[str, Any]:
        body = await self._call("POST", f"{_AUTH}/mfa/setup", "MFA setup failed")
        return body.get("data") or {}

    async def confirm_mfa(self, code: str) -> None:
        await self._call("POST", f"{_AUTH}/mfa/confirm", "MFA confirmation failed", {"token": code})

    async def disable_mfa(self, password: str, code: str) -> None:
        await self._call(
            "POST",
            f"{_AUTH}/mfa/disable",
            "MFA disable failed",
            {"password": password, "mfaToken": code},
        )

    async def generate_backup_codes(self, password: str, code: str) -> list[str]:
        body = await self._call(
            "POST",
            f"{_AUTH}/mfa/backup-codes",
            "Backup code generation failed",
            {"password": password, "mfaToken": code},
        )
        return (body.get("data") or {}).get("backupCodes", [])

    async def get_mfa_status(self) -> dict[str, Any]:
        try:
            body = await self._call("GET", f"{_AUTH}/mfa/status", "Failed to get MFA status")
        except SessionError as exc:
            logger.error("MFA status check failed: %s", exc)
            return {"mfaEnabled": False}
        return body.get("data") or {"mfaEnabled": False}
