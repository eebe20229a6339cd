from admin_panel.client.session import (
    AdminSession,
    AuthenticationFailed,
    BackendUnavailable,
    LoginResult,
    SessionError,
    SessionState,
)
from admin_panel.client.storage import (
    FileSessionStorage,
    MemorySessionStorage,
    SessionStorage,
    StoredSession,
)

__all__ = [
    "AdminSession",
    "AuthenticationFailed",
    "BackendUnavailable",
    "FileSessionStorage",
    "LoginResult",
    "MemorySessionStorage",
    "SessionError",
    "SessionState",
    "SessionStorage",
    "StoredSession",
]
