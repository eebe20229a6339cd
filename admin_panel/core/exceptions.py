"""
Authentication error taxonomy and global exception handlers.

Every auth failure carries a specific ``kind`` for the logs and a generic
``message`` for the client, so responses never reveal which check failed.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from admin_panel.core.config import settings

logger = logging.getLogger(__name__)

LOGIN_FAILED = "Login failed"
MFA_FAILED = "MFA verification failed"
INVALID_TOKEN = "Invalid or expired token"
PANEL_ACCESS_REQUIRED = "Admin panel access required"


# ── Auth errors ─────────────────────────────────────────────────────
class AuthError(Exception):
    kind = "auth_error"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = LOGIN_FAILED

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    kind = "invalid_credentials"


class AccessDenied(AuthError):
    kind = "access_denied"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidMFACode(AuthError):
    kind = "invalid_mfa_code"
    default_message = MFA_FAILED


class TokenExpired(AuthError):
    kind = "token_expired"
    default_message = INVALID_TOKEN


class TokenAlreadyUsed(AuthError):
    kind = "token_already_used"
    default_message = MFA_FAILED


class MalformedToken(AuthError):
    kind = "invalid_token"
    default_message = INVALID_TOKEN


class TooManyAttempts(AuthError):
    kind = "too_many_attempts"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Account temporarily locked due to too many failed attempts"


class MFAStateError(AuthError):
    """The requested MFA change does not fit the account's current MFA state."""

    kind = "mfa_state"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "MFA is not enabled"


class LoginRedirect(Exception):
    """Raised by the page guard; rendered as a redirect to the login page."""

    def __init__(self, next_path: str, reason: str | None = None) -> None:
        self.next_path = next_path
        self.reason = reason
        super().__init__(reason or "login required")


# ── Handlers ────────────────────────────────────────────────────────
async def _auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    logger.info("Auth failure on %s: %s", request.url.path, exc.kind)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message},
        headers=headers,
    )


async def _login_redirect_handler(_request: Request, exc: LoginRedirect) -> RedirectResponse:
    params = {"redirect": exc.next_path}
    if exc.reason:
        params["error"] = exc.reason
    return RedirectResponse(
        url=f"{settings.LOGIN_PATH}?{urlencode(params)}",
        status_code=status.HTTP_302_FOUND,
    )


async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit exceeded on %s: %s", request.url.path, exc.detail)
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"success": False, "message": "Too many login attempts. Please try again later."},
    )


async def _http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "message": "Validation failed", "errors": errors},
    )


async def _integrity_error_handler(_request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error("Database integrity error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=409,
        content={"success": False, "message": "Database constraint violation"},
    )


async def _sqlalchemy_error_handler(_request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal database error"},
    )


async def _generic_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(AuthError, _auth_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(LoginRedirect, _login_redirect_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _integrity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler)
