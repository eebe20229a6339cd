"""
Browser entry points guarded by the page guard.

The dashboard UI itself is served elsewhere; these handlers only decide
whether a navigation may proceed or must bounce to the login page.
"""

from __future__ import annotations

from html import escape

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from admin_panel.api.deps import optional_identity, require_panel_page
from admin_panel.core.config import settings
from admin_panel.core.security import TokenIdentity

router = APIRouter(tags=["pages"], include_in_schema=False)

_PAGE = """<!doctype html>
<html><head><title>{title} · {project}</title></head>
<body><h1>{title}</h1>{body}</body></html>"""


@router.get(settings.LOGIN_PATH, response_class=HTMLResponse)
async def login_page(
    request: Request,
    identity: TokenIdentity | None = Depends(optional_identity),
):
    """Authenticated users are sent straight to the dashboard."""
    if identity is not None:
        return RedirectResponse(settings.DASHBOARD_PATH, status_code=302)
    error = request.query_params.get("error")
    body = f'<p class="error">{escape(error)}</p>' if error else ""
    return _PAGE.format(title="Sign in", project=settings.PROJECT_NAME, body=body)


@router.get(settings.DASHBOARD_PATH, response_class=HTMLResponse)
async def dashboard_page(identity: TokenIdentity = Depends(require_panel_page)) -> str:
    body = f"<p>Signed in as user {identity.user_id} ({identity.role.value})</p>"
    return _PAGE.format(title="Dashboard", project=settings.PROJECT_NAME, body=body)
