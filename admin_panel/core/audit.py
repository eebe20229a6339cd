"""
Audit logging for admin authentication events.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from fastapi import Request

audit_logger = logging.getLogger("admin_panel.audit")


def audit(action: str, request: Request | None = None, user_id: int | None = None, **fields) -> None:
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action,
        "user_id": user_id,
        **fields,
    }
    if request is not None:
        entry.update(
            ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            path=request.url.path,
            method=request.method,
        )
    audit_logger.info("ADMIN_AUDIT: %s", json.dumps(entry, default=str))
