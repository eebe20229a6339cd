"""
API router aggregator: wires all endpoint modules together.
"""

from fastapi import APIRouter

from admin_panel.api.endpoints import auth, mfa

api_router = APIRouter()

# Login, profile, refresh, logout, user management
api_router.include_router(auth.router)

# MFA setup / confirm / disable / backup codes / status
api_router.include_router(mfa.router)
