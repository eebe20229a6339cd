"""Tests for the MFA step of admin login and the MFA management endpoints."""

import asyncio
from datetime import timedelta

import pyotp
import pytest
from httpx import AsyncClient
from sqlalchemy import select, update

from admin_panel.core.config import settings
from admin_panel.core.exceptions import AuthError, InvalidMFACode, TokenAlreadyUsed, TokenExpired
from admin_panel.core.roles import UserRole
from admin_panel.core.security import decode_token, digest
from admin_panel.models.mfa import MFALoginToken
from admin_panel.models.user import User
from admin_panel.services import auth_service, mfa_service
from admin_panel.services.mfa_service import utcnow
from conftest import BACKUP_CODES, PASSWORD, auth_header, create_user, current_totp

LOGIN_URL = "/api/auth/admin-login"


async def _password_step(client: AsyncClient, user: User) -> str:
    resp = await client.post(LOGIN_URL, json={"email": user.email, "password": PASSWORD})
    assert resp.status_code == 200
    return resp.json()["mfaLoginToken"]


# ── Login, MFA step ─────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_password_step_returns_challenge_only(async_client: AsyncClient, mfa_user):
    """With MFA enabled the password step yields a pending token, never a session."""
    resp = await async_client.post(LOGIN_URL, json={"email": mfa_user.email, "password": PASSWORD})
    assert resp.status_code == 200
    body = resp.json()
    assert body["requiresMFA"] is True
    assert body["mfaLoginToken"]
    assert "data" not in body
    assert settings.SESSION_COOKIE not in resp.cookies


@pytest.mark.asyncio
async def test_totp_completes_login(async_client: AsyncClient, mfa_user):
    pending = await _password_step(async_client, mfa_user)
    resp = await async_client.post(
        LOGIN_URL, json={"mfaToken": current_totp(), "mfaLoginToken": pending}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["data"]["user"]["role"] == "manager"
    assert decode_token(body["data"]["token"]).user_id == mfa_user.id
    assert resp.cookies.get(settings.GRACE_COOKIE)


@pytest.mark.asyncio
async def test_pending_token_is_single_use(async_client: AsyncClient, mfa_user):
    pending = await _password_step(async_client, mfa_user)
    payload = {"mfaToken": current_totp(), "mfaLoginToken": pending}
    first = await async_client.post(LOGIN_URL, json=payload)
    replay = await async_client.post(LOGIN_URL, json=payload)
    assert first.status_code == 200
    assert replay.status_code == 401
    assert replay.json() == {"success": False, "message": "MFA verification failed"}


@pytest.mark.asyncio
async def test_replay_reports_token_already_used(session_factory, mfa_user):
    async with session_factory() as db:
        outcome = await auth_service.authenticate(db, mfa_user.email, PASSWORD)
    assert outcome.requires_mfa
    assert outcome.token is None

    async with session_factory() as db:
        done = await auth_service.verify_mfa(db, current_totp(), outcome.mfa_login_token)
    assert done.token

    async with session_factory() as db:
        with pytest.raises(TokenAlreadyUsed):
            await auth_service.verify_mfa(db, BACKUP_CODES[0], outcome.mfa_login_token)
        # The losing attempt must not have spent the backup code
        assert await mfa_service.remaining_backup_codes(db, mfa_user.id) == len(BACKUP_CODES)


@pytest.mark.asyncio
async def test_backup_code_works_once(async_client: AsyncClient, mfa_user):
    pending = await _password_step(async_client, mfa_user)
    ok = await async_client.post(
        LOGIN_URL, json={"mfaToken": "a1b2-c3d4", "mfaLoginToken": pending}
    )
    assert ok.status_code == 200

    pending = await _password_step(async_client, mfa_user)
    reused = await async_client.post(
        LOGIN_URL, json={"mfaToken": BACKUP_CODES[0], "mfaLoginToken": pending}
    )
    assert reused.status_code == 401

    # A failed code does not burn the pending token
    other = await async_client.post(
        LOGIN_URL, json={"mfaToken": BACKUP_CODES[1], "mfaLoginToken": pending}
    )
    assert other.status_code == 200


@pytest.mark.asyncio
async def test_wrong_code_counts_attempts(session_factory, mfa_user):
    async with session_factory() as db:
        outcome = await auth_service.authenticate(db, mfa_user.email, PASSWORD)

    for _ in range(settings.MFA_MAX_ATTEMPTS):
        async with session_factory() as db:
            with pytest.raises(InvalidMFACode):
                await auth_service.verify_mfa(db, "000000", outcome.mfa_login_token)

    async with session_factory() as db:
        with pytest.raises(TokenExpired):
            await auth_service.verify_mfa(db, current_totp(), outcome.mfa_login_token)


@pytest.mark.asyncio
async def test_expired_pending_token_rejected(async_client: AsyncClient, session_factory, mfa_user):
    pending = await _password_step(async_client, mfa_user)
    async with session_factory() as db:
        await db.execute(
            update(MFALoginToken)
            .where(MFALoginToken.token_hash == digest(pending))
            .values(expires_at=utcnow() - timedelta(seconds=1))
        )
        await db.commit()

    resp = await async_client.post(
        LOGIN_URL, json={"mfaToken": current_totp(), "mfaLoginToken": pending}
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_unknown_pending_token_rejected(async_client: AsyncClient, mfa_user):
    resp = await async_client.post(
        LOGIN_URL, json={"mfaToken": current_totp(), "mfaLoginToken": "f" * 64}
    )
    assert resp.status_code == 401
    assert resp.json()["message"] == "MFA verification failed"


@pytest.mark.asyncio
async def test_pending_token_is_stored_hashed(async_client: AsyncClient, session_factory, mfa_user):
    pending = await _password_step(async_client, mfa_user)
    async with session_factory() as db:
        stored = (await db.execute(select(MFALoginToken.token_hash))).scalars().all()
    assert stored == [digest(pending)]


@pytest.mark.asyncio
async def test_customer_with_mfa_never_reaches_mfa_step(async_client: AsyncClient, make_user):
    customer = await make_user("shopper@freshcounty.test", UserRole.CUSTOMER, mfa=True)
    resp = await async_client.post(LOGIN_URL, json={"email": customer.email, "password": PASSWORD})
    assert resp.status_code == 403
    assert "mfaLoginToken" not in resp.json()


# ── MFA management ──────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_mfa_enrolment_lifecycle(async_client: AsyncClient, admin_user):
    headers = auth_header(admin_user)

    status = await async_client.get("/api/auth/mfa/status", headers=headers)
    assert status.json()["data"] == {"mfaEnabled": False, "backupCodesRemaining": 0}

    setup = await async_client.post("/api/auth/mfa/setup", headers=headers)
    assert setup.status_code == 200
    data = setup.json()["data"]
    assert data["otpauthUrl"].startswith("otpauth://totp/")
    assert len(data["backupCodes"]) == settings.BACKUP_CODE_COUNT
    assert len(set(data["backupCodes"])) == settings.BACKUP_CODE_COUNT
    secret = data["secret"]

    # Setting up is not enabling
    pending_status = await async_client.post("/api/auth/mfa/status", headers=headers)
    assert pending_status.json()["data"]["mfaEnabled"] is False

    wrong = await async_client.post(
        "/api/auth/mfa/confirm", json={"token": "123456"}, headers=headers
    )
    assert wrong.status_code == 401

    confirm = await async_client.post(
        "/api/auth/mfa/confirm", json={"token": pyotp.TOTP(secret).now()}, headers=headers
    )
    assert confirm.status_code == 200

    status = await async_client.get("/api/auth/mfa/status", headers=headers)
    assert status.json()["data"] == {
        "mfaEnabled": True,
        "backupCodesRemaining": settings.BACKUP_CODE_COUNT,
    }

    again = await async_client.post("/api/auth/mfa/setup", headers=headers)
    assert again.status_code == 400

    login = await async_client.post(
        LOGIN_URL, json={"email": admin_user.email, "password": PASSWORD}
    )
    assert login.json()["requiresMFA"] is True

    final = await async_client.post(
        LOGIN_URL, json={"mfaToken": data["backupCodes"][0], "mfaLoginToken": login.json()["mfaLoginToken"]}
    )
    assert final.status_code == 200


@pytest.mark.asyncio
async def test_confirm_without_setup(async_client: AsyncClient, admin_user):
    resp = await async_client.post(
        "/api/auth/mfa/confirm", json={"token": "123456"}, headers=auth_header(admin_user)
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_expired_setup_cannot_be_confirmed(
    async_client: AsyncClient, session_factory, admin_user
):
    headers = auth_header(admin_user)
    setup = await async_client.post("/api/auth/mfa/setup", headers=headers)
    secret = setup.json()["data"]["secret"]

    async with session_factory() as db:
        await db.execute(
            update(User)
            .where(User.id == admin_user.id)
            .values(mfa_pending_expires_at=utcnow() - timedelta(minutes=1))
        )
        await db.commit()

    resp = await async_client.post(
        "/api/auth/mfa/confirm", json={"token": pyotp.TOTP(secret).now()}, headers=headers
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_regenerate_backup_codes(async_client: AsyncClient, mfa_user):
    headers = auth_header(mfa_user)
    bad = await async_client.post(
        "/api/auth/mfa/backup-codes",
        json={"password": "wrong", "mfaToken": current_totp()},
        headers=headers,
    )
    assert bad.status_code == 401

    resp = await async_client.post(
        "/api/auth/mfa/backup-codes",
        json={"password": PASSWORD, "mfaToken": current_totp()},
        headers=headers,
    )
    assert resp.status_code == 200
    codes = resp.json()["data"]["backupCodes"]
    assert len(codes) == settings.BACKUP_CODE_COUNT

    pending = await _password_step(async_client, mfa_user)
    old = await async_client.post(
        LOGIN_URL, json={"mfaToken": BACKUP_CODES[0], "mfaLoginToken": pending}
    )
    assert old.status_code == 401
    new = await async_client.post(
        LOGIN_URL, json={"mfaToken": codes[0], "mfaLoginToken": pending}
    )
    assert new.status_code == 200


@pytest.mark.asyncio
async def test_disable_mfa(async_client: AsyncClient, mfa_user):
    headers = auth_header(mfa_user)
    wrong_code = await async_client.post(
        "/api/auth/mfa/disable",
        json={"password": PASSWORD, "mfaToken": "000000"},
        headers=headers,
    )
    assert wrong_code.status_code == 401

    resp = await async_client.post(
        "/api/auth/mfa/disable",
        json={"password": PASSWORD, "mfaToken": current_totp()},
        headers=headers,
    )
    assert resp.status_code == 200

    status = await async_client.get("/api/auth/mfa/status", headers=headers)
    assert status.json()["data"]["mfaEnabled"] is False

    login = await async_client.post(LOGIN_URL, json={"email": mfa_user.email, "password": PASSWORD})
    assert login.status_code == 200
    assert login.json()["data"]["token"]


@pytest.mark.asyncio
async def test_disable_when_not_enabled(async_client: AsyncClient, admin_user):
    resp = await async_client.post(
        "/api/auth/mfa/disable",
        json={"password": PASSWORD, "mfaToken": "123456"},
        headers=auth_header(admin_user),
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "MFA is not enabled"


@pytest.mark.asyncio
async def test_mfa_endpoints_require_auth(async_client: AsyncClient, session_factory):
    resp = await async_client.post("/api/auth/mfa/setup")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_purge_drops_only_unredeemable_tokens(session_factory, mfa_user):
    async with session_factory() as db:
        live = await mfa_service.create_login_token(db, mfa_user)
        stale = await mfa_service.create_login_token(db, mfa_user)
        await db.execute(
            update(MFALoginToken)
            .where(MFALoginToken.token_hash == digest(stale))
            .values(expires_at=utcnow() - timedelta(minutes=1))
        )
        await db.commit()

    async with session_factory() as db:
        assert await mfa_service.purge_expired_login_tokens(db) == 1
        remaining = (await db.execute(select(MFALoginToken.token_hash))).scalars().all()
    assert remaining == [digest(live)]


# ── Concurrent redemption ───────────────────────────────────────────
async def _pending_token(factory, user: User) -> str:
    async with factory() as db:
        outcome = await auth_service.authenticate(db, user.email, PASSWORD)
    return outcome.mfa_login_token


async def _redeem(factory, code: str, pending: str):
    async with factory() as db:
        try:
            return await auth_service.verify_mfa(db, code, pending)
        except AuthError as exc:
            return exc


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("codes", "spent"), [((BACKUP_CODES[0], BACKUP_CODES[1]), 1), (("totp", "totp"), 0)]
)
async def test_simultaneous_submissions_redeem_once(file_session_factory, codes, spent):
    """Two sessions racing on one pending token: one login, one TokenAlreadyUsed."""
    user = await create_user(file_session_factory, "race@freshcounty.test", UserRole.ADMIN, mfa=True)
    pending = await _pending_token(file_session_factory, user)
    submitted = [current_totp() if code == "totp" else code for code in codes]

    results = await asyncio.gather(*(_redeem(file_session_factory, c, pending) for c in submitted))

    assert sum(isinstance(r, auth_service.LoginOutcome) for r in results) == 1
    assert sum(isinstance(r, TokenAlreadyUsed) for r in results) == 1
    async with file_session_factory() as db:
        remaining = await mfa_service.remaining_backup_codes(db, user.id)
    assert remaining == len(BACKUP_CODES) - spent


@pytest.mark.asyncio
async def test_one_backup_code_on_two_pending_logins(file_session_factory):
    """The same backup code submitted to two live logins opens only one of them."""
    user = await create_user(file_session_factory, "race@freshcounty.test", UserRole.ADMIN, mfa=True)
    first = await _pending_token(file_session_factory, user)
    second = await _pending_token(file_session_factory, user)

    results = await asyncio.gather(
        _redeem(file_session_factory, BACKUP_CODES[0], first),
        _redeem(file_session_factory, BACKUP_CODES[0], second),
    )

    assert sum(isinstance(r, auth_service.LoginOutcome) for r in results) == 1
    assert sum(isinstance(r, InvalidMFACode) for r in results) == 1
    async with file_session_factory() as db:
        assert await mfa_service.remaining_backup_codes(db, user.id) == len(BACKUP_CODES) - 1


@pytest.mark.asyncio
async def test_redemption_lost_after_checks_rolls_back_backup_code(
    session_factory, mfa_user, monkeypatch
):
    """Token redeemed by someone else mid-verification: the spent backup code comes back."""
    async with session_factory() as db:
        pending = (await auth_service.authenticate(db, mfa_user.email, PASSWORD)).mfa_login_token

    verify_code = mfa_service.verify_code

    async def _redeemed_meanwhile(db, user, code):
        accepted = await verify_code(db, user, code)
        await db.execute(
            update(MFALoginToken)
            .where(MFALoginToken.token_hash == digest(pending))
            .values(redeemed_at=utcnow())
        )
        return accepted

    monkeypatch.setattr(mfa_service, "verify_code", _redeemed_meanwhile)

    async with session_factory() as db:
        with pytest.raises(TokenAlreadyUsed):
            await auth_service.verify_mfa(db, BACKUP_CODES[0], pending)
        assert await mfa_service.remaining_backup_codes(db, mfa_user.id) == len(BACKUP_CODES)
