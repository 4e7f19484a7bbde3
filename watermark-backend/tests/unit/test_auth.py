"""Unit tests for auth.py token verification."""

import time

import pytest
from fastapi import HTTPException
from jose import jwt

from auth import decode_access_token, get_current_user, get_optional_user, require_roles, user_from_claims
from models import Role, UserRecord

SECRET = "unit-secret"


def _encode(**claims):
    base = {"sub": "3f1c2d4e-0000-4000-8000-000000000001", "role": "USER", "type": "access"}
    base.update(claims)
    return jwt.encode(base, SECRET, algorithm="HS256")


@pytest.fixture(autouse=True)
def token_secret(monkeypatch):
    monkeypatch.setattr("auth.Config.ACCESS_TOKEN_SECRET", SECRET)
    monkeypatch.setattr("auth.Config.ACCESS_TOKEN_ALGORITHM", "HS256")


def test_valid_token_decodes():
    claims = decode_access_token(_encode(email="a@b.c"))

    assert claims["email"] == "a@b.c"


def test_expired_token():
    with pytest.raises(HTTPException) as exc_info:
        decode_access_token(_encode(exp=int(time.time()) - 60))

    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "Unauthorized: Token expired"


def test_wrong_secret():
    token = jwt.encode({"sub": "x"}, "other-secret", algorithm="HS256")

    with pytest.raises(HTTPException) as exc_info:
        decode_access_token(token)

    assert exc_info.value.detail == "Unauthorized: Invalid token"


def test_refresh_token_is_not_an_access_token():
    with pytest.raises(HTTPException) as exc_info:
        decode_access_token(_encode(type="refresh"))

    assert exc_info.value.status_code == 401


def test_unconfigured_secret(monkeypatch):
    monkeypatch.setattr("auth.Config.ACCESS_TOKEN_SECRET", None)

    with pytest.raises(HTTPException) as exc_info:
        decode_access_token(_encode())

    assert exc_info.value.status_code == 401


def test_user_from_claims():
    user = user_from_claims({"sub": "abc", "name": "Alice", "role": "admin"})

    assert user.id == "abc"
    assert user.role == Role.ADMIN


def test_claims_without_subject():
    with pytest.raises(HTTPException) as exc_info:
        user_from_claims({"role": "USER"})

    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_bearer_wins_over_cookie():
    user = await get_current_user(bearer=_encode(sub="from-header"), access_token=_encode(sub="from-cookie"))

    assert user.id == "from-header"


@pytest.mark.asyncio
async def test_cookie_fallback():
    user = await get_current_user(bearer=None, access_token=_encode(sub="from-cookie"))

    assert user.id == "from-cookie"


@pytest.mark.asyncio
async def test_missing_token_required():
    with pytest.raises(HTTPException) as exc_info:
        await get_current_user(bearer=None, access_token=None)

    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_optional_user_anonymous():
    assert await get_optional_user(bearer=None, access_token=None) is None


@pytest.mark.asyncio
async def test_optional_user_bad_token_still_rejected():
    with pytest.raises(HTTPException):
        await get_optional_user(bearer="garbage", access_token=None)


@pytest.mark.asyncio
async def test_role_guard():
    staff_only = require_roles([Role.ADMIN])

    with pytest.raises(HTTPException) as exc_info:
        await staff_only(user=UserRecord(id="u1", name="U"))
    admin = await staff_only(user=UserRecord(id="a1", name="A", role=Role.ADMIN))

    assert exc_info.value.status_code == 403
    assert admin.id == "a1"
