"""
Access-token verification.

Tokens are issued by the auth service; this backend only verifies them.
A token is read from the ``Authorization: Bearer`` header first, then from
the ``accessToken`` cookie set by the web client.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from fastapi import Cookie, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt

from config import Config
from models import Role, UserRecord

logger = logging.getLogger(__name__)

ROLE_GROUPS = {
    "ALL_USERS": (Role.USER, Role.ADMIN),
    "STAFF": (Role.ADMIN,),
    "ADMINS_ONLY": (Role.ADMIN,),
}

OAUTH2_SCHEME = OAuth2PasswordBearer(
    tokenUrl="/api/auth/login",
    auto_error=False,
)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=f"Unauthorized: {detail}",
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str, secret: Optional[str] = None, algorithm: Optional[str] = None) -> Dict[str, Any]:
    """
    Verify signature and expiry and return the claims.

    Raises:
        HTTPException(401): invalid, expired or unusable token
    """
    secret = secret or Config.ACCESS_TOKEN_SECRET
    if not secret:
        logger.error("ACCESS_TOKEN_SECRET is not set, cannot verify tokens")
        raise _unauthorized("Authentication is not configured")
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[algorithm or Config.ACCESS_TOKEN_ALGORITHM],
            options={"verify_aud": False},
        )
    except ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except JWTError:
        raise _unauthorized("Invalid token")

    if claims.get("type", "access") != "access":
        raise _unauthorized("Invalid token")
    return claims


def user_from_claims(claims: Dict[str, Any]) -> UserRecord:
    user_id = claims.get("sub") or claims.get("userId")
    if not user_id:
        raise _unauthorized("Invalid token")
    try:
        role = Role(str(claims.get("role") or Role.USER.value).upper())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden: Insufficient permissions")
    return UserRecord(
        id=str(user_id),
        name=claims.get("name"),
        email=claims.get("email"),
        role=role,
    )


def _pick_token(bearer: Optional[str], cookie: Optional[str]) -> Optional[str]:
    return bearer or cookie or None


async def get_current_user(
    bearer: Optional[str] = Depends(OAUTH2_SCHEME),
    access_token: Optional[str] = Cookie(None, alias="accessToken"),
) -> UserRecord:
    token = _pick_token(bearer, access_token)
    if not token:
        raise _unauthorized("Authentication required")
    return user_from_claims(decode_access_token(token))


async def get_optional_user(
    bearer: Optional[str] = Depends(OAUTH2_SCHEME),
    access_token: Optional[str] = Cookie(None, alias="accessToken"),
) -> Optional[UserRecord]:
    """Anonymous callers get None; a token that is present must still be valid."""
    token = _pick_token(bearer, access_token)
    if not token:
        return None
    return user_from_claims(decode_access_token(token))


def require_roles(roles: Iterable[Role]):
    """Dependency factory restricting a route to the given roles."""
    allowed = frozenset(roles)

    async def dependency(user: UserRecord = Depends(get_current_user)) -> UserRecord:
        if user.role not in allowed:
            logger.warning(f"User {user.id[:8]}... with role {user.role.value} denied")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Forbidden: Insufficient permissions",
            )
        return user

    return dependency


require_user = require_roles(ROLE_GROUPS["ALL_USERS"])
require_staff = require_roles(ROLE_GROUPS["STAFF"])
