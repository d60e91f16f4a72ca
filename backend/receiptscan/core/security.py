"""Bearer token authentication.

Tokens are HS256 JWTs signed with ``JWT_SECRET``.  They must carry a
``user_id`` claim holding the caller's UUID and an ``exp`` claim; both
are checked on every request.  ``create_access_token`` issues tokens in
the same shape and is used by the login flow of the wider expense
tracker and by the tests.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt

from receiptscan.core.config import settings

auth_scheme = HTTPBearer(auto_error=False)

DEFAULT_TOKEN_TTL = dt.timedelta(hours=24)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(user_id: str, expires_in: dt.timedelta = DEFAULT_TOKEN_TTL) -> str:
    expires = dt.datetime.now(dt.timezone.utc) + expires_in
    claims = {"user_id": str(user_id), "exp": int(expires.timestamp())}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Verify ``token`` and return its claims.

    Raises:
        HTTPException: 401 if the signature, expiry or ``user_id`` claim
        is invalid.
    """
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require_exp": True},
        )
    except ExpiredSignatureError as exc:
        raise _unauthorized("Token has expired") from exc
    except JWTError as exc:
        raise _unauthorized(f"Invalid token: {exc}") from exc

    user_id = claims.get("user_id")
    if not isinstance(user_id, str):
        raise _unauthorized("Invalid token: missing user_id claim")
    try:
        claims["user_id"] = str(uuid.UUID(user_id))
    except ValueError as exc:
        raise _unauthorized("Invalid token: user_id is not a UUID") from exc
    return claims


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> str:
    """Resolve the authenticated user's id from the ``Authorization`` header."""
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise _unauthorized("Missing bearer token")
    return decode_token(credentials.credentials)["user_id"]
