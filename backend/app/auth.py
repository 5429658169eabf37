"""
Supabase JWT authentication.

Resolves the owner id for flow compilation requests. Tokens are verified
locally (HS256, python-jose) when SUPABASE_JWT_SECRET is set; otherwise the
Supabase Auth API is asked to validate them.
"""

import os
from typing import Optional

from fastapi import HTTPException, Header
from jose import ExpiredSignatureError, JWTError, jwt

from app.db import supabase

SUPABASE_JWT_SECRET: Optional[str] = os.environ.get("SUPABASE_JWT_SECRET") or None


async def get_current_user(authorization: Optional[str] = Header(None)) -> str:
    """
    Return the authenticated user's id (JWT ``sub``) from a Bearer header.

    Raises:
        HTTPException: 401 if the header is missing or malformed, or the token
            is invalid or expired.
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Not authenticated")

    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token or " " in token:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    if SUPABASE_JWT_SECRET:
        return _verify_jwt_locally(token)

    return await _verify_jwt_remotely(token)


def _verify_jwt_locally(token: str) -> str:
    try:
        payload = jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},  # Supabase tokens carry the "authenticated" audience
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id: Optional[str] = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    return user_id


async def _verify_jwt_remotely(token: str) -> str:
    try:
        response = supabase.auth.get_user(token)
    except Exception as e:
        if "expired" in str(e).lower():
            raise HTTPException(status_code=401, detail="Token expired")
        raise HTTPException(status_code=401, detail="Invalid token")

    if not response or not response.user:
        raise HTTPException(status_code=401, detail="Invalid token")

    return response.user.id
