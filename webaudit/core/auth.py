"""
Caller identity for user-facing endpoints.

Supabase signs access tokens with the project's JWT secret (HS256) and puts
the user id in `sub`. Internal callers and tests that sit behind the gateway
may pass X-User-Id instead. A bearer token, when present and verifiable,
always wins over the header.
"""
import logging
from typing import Optional

import jwt
from fastapi import Header, HTTPException, Request

from webaudit.core.config import settings

logger = logging.getLogger("webaudit.auth")

SUPABASE_ALGORITHMS = ["HS256"]
# Supabase sets role=anon for the public key; those tokens carry no user.
ANONYMOUS_ROLES = frozenset({"anon"})


def _bearer_token(request: Request) -> Optional[str]:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def verify_supabase_jwt(token: str) -> Optional[str]:
    """
    Return the user id from a Supabase access token.

    None when SUPABASE_JWT_SECRET is unset (verification disabled). Raises
    HTTPException 401 for expired, forged or anonymous tokens.
    """
    secret = settings.SUPABASE_JWT_SECRET
    if not secret:
        logger.debug("[auth] SUPABASE_JWT_SECRET not set, bearer token ignored")
        return None

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=SUPABASE_ALGORITHMS,
            options={"require": ["sub", "exp"], "verify_aud": False},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.info("[auth] rejected bearer token", extra={"error_code": type(e).__name__})
        raise HTTPException(status_code=401, detail="Invalid token")

    if claims.get("role") in ANONYMOUS_ROLES:
        raise HTTPException(status_code=401, detail="Anonymous token cannot identify a user")
    return str(claims["sub"])


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Trusted caller / test user ID"),
) -> str:
    token = _bearer_token(request)
    if token:
        user_id = verify_supabase_jwt(token)
        if user_id:
            return user_id

    if x_user_id and x_user_id.strip():
        return x_user_id.strip()

    raise HTTPException(
        status_code=401,
        detail="Missing Authorization (Bearer JWT) or X-User-Id header",
    )
