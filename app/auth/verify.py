"""
verify.py
---------
Purpose:
    JWT verification using Supabase JWKS (ES256) for the review/admin API.

Notes:
    - Fetches JWKS from Supabase and caches keys.
    - `auth_dependency` accepts any valid Supabase user token.
    - `admin_dependency` additionally requires the token's email to be in
      ADMIN_EMAILS when that list is configured.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SUPABASE_AUDIENCE = "authenticated"

_jwk_client = PyJWKClient(settings.jwks_url())
_security = HTTPBearer()


def verify_jwt(token: str) -> dict:
    try:
        signing_key = _jwk_client.get_signing_key_from_jwt(token)
        decoded = jwt.decode(
            token,
            signing_key.key,
            algorithms=["ES256"],
            audience=SUPABASE_AUDIENCE,
            options={"verify_exp": True},
        )
        return decoded
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    token = credentials.credentials
    return verify_jwt(token)


def admin_dependency(claims: dict = Depends(auth_dependency)) -> dict:
    allowed = settings.admin_emails()
    if not allowed:
        return claims

    email = str(claims.get("email") or "").lower()
    if email not in allowed:
        logger.warning("Admin access denied", user_id=claims.get("sub"))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not an administrator")
    return claims
