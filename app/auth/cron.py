"""
Bearer-secret gate for scheduled (cron) invocations.
"""

import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_security = HTTPBearer(auto_error=False)


def verify_cron_secret(token: str | None) -> bool:
    """Constant-time comparison against CRON_SECRET; no secret configured means nothing passes."""
    expected = settings.CRON_SECRET
    if not expected or not token:
        return False
    return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))


def cron_dependency(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> None:
    token = credentials.credentials if credentials else None
    if not verify_cron_secret(token):
        logger.warning("Rejected cron invocation", has_token=token is not None)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
