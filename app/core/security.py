"""
Bearer token handling.

Tokens are issued by the external auth provider. The engine only checks the
signature and expiry and reads three claims:

    sub   user id (UUID)
    role  admin | runner | service_role
    name  optional display name, copied onto runs as runner_name
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Any
import logging
import uuid

from jose import ExpiredSignatureError, JWTError, jwt

from app.config import settings


logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"


def create_access_token(
    subject: str | uuid.UUID,
    role: str,
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[dict[str, Any]] = None
) -> str:
    """
    Mint a token with the provider's claim layout (used by scripts and tests).
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    claims = {
        "sub": str(subject),
        "role": role,
        "type": ACCESS_TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    if additional_claims:
        claims.update(additional_claims)

    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_access_token(token: str) -> Optional[dict[str, Any]]:
    """
    Claims of a valid access token, or None when the token is expired,
    tampered with, or missing ``sub``/``role``.
    """
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        logger.info("Rejected expired access token")
        return None
    except JWTError:
        return None

    if claims.get("type", ACCESS_TOKEN_TYPE) != ACCESS_TOKEN_TYPE:
        return None
    if not claims.get("sub") or not claims.get("role"):
        return None
    return claims
