"""Security utilities: verification of tokens issued by the auth service."""

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt
from pydantic import BaseModel

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class TokenPayload(BaseModel):
    """Claims of an auth-service access token."""

    sub: str  # User ID
    email: str | None = None
    exp: datetime
    iat: datetime
    aud: str | None = None
    user_metadata: dict = {}


def create_access_token(
    user_id: UUID,
    email: str | None = None,
    full_name: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create an access token shaped like the auth service's.

    Used by the dev login and tests; production tokens come from the auth
    service itself.
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=1))

    payload = {
        "sub": str(user_id),
        "email": email,
        "aud": settings.jwt_audience,
        "exp": expire,
        "iat": now,
        "user_metadata": {"full_name": full_name} if full_name else {},
    }

    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def decode_token(token: str) -> TokenPayload | None:
    """Decode and validate an access token (HS256, audience checked)."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
        )
        return TokenPayload(**payload)
    except jwt.ExpiredSignatureError:
        logger.info("Access token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid access token: {e}")
        return None
