from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import jwt
from marketplace.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """
    Authenticated actor taken from the bearer token.
    The identity provider owns user records; only the subject and the
    admin claim are needed to authorize workflow calls.
    """
    user_id: str
    is_admin: bool = False


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Generate a JWT the way the identity provider does.
    Token structure:
    {
    "sub": "user_id",               # Subject (user identifier)
    "is_admin": true/false          # Role claim
    "exp": 1234567890               # Expiration (UTC timestamp)
    }
    Used by scripts and tests; production tokens come from the provider.
    """
    settings = get_settings()
    to_encode = data.copy()

    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
    to_encode.update({"exp": expire})
    if settings.TOKEN_ISSUER and "iss" not in to_encode:
        to_encode["iss"] = settings.TOKEN_ISSUER

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )

def decode_access_token(token: str) -> Optional[dict]:
    """
    Validate and decode JWT.
    Returns payload if valid, None otherwise.
    Failure modes:
    - Expired token -> jwt.ExpiredSignatureError
    - Invalid signature / wrong issuer -> jwt.InvalidTokenError
    - Malformed token -> jwt.DecodeError (an InvalidTokenError)
    """
    settings = get_settings()
    options = {"require": ["exp", "sub"]}
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            issuer=settings.TOKEN_ISSUER,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired bearer token")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected invalid bearer token: {e}")
        return None
