"""
JWT token utilities.

Tokens are issued by the marketplace auth service with the shared secret;
this service only needs to decode them. create_access_token exists for
seeding and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from edumarket.app.core.config import settings


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload, should include sub, user_id and role
        expires_delta: Optional custom expiration time

    Example payload:
        {
            "sub": "teacher@edumarket.test",
            "user_id": 42,
            "role": "TEACHER",
            "exp": 1234567890
        }
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Return the payload of a valid token, None if invalid or expired."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
