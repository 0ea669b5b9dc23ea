"""
core/security.py
----------------
Session token utilities.

The identity provider issues the session JWT; this service only verifies it.
Claims read:
  - sub:   provider user id
  - email: primary email (optional)
  - name:  display name (optional)

create_session_token mints a token with the same shape. It exists for local
development and the test-suite; production tokens always come from the
provider.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt

from agency_portal.core.config import settings


def create_session_token(
    user_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Mint a session JWT.

    Args:
        user_id: Provider user id (stored in 'sub' claim).
        email: Optional primary email.
        name: Optional display name.
        expires_delta: Optional custom expiry; defaults to settings value.

    Returns:
        Signed JWT string.
    """
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.SESSION_TOKEN_EXPIRE_MINUTES)
    )
    payload: Dict[str, Any] = {
        "sub": user_id,
        "exp": expire,
        "iat": now,
    }
    if email:
        payload["email"] = email
    if name:
        payload["name"] = name
    return jwt.encode(
        payload, settings.SESSION_JWT_SECRET, algorithm=settings.SESSION_JWT_ALGORITHM
    )


def decode_session_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a session JWT.

    Raises:
        JWTError: If the token is invalid, expired, or tampered with.

    Returns:
        Raw payload dict.
    """
    return jwt.decode(
        token,
        settings.SESSION_JWT_SECRET,
        algorithms=[settings.SESSION_JWT_ALGORITHM],
    )
