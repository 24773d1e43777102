"""JWT encode/decode utilities for session management."""

from datetime import datetime, timedelta, timezone

import jwt

from app.config import settings

ALGORITHM = "HS256"
TOKEN_EXPIRY_HOURS = 24
_JWT_AUD = "kairos"
_JWT_ISS = "kairos"


def create_token(user_id: str, email: str | None = None) -> str:
    """Create a session JWT for the given user."""
    payload = {
        "sub": user_id,
        "email": email,
        "aud": _JWT_AUD,
        "iss": _JWT_ISS,
        "exp": datetime.now(timezone.utc) + timedelta(hours=TOKEN_EXPIRY_HOURS),
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a session JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[ALGORITHM],
        audience=_JWT_AUD,
        issuer=_JWT_ISS,
        options={"require": ["exp", "iat", "sub", "aud", "iss"]},
    )
