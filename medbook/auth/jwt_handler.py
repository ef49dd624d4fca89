"""Bearer tokens carrying a user's email as ``sub`` and, optionally, their role."""

from datetime import datetime, timedelta, timezone

import jwt

from medbook.core import config

REQUIRED_CLAIMS = ["sub", "exp"]


def create_access_token(subject: str, role: str | None = None, expires_minutes: int | None = None) -> str:
    issued_at = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=expires_minutes or config.JWT_EXPIRES_MINUTES)

    payload = {"sub": subject, "iat": issued_at, "exp": issued_at + lifetime}
    if role:
        payload["role"] = role
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def create_token_for_user(user) -> str:
    return create_access_token(user.email, role=user.role)


def decode_access_token(token: str) -> dict:
    """Raises ``jwt.InvalidTokenError`` for bad signatures, expiry or missing claims."""
    return jwt.decode(
        token,
        config.JWT_SECRET_KEY,
        algorithms=[config.JWT_ALGORITHM],
        options={"require": REQUIRED_CLAIMS},
    )
