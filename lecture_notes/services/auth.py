"""Password hashing and bearer tokens."""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt

from .storage import UserRecord, utcnow


LOGGER = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"


class AuthenticationError(Exception):
    """Base class for login and token failures."""


class InvalidTokenError(AuthenticationError):
    """Raised when a bearer token is missing, malformed or expired."""


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """Return ``True`` when *password* matches the bcrypt *hashed* value."""

    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Not a bcrypt hash.
        return False


class TokenService:
    """Issue and decode HS256 tokens for authenticated users."""

    def __init__(self, secret_key: Optional[str] = None, *, ttl_hours: int = 24) -> None:
        if not secret_key:
            LOGGER.warning(
                "LECTURE_NOTES_SECRET_KEY is not set; tokens will not survive a restart"
            )
            secret_key = secrets.token_urlsafe(32)
        self._secret_key = secret_key
        self._ttl = timedelta(hours=ttl_hours)

    def issue(self, user: UserRecord) -> str:
        now = utcnow()
        claims = {
            "sub": str(user.id),
            "email": user.email,
            "iat": int(now.timestamp()),
            "exp": int((now + self._ttl).timestamp()),
        }
        return jwt.encode(claims, self._secret_key, algorithm=TOKEN_ALGORITHM)

    def decode(self, token: str) -> Dict[str, Any]:
        if not token:
            raise InvalidTokenError("Missing token")
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[TOKEN_ALGORITHM])
        except JWTError as error:
            raise InvalidTokenError(str(error)) from error
        if "sub" not in claims:
            raise InvalidTokenError("Token has no subject")
        return claims

    def email_from(self, token: str) -> str:
        """Return the account email a valid *token* was issued for."""

        email = self.decode(token).get("email")
        if not isinstance(email, str) or not email:
            raise InvalidTokenError("Token has no email claim")
        return email


__all__ = [
    "AuthenticationError",
    "InvalidTokenError",
    "TOKEN_ALGORITHM",
    "TokenService",
    "hash_password",
    "verify_password",
]
