"""User registration and lookup over the storage chain with an optional mirror."""

from __future__ import annotations

import logging
import re
from typing import Optional

from .auth import AuthenticationError, hash_password, verify_password
from .storage import DuplicateUserError, StorageBackend, UserRecord


LOGGER = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


class UnknownUserError(AuthenticationError):
    """Raised when logging in with an email that is not registered."""


class InvalidPasswordError(AuthenticationError):
    """Raised when the password does not match the stored hash."""


class UserValidationError(ValueError):
    """Raised for registration input that fails validation."""


class UserDirectory:
    """Register and look up users.

    The primary store is the storage chain. A mirror (usually the Google
    Sheets backend) receives a best-effort copy of every new user and is
    consulted when the primary store does not know an address, in which case
    the user is copied back.
    """

    def __init__(self, storage: StorageBackend, *, mirror: Optional[StorageBackend] = None) -> None:
        self._storage = storage
        self._mirror = mirror

    def register(self, name: str, email: str, password: str) -> UserRecord:
        name = (name or "").strip()
        email = (email or "").strip()
        if not name:
            raise UserValidationError("Name is required")
        if not _EMAIL_PATTERN.match(email):
            raise UserValidationError("Please enter a valid email address")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise UserValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        if self.get_by_email(email) is not None:
            raise DuplicateUserError(f"Email '{email}' is already registered")

        user = self._storage.create_user(name, email, hash_password(password))
        LOGGER.info("Registered user id=%s", user.id)
        self._copy_to_mirror(user)
        return user

    def _copy_to_mirror(self, user: UserRecord) -> None:
        if self._mirror is None:
            return
        try:
            self._mirror.create_user(user.name, user.email, user.password)
        except DuplicateUserError:
            LOGGER.debug("User %s already present in mirror", user.email)
        except Exception as error:
            LOGGER.warning("Could not copy user %s to mirror: %s", user.email, error)

    def get_by_email(self, email: str) -> Optional[UserRecord]:
        user = self._storage.get_user_by_email(email)
        if user is not None or self._mirror is None:
            return user

        try:
            mirrored = self._mirror.get_user_by_email(email)
        except Exception as error:
            LOGGER.warning("Mirror lookup for %s failed: %s", email, error)
            return None
        if mirrored is None:
            return None

        LOGGER.info("Restoring user %s from mirror", mirrored.email)
        try:
            return self._storage.create_user(mirrored.name, mirrored.email, mirrored.password)
        except DuplicateUserError:
            return self._storage.get_user_by_email(email)

    def authenticate(self, email: str, password: str) -> UserRecord:
        user = self.get_by_email((email or "").strip())
        if user is None:
            raise UnknownUserError("Account is not registered")
        if not verify_password(password or "", user.password):
            raise InvalidPasswordError("Incorrect password, please try again")
        return user


__all__ = [
    "InvalidPasswordError",
    "MIN_PASSWORD_LENGTH",
    "UnknownUserError",
    "UserDirectory",
    "UserValidationError",
]
