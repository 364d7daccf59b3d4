from __future__ import annotations

import pytest

from lecture_notes.services.auth import (
    InvalidTokenError,
    TokenService,
    hash_password,
    verify_password,
)
from lecture_notes.services.storage import (
    DuplicateUserError,
    MemoryStorage,
    StorageUnavailableError,
)
from lecture_notes.services.users import (
    InvalidPasswordError,
    UnknownUserError,
    UserDirectory,
    UserValidationError,
)


class OfflineMirror(MemoryStorage):
    name = "sheets"

    def create_user(self, name, email, password):
        raise StorageUnavailableError("mirror offline")

    def get_user_by_email(self, email):
        raise StorageUnavailableError("mirror offline")


def test_passwords_are_hashed_with_bcrypt() -> None:
    hashed = hash_password("correct horse")

    assert hashed.startswith("$2")
    assert verify_password("correct horse", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("anything", "plain-text")


def test_register_stores_hash_and_copies_to_mirror() -> None:
    storage, mirror = MemoryStorage(), MemoryStorage()
    directory = UserDirectory(storage, mirror=mirror)

    user = directory.register("Ada", "ada@example.com", "secret1")

    assert user.password != "secret1"
    assert storage.get_user_by_email("ada@example.com").id == user.id
    assert mirror.get_user_by_email("ada@example.com").password == user.password


@pytest.mark.parametrize(
    "name, email, password",
    [
        ("", "ada@example.com", "secret1"),
        ("Ada", "not-an-email", "secret1"),
        ("Ada", "ada@example.com", "12345"),
    ],
)
def test_register_validates_input(name, email, password) -> None:
    directory = UserDirectory(MemoryStorage())

    with pytest.raises(UserValidationError):
        directory.register(name, email, password)


def test_register_rejects_duplicates_found_in_mirror() -> None:
    mirror = MemoryStorage()
    mirror.create_user("Ada", "ada@example.com", hash_password("secret1"))
    directory = UserDirectory(MemoryStorage(), mirror=mirror)

    with pytest.raises(DuplicateUserError):
        directory.register("Ada", "ADA@example.com", "another1")


def test_lookup_restores_users_from_the_mirror() -> None:
    storage, mirror = MemoryStorage(), MemoryStorage()
    mirror.create_user("Grace", "grace@example.com", hash_password("hopper"))
    directory = UserDirectory(storage, mirror=mirror)

    user = directory.get_by_email("grace@example.com")

    assert user is not None
    assert storage.get_user_by_email("grace@example.com") == user


def test_mirror_failures_are_not_raised() -> None:
    storage = MemoryStorage()
    directory = UserDirectory(storage, mirror=OfflineMirror())

    user = directory.register("Ada", "ada@example.com", "secret1")

    assert storage.get_user(user.id) == user
    assert directory.get_by_email("nobody@example.com") is None


def test_authenticate_reports_which_check_failed() -> None:
    directory = UserDirectory(MemoryStorage())
    directory.register("Ada", "ada@example.com", "secret1")

    assert directory.authenticate(" ada@example.com ", "secret1").name == "Ada"
    with pytest.raises(UnknownUserError, match="Account is not registered"):
        directory.authenticate("bob@example.com", "secret1")
    with pytest.raises(InvalidPasswordError, match="Incorrect password"):
        directory.authenticate("ada@example.com", "nope")


def test_tokens_carry_the_account_email() -> None:
    directory = UserDirectory(MemoryStorage())
    user = directory.register("Ada", "ada@example.com", "secret1")
    tokens = TokenService("test-secret", ttl_hours=1)

    token = tokens.issue(user)

    assert tokens.email_from(token) == "ada@example.com"
    assert tokens.decode(token)["sub"] == str(user.id)


def test_tokens_from_another_secret_or_expired_are_rejected() -> None:
    user = MemoryStorage().create_user("Ada", "ada@example.com", "hash")

    foreign = TokenService("other-secret").issue(user)
    expired = TokenService("test-secret", ttl_hours=-1).issue(user)
    tokens = TokenService("test-secret")

    for token in (foreign, expired, "garbage", ""):
        with pytest.raises(InvalidTokenError):
            tokens.email_from(token)


def test_missing_secret_generates_a_process_secret(caplog) -> None:
    user = MemoryStorage().create_user("Ada", "ada@example.com", "hash")

    tokens = TokenService(None)

    assert tokens.email_from(tokens.issue(user)) == "ada@example.com"
    assert "LECTURE_NOTES_SECRET_KEY" in caplog.text
