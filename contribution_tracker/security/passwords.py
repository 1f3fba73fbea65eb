"""Argon2 password hashing through a Passlib ``CryptContext``.

Stored hashes carry their own parameters, so raising the cost settings below
only affects new hashes; :func:`verify_and_update` hands back a replacement
hash for accounts still stored with older parameters.
"""

from __future__ import annotations

from passlib.context import CryptContext

_pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__time_cost=2,
    argon2__memory_cost=19456,
)


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("Password must be non-empty.")
    return _pwd_context.hash(password)


def _known_hash(hashed_password: str) -> bool:
    return bool(hashed_password) and _pwd_context.identify(hashed_password) is not None


def verify_password(password: str, hashed_password: str) -> bool:
    """Check ``password`` against ``hashed_password``; unknown hash formats never match."""

    if not password or not _known_hash(hashed_password):
        return False
    return _pwd_context.verify(password, hashed_password)


def verify_and_update(password: str, hashed_password: str) -> tuple[bool, str | None]:
    """Verify ``password`` and return ``(valid, new_hash)``.

    ``new_hash`` is set only when the password matched and the stored hash
    uses outdated parameters.
    """

    if not password or not _known_hash(hashed_password):
        return False, None
    return _pwd_context.verify_and_update(password, hashed_password)


__all__ = ["hash_password", "verify_and_update", "verify_password"]
