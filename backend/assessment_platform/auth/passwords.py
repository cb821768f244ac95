"""Password hashing for user accounts (passlib + bcrypt)."""

from passlib.context import CryptContext

_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)


def hash_password(plain: str) -> str:
    return _ctx.hash(plain)


def verify_and_update(plain: str, hashed: str) -> tuple[bool, str | None]:
    """Verify a password; the second element is a replacement hash when the
    stored one uses outdated parameters, else None."""
    return _ctx.verify_and_update(plain, hashed)
