"""Security primitives - password hashing, token signing, random values"""

import hashlib
import re
import secrets
from typing import Any, Dict, Optional, Protocol

import bcrypt
from jose import JWTError, jwt

from authcore.core.exceptions import TokenInvalidError

# bcrypt only looks at the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SPECIAL_RE = re.compile(r"[!@#$%^&*(),.?\":{}|<>\-_=+\[\];'/\\`~]")


class PasswordHasher(Protocol):
    def hash(self, password: str) -> str: ...

    def verify(self, password: str, digest: str) -> bool: ...


class BcryptPasswordHasher:
    """bcrypt-backed password hasher"""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_digest: Optional[str] = None

    def hash(self, password: str) -> str:
        """
        Hash a password using bcrypt

        Args:
            password: Plain text password

        Returns:
            str: Hashed password
        """
        return bcrypt.hashpw(
            password.encode("utf-8"),
            bcrypt.gensalt(rounds=self.rounds)
        ).decode("utf-8")

    def verify(self, password: str, digest: str) -> bool:
        """
        Verify a password against its hash

        Args:
            password: Plain text password
            digest: Hashed password

        Returns:
            bool: True if password matches
        """
        if not digest:
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            return False

    def burn(self, password: str) -> None:
        """Spend one verification's worth of work so unknown emails cost the same as wrong passwords."""
        if self._dummy_digest is None:
            self._dummy_digest = self.hash(secrets.token_urlsafe(16))
        self.verify(password, self._dummy_digest)


class Signer:
    """Holds the signing secret; everything token-shaped goes through here."""

    def __init__(self, secret_key: str, algorithm: str = "HS256") -> None:
        if not secret_key:
            raise ValueError("Signer requires a non-empty secret")
        self._secret_key = secret_key
        self.algorithm = algorithm

    def sign(self, claims: Dict[str, Any]) -> str:
        return jwt.encode(claims, self._secret_key, algorithm=self.algorithm)

    def unsign(self, token: str) -> Dict[str, Any]:
        """
        Verify the signature and return the claims.

        Expiry is not checked here; callers compare ``exp`` against their clock.

        Raises:
            TokenInvalidError: On malformed token or bad signature
        """
        try:
            return jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError:
            raise TokenInvalidError()


def generate_opaque_token() -> str:
    """256 bits of randomness, hex encoded."""
    return secrets.token_hex(32)


def generate_backup_code() -> str:
    return secrets.token_hex(4).upper()


def credential_stamp(digest: str) -> str:
    """Short fingerprint of a password digest; changes whenever the password does."""
    return hashlib.sha256(digest.encode("utf-8")).hexdigest()[:16]


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or "")) and len(email) <= 254


def is_strong_password(password: str, min_length: int = 8) -> bool:
    """At least min_length characters with upper, lower, digit and symbol."""
    if not password or len(password) < min_length:
        return False
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        return False
    return (
        re.search(r"[A-Z]", password) is not None
        and re.search(r"[a-z]", password) is not None
        and re.search(r"\d", password) is not None
        and _SPECIAL_RE.search(password) is not None
    )


def mask_email(email: str) -> str:
    local, _, domain = (email or "").partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"
