"""Identity provider used for local development, the CLI and tests.

Accounts live in memory. Passwords are stored as salted scrypt hashes and
never touch the hierarchical store; only the issued user ID and the public
claims (email, display name, photo URL) are handed to the repositories.
"""

import asyncio
import hashlib
import hmac
import re
import secrets
from typing import Optional

from pydantic import BaseModel, ConfigDict

from socialtree.errors import AuthError
from socialtree.logging import logger

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6

_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1


class IdentityClaims(BaseModel):
    """Public claims of an authenticated user.

    Attributes:
        email: Verified email address
        displayName: Name chosen at signup (may be missing)
        photoURL: Avatar URL (may be missing)
    """

    model_config = ConfigDict(extra="ignore")

    email: Optional[str] = None
    displayName: Optional[str] = None
    photoURL: Optional[str] = None


class LocalAccount(BaseModel):
    uid: str
    claims: IdentityClaims
    salt: bytes
    password_hash: bytes


def hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.scrypt(
        password.encode("utf-8"), salt=salt, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P
    )


class LocalIdentityProvider:
    """In-memory identity provider with a single signed-in session.

    Example:
        >>> identity = LocalIdentityProvider()
        >>> uid = await identity.signup("ada@example.com", "secret1", "Ada")
        >>> identity.current_user_id() == uid
        True
    """

    def __init__(self) -> None:
        self._accounts: dict[str, LocalAccount] = {}
        self._current: LocalAccount | None = None

    def current_user_id(self) -> str | None:
        return self._current.uid if self._current else None

    def current_user_claims(self) -> IdentityClaims | None:
        return self._current.claims.model_copy() if self._current else None

    async def signup(self, email: str, password: str, display_name: str = "") -> str:
        """Create an account and sign it in.

        Raises:
            AuthError: Invalid email, short password or email already in use
        """
        await asyncio.sleep(0)
        key = email.strip().lower()
        if not EMAIL_PATTERN.match(key):
            raise AuthError("Invalid email address")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(
                f"Password should be at least {MIN_PASSWORD_LENGTH} characters"
            )
        if key in self._accounts:
            raise AuthError("Email already in use")

        salt = secrets.token_bytes(16)
        account = LocalAccount(
            uid=secrets.token_urlsafe(21),
            claims=IdentityClaims(email=key, displayName=display_name.strip() or None),
            salt=salt,
            password_hash=hash_password(password, salt),
        )
        self._accounts[key] = account
        self._current = account
        logger.info(f"✅ Created account {account.uid}")
        return account.uid

    async def login(self, email: str, password: str) -> str:
        """Sign in with email and password.

        Raises:
            AuthError: Unknown email or wrong password
        """
        await asyncio.sleep(0)
        account = self._accounts.get(email.strip().lower())
        if account is None or not hmac.compare_digest(
            account.password_hash, hash_password(password, account.salt)
        ):
            raise AuthError("Invalid email or password")
        self._current = account
        logger.debug(f"Signed in {account.uid}")
        return account.uid

    async def logout(self) -> None:
        await asyncio.sleep(0)
        self._current = None


__all__ = [
    "IdentityClaims",
    "LocalIdentityProvider",
    "hash_password",
    "MIN_PASSWORD_LENGTH",
]
