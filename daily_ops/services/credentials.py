"""
Password Credentials

Passwords are stored as {salt, hash, version}: a random 16 byte salt
(hex encoded, and used as the scrypt salt in that hex form) and a 64 byte
scrypt hash. Plaintext passwords are never stored or logged.
"""

import os
import re
from typing import Optional

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from pydantic import BaseModel, ConfigDict

from daily_ops.models.records import PasswordCredential


HASH_LENGTH = 64
SALT_BYTES = 16
MIN_PASSWORD_LENGTH = 8
CREDENTIAL_VERSION = 1

_SCRYPT_N = 2 ** 14
_SCRYPT_R = 8
_SCRYPT_P = 1


def _scrypt(salt: str, length: int) -> Scrypt:
    return Scrypt(
        salt=salt.encode("utf-8"),
        length=length,
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
    )


def hash_password(password: str) -> PasswordCredential:
    """Hash a password with a fresh random salt."""
    salt = os.urandom(SALT_BYTES).hex()
    digest = _scrypt(salt, HASH_LENGTH).derive(password.encode("utf-8"))
    return PasswordCredential(salt=salt, hash=digest.hex(), version=CREDENTIAL_VERSION)


def verify_password(password: str, credential: Optional[PasswordCredential]) -> bool:
    """
    Check a password against a stored credential in constant time.

    Returns False for a missing or malformed credential.
    """
    if credential is None or not credential.salt or not credential.hash:
        return False
    try:
        expected = bytes.fromhex(credential.hash)
    except ValueError:
        return False
    if not expected:
        return False

    try:
        _scrypt(credential.salt, len(expected)).verify(password.encode("utf-8"), expected)
    except InvalidKey:
        return False
    return True


class PasswordCheck(BaseModel):
    """Result of a password strength check."""
    model_config = ConfigDict(frozen=True)

    valid: bool
    message: Optional[str] = None


def validate_password_strength(password: object) -> PasswordCheck:
    """
    At least 8 characters mixing letters, digits and symbols.
    """
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        return PasswordCheck(
            valid=False,
            message=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.",
        )

    has_letter = re.search(r"[a-zA-Z]", password) is not None
    has_digit = re.search(r"[0-9]", password) is not None
    has_symbol = re.search(r"[^a-zA-Z0-9]", password) is not None
    if not (has_letter and has_digit and has_symbol):
        return PasswordCheck(
            valid=False,
            message="Password must combine letters, digits and symbols.",
        )
    return PasswordCheck(valid=True)
