"""
Encryption at Rest

When a secret is configured the data file holds an envelope:

    {"version": 1, "iv": "<b64>", "tag": "<b64>", "data": "<b64>"}

``data`` is the AES-256-GCM ciphertext of the store JSON, ``iv`` a fresh
random 96-bit nonce for every write and ``tag`` the 128-bit GCM
authentication tag. The key is derived from the secret with scrypt and a
fixed, versioned salt, so the same secret yields the same key across
restarts.

Without a secret the file is the store JSON itself.

Whether a file is an envelope is decided by its content only: there is
no flag in the file, the caller's configuration decides how to write.
"""

import base64
import binascii
import json
import os
from typing import Any, Optional

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from daily_ops.services.storage.interface import DecryptionError


logger = structlog.get_logger(__name__)

ENVELOPE_VERSION = 1
KEY_SALT = b"daily-ops-v1"
KEY_LENGTH = 32  # 256 bits
IV_LENGTH = 12   # 96 bits
TAG_LENGTH = 16  # 128 bits

# scrypt cost parameters (N=2^14, r=8, p=1)
SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1

ENVELOPE_FIELDS = ("iv", "tag", "data")


def derive_key(secret: str) -> bytes:
    """Derive the 256-bit file key from the configured secret."""
    kdf = Scrypt(
        salt=KEY_SALT,
        length=KEY_LENGTH,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
    )
    return kdf.derive(secret.encode("utf-8"))


def _b64decode(value: Any, field: str) -> bytes:
    if not isinstance(value, str):
        raise DecryptionError(f"Invalid encrypted data payload: {field} is not a string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise DecryptionError(f"Invalid encrypted data payload: {field} is not base64")


def _envelope_fields_present(payload: Any) -> int:
    if not isinstance(payload, dict):
        return 0
    return sum(1 for name in ENVELOPE_FIELDS if name in payload)


class EnvelopeCipher:
    """
    Encodes the store JSON for disk and decodes it back.

    The key is derived once, at construction, because scrypt is slow
    on purpose.
    """

    def __init__(self, secret: Optional[str] = None):
        self._key: Optional[bytes] = derive_key(secret) if secret else None

    @property
    def enabled(self) -> bool:
        return self._key is not None

    def encode(self, plaintext: str) -> str:
        """
        Turn store JSON into file contents.

        Returns the plaintext unchanged when no secret is configured.
        """
        if self._key is None:
            return plaintext

        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(self._key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        envelope = {
            "version": ENVELOPE_VERSION,
            "iv": base64.b64encode(iv).decode("ascii"),
            "tag": base64.b64encode(tag).decode("ascii"),
            "data": base64.b64encode(ciphertext).decode("ascii"),
        }
        return json.dumps(envelope)

    def decode(self, text: str) -> str:
        """
        Turn file contents back into store JSON.

        With a secret configured, a JSON file that is not an envelope is
        returned as-is (the file predates the secret). The store will be
        encrypted on the next write. This is best effort, not a migration.

        Raises:
            DecryptionError: Envelope damaged, wrong secret, an envelope
                found with no secret configured, or (with a secret) a file
                that is not JSON at all
        """
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            if self._key is None:
                # Not JSON and no secret: let the store parser report it.
                return text
            raise DecryptionError(
                "Unable to decrypt data file: contents are neither an "
                "envelope nor plain JSON. Verify APP_SECRET is correct."
            )

        present = _envelope_fields_present(payload)
        if present == 0:
            if self._key is not None:
                logger.warning("data_file_not_encrypted", action="will_encrypt_on_next_write")
            return text

        if self._key is None:
            raise DecryptionError(
                "Data file is encrypted but no APP_SECRET is configured."
            )
        if present != len(ENVELOPE_FIELDS):
            raise DecryptionError("Invalid encrypted data payload.")
        if payload.get("version") != ENVELOPE_VERSION:
            raise DecryptionError(
                f"Unsupported encrypted data version: {payload.get('version')!r}."
            )

        iv =_b64decode(payload["iv"], "iv")
        tag = _b64decode(payload["tag"], "tag")
        ciphertext = _b64decode(payload["data"], "data")
        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise DecryptionError("Invalid encrypted data payload.")

        try:
            plaintext = AESGCM(self._key).decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            raise DecryptionError(
                "Unable to decrypt data file. Verify APP_SECRET is correct."
            )

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError("Decrypted data file is not valid UTF-8.")
