"""AES-256-GCM encryption for secrets at rest.

Ciphertexts are stored as ``iv:authTag:ciphertext`` with every part hex
encoded. The IV is 12 random bytes per call, so encrypting the same value
twice yields different ciphertexts.
"""

from __future__ import annotations

import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from outpost.core.exceptions import DecryptionError

logger = logging.getLogger(__name__)

IV_LENGTH = 12
TAG_LENGTH = 16
KEY_HEX_LENGTH = 64


class AESGCMCipher:
    """Encrypt and decrypt strings with a 256-bit key.

    Parameters
    ----------
    key_hex : str
        64 hexadecimal characters (32 bytes)

    Raises
    ------
    ValueError
        If the key is missing or not 32 bytes of hex
    """

    def __init__(self, key_hex: str) -> None:
        if not key_hex:
            raise ValueError(
                "Encryption key is not configured. Set OUTPOST_ENCRYPTION_KEY "
                "to 64 hex characters."
            )

        if len(key_hex) != KEY_HEX_LENGTH:
            raise ValueError(
                f"Encryption key must be {KEY_HEX_LENGTH} hex characters, "
                f"got {len(key_hex)}"
            )

        try:
            key = bytes.fromhex(key_hex)
        except ValueError as e:
            raise ValueError("Encryption key must be hexadecimal") from e

        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt an ``iv:authTag:ciphertext`` string.

        Raises
        ------
        DecryptionError
            If the value is malformed, was tampered with, or was encrypted
            under a different key
        """
        parts = ciphertext.split(":")
        if len(parts) != 3:
            raise DecryptionError("Malformed ciphertext: expected iv:authTag:ciphertext")

        try:
            iv, tag, body = (bytes.fromhex(part) for part in parts)
        except ValueError as e:
            raise DecryptionError("Malformed ciphertext: parts must be hex") from e

        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise DecryptionError("Malformed ciphertext: bad IV or tag length")

        try:
            plaintext = self._aesgcm.decrypt(iv, body + tag, None)
        except InvalidTag:
            logger.warning("Rejected ciphertext: authentication tag mismatch")
            raise DecryptionError(
                "Failed to decrypt value: key mismatch or corrupted data"
            ) from None

        return plaintext.decode("utf-8")
