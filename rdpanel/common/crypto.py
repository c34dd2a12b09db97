"""
Encryption at rest for stored credentials.

API keys persisted by the account store and the bot are encrypted with a
Fernet key taken from settings (ENCRYPTION_KEY). Generate one with
``rdpanel genkey``.
"""

from __future__ import annotations

import base64
import binascii
import math
from collections import Counter

from cryptography.fernet import Fernet, InvalidToken

from rdpanel.core.errors import validation_error

MIN_KEY_BYTES = 32
MIN_ENTROPY_BITS = 4.0


def generate_encryption_key() -> str:
    """Create a new url-safe base64 Fernet key."""
    return Fernet.generate_key().decode("ascii")


def _shannon_entropy(data: bytes) -> float:
    """Bits of entropy per byte."""
    if not data:
        return 0.0
    length = len(data)
    return -sum(
        (count / length) * math.log2(count / length) for count in Counter(data).values()
    )


def validate_encryption_key(key: str) -> bool:
    """Check that a key decodes to at least 32 bytes with enough entropy."""
    try:
        raw = base64.urlsafe_b64decode(key.encode("ascii"))
    except (binascii.Error, ValueError, AttributeError):
        return False

    if len(raw) < MIN_KEY_BYTES:
        return False
    return _shannon_entropy(raw) > MIN_ENTROPY_BITS


class SecretBox:
    """Symmetric encryption of short secrets."""

    def __init__(self, key: str):
        if not validate_encryption_key(key):
            raise validation_error("Invalid encryption key", code="INVALID_ENCRYPTION_KEY")
        self._fernet = Fernet(key.encode("ascii"))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        """
        Decrypt a token produced by encrypt().

        Raises:
            ApiError: VALIDATION_ERROR (code DECRYPTION_FAILED) for a tampered
                token or one made with another key
        """
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise validation_error(
                "Stored secret could not be decrypted", code="DECRYPTION_FAILED"
            ) from e
