"""Envelope encryption for stored Strava credentials.

Blob layout (base64 of the concatenation):

    salt[32] | nonce[16] | tag[16] | ciphertext[N]

A 256-bit master key is derived once from the configured secret with
PBKDF2-HMAC-SHA256 (100k iterations, fixed application salt). Every call to
`encrypt` derives a fresh subkey from the master key and a random salt with
a cheap second PBKDF2 pass, then seals the UTF-8 plaintext with AES-GCM.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from app.errors import CorruptedCiphertext
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="credential_vault")


class CredentialVault:
    """Encrypt/decrypt secrets with per-value salt and nonce."""

    KEY_SIZE = 32
    NONCE_SIZE = 16
    TAG_SIZE = 16
    SALT_SIZE = 32
    MASTER_ITERATIONS = 100_000
    SUBKEY_ITERATIONS = 1_000
    MIN_SECRET_LENGTH = 32
    STATIC_SALT_SOURCE = b"strava-weather-static-salt"

    OVERHEAD = SALT_SIZE + NONCE_SIZE + TAG_SIZE

    def __init__(self, secret: str | None) -> None:
        """Derive the master key; raises ValueError on a missing or short secret."""
        if not secret:
            raise ValueError("encryption_key is not configured")
        if len(secret) < self.MIN_SECRET_LENGTH:
            raise ValueError(f"encryption_key must be at least {self.MIN_SECRET_LENGTH} characters")

        static_salt = hashlib.sha256(self.STATIC_SALT_SOURCE).digest()
        self._master_key = self._derive(secret.encode("utf-8"), static_salt, self.MASTER_ITERATIONS)
        logger.debug("Credential vault initialised")

    @classmethod
    def _derive(cls, material: bytes, salt: bytes, iterations: int) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=cls.KEY_SIZE,
            salt=salt,
            iterations=iterations,
        )
        return kdf.derive(material)

    def _subkey(self, salt: bytes) -> bytes:
        return self._derive(self._master_key, salt, self.SUBKEY_ITERATIONS)

    def encrypt(self, plaintext: str) -> str:
        """Seal `plaintext` and return the base64 envelope."""
        salt = os.urandom(self.SALT_SIZE)
        nonce = os.urandom(self.NONCE_SIZE)
        sealed = AESGCM(self._subkey(salt)).encrypt(nonce, plaintext.encode("utf-8"), None)
        # cryptography appends the tag; the stored layout puts it before the ciphertext
        ciphertext, tag = sealed[:-self.TAG_SIZE], sealed[-self.TAG_SIZE:]
        return base64.b64encode(salt + nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, blob: str) -> str:
        """Open an envelope produced by `encrypt`; raises CorruptedCiphertext on any mismatch."""
        try:
            combined = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as exc:
            logger.error("Decryption failed: value is not valid base64")
            raise CorruptedCiphertext("Failed to decrypt data: invalid encoding") from exc

        if len(combined) < self.OVERHEAD:
            logger.error("Decryption failed: envelope too short", extra={"length": len(combined)})
            raise CorruptedCiphertext("Failed to decrypt data: envelope too short")

        salt = combined[:self.SALT_SIZE]
        nonce = combined[self.SALT_SIZE:self.SALT_SIZE + self.NONCE_SIZE]
        tag = combined[self.SALT_SIZE + self.NONCE_SIZE:self.OVERHEAD]
        ciphertext = combined[self.OVERHEAD:]

        try:
            plain = AESGCM(self._subkey(salt)).decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            logger.error("Decryption failed: integrity check mismatch")
            raise CorruptedCiphertext("Failed to decrypt data: integrity check failed") from exc
        return plain.decode("utf-8")

    def is_encrypted(self, value: str | None) -> bool:
        """
        Heuristic check: base64-decodable and longer than the envelope overhead.

        Only used to make safe_encrypt/safe_decrypt idempotent; not a
        security check.
        """
        if not value:
            return False
        try:
            decoded = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return False
        return len(decoded) > self.OVERHEAD

    def safe_encrypt(self, value: str) -> str:
        return value if self.is_encrypted(value) else self.encrypt(value)

    def safe_decrypt(self, value: str) -> str:
        return self.decrypt(value) if self.is_encrypted(value) else value
