"""
Per-field encryption for vault records.

Keys are derived from the user's secret with PBKDF2-HMAC-SHA256 and feed
AES-256-GCM. Each blob is base64(nonce || ciphertext || tag) with a fresh
12-byte nonce per call.
"""

import base64
import binascii
import os
import threading
from functools import lru_cache
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import config
from .logging_config import get_logger

logger = get_logger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32


class EncryptionError(Exception):
    """Custom exception for encryption errors."""
    pass


@lru_cache(maxsize=64)
def derive_key(secret: str, salt: bytes, iterations: int) -> bytes:
    """Derive a 256-bit AES key from a user secret."""
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=salt, iterations=iterations)
    return kdf.derive(secret.encode('utf-8'))


class LegacyPlaintextFallback:
    """Policy for blobs that cannot be decrypted.

    Such a blob is returned unchanged, on the assumption that it was written
    before encryption was introduced. Every fallback is counted so that a
    burst of them (real corruption, or a wrong secret) shows up in the logs
    instead of passing silently.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.count = 0

    def apply(self, blob: str, reason: str) -> str:
        with self._lock:
            self.count += 1
            count = self.count
        logger.debug(f'Treating undecryptable field as legacy plaintext ({reason}); fallback count={count}')
        return blob

    def reset(self) -> None:
        with self._lock:
            self.count = 0


class EncryptionCodec:
    """Encrypt and decrypt single text fields keyed by a user secret."""

    def __init__(self,
                 salt: Optional[Union[str, bytes]] = None,
                 iterations: Optional[int] = None,
                 fallback: Optional[LegacyPlaintextFallback] = None):
        """
        Initialize the codec.

        Args:
            salt: KDF salt; per-user salts are supported, defaults to the configured vault salt
            iterations: PBKDF2 iteration count, defaults to the configured value
            fallback: Policy applied when a blob cannot be decrypted
        """
        salt = config.vault.kdf_salt if salt is None else salt
        self.salt = salt.encode('utf-8') if isinstance(salt, str) else salt
        self.iterations = iterations or config.vault.kdf_iterations
        self.fallback = fallback or LegacyPlaintextFallback()

    def _cipher(self, secret: str) -> AESGCM:
        return AESGCM(derive_key(secret, self.salt, self.iterations))

    def encrypt_field(self, plaintext: str, secret: str) -> str:
        """Encrypt a text field.

        Args:
            plaintext: Text to protect
            secret: User secret the key is derived from

        Returns:
            base64-encoded nonce || ciphertext blob

        Raises:
            EncryptionError: If encryption fails
        """
        try:
            nonce = os.urandom(NONCE_SIZE)
            ciphertext = self._cipher(secret).encrypt(nonce, plaintext.encode('utf-8'), None)
            return base64.b64encode(nonce + ciphertext).decode('ascii')
        except Exception as e:
            logger.error(f'Field encryption failed: {e}')
            raise EncryptionError(f'Failed to encrypt field: {e}')

    def decrypt_field(self, blob: str, secret: str) -> str:
        """Decrypt a text field, applying the legacy-plaintext fallback on failure.

        Args:
            blob: Value produced by encrypt_field, or legacy plaintext
            secret: User secret the key is derived from

        Returns:
            The plaintext, or blob unchanged if it cannot be decrypted
        """
        if not blob:
            return blob
        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError):
            return self.fallback.apply(blob, 'not base64')

        if len(raw) < NONCE_SIZE + TAG_SIZE:
            return self.fallback.apply(blob, 'too short')

        try:
            plaintext = self._cipher(secret).decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], None)
            return plaintext.decode('utf-8')
        except InvalidTag:
            return self.fallback.apply(blob, 'authentication failed')
        except UnicodeDecodeError:
            return self.fallback.apply(blob, 'not utf-8')


_default_codec: Optional[EncryptionCodec] = None


def default_codec() -> EncryptionCodec:
    global _default_codec
    if _default_codec is None:
        _default_codec = EncryptionCodec()
    return _default_codec


def encrypt_field(plaintext: str, secret: str) -> str:
    return default_codec().encrypt_field(plaintext, secret)


def decrypt_field(blob: str, secret: str) -> str:
    return default_codec().decrypt_field(blob, secret)
