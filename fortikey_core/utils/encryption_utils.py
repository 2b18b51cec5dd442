"""
Symmetric encryption for TOTP secrets and backup codes at rest.

AES-256-CBC with PKCS7 padding and hex-encoded output. In fixed IV mode the
output matches ciphertext already stored by earlier deployments; random IV
mode prefixes each value with its own IV and is read back transparently.
"""

import os
from typing import Iterable, List, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..config import SecurityConfig, get_config
from ..constants import IVMode
from ..exceptions import ConfigurationError, ErrorCode, ValidationError

KEY_SIZE_BYTES = 32
IV_SIZE_BYTES = 16
RANDOM_IV_PREFIX = "v2:"


class SecretCodec:
    """
    Encrypts and decrypts strings with a process-wide key.

    Build one at startup and pass it to the services that need it. Missing or
    malformed key material fails construction, never a later call.
    """

    def __init__(self, key: Optional[str], iv: Optional[str], iv_mode: IVMode = IVMode.FIXED):
        if not key:
            raise ConfigurationError("Encryption key is not configured", setting="encryption_key")
        if not iv:
            raise ConfigurationError("Encryption IV is not configured", setting="encryption_iv")

        key_bytes = key.encode("utf-8")
        iv_bytes = iv.encode("utf-8")
        if len(key_bytes) != KEY_SIZE_BYTES:
            raise ConfigurationError(
                f"Encryption key must be {KEY_SIZE_BYTES} bytes, got {len(key_bytes)}",
                setting="encryption_key",
            )
        if len(iv_bytes) != IV_SIZE_BYTES:
            raise ConfigurationError(
                f"Encryption IV must be {IV_SIZE_BYTES} bytes, got {len(iv_bytes)}",
                setting="encryption_iv",
            )

        self._key = key_bytes
        self._iv = iv_bytes
        self.iv_mode = IVMode(iv_mode)

    @classmethod
    def from_config(cls, config: Optional[SecurityConfig] = None) -> "SecretCodec":
        """Build a codec from the security section of the application config."""
        security = config if config is not None else get_config().security
        return cls(security.encryption_key, security.encryption_iv, security.iv_mode)

    def _encrypt_bytes(self, plaintext: str, iv: bytes) -> bytes:
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    def _decrypt_bytes(self, ciphertext: bytes, iv: bytes) -> str:
        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        Args:
            plaintext: Value to encrypt

        Returns:
            Hex ciphertext, prefixed with "v2:" and the IV in random IV mode
        """
        if self.iv_mode == IVMode.RANDOM:
            iv = os.urandom(IV_SIZE_BYTES)
            return RANDOM_IV_PREFIX + (iv + self._encrypt_bytes(plaintext, iv)).hex()
        return self._encrypt_bytes(plaintext, self._iv).hex()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a value produced by encrypt, in either IV mode.

        Raises:
            ValidationError: If the ciphertext is malformed or was not produced with this key
        """
        try:
            if ciphertext.startswith(RANDOM_IV_PREFIX):
                raw = bytes.fromhex(ciphertext[len(RANDOM_IV_PREFIX) :])
                return self._decrypt_bytes(raw[IV_SIZE_BYTES:], raw[:IV_SIZE_BYTES])
            return self._decrypt_bytes(bytes.fromhex(ciphertext), self._iv)
        except (ValueError, TypeError, AttributeError) as e:
            raise ValidationError(
                "Unable to decrypt stored value",
                error_code=ErrorCode.INVALID_FORMAT,
                cause=e,
            )

    def encrypt_many(self, values: Iterable[str]) -> List[str]:
        return [self.encrypt(value) for value in values]

    def decrypt_many(self, values: Iterable[str]) -> List[str]:
        return [self.decrypt(value) for value in values]
