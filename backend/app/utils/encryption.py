import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from app.core import config

logger = logging.getLogger(__name__)

SALT_LENGTH = 64
IV_LENGTH = 16
KEY_LENGTH = 32
ITERATIONS = 100_000
MIN_PAYLOAD_LENGTH = SALT_LENGTH + IV_LENGTH + 1


class TokenEncryptionError(Exception):
    pass


def _derive_key(secret_key: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=ITERATIONS,
    )
    return kdf.derive(secret_key.encode("utf-8"))


class TokenEncryption:
    """
    Password-based AES-256-CBC for OAuth tokens at rest.

    Layout of the stored value is ``base64(salt | iv | ciphertext)``; a fresh
    salt and IV are drawn for every call, so encrypting the same token twice
    never yields the same string.
    """

    @staticmethod
    def encrypt(plaintext: str, secret_key: str) -> str:
        try:
            salt = os.urandom(SALT_LENGTH)
            iv = os.urandom(IV_LENGTH)
            key = _derive_key(secret_key, salt)

            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

            encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except (TypeError, ValueError, AttributeError) as e:
            logger.error("Token encryption failed: %s", type(e).__name__)
            raise TokenEncryptionError("Failed to encrypt token data")

        return base64.b64encode(salt + iv + ciphertext).decode("ascii")

    @staticmethod
    def decrypt(data: str, secret_key: str) -> str:
        try:
            raw = base64.b64decode(data, validate=True)
            if len(raw) < MIN_PAYLOAD_LENGTH:
                raise ValueError("payload too short")

            salt = raw[:SALT_LENGTH]
            iv = raw[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
            ciphertext = raw[SALT_LENGTH + IV_LENGTH :]
            key = _derive_key(secret_key, salt)

            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (binascii.Error, TypeError, ValueError, AttributeError) as e:
            # never surface which step failed
            logger.warning("Token decryption failed: %s", type(e).__name__)
            raise TokenEncryptionError("Failed to decrypt token data")

    @staticmethod
    def is_valid_encrypted_data(data: Optional[str]) -> bool:
        if not data:
            return False
        try:
            raw = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError):
            return False
        return len(raw) >= MIN_PAYLOAD_LENGTH

    @staticmethod
    def generate_encryption_key() -> str:
        return base64.b64encode(os.urandom(KEY_LENGTH)).decode("ascii")


def get_encryption_key() -> str:
    if config.QUICKBOOKS_ENCRYPTION_KEY:
        return config.QUICKBOOKS_ENCRYPTION_KEY
    raise config.ConfigurationError(
        "QUICKBOOKS_ENCRYPTION_KEY environment variable is required for token encryption"
    )
