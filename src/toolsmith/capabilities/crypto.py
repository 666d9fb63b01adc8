"""
Authenticated encryption for capability secrets.

Secrets are sealed with AES-256-GCM. The stored form is
``base64(nonce):base64(ciphertext || tag)``; tampering with either half
fails authentication on decrypt.

Key resolution, in order:
    1. An explicit key (TOOLSMITH_SECRET_KEY / config.secret_key)
    2. A key file under the data directory
    3. A freshly generated key, written to the key file with mode 0600

A 64-character hex key is used as raw bytes; anything else is hashed with
SHA-256 down to 32 bytes.
"""

import base64
import binascii
import hashlib
import os
import re
from pathlib import Path

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from toolsmith.errors import SecretDecryptionError, SecretKeyError

logger = structlog.get_logger(__name__)

NONCE_LENGTH = 12
KEY_LENGTH = 32

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


def derive_key(material: str) -> bytes:
    """Turn configured key material into a 32-byte AES key."""
    material = material.strip()
    if _HEX_KEY.match(material):
        return bytes.fromhex(material)
    return hashlib.sha256(material.encode("utf-8")).digest()


def load_or_create_key(key_path: Path, configured: str | None = None) -> bytes:
    """
    Resolve the encryption key.

    Args:
        key_path: File the key is persisted to when generated
        configured: Explicitly configured key material, if any

    Raises:
        SecretKeyError: If the key file cannot be read or written
    """
    if configured:
        return derive_key(configured)

    try:
        if key_path.exists():
            return derive_key(key_path.read_text(encoding="utf-8"))

        key_path.parent.mkdir(parents=True, exist_ok=True)
        material = os.urandom(KEY_LENGTH).hex()
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(material + "\n")
        logger.info("crypto.key_generated", path=str(key_path))
        return bytes.fromhex(material)
    except OSError as e:
        raise SecretKeyError(key_path=str(key_path), message=f"Cannot load secret key: {e}") from e


class SecretCipher:
    """Encrypts and decrypts secret values with a fixed key."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            msg = f"Key must be {KEY_LENGTH} bytes, got {len(key)}"
            raise ValueError(msg)
        self._aead = AESGCM(key)

    @classmethod
    def from_material(cls, material: str) -> "SecretCipher":
        """Build a cipher from key material (hex or passphrase)."""
        return cls(derive_key(material))

    def encrypt(self, plaintext: str) -> str:
        """Seal plaintext. Each call uses a fresh random nonce."""
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return f"{base64.b64encode(nonce).decode()}:{base64.b64encode(sealed).decode()}"

    def decrypt(self, token: str) -> str:
        """
        Open a sealed value.

        Raises:
            SecretDecryptionError: Malformed token or failed authentication
        """
        try:
            nonce_b64, sealed_b64 = token.split(":")
            nonce = base64.b64decode(nonce_b64, validate=True)
            sealed = base64.b64decode(sealed_b64, validate=True)
        except (ValueError, binascii.Error) as e:
            raise SecretDecryptionError(reason=f"malformed payload ({e})") from e
        if len(nonce) != NONCE_LENGTH:
            raise SecretDecryptionError(reason="bad nonce length")
        try:
            return self._aead.decrypt(nonce, sealed, None).decode("utf-8")
        except InvalidTag as e:
            raise SecretDecryptionError(reason="authentication failed") from e
        except UnicodeDecodeError as e:
            raise SecretDecryptionError(reason="plaintext is not UTF-8") from e
