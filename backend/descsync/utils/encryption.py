"""Encryption utilities for OAuth tokens stored at rest

Blob layout (base64 of the concatenation):
    salt (64 bytes) | iv (16 bytes) | auth tag (16 bytes) | ciphertext

The AES-256-GCM key is derived from ENCRYPTION_KEY with HKDF-SHA256 using the
per-blob salt, so every blob is encrypted under its own key.
"""
import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from descsync.core.config import settings

logger = logging.getLogger(__name__)

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
HEADER_LENGTH = SALT_LENGTH + IV_LENGTH + TAG_LENGTH

_KDF_INFO = b"descsync-token-encryption"


class DecryptionError(ValueError):
    """Blob is malformed, was tampered with, or was sealed under another key"""


def _master_key(secret: Optional[str] = None) -> bytes:
    key = secret if secret is not None else settings.ENCRYPTION_KEY
    if not key:
        raise ValueError(
            "ENCRYPTION_KEY environment variable is required. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
        )
    return key.encode() if isinstance(key, str) else key


def _derive_key(salt: bytes, secret: Optional[str] = None) -> bytes:
    hkdf = HKDF(algorithm=hashes.SHA256(), length=KEY_LENGTH, salt=salt, info=_KDF_INFO)
    return hkdf.derive(_master_key(secret))


def encrypt(plaintext: str, secret: Optional[str] = None) -> str:
    """Encrypt a string into a base64 blob"""
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_derive_key(salt, secret)).encrypt(iv, plaintext.encode("utf-8"), None)
    # AESGCM appends the tag; the stored layout keeps it ahead of the ciphertext
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")


def decrypt(blob: str, secret: Optional[str] = None) -> str:
    """Decrypt a blob produced by encrypt()

    Raises:
        DecryptionError: If the blob is short, not base64, or fails authentication
        ValueError: If no encryption key is configured
    """
    if not blob:
        raise DecryptionError("Decryption failed: empty blob")
    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError(f"Decryption failed: malformed base64: {e}")

    if len(raw) < HEADER_LENGTH:
        raise DecryptionError(
            f"Decryption failed: blob is {len(raw)} bytes, expected at least {HEADER_LENGTH}"
        )

    salt = raw[:SALT_LENGTH]
    iv = raw[SALT_LENGTH:SALT_LENGTH + IV_LENGTH]
    tag = raw[SALT_LENGTH + IV_LENGTH:HEADER_LENGTH]
    ciphertext = raw[HEADER_LENGTH:]

    try:
        plaintext = AESGCM(_derive_key(salt, secret)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag:
        logger.error("Decryption failed: authentication tag mismatch (wrong key or tampered data)")
        raise DecryptionError("Decryption failed: authentication tag mismatch")
    return plaintext.decode("utf-8")
