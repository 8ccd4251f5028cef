"""Cryptographic functions for StateSync.

This module provides:
- Sync key generation and validation (64 lowercase hex chars, 256 bits)
- Authenticated encryption using AES-256-GCM
- Decryption of legacy AES-256-CBC snapshots
"""

import os
import re
import secrets

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_SIZE = 32  # 256 bits
KEY_HEX_LENGTH = KEY_SIZE * 2

# AES-GCM constants
NONCE_SIZE = 12  # 96 bits (recommended for AES-GCM)

# Legacy snapshots used AES-CBC with the first 16 key bytes as IV
LEGACY_IV_SIZE = 16

_KEY_PATTERN = re.compile(r"[0-9a-f]{64}")


def generate_random_key() -> str:
    """Generate a new sync key from a cryptographically secure source.

    Returns:
        64 lowercase hexadecimal characters (32 random bytes).
    """
    return secrets.token_hex(KEY_SIZE)


def is_valid_key(key: object) -> bool:
    """Check that a value is usable as a sync key.

    Args:
        key: Candidate key, typically read from a cache or a remote record.

    Returns:
        True if key is a string of exactly 64 lowercase hex characters.
    """
    return isinstance(key, str) and _KEY_PATTERN.fullmatch(key) is not None


def key_to_bytes(key: str) -> bytes:
    """Convert a hex sync key to raw key bytes.

    Raises:
        ValueError: If the key is not a valid sync key.
    """
    if not is_valid_key(key):
        raise ValueError("Sync key must be exactly 64 lowercase hex characters")
    return bytes.fromhex(key)


def encrypt_bytes(data: bytes, key: bytes) -> bytes:
    """Encrypt data using AES-256-GCM with a random nonce.

    Args:
        data: Plaintext data to encrypt.
        key: 32-byte encryption key.

    Returns:
        Encrypted data in format: nonce (12 bytes) || ciphertext || auth_tag (16 bytes)
    """
    nonce = os.urandom(NONCE_SIZE)
    aesgcm = AESGCM(key)
    ciphertext = aesgcm.encrypt(nonce, data, None)
    return nonce + ciphertext


def decrypt_bytes(encrypted: bytes, key: bytes) -> bytes:
    """Decrypt data encrypted with encrypt_bytes.

    Args:
        encrypted: Data in format: nonce (12 bytes) || ciphertext || auth_tag (16 bytes)
        key: 32-byte encryption key.

    Returns:
        Decrypted plaintext data.

    Raises:
        cryptography.exceptions.InvalidTag: If authentication fails (wrong key or tampered data).
    """
    nonce = encrypted[:NONCE_SIZE]
    ciphertext = encrypted[NONCE_SIZE:]
    aesgcm = AESGCM(key)
    return aesgcm.decrypt(nonce, ciphertext, None)


def decrypt_legacy(encrypted: bytes, key: bytes) -> bytes:
    """Decrypt a legacy AES-256-CBC payload.

    Legacy snapshots were encrypted without authentication, using the first
    16 bytes of the key as IV and PKCS#7 padding.

    Args:
        encrypted: Raw CBC ciphertext.
        key: 32-byte encryption key.

    Returns:
        Decrypted, unpadded plaintext.

    Raises:
        ValueError: If the ciphertext length or padding is invalid.
    """
    if not encrypted or len(encrypted) % LEGACY_IV_SIZE:
        raise ValueError("Legacy ciphertext is not a multiple of the block size")
    decryptor = Cipher(
        algorithms.AES(key), modes.CBC(key[:LEGACY_IV_SIZE])
    ).decryptor()
    padded = decryptor.update(encrypted) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    return unpadder.update(padded) + unpadder.finalize()
