"""Snapshot encoding for StateSync.

This module provides:
- SnapshotCodec: serialize -> compress -> encrypt, and the inverse
- snapshot_size: approximate size of an encoded snapshot

Envelope formats:
    Current:  "ss2:" + base64(nonce || AES-256-GCM(base64(zlib(json))))
    Legacy:   base64(AES-256-CBC(payload)) where payload is either
              base64(zlib(json)) or plain JSON text
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import zlib
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag

from statesync.core.crypto import (
    decrypt_bytes,
    decrypt_legacy,
    encrypt_bytes,
    key_to_bytes,
)

logger = logging.getLogger(__name__)

ENVELOPE_TAG = "ss2:"

# Quota used for the snapshot size progress indicator
SNAPSHOT_QUOTA_BYTES = 10 * 1024 * 1024 * 1024


class CodecError(Exception):
    """Base exception for snapshot codec errors."""


class CorruptSnapshot(CodecError):
    """Snapshot could not be decoded by any supported format."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Sync data unreadable, re-pair this device ({reason})")
        self.reason = reason


def _compress(state: Any) -> bytes:
    raw = json.dumps(state, ensure_ascii=False, separators=(",", ":"))
    return base64.b64encode(zlib.compress(raw.encode("utf-8")))


def _decompress(body: bytes) -> Any:
    """Inflate a base64(zlib(json)) body.

    Raises:
        binascii.Error, zlib.error, ValueError: If the body is not in this format.
    """
    inflated = zlib.decompress(base64.b64decode(body, validate=True))
    return json.loads(inflated.decode("utf-8"))


class SnapshotCodec:
    """Encodes application state into encrypted snapshot blobs."""

    def encode(self, state: Any, key: str) -> str:
        """Encode a JSON-serializable state object.

        Args:
            state: Aggregated application state.
            key: 64-hex-char sync key.

        Returns:
            Tagged ciphertext envelope, safe to store as text.

        Raises:
            TypeError: If the state is not JSON-serializable.
            ValueError: If the key is invalid.
        """
        encrypted = encrypt_bytes(_compress(state), key_to_bytes(key))
        return ENVELOPE_TAG + base64.b64encode(encrypted).decode("ascii")

    def decode(self, ciphertext: str, key: str) -> Any:
        """Decode a snapshot blob back into the state object.

        Args:
            ciphertext: Envelope produced by encode() or a legacy client.
            key: 64-hex-char sync key.

        Returns:
            The decoded state object.

        Raises:
            CorruptSnapshot: If no supported format can decode the blob.
            ValueError: If the key is invalid.
        """
        key_bytes = key_to_bytes(key)
        if ciphertext.startswith(ENVELOPE_TAG):
            return self._decode_current(ciphertext[len(ENVELOPE_TAG):], key_bytes)
        return self._decode_legacy(ciphertext, key_bytes)

    def _decode_current(self, payload: str, key: bytes) -> Any:
        try:
            body = decrypt_bytes(base64.b64decode(payload, validate=True), key)
        except (binascii.Error, ValueError, InvalidTag) as e:
            raise CorruptSnapshot("decryption failed, wrong key or tampered data") from e
        try:
            return _decompress(body)
        except (binascii.Error, zlib.error, ValueError) as e:
            raise CorruptSnapshot("compressed payload is invalid") from e

    def _decode_legacy(self, payload: str, key: bytes) -> Any:
        try:
            body = decrypt_legacy(base64.b64decode(payload, validate=True), key)
        except (binascii.Error, ValueError) as e:
            raise CorruptSnapshot("legacy decryption failed") from e

        try:
            return _decompress(body)
        except (binascii.Error, zlib.error, ValueError):
            logger.debug("Legacy snapshot is not compressed, trying plain JSON")

        try:
            return json.loads(body.decode("utf-8"))
        except ValueError as e:
            raise CorruptSnapshot("legacy payload is neither compressed nor JSON") from e


@dataclass
class SnapshotSize:
    """Approximate size of an encoded snapshot.

    Attributes:
        bytes: Decoded size in bytes (base64 ratio 4:3).
        progress_percentage: Share of the snapshot quota, capped at 100.
    """

    bytes: int
    progress_percentage: float

    @property
    def megabytes(self) -> float:
        return round(self.bytes / (1024 * 1024), 2)

    @property
    def gigabytes(self) -> float:
        return round(self.bytes / (1024 * 1024 * 1024), 4)

    @property
    def formatted(self) -> str:
        """Size in the largest unit that is at least 1."""
        if self.bytes >= 1024 * 1024 * 1024:
            return f"{self.bytes / (1024 * 1024 * 1024):.2f} GB"
        if self.bytes >= 1024 * 1024:
            return f"{self.bytes / (1024 * 1024):.2f} MB"
        return f"{self.bytes} bytes"


def snapshot_size(ciphertext: str) -> SnapshotSize:
    """Estimate the size of a snapshot from its text envelope."""
    payload = ciphertext.removeprefix(ENVELOPE_TAG)
    size = len(payload) * 3 // 4
    return SnapshotSize(
        bytes=size,
        progress_percentage=min(size / SNAPSHOT_QUOTA_BYTES * 100, 100.0),
    )
