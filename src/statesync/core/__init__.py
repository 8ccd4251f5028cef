"""Core module - Shared crypto, snapshot codec, config and types."""

from statesync.core.codec import (
    CodecError,
    CorruptSnapshot,
    SnapshotCodec,
    SnapshotSize,
    snapshot_size,
)
from statesync.core.config import SyncConfig, with_port
from statesync.core.crypto import (
    decrypt_bytes,
    encrypt_bytes,
    generate_random_key,
    is_valid_key,
)
from statesync.core.types import (
    DeviceIdentity,
    LogStatus,
    SyncIdentity,
    SyncStatus,
    WorkspaceIdentity,
)

__all__ = [
    # Codec
    "CodecError",
    "CorruptSnapshot",
    "SnapshotCodec",
    "SnapshotSize",
    "snapshot_size",
    # Config
    "SyncConfig",
    "with_port",
    # Crypto
    "decrypt_bytes",
    "encrypt_bytes",
    "generate_random_key",
    "is_valid_key",
    # Types
    "DeviceIdentity",
    "LogStatus",
    "SyncIdentity",
    "SyncStatus",
    "WorkspaceIdentity",
]
