"""
Object storage subsystem exports.
"""

from __future__ import annotations

from pathlib import Path

from ..config import BackendConfig
from .backend import INDEX_MARKER_KEY, CancelToken, ChunkLayout, ObjectBackend
from .fs import FilesystemBackend
from .memory import MemoryBackend

__all__ = [
    "INDEX_MARKER_KEY",
    "CancelToken",
    "ChunkLayout",
    "ObjectBackend",
    "FilesystemBackend",
    "MemoryBackend",
    "open_backend",
]


def open_backend(config: BackendConfig) -> ObjectBackend:
    """Build the backend selected by ``config.driver``."""

    if config.driver == "fs":
        return FilesystemBackend(Path(config.root))
    if config.driver == "memory":
        return MemoryBackend()
    from .s3 import S3Backend  # Imported lazily so fs/memory deployments skip the client.

    return S3Backend(
        config.endpoint,
        access_key=config.access_key,
        secret_key=config.secret_key,
        region=config.region,
        secure=config.secure,
    )
