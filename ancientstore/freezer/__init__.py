"""
Freezer core: chunk codec, item caches and the append-only freezer.
"""

from .cache import ItemCache
from .codec import ChunkCodec
from .core import AncientStore, Freezer, FreezerState
from .record import AncientRecord

__all__ = ["AncientRecord", "AncientStore", "ChunkCodec", "Freezer", "FreezerState", "ItemCache"]
