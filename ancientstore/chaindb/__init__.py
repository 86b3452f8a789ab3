"""
Hot chain store, freezing pipeline and the composed chain database.
"""

from .database import ChainDatabase
from .kv import KeyValueStore, KVError, MemoryKV, SQLiteKV
from .pipeline import FreezingPipeline

__all__ = ["ChainDatabase", "FreezingPipeline", "KeyValueStore", "KVError", "MemoryKV", "SQLiteKV"]
