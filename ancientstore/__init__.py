"""
Remote ancient store: an append-only archive for frozen chain data.
"""

__version__ = "0.1.0"
