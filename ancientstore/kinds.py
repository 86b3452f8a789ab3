"""
Item kinds and the chunk families they are stored in.
"""

from __future__ import annotations

import enum

from .errors import NotSupportedError


class Kind(enum.Enum):
    HASHES = "hashes"
    HEADERS = "headers"
    BODIES = "bodies"
    RECEIPTS = "receipts"
    DIFFS = "diffs"

    @property
    def family(self) -> "Family":
        return Family.HASHES if self is Kind.HASHES else Family.BLOCKS


class Family(enum.Enum):
    """Chunk families; each has its own key prefix, group size and caches."""

    BLOCKS = "blocks"
    HASHES = "hashes"


def parse_kind(value: str | Kind) -> Kind:
    """Translate the wire name of a kind; unknown names are not supported."""

    if isinstance(value, Kind):
        return value
    try:
        return Kind(value)
    except ValueError as exc:
        raise NotSupportedError(f"unknown kind {value!r}") from exc
