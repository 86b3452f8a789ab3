"""
Error taxonomy shared by the freezer, its backends and the RPC transport.
"""

from __future__ import annotations

__all__ = [
    "AncientError",
    "OutOfBoundsError",
    "OutOfOrderError",
    "NotSupportedError",
    "NotFoundError",
    "TransientBackendError",
    "FatalBackendError",
    "ReadOnlyError",
    "InvalidRecordError",
    "FreezerClosedError",
    "CancelledError",
    "GenesisMismatchError",
    "GapError",
    "error_for_kind",
]


class AncientError(Exception):
    """Base class for all ancient store failures."""

    kind = "ancient"
    code = -32000


class OutOfBoundsError(AncientError):
    """Requested item number is at or above the frozen count."""

    kind = "out-of-bounds"
    code = -32001


class OutOfOrderError(AncientError):
    """Append attempted with an item number other than the frozen count."""

    kind = "out-of-order"
    code = -32002


class NotSupportedError(AncientError):
    kind = "not-supported"
    code = -32003


class NotFoundError(AncientError):
    """Backend object missing."""

    kind = "not-found"
    code = -32004


class TransientBackendError(AncientError):
    """Storage failure that may succeed on retry."""

    kind = "transient-backend"
    code = -32005


class FatalBackendError(AncientError):
    """Storage failure that retrying cannot fix (missing bucket, denied access)."""

    kind = "fatal-backend"
    code = -32006


class ReadOnlyError(AncientError):
    kind = "read-only"
    code = -32007


class InvalidRecordError(AncientError):
    """Supplied blobs cannot form a record."""

    kind = "invalid-record"
    code = -32008


class FreezerClosedError(AncientError):
    kind = "closed"
    code = -32009


class CancelledError(AncientError):
    kind = "cancelled"
    code = -32010


class GenesisMismatchError(AncientError):
    """Hot store and freezer belong to different chains."""

    kind = "fatal-genesis-mismatch"
    code = -32011


class GapError(AncientError):
    """Hot store does not continue where the freezer ends."""

    kind = "fatal-gap"
    code = -32012


_BY_KIND: dict[str, type[AncientError]] = {
    cls.kind: cls
    for cls in (
        OutOfBoundsError,
        OutOfOrderError,
        NotSupportedError,
        NotFoundError,
        TransientBackendError,
        FatalBackendError,
        ReadOnlyError,
        InvalidRecordError,
        FreezerClosedError,
        CancelledError,
        GenesisMismatchError,
        GapError,
    )
}


def error_for_kind(kind: str | None) -> type[AncientError] | None:
    """Map a serialized error kind back to its exception class."""

    if kind is None:
        return None
    return _BY_KIND.get(kind)
