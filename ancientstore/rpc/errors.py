"""
Shared RPC error types.
"""

from __future__ import annotations


class RPCError(Exception):
    """Raised when an RPC request cannot be satisfied."""

    def __init__(self, code: int, message: str, kind: str | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.kind = kind

    def to_dict(self) -> dict:
        error: dict = {"code": self.code, "message": self.message}
        if self.kind:
            error["data"] = {"kind": self.kind}
        return error
