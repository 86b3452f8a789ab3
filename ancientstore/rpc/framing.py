"""
Length-prefixed JSON framing for the local socket transport.
"""

from __future__ import annotations

import asyncio
import json
import socket
from typing import Any

LEN_FIELD = 4
MAX_FRAME = 64 * 1024 * 1024


class FramingError(Exception):
    """Raised when a frame fails validation."""


def encode_frame(message: Any, max_frame: int = MAX_FRAME) -> bytes:
    payload = json.dumps(message, separators=(",", ":")).encode("utf-8")
    if len(payload) > max_frame:
        raise FramingError("Frame payload too large")
    return len(payload).to_bytes(LEN_FIELD, "big") + payload


def decode_payload(payload: bytes) -> Any:
    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise FramingError("Invalid JSON payload") from exc


def _check_length(length: int, max_frame: int) -> None:
    if length <= 0 or length > max_frame:
        raise FramingError(f"Invalid length {length}")


async def read_frame(reader: asyncio.StreamReader, max_frame: int = MAX_FRAME) -> bytes | None:
    """Return the next raw payload, or None when the peer closed cleanly."""

    try:
        header = await reader.readexactly(LEN_FIELD)
    except asyncio.IncompleteReadError as exc:
        if not exc.partial:
            return None
        raise FramingError("Truncated frame header") from exc
    length = int.from_bytes(header, "big")
    _check_length(length, max_frame)
    try:
        return await reader.readexactly(length)
    except asyncio.IncompleteReadError as exc:
        raise FramingError("Truncated frame payload") from exc


def _recv_exactly(sock: socket.socket, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining:
        chunk = sock.recv(min(remaining, 1 << 20))
        if not chunk:
            raise FramingError("Connection closed mid-frame")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def recv_frame(sock: socket.socket, max_frame: int = MAX_FRAME) -> Any:
    length = int.from_bytes(_recv_exactly(sock, LEN_FIELD), "big")
    _check_length(length, max_frame)
    return decode_payload(_recv_exactly(sock, length))
