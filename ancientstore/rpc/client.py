"""RPC client exposing the freezer contract over HTTP or a local socket."""

from __future__ import annotations

import base64
import http.client
import itertools
import json
import socket
import threading
from typing import Any

from ..errors import error_for_kind
from ..freezer.record import decode_hex, encode_hex
from ..kinds import Kind, parse_kind
from .framing import FramingError, encode_frame, recv_frame
from .handlers import NAMESPACE


class RPCClientError(Exception):
    """Base exception for RPC problems."""


class RPCRequestError(RPCClientError):
    """Raised for transport-level failures."""

    def __init__(self, status: int, body: str):
        super().__init__(f"RPC HTTP error {status}: {body}")
        self.status = status
        self.body = body


class RPCResponseError(RPCClientError):
    """Raised when the JSON-RPC response includes an error with no known kind."""

    def __init__(self, code: int | None, message: str | None):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class HTTPTransport:
    def __init__(self, host: str, port: int, username: str = "", password: str = "", timeout: float = 120.0):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout

    def roundtrip(self, request: dict[str, Any]) -> dict[str, Any]:
        payload = json.dumps(request)
        headers = {"Content-Type": "application/json"}
        if self.username:
            auth_token = base64.b64encode(f"{self.username}:{self.password}".encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {auth_token}"
        conn = http.client.HTTPConnection(self.host, self.port, timeout=self.timeout)
        try:
            conn.request("POST", "/", body=payload, headers=headers)
            response = conn.getresponse()
            body = response.read().decode("utf-8")
        except OSError as exc:
            raise RPCRequestError(0, str(exc)) from exc
        finally:
            conn.close()
        if response.status != 200:
            raise RPCRequestError(response.status, body)
        return json.loads(body)

    def close(self) -> None:
        return None


class IPCTransport:
    """Persistent local socket connection; one request in flight at a time."""

    def __init__(self, path: str, timeout: float = 120.0):
        self.path = path
        self.timeout = timeout
        self._lock = threading.Lock()
        self._sock: socket.socket | None = None

    def _connect(self) -> socket.socket:
        if self._sock is None:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            sock.settimeout(self.timeout)
            try:
                sock.connect(self.path)
            except OSError as exc:
                sock.close()
                raise RPCRequestError(0, f"cannot connect to {self.path}: {exc}") from exc
            self._sock = sock
        return self._sock

    def roundtrip(self, request: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            sock = self._connect()
            try:
                sock.sendall(encode_frame(request))
                return recv_frame(sock)
            except (OSError, FramingError) as exc:
                self._drop()
                raise RPCRequestError(0, str(exc)) from exc

    def _drop(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def close(self) -> None:
        with self._lock:
            self._drop()


class RemoteFreezer:
    """Implements the freezer operations by delegating every call to a remote service."""

    def __init__(self, transport: HTTPTransport | IPCTransport):
        self.transport = transport
        self._ids = itertools.count(1)

    @classmethod
    def http(cls, host: str, port: int, username: str = "", password: str = "", timeout: float = 120.0) -> "RemoteFreezer":
        return cls(HTTPTransport(host, port, username, password, timeout))

    @classmethod
    def ipc(cls, path: str, timeout: float = 120.0) -> "RemoteFreezer":
        return cls(IPCTransport(path, timeout))

    def call(self, method: str, params: list[Any] | None = None) -> Any:
        data = self.transport.roundtrip(
            {
                "jsonrpc": "2.0",
                "id": next(self._ids),
                "method": f"{NAMESPACE}_{method}",
                "params": params or [],
            }
        )
        error = data.get("error")
        if error:
            kind = (error.get("data") or {}).get("kind")
            exc_type = error_for_kind(kind)
            if exc_type is not None:
                raise exc_type(error.get("message"))
            raise RPCResponseError(error.get("code"), error.get("message"))
        return data.get("result")

    def close(self) -> None:
        try:
            self.call("close")
        finally:
            self.transport.close()

    def disconnect(self) -> None:
        """Drop the connection without closing the remote freezer."""

        self.transport.close()

    def has_ancient(self, kind: str | Kind, number: int) -> bool:
        return bool(self.call("hasAncient", [parse_kind(kind).value, number]))

    def ancient(self, kind: str | Kind, number: int) -> bytes:
        return decode_hex(self.call("ancient", [parse_kind(kind).value, number]))

    def ancients(self) -> int:
        return int(self.call("ancients"))

    def ancient_size(self, kind: str | Kind) -> int:
        return int(self.call("ancientSize", [parse_kind(kind).value]))

    def append_ancient(
        self, number: int, hash: bytes, header: bytes, body: bytes, receipts: bytes, td: bytes
    ) -> None:
        self.call(
            "appendAncient",
            [number, encode_hex(hash), encode_hex(header), encode_hex(body), encode_hex(receipts), encode_hex(td)],
        )

    def truncate_ancients(self, items: int) -> None:
        self.call("truncateAncients", [items])

    def sync(self) -> None:
        self.call("sync")
