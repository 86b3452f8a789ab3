"""
JSON-RPC server over HTTP or a local socket, with optional basic authentication.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import hmac
import json
import logging
import os
import time
from http import HTTPStatus
from typing import Any

from ..config import RPCConfig
from .errors import RPCError
from .framing import FramingError, decode_payload, encode_frame, read_frame
from .handlers import FreezerHandlers
from .rendering import StatusRenderer

AUTH_CHALLENGE = 'Basic realm="ancientstore"'


class RPCServer:
    def __init__(self, config: RPCConfig, handlers: FreezerHandlers):
        self.config = config
        self.handlers = handlers
        self.log = logging.getLogger("ancientstore.rpc")
        self.ipc_path = config.ipc_path
        self.host = config.host
        self.port = config.port
        self.max_request_bytes = config.max_request_bytes
        self.request_timeout = config.request_timeout
        self.username = config.username
        self.password = config.password
        self.renderer = StatusRenderer()
        self.server: asyncio.AbstractServer | None = None

    @property
    def endpoint(self) -> str:
        if self.ipc_path:
            return self.ipc_path
        return f"http://{self.host}:{self.port}"

    async def start(self) -> None:
        if self.server:
            return
        if self.ipc_path:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(self.ipc_path)
            self.server = await asyncio.start_unix_server(self._handle_ipc_client, self.ipc_path)
        else:
            self.server = await asyncio.start_server(self._handle_client, self.host, self.port)
            if self.port == 0 and self.server.sockets:
                self.port = self.server.sockets[0].getsockname()[1]
        self.log.info("RPC listening on %s", self.endpoint)

    async def stop(self) -> None:
        if not self.server:
            return
        self.server.close()
        await self.server.wait_closed()
        self.server = None
        if self.ipc_path:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(self.ipc_path)
        self.log.info("RPC listener stopped")

    # Local socket ---------------------------------------------------------------

    async def _handle_ipc_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while True:
                try:
                    payload = await read_frame(reader, self.max_request_bytes)
                except FramingError as exc:
                    self.log.debug("Dropping IPC client: %s", exc)
                    return
                if payload is None:
                    return
                try:
                    request = decode_payload(payload)
                except FramingError:
                    response: Any = self._error_response(None, -32700, "Parse error")
                else:
                    response = await self._handle_request(request)
                writer.write(encode_frame(response))
                await writer.drain()
        except (ConnectionError, asyncio.IncompleteReadError):
            return
        finally:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()

    # HTTP -----------------------------------------------------------------------

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            request = await self._read_request(reader)
            if request is None:
                await self._reply(writer, HTTPStatus.BAD_REQUEST)
                return
            method, headers = request
            if method not in ("GET", "POST"):
                await self._reply(writer, HTTPStatus.METHOD_NOT_ALLOWED)
                return
            if not self._check_auth(headers.get("authorization")):
                await self._reply(writer, HTTPStatus.UNAUTHORIZED, headers={"WWW-Authenticate": AUTH_CHALLENGE})
                return
            if method == "GET":
                panel = self.renderer.render(self.handlers.freezer.stats(), self.handlers.uptime)
                await self._reply(writer, HTTPStatus.OK, panel, content_type="text/plain; charset=utf-8")
                return
            length = headers.get("content-length", "0")
            if not length.isdigit():
                await self._reply(writer, HTTPStatus.LENGTH_REQUIRED)
                return
            if int(length) > self.max_request_bytes:
                await self._reply(writer, HTTPStatus.REQUEST_ENTITY_TOO_LARGE)
                return
            body = await reader.readexactly(int(length))
            await self._reply(writer, HTTPStatus.OK, await self._handle_payload(body), content_type="application/json")
        except asyncio.IncompleteReadError:
            await self._reply(writer, HTTPStatus.BAD_REQUEST)
        except ConnectionError:
            pass
        finally:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()

    async def _read_request(self, reader: asyncio.StreamReader) -> tuple[str, dict[str, str]] | None:
        """Read the request line and headers; ``None`` means the request is malformed."""

        lines = []
        while True:
            line = await reader.readline()
            if not line or len(line) > self.max_request_bytes:
                return None
            if line in (b"\r\n", b"\n"):
                break
            lines.append(line.decode("utf-8", "replace"))
        if not lines or len(lines[0].split()) != 3:
            return None
        method = lines[0].split()[0].upper()
        headers: dict[str, str] = {}
        for line in lines[1:]:
            name, sep, value = line.partition(":")
            if not sep:
                return None
            headers[name.strip().lower()] = value.strip()
        return method, headers

    async def _handle_payload(self, body: bytes) -> bytes:
        try:
            request = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return json.dumps(self._error_response(None, -32700, "Parse error")).encode("utf-8")
        return json.dumps(await self._handle_request(request)).encode("utf-8")

    async def _handle_request(self, request: Any) -> Any:
        if isinstance(request, list):
            return [await self._handle_call(item) for item in request]
        return await self._handle_call(request)

    async def _handle_call(self, message: Any) -> dict[str, Any]:
        if not isinstance(message, dict):
            return self._error_response(None, -32600, "Invalid Request")
        msg_id = message.get("id")
        method = message.get("method")
        params = message.get("params", [])
        if not isinstance(method, str):
            return self._error_response(msg_id, -32600, "Invalid Request")
        if params is None:
            params = []
        if not isinstance(params, list):
            return self._error_response(msg_id, -32602, "Invalid params")
        start = time.time()
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self.handlers.dispatch, method, params),
                self.request_timeout,
            )
        except asyncio.TimeoutError:
            self.log.warning("RPC %s timed out after %.1fs", method, self.request_timeout)
            return self._error_response(msg_id, -32000, f"{method} timed out")
        except RPCError as exc:
            return self._error_response(msg_id, exc.code, exc.message, exc.kind)
        except Exception as exc:
            self.log.exception("RPC %s failed", method)
            return self._error_response(msg_id, -32603, f"Internal error: {exc}")
        self.log.debug("RPC %s served in %.3fs", method, time.time() - start)
        return {"jsonrpc": "2.0", "result": result, "id": msg_id}

    def _check_auth(self, header: str | None) -> bool:
        if not self.username:
            return True
        scheme, _, token = (header or "").partition(" ")
        if scheme != "Basic":
            return False
        try:
            username, _, password = base64.b64decode(token, validate=True).decode("utf-8").partition(":")
        except (binascii.Error, UnicodeDecodeError):
            return False
        expected = f"{self.username}:{self.password}".encode("utf-8")
        return hmac.compare_digest(f"{username}:{password}".encode("utf-8"), expected)

    def _error_response(self, msg_id: Any, code: int, message: str, kind: str | None = None) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "error": RPCError(code, message, kind).to_dict(), "id": msg_id}

    async def _reply(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        body: bytes = b"",
        *,
        content_type: str = "text/plain",
        headers: dict[str, str] | None = None,
    ) -> None:
        lines = [
            f"HTTP/1.1 {status.value} {status.phrase}",
            f"Content-Length: {len(body)}",
            f"Content-Type: {content_type}",
            "Connection: close",
        ]
        lines.extend(f"{name}: {value}" for name, value in (headers or {}).items())
        writer.write(("\r\n".join(lines) + "\r\n\r\n").encode("ascii") + body)
        await writer.drain()
