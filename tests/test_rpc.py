import asyncio
import base64
import json
import os
import tempfile
import time
import unittest
from unittest import mock

from ancientstore.config import RPCConfig
from ancientstore.errors import NotSupportedError, OutOfBoundsError, OutOfOrderError, ReadOnlyError
from ancientstore.freezer import Freezer
from ancientstore.rpc import FreezerHandlers, RemoteFreezer, RPCError, RPCRequestError, RPCServer
from ancientstore.storage import MemoryBackend


def blobs(n: int) -> tuple[bytes, bytes, bytes, bytes, bytes]:
    suffix = n.to_bytes(4, "big")
    return (b"\xaa" * 28 + suffix, b"\xbb" + suffix, b"\xcc" + suffix, b"\xdd" + suffix, b"\xee" + suffix)


def hex_blobs(n: int) -> list[str]:
    return ["0x" + blob.hex() for blob in blobs(n)]


def new_freezer(read_only: bool = False, backend: MemoryBackend | None = None) -> Freezer:
    return Freezer(backend or MemoryBackend(), "chain", block_group_size=4, hash_group_size=8, read_only=read_only)


class FreezerHandlersTests(unittest.TestCase):
    def setUp(self) -> None:
        self.freezer = new_freezer()
        self.handlers = FreezerHandlers(self.freezer)

    def test_method_set(self) -> None:
        self.assertEqual(
            self.handlers.methods,
            [
                "freezer_ancient",
                "freezer_ancientSize",
                "freezer_ancients",
                "freezer_appendAncient",
                "freezer_close",
                "freezer_hasAncient",
                "freezer_sync",
                "freezer_truncateAncients",
            ],
        )

    def test_append_and_read_hex(self) -> None:
        self.assertIsNone(self.handlers.dispatch("freezer_appendAncient", [0, *hex_blobs(0)]))
        self.assertEqual(self.handlers.dispatch("freezer_ancients", []), 1)
        self.assertEqual(self.handlers.dispatch("freezer_ancient", ["headers", 0]), "0xbb00000000")
        self.assertTrue(self.handlers.dispatch("freezer_hasAncient", ["bodies", "0x0"]))
        self.assertFalse(self.handlers.dispatch("freezer_hasAncient", ["bodies", "1"]))

    def test_errors_carry_kind(self) -> None:
        with self.assertRaises(RPCError) as ctx:
            self.handlers.dispatch("freezer_ancient", ["headers", 5])
        self.assertEqual(ctx.exception.kind, "out-of-bounds")
        self.assertEqual(ctx.exception.code, OutOfBoundsError.code)
        with self.assertRaises(RPCError) as ctx:
            self.handlers.dispatch("freezer_appendAncient", [3, *hex_blobs(3)])
        self.assertEqual(ctx.exception.kind, "out-of-order")
        with self.assertRaises(RPCError) as ctx:
            self.handlers.dispatch("freezer_ancient", ["logs", 0])
        self.assertEqual(ctx.exception.kind, "not-supported")

    def test_invalid_params(self) -> None:
        for params in ([-1], ["nope"], [True]):
            with self.assertRaises(RPCError) as ctx:
                self.handlers.dispatch("freezer_truncateAncients", params)
            self.assertEqual(ctx.exception.code, -32602)
        with self.assertRaises(RPCError) as ctx:
            self.handlers.dispatch("freezer_appendAncient", [0, "aa", "0x", "0x", "0x", "0x"])
        self.assertEqual(ctx.exception.code, -32602)
        with self.assertRaises(RPCError) as ctx:
            self.handlers.dispatch("freezer_sync", [1])
        self.assertEqual(ctx.exception.code, -32602)

    def test_internal_type_error_is_not_invalid_params(self) -> None:
        with mock.patch.object(self.freezer, "ancients", side_effect=TypeError("unsupported operand")):
            with self.assertRaises(TypeError):
                self.handlers.dispatch("freezer_ancients", [])

    def test_unknown_method(self) -> None:
        with self.assertRaises(RPCError) as ctx:
            self.handlers.dispatch("eth_blockNumber", [])
        self.assertEqual(ctx.exception.code, -32601)

    def test_close_closes_freezer(self) -> None:
        self.handlers.dispatch("freezer_close", [])
        self.assertTrue(self.freezer.closed)


class HTTPServerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.freezer = new_freezer()
        self.server: RPCServer | None = None

    async def asyncTearDown(self) -> None:
        if self.server:
            await self.server.stop()
            self.server = None

    async def _start_server(self, **rpc_overrides) -> None:
        config = RPCConfig(http_enabled=True, host="127.0.0.1", port=0)
        for key, value in rpc_overrides.items():
            setattr(config, key, value)
        self.server = RPCServer(config, FreezerHandlers(self.freezer))
        await self.server.start()
        self.config = config

    async def _request(self, method: str, body: bytes = b"", auth: str | None = None) -> tuple[int, bytes]:
        reader, writer = await asyncio.open_connection("127.0.0.1", self.server.port)
        headers = [f"{method} / HTTP/1.1", "Host: localhost", f"Content-Length: {len(body)}"]
        if auth is not None:
            headers.append(f"Authorization: Basic {base64.b64encode(auth.encode()).decode()}")
        writer.write(("\r\n".join(headers) + "\r\n\r\n").encode("utf-8") + body)
        await writer.drain()
        status_line = await reader.readline()
        status_code = int(status_line.decode("utf-8").split()[1])
        length = 0
        while True:
            line = await reader.readline()
            if line in (b"\r\n", b"\n", b""):
                break
            name, value = line.decode("utf-8").split(":", 1)
            if name.strip().lower() == "content-length":
                length = int(value.strip())
        payload = await reader.readexactly(length) if length else b""
        writer.close()
        await writer.wait_closed()
        return status_code, payload

    async def _call(self, method: str, params: list, auth: str | None = None) -> dict:
        body = json.dumps({"jsonrpc": "2.0", "id": 7, "method": method, "params": params}).encode("utf-8")
        status, payload = await self._request("POST", body, auth)
        self.assertEqual(status, 200)
        return json.loads(payload)

    async def test_round_trip_over_http(self) -> None:
        await self._start_server()
        response = await self._call("freezer_appendAncient", [0, *hex_blobs(0)])
        self.assertIsNone(response["result"])
        response = await self._call("freezer_ancient", ["receipts", 0])
        self.assertEqual(response["result"], "0xdd00000000")
        self.assertEqual(response["id"], 7)

    async def test_error_includes_kind(self) -> None:
        await self._start_server()
        response = await self._call("freezer_ancient", ["headers", 9])
        self.assertEqual(response["error"]["code"], -32001)
        self.assertEqual(response["error"]["data"], {"kind": "out-of-bounds"})

    async def test_parse_error_and_batch(self) -> None:
        await self._start_server()
        status, payload = await self._request("POST", b"{not json")
        self.assertEqual(json.loads(payload)["error"]["code"], -32700)
        body = json.dumps(
            [
                {"jsonrpc": "2.0", "id": 1, "method": "freezer_ancients", "params": []},
                {"jsonrpc": "2.0", "id": 2, "method": "freezer_nope", "params": []},
            ]
        ).encode("utf-8")
        status, payload = await self._request("POST", body)
        results = json.loads(payload)
        self.assertEqual(results[0]["result"], 0)
        self.assertEqual(results[1]["error"]["code"], -32601)

    async def test_basic_auth_enforced_when_configured(self) -> None:
        await self._start_server(username="user", password="secret")
        body = json.dumps({"jsonrpc": "2.0", "id": 1, "method": "freezer_ancients", "params": []}).encode()
        status, _ = await self._request("POST", body)
        self.assertEqual(status, 401)
        status, _ = await self._request("POST", body, auth="user:wrong")
        self.assertEqual(status, 401)
        response = await self._call("freezer_ancients", [], auth="user:secret")
        self.assertEqual(response["result"], 0)

    async def test_oversized_request_rejected(self) -> None:
        await self._start_server(max_request_bytes=64)
        status, _ = await self._request("POST", b"x" * 65)
        self.assertEqual(status, 413)

    async def test_status_panel(self) -> None:
        await self._start_server()
        status, payload = await self._request("GET")
        self.assertEqual(status, 200)
        self.assertIn("Ancient Store Status", payload.decode("utf-8"))
        self.assertIn("Frozen", payload.decode("utf-8"))

    async def test_slow_handler_times_out(self) -> None:
        await self._start_server(request_timeout=0.05)
        self.server.handlers.dispatch = lambda method, params: time.sleep(0.3)
        response = await self._call("freezer_sync", [])
        self.assertIn("timed out", response["error"]["message"])

    async def test_remote_client_over_http(self) -> None:
        await self._start_server()
        client = RemoteFreezer.http("127.0.0.1", self.server.port)
        for n in range(6):
            await asyncio.to_thread(client.append_ancient, n, *blobs(n))
        self.assertEqual(await asyncio.to_thread(client.ancients), 6)
        await asyncio.to_thread(client.sync)
        self.assertEqual(await asyncio.to_thread(client.ancient, "diffs", 5), blobs(5)[4])
        self.assertTrue(await asyncio.to_thread(client.has_ancient, "hashes", 5))
        self.assertGreater(await asyncio.to_thread(client.ancient_size, "headers"), 0)
        with self.assertRaises(OutOfOrderError):
            await asyncio.to_thread(client.append_ancient, 9, *blobs(9))
        with self.assertRaises(OutOfBoundsError):
            await asyncio.to_thread(client.ancient, "headers", 6)
        with self.assertRaises(NotSupportedError):
            await asyncio.to_thread(client.call, "ancient", ["logs", 0])
        await asyncio.to_thread(client.truncate_ancients, 3)
        self.assertEqual(await asyncio.to_thread(client.ancients), 3)
        await asyncio.to_thread(client.close)
        self.assertTrue(self.freezer.closed)


class IPCServerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, "freezer.ipc")
        self.freezer = new_freezer()
        self.server = RPCServer(RPCConfig(ipc_path=self.path), FreezerHandlers(self.freezer))
        await self.server.start()

    async def asyncTearDown(self) -> None:
        await self.server.stop()
        self.tmpdir.cleanup()

    async def test_remote_client_over_ipc(self) -> None:
        client = RemoteFreezer.ipc(self.path)
        try:
            for n in range(10):
                await asyncio.to_thread(client.append_ancient, n, *blobs(n))
            self.assertEqual(await asyncio.to_thread(client.ancients), 10)
            self.assertEqual(await asyncio.to_thread(client.ancient, "hashes", 9), blobs(9)[0])
            with self.assertRaises(OutOfBoundsError):
                await asyncio.to_thread(client.ancient, "bodies", 10)
        finally:
            client.disconnect()
        self.assertFalse(self.freezer.closed)

    async def test_socket_removed_on_stop(self) -> None:
        self.assertTrue(os.path.exists(self.path))
        await self.server.stop()
        self.assertFalse(os.path.exists(self.path))
        client = RemoteFreezer.ipc(self.path, timeout=1.0)
        with self.assertRaises(RPCRequestError):
            await asyncio.to_thread(client.ancients)

    async def test_read_only_errors_survive_transport(self) -> None:
        await self.server.stop()
        backend = MemoryBackend()
        self.server = RPCServer(RPCConfig(ipc_path=self.path), FreezerHandlers(new_freezer(True, backend)))
        await self.server.start()
        client = RemoteFreezer.ipc(self.path)
        try:
            with self.assertRaises(ReadOnlyError):
                await asyncio.to_thread(client.truncate_ancients, 0)
        finally:
            client.disconnect()


if __name__ == "__main__":
    unittest.main()
