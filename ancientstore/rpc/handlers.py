"""
JSON-RPC method handlers for the freezer namespace.
"""

from __future__ import annotations

import inspect
import logging
import time
from typing import Any

from ..errors import AncientError
from ..freezer import Freezer
from ..freezer.record import decode_hex, encode_hex
from .errors import RPCError

NAMESPACE = "freezer"


class FreezerHandlers:
    def __init__(self, freezer: Freezer):
        self.freezer = freezer
        self.log = logging.getLogger("ancientstore.rpc")
        self._start_time = time.time()
        methods = {
            "close": self.close,
            "hasAncient": self.has_ancient,
            "ancient": self.ancient,
            "ancients": self.ancients,
            "ancientSize": self.ancient_size,
            "appendAncient": self.append_ancient,
            "truncateAncients": self.truncate_ancients,
            "sync": self.sync,
        }
        self._methods = {f"{NAMESPACE}_{name}": handler for name, handler in methods.items()}

    @property
    def methods(self) -> list[str]:
        return sorted(self._methods)

    @property
    def uptime(self) -> float:
        return time.time() - self._start_time

    def dispatch(self, method: str, params: list[Any]) -> Any:
        handler = self._methods.get(method)
        if handler is None:
            raise RPCError(-32601, f"the method {method} does not exist/is not available")
        try:
            inspect.signature(handler).bind(*params)
        except TypeError as exc:
            raise RPCError(-32602, f"Invalid parameters for {method}: {exc}") from exc
        try:
            return handler(*params)
        except AncientError as exc:
            self.log.debug("%s failed kind=%s error=%s", method, exc.kind, exc)
            raise RPCError(exc.code, str(exc), exc.kind) from exc

    # RPC method implementations -------------------------------------------------

    def close(self) -> None:
        self.freezer.close()
        return None

    def has_ancient(self, kind: str, number: Any) -> bool:
        return self.freezer.has_ancient(kind, self._parse_number(number))

    def ancient(self, kind: str, number: Any) -> str:
        return encode_hex(self.freezer.ancient(kind, self._parse_number(number)))

    def ancients(self) -> int:
        return self.freezer.ancients()

    def ancient_size(self, kind: str) -> int:
        return self.freezer.ancient_size(kind)

    def append_ancient(
        self, number: Any, hash: str, header: str, body: str, receipts: str, td: str
    ) -> None:
        self.freezer.append_ancient(
            self._parse_number(number),
            self._parse_bytes("hash", hash),
            self._parse_bytes("header", header),
            self._parse_bytes("body", body),
            self._parse_bytes("receipts", receipts),
            self._parse_bytes("td", td),
        )
        return None

    def truncate_ancients(self, number: Any) -> None:
        self.freezer.truncate_ancients(self._parse_number(number))
        return None

    def sync(self) -> None:
        self.freezer.sync()
        return None

    # Helpers --------------------------------------------------------------------

    def _parse_number(self, value: Any) -> int:
        if isinstance(value, bool):
            raise RPCError(-32602, "item number must be an unsigned integer")
        if isinstance(value, int):
            number = value
        elif isinstance(value, str):
            try:
                number = int(value, 16) if value.startswith("0x") else int(value)
            except ValueError as exc:
                raise RPCError(-32602, f"invalid item number {value!r}") from exc
        else:
            raise RPCError(-32602, "item number must be an unsigned integer")
        if number < 0:
            raise RPCError(-32602, "item number must be an unsigned integer")
        return number

    def _parse_bytes(self, name: str, value: Any) -> bytes:
        try:
            return decode_hex(value)
        except AncientError as exc:
            raise RPCError(-32602, f"invalid {name}: {exc}") from exc
