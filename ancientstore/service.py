"""
Ancient store service orchestration.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from .config import ServiceConfig
from .errors import AncientError
from .freezer import Freezer
from .rpc import FreezerHandlers, RPCServer
from .storage import open_backend


class AncientService:
    """Hosts one freezer behind the configured RPC listener."""

    def __init__(self, config: ServiceConfig) -> None:
        self.config = config
        self.log = logging.getLogger("ancientstore.service")
        self._stop_event = asyncio.Event()
        self._shutdown_requested = False
        self._started = False
        self.freezer: Freezer | None = None
        self.handlers: FreezerHandlers | None = None
        self.rpc_server: RPCServer | None = None
        self._watch_task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._started:
            return
        self._shutdown_requested = False
        self.log.info(
            "Starting ancient store namespace=%s backend=%s",
            self.config.freezer.namespace,
            self.config.backend.driver,
        )
        try:
            backend = open_backend(self.config.backend)
            self.freezer = await asyncio.to_thread(Freezer.from_config, backend, self.config.freezer)
        except AncientError as exc:
            self.log.error("Freezer initialization failed: %s", exc)
            raise
        self.handlers = FreezerHandlers(self.freezer)
        self.rpc_server = RPCServer(self.config.rpc, self.handlers)
        try:
            await self.rpc_server.start()
        except OSError as exc:
            self.log.error("RPC listener failed to start: %s", exc)
            await asyncio.to_thread(self.freezer.close)
            raise
        self._stop_event.clear()
        self._started = True
        self._watch_task = asyncio.create_task(self._watch_freezer(), name="freezer-watch")
        self.log.info("Freezer ready frozen=%d endpoint=%s", self.freezer.frozen, self.rpc_server.endpoint)

    async def stop(self) -> None:
        if not self._started:
            self._shutdown_requested = True
            return
        self._shutdown_requested = True
        self.log.info("Stopping ancient store...")
        self._stop_event.set()
        if self._watch_task:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None
        if self.rpc_server:
            await self.rpc_server.stop()
            self.rpc_server = None
        if self.freezer and not self.freezer.closed:
            await asyncio.to_thread(self.freezer.close)
        self._started = False

    async def run(self) -> None:
        await self.start()
        try:
            await self._stop_event.wait()
        finally:
            await self.stop()

    def request_shutdown(self) -> None:
        self._shutdown_requested = True
        self.log.warning("Shutdown requested")
        self._stop_event.set()

    async def _watch_freezer(self) -> None:
        """Stop the service once the freezer is closed over RPC."""

        while not self._stop_event.is_set():
            if self.freezer is not None and self.freezer.closed:
                self.log.info("Freezer closed remotely; shutting down")
                self._stop_event.set()
                return
            if await self._wait_or_stop(0.5):
                return

    async def _wait_or_stop(self, timeout: float) -> bool:
        if self._stop_event.is_set():
            return True
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
            return True
        except TimeoutError:
            return False
