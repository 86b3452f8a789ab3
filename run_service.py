"""
CLI entry point for running the remote ancient store.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from ancientstore.config import ConfigError, load_config
from ancientstore.errors import AncientError
from ancientstore.logging import parse_level, setup_logging
from ancientstore.service import AncientService


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Remote ancient store for cold chain data")
    parser.add_argument("--config", type=Path, help="Path to config JSON")
    parser.add_argument("--data-dir", type=Path, help="Override data directory")
    parser.add_argument("--namespace", help="Bucket or container holding the ancients")
    parser.add_argument("--ipcpath", help="Serve over a local socket at this path")
    parser.add_argument("--http", action="store_true", help="Serve over HTTP")
    parser.add_argument("--http.addr", dest="http_addr", help="HTTP listen address")
    parser.add_argument("--rpcport", type=int, help="HTTP listen port")
    parser.add_argument("--backend", choices=("fs", "s3", "memory"), help="Object backend driver")
    parser.add_argument("--log-level", default="info", help="Log level (debug, info, warning, error)")
    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> dict:
    overrides: dict = {}
    if args.data_dir:
        overrides["data_dir"] = str(args.data_dir)
    if args.namespace:
        overrides.setdefault("freezer", {})["namespace"] = args.namespace
    if args.ipcpath:
        overrides.setdefault("rpc", {})["ipc_path"] = args.ipcpath
    if args.http:
        overrides.setdefault("rpc", {})["http_enabled"] = True
    if args.http_addr:
        overrides.setdefault("rpc", {})["host"] = args.http_addr
    if args.rpcport is not None:
        overrides.setdefault("rpc", {})["port"] = args.rpcport
    if args.backend:
        overrides.setdefault("backend", {})["driver"] = args.backend
    return overrides


def install_signal_handlers(service: AncientService) -> None:
    def _handler(signum, _frame) -> None:
        logging.getLogger("ancientstore").warning("Received signal %s", signum)
        service.request_shutdown()

    for sig_name in ("SIGINT", "SIGTERM"):
        if hasattr(signal, sig_name):
            signal.signal(getattr(signal, sig_name), _handler)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    overrides = build_overrides(args)
    config_path = args.config.resolve() if args.config else None

    try:
        config = load_config(config_path, overrides=overrides)
    except ConfigError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        return 1

    try:
        log_level = parse_level(args.log_level)
    except ValueError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        return 1
    logger = setup_logging(config.log_file, level=log_level)
    service = AncientService(config)
    install_signal_handlers(service)
    logger.info("Service configuration loaded")
    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        logger.warning("Interrupted, shutting down...")
    except (AncientError, OSError) as exc:
        logger.error("Initialization failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
