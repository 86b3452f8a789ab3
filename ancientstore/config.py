"""
Configuration helpers for the ancient store service.

The config loader prefers deterministic defaults, then merges user provided JSON
configuration files and environment overrides prefixed with ``ANCIENTSTORE_``.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

ENCODING_JSON = ".json"
ENCODING_JSON_GZ = ".json.gz"

# Legacy GETH_FREEZER_S3_* environment knobs.
LEGACY_ENV = {
    "GETH_FREEZER_S3_BLOCK_GROUP_SIZE": ("freezer", "block_group_size"),
    "GETH_FREEZER_S3_HASH_GROUP_SIZE": ("freezer", "hash_group_size"),
    "GETH_FREEZER_S3_ENCODING": ("freezer", "encoding"),
    "GETH_FREEZER_S3_R_ONLY": ("freezer", "read_only"),
}


class ConfigError(Exception):
    """Raised when configuration validation fails."""


def _expand_path(value: str) -> Path:
    return Path(os.path.expandvars(os.path.expanduser(value))).resolve()


def default_data_dir() -> Path:
    base = Path(os.getenv("ANCIENTSTORE_DATA", Path.home() / ".ancientstore"))
    return _expand_path(str(base))


@dataclass(slots=True)
class BackendConfig:
    driver: str = "fs"
    root: str = ""
    endpoint: str = "s3.amazonaws.com"
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    secure: bool = True

    def validate(self) -> None:
        if self.driver not in {"fs", "s3", "memory"}:
            raise ConfigError(f"Unknown backend driver {self.driver}")
        if self.driver == "s3" and not self.endpoint:
            raise ConfigError("s3 backend requires an endpoint")


@dataclass(slots=True)
class FreezerConfig:
    namespace: str = ""
    block_group_size: int = 32 * 32
    hash_group_size: int = 32 * 32 * 32
    encoding: str = ENCODING_JSON_GZ
    read_only: bool = False
    # 0 means "twice the group size".
    read_cache_limit: int = 0
    write_cache_limit: int = 0

    def validate(self) -> None:
        if not self.namespace:
            raise ConfigError("namespace must be set")
        if self.block_group_size <= 0 or self.hash_group_size <= 0:
            raise ConfigError("group sizes must be positive")
        if self.encoding not in (ENCODING_JSON, ENCODING_JSON_GZ):
            raise ConfigError(f"Unknown encoding {self.encoding}")
        if self.read_cache_limit < 0 or self.write_cache_limit < 0:
            raise ConfigError("cache limits must not be negative")


@dataclass(slots=True)
class RPCConfig:
    ipc_path: str = ""
    http_enabled: bool = False
    host: str = "localhost"
    port: int = 9797
    username: str = ""
    password: str = ""
    max_request_bytes: int = 64 * 1024 * 1024
    request_timeout: float = 120.0

    def validate(self) -> None:
        if self.ipc_path and self.http_enabled:
            raise ConfigError("ipc_path and http listener are mutually exclusive")
        if not self.ipc_path and not self.http_enabled:
            raise ConfigError("either ipc_path or the http listener must be configured")
        if not (0 <= self.port <= 65535):
            raise ConfigError(f"Invalid RPC port {self.port}")
        if bool(self.username) != bool(self.password):
            raise ConfigError("RPC username and password must be set together")
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be > 0")


@dataclass(slots=True)
class PipelineConfig:
    threshold: int = 90_000
    batch_limit: int = 30_000
    recheck_interval: float = 60.0

    def validate(self) -> None:
        if self.batch_limit <= 0:
            raise ConfigError("batch_limit must be positive")
        if self.recheck_interval <= 0:
            raise ConfigError("recheck_interval must be > 0")


@dataclass(slots=True)
class ServiceConfig:
    backend: BackendConfig = field(default_factory=BackendConfig)
    freezer: FreezerConfig = field(default_factory=FreezerConfig)
    rpc: RPCConfig = field(default_factory=RPCConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    data_dir: Path = field(default_factory=default_data_dir)
    log_file: Path | None = None

    def ensure_data_layout(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        (self.data_dir / "logs").mkdir(parents=True, exist_ok=True)
        if self.log_file is None:
            self.log_file = self.data_dir / "logs" / "ancientstore.log"
        if self.backend.driver == "fs" and not self.backend.root:
            self.backend.root = str(self.data_dir / "objects")

    def validate(self) -> None:
        self.backend.validate()
        self.freezer.validate()
        self.rpc.validate()
        self.pipeline.validate()
        if not isinstance(self.data_dir, Path):
            raise ConfigError("data_dir must be a Path")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["data_dir"] = str(self.data_dir)
        if self.log_file is not None:
            data["log_file"] = str(self.log_file)
        data["backend"]["secret_key"] = "***" if self.backend.secret_key else ""
        return data


def load_config(path: Path | None = None, *, overrides: dict[str, Any] | None = None) -> ServiceConfig:
    """Load configuration from disk and environment overrides."""

    def _merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
        for key, value in extra.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                base[key] = _merge(dict(base[key]), value)
            else:
                base[key] = value
        return base

    cfg_path = path or _expand_path(os.getenv("ANCIENTSTORE_CONFIG", str(default_data_dir() / "config.json")))
    base: dict[str, Any] = {}
    if Path(cfg_path).exists():
        with open(cfg_path, "rb") as fh:
            base = json.load(fh)

    env_overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if key in LEGACY_ENV:
            section, name = LEGACY_ENV[key]
            if name == "read_only":
                # Any non-empty value switches the legacy flag on.
                if not value:
                    continue
                value = "true"
            env_overrides.setdefault(section, {})[name] = value

    prefix = "ANCIENTSTORE_"
    for key, value in os.environ.items():
        if not key.startswith(prefix) or key in ("ANCIENTSTORE_CONFIG", "ANCIENTSTORE_DATA"):
            continue
        trimmed = key[len(prefix) :]
        parts = trimmed.lower().split("__")
        target = env_overrides
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        target[parts[-1]] = value

    if overrides:
        env_overrides = _merge(env_overrides, overrides)

    merged = _merge(base, env_overrides)
    config = ServiceConfig()
    _apply_dict(config, merged)
    config.ensure_data_layout()
    config.validate()
    return config


def _apply_dict(obj: Any, data: dict[str, Any]) -> None:
    for key, value in data.items():
        if not hasattr(obj, key):
            raise ConfigError(f"Unknown config field {key}")
        current = getattr(obj, key)
        if isinstance(current, Path) or (current is None and key.endswith(("dir", "file"))):
            setattr(obj, key, _expand_path(str(value)))
        elif isinstance(current, (BackendConfig, FreezerConfig, RPCConfig, PipelineConfig)):
            if not isinstance(value, dict):
                raise ConfigError(f"{key} must be a mapping")
            _apply_dict(current, value)
        else:
            setattr(obj, key, _coerce_value(current, value))


def _coerce_value(current: Any, value: Any) -> Any:
    target_type = type(current)
    if target_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in {"1", "true", "yes"}:
                return True
            if normalized in {"0", "false", "no", ""}:
                return False
            raise ConfigError(f"Invalid boolean value {value}")
        raise ConfigError(f"Cannot coerce {value!r} to bool")
    if target_type in {int, float}:
        try:
            return target_type(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid numeric value {value!r}") from exc
    if target_type is str:
        return str(value)
    return value
