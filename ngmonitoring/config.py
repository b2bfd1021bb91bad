"""Server configuration: defaults, TOML loading, validation and global state."""

from __future__ import annotations

import copy
import logging
import os
import queue
import re
import signal
import ssl
import sys
import threading
import tomllib
import types
from collections.abc import Callable
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any

from .docdb_log import LEVEL_DEBUG, LEVEL_ERROR, LEVEL_INFO, LEVEL_WARN
from .misc import get_local_ip

__all__ = [
    "ConfigError",
    "GoSettings",
    "PD",
    "Storage",
    "Log",
    "Security",
    "TSDB",
    "BadgerConfig",
    "ContinueProfilingConfig",
    "PprofProfilingConfig",
    "ProfilingConfig",
    "ScrapeConfig",
    "Config",
    "LEVEL_DEBUG",
    "LEVEL_INFO",
    "LEVEL_WARN",
    "LEVEL_ERROR",
    "get_default_config",
    "subscribe",
    "get_global_config",
    "store_global_config",
    "update_global_config",
    "init_config",
    "validate_address",
    "reload_config",
    "install_reload_handler",
]

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when a configuration cannot be loaded or is invalid."""


def _opt(toml: str | None, json: str | None, tp: Any, **kwargs: Any) -> Any:
    return field(metadata={"toml": toml, "json": json, "type": tp}, **kwargs)


def _coerce(value: Any, tp: Any, where: str) -> Any:
    if tp is bool:
        if isinstance(value, bool):
            return value
    elif tp is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif tp is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif tp is str:
        if isinstance(value, str):
            return value
    elif isinstance(tp, types.GenericAlias) and tp.__origin__ is list:
        (item_tp,) = tp.__args__
        if isinstance(value, list):
            return [_coerce(item, item_tp, where) for item in value]
    raise ConfigError(f"{where}: incompatible type {type(value).__name__}")


def _apply(obj: Any, table: dict[str, Any], key_kind: str, prefix: str = "") -> None:
    """Overlay the values in ``table`` onto the dataclass ``obj``, strictly typed."""
    for f in fields(obj):
        key = f.metadata.get(key_kind)
        if key is None or key not in table:
            continue
        value = table[key]
        where = f"{prefix}{key}"
        tp = f.metadata["type"]
        if isinstance(tp, type) and is_dataclass(tp):
            if not isinstance(value, dict):
                raise ConfigError(f"{where}: expected a table, got {type(value).__name__}")
            _apply(getattr(obj, f.name), value, key_kind, f"{where}.")
            continue
        if value is None and key_kind == "json":
            continue
        setattr(obj, f.name, _coerce(value, tp, where))


def _to_json(obj: Any) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for f in fields(obj):
        key = f.metadata.get("json")
        if key is None:
            continue
        value = getattr(obj, f.name)
        if is_dataclass(value):
            result[key] = _to_json(value)
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


@dataclass
class GoSettings:
    """Runtime tuning knobs."""

    gc_percent: int = _opt("gc-percent", "gc_percent", int, default=0)
    memory_limit: int = _opt("memory-limit", "memory_limit", int, default=0)


@dataclass
class PD:
    """Placement driver endpoints."""

    endpoints: list[str] = _opt("endpoints", "endpoints", list[str], default_factory=list)

    def _validate(self) -> None:
        if not self.endpoints:
            raise ConfigError(
                "unexpected empty pd endpoints, please specify at least one, "
                'e.g. --pd.endpoints "127.0.0.1:2379"'
            )

    def equal(self, other: PD) -> bool:
        """Whether both hold the same endpoints, ignoring order."""
        return sorted(self.endpoints) == sorted(other.endpoints)


@dataclass
class Storage:
    """Where and how data is stored."""

    path: str = _opt("path", "path", str, default="")
    docdb_backend: str = _opt("docdb-backend", "docdb_backend", str, default="")
    sqlite_use_wal: bool = _opt("sqlite-use-wal", "sqlite_use_wal", bool, default=False)
    meta_retention_secs: int = _opt(
        "meta-retention-secs", "meta_retention_secs", int, default=0
    )

    def _validate(self) -> None:
        if not self.path:
            raise ConfigError("unexpected empty storage path")


_LOGGING_LEVELS = {
    LEVEL_DEBUG: logging.DEBUG,
    LEVEL_INFO: logging.INFO,
    LEVEL_WARN: logging.WARNING,
    LEVEL_ERROR: logging.ERROR,
}

_installed_handler: logging.Handler | None = None
_handler_lock = threading.Lock()


@dataclass
class Log:
    """Log destination and level."""

    path: str = _opt("path", "path", str, default="")
    level: str = _opt("level", "level", str, default="")

    def _validate(self) -> None:
        if not self.level:
            raise ConfigError("unexpected empty log level")
        if self.level not in _LOGGING_LEVELS:
            raise ConfigError(
                f"log level should be {LEVEL_DEBUG}, {LEVEL_INFO}, {LEVEL_WARN} or {LEVEL_ERROR}"
            )

    def init_default_logger(self) -> None:
        """Route the root logger to ``<path>/ng.log``, or stdout when no path is set."""
        global _installed_handler
        level = _LOGGING_LEVELS.get(self.level.upper())
        if level is None:
            raise ConfigError(f"Failed to init logger, unknown level: {self.level}")
        handler: logging.Handler
        if self.path:
            handler = logging.FileHandler(os.path.join(self.path, "ng.log"), encoding="utf-8")
        else:
            handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s")
        )
        root = logging.getLogger()
        with _handler_lock:
            if _installed_handler is not None:
                root.removeHandler(_installed_handler)
                _installed_handler.close()
            root.addHandler(handler)
            root.setLevel(level)
            _installed_handler = handler


@dataclass
class Security:
    """TLS certificate paths."""

    ssl_ca: str = _opt("ca-path", "ca_path", str, default="")
    ssl_cert: str = _opt("cert-path", "cert_path", str, default="")
    ssl_key: str = _opt("key-path", "key_path", str, default="")
    _tls_config: ssl.SSLContext | None = field(
        default=None,
        init=False,
        repr=False,
        compare=False,
        metadata={"toml": None, "json": None, "type": None},
    )

    def __deepcopy__(self, memo: dict[int, Any]) -> Security:
        clone = Security(self.ssl_ca, self.ssl_cert, self.ssl_key)
        clone._tls_config = self._tls_config
        return clone

    def get_tls_config(self) -> ssl.SSLContext | None:
        """A client TLS context, or None unless CA, cert and key are all set."""
        if self._tls_config is not None:
            return self._tls_config
        if not (self.ssl_ca and self.ssl_cert and self.ssl_key):
            return None
        try:
            context = ssl.create_default_context(cafile=self.ssl_ca)
            context.load_cert_chain(certfile=self.ssl_cert, keyfile=self.ssl_key)
        except OSError as exc:
            raise ConfigError(f"Failed to load certificates: {exc}") from exc
        self._tls_config = context
        return context

    def get_http_client_config(self) -> dict[str, dict[str, str]]:
        """TLS file settings for an HTTP client."""
        return {
            "tls_config": {
                "ca_file": self.ssl_ca,
                "cert_file": self.ssl_cert,
                "key_file": self.ssl_key,
            }
        }


@dataclass
class TSDB:
    """Time-series storage settings."""

    retention_period: str = _opt("retention-period", "retention_period", str, default="")
    search_max_unique_timeseries: int = _opt(
        "search-max-unique-timeseries", "search_max_unique_timeseries", int, default=0
    )
    memory_allowed_bytes: int = _opt(
        "memory-allowed-bytes", "memory_allowed_bytes", int, default=0
    )
    memory_allowed_percent: float = _opt(
        "memory-allowed-percent", "memory_allowed_percent", float, default=0.0
    )
    cache_size_indexdb_data_blocks: str = _opt(
        "cache-size-indexdb-data-blocks", "cache_size_indexdb_data_blocks", str, default=""
    )
    cache_size_indexdb_data_blocks_sparse: str = _opt(
        "cache-size-indexdb-data-blocks-sparse",
        "cache_size_indexdb_data_blocks_sparse",
        str,
        default="",
    )
    cache_size_indexdb_index_blocks: str = _opt(
        "cache-size-indexdb-index-blocks", "cache_size_indexdb_index_blocks", str, default=""
    )
    cache_size_indexdb_tag_filters: str = _opt(
        "cache-size-indexdb-tag-filters", "cache_size_indexdb_tag_filters", str, default=""
    )
    cache_size_metric_names_stats: str = _opt(
        "cache-size-metric-names-stats", "cache_size_metric_names_stats", str, default=""
    )
    cache_size_storage_tsid: str = _opt(
        "cache-size-storage-tsid", "cache_size_storage_tsid", str, default=""
    )


@dataclass
class BadgerConfig:
    """Tuning of the key-value engine behind the document store."""

    lsm_only: bool = _opt("lsm-only", "lsm_only", bool, default=False)
    sync_writes: bool = _opt("sync-writes", "sync_writes", bool, default=False)
    num_versions_to_keep: int = _opt(
        "num-versions-to-keep", "num_versions_to_keep", int, default=0
    )
    num_goroutines: int = _opt("num-goroutines", "num_goroutines", int, default=0)
    mem_table_size: int = _opt("mem-table-size", "mem_table_size", int, default=0)
    base_table_size: int = _opt("base-table-size", "base_table_size", int, default=0)
    base_level_size: int = _opt("base-level-size", "base_level_size", int, default=0)
    level_size_multiplier: int = _opt(
        "level-size-multiplier", "level_size_multiplier", int, default=0
    )
    max_levels: int = _opt("max-levels", "max_levels", int, default=0)
    vlog_percentile: float = _opt("vlog-percentile", "vlog_percentile", float, default=0.0)
    value_threshold: int = _opt("value-threshold", "value_threshold", int, default=0)
    num_memtables: int = _opt("num-memtables", "num_memtables", int, default=0)
    block_size: int = _opt("block-size", "block_size", int, default=0)
    bloom_false_positive: float = _opt(
        "bloom-false-positive", "bloom_false_positive", float, default=0.0
    )
    block_cache_size: int = _opt("block-cache-size", "block_cache_size", int, default=0)
    index_cache_size: int = _opt("index-cache-size", "index_cache_size", int, default=0)
    num_level_zero_tables: int = _opt(
        "num-level-zero-tables", "num_level_zero_tables", int, default=0
    )
    num_level_zero_tables_stall: int = _opt(
        "num-level-zero-tables-stall", "num_level_zero_tables_stall", int, default=0
    )
    value_log_file_size: int = _opt(
        "value-log-file-size", "value_log_file_size", int, default=0
    )
    value_log_max_entries: int = _opt(
        "value-log-max-entries", "value_log_max_entries", int, default=0
    )
    num_compactors: int = _opt("num-compactors", "num_compactors", int, default=0)
    zstd_compression_level: int = _opt(
        "zstd-compression-level", "zstd_compression_level", int, default=0
    )


@dataclass
class ContinueProfilingConfig:
    """Continuous profiling settings; changeable at runtime."""

    enable: bool = _opt(None, "enable", bool, default=False)
    profile_seconds: int = _opt(None, "profile_seconds", int, default=0)
    interval_seconds: int = _opt(None, "interval_seconds", int, default=0)
    timeout_seconds: int = _opt(None, "timeout_seconds", int, default=0)
    data_retention_seconds: int = _opt(None, "data_retention_seconds", int, default=0)

    def valid(self) -> bool:
        """Whether all durations are set and a profile fits its interval and timeout."""
        if 0 in (
            self.profile_seconds,
            self.interval_seconds,
            self.timeout_seconds,
            self.data_retention_seconds,
        ):
            return False
        return not (
            self.profile_seconds > self.interval_seconds
            or self.profile_seconds > self.timeout_seconds
        )

    def to_dict(self) -> dict[str, Any]:
        """The JSON form, keys in declaration order."""
        return _to_json(self)

    @classmethod
    def from_dict(cls, data: Any) -> ContinueProfilingConfig:
        """Build from a decoded JSON object; missing keys keep zero values."""
        if not isinstance(data, dict):
            raise ConfigError(
                f"cannot decode {type(data).__name__} into continuous profiling config"
            )
        cfg = cls()
        _apply(cfg, data, "json")
        return cfg


@dataclass
class PprofProfilingConfig:
    """One pprof endpoint to scrape."""

    path: str = ""
    seconds: int = 0
    header: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)


@dataclass
class ProfilingConfig:
    """The pprof endpoints of a scrape unit, keyed by profile name."""

    pprof_config: dict[str, PprofProfilingConfig] = field(default_factory=dict)


@dataclass
class ScrapeConfig:
    """A scraping unit for continuous profiling; durations are in seconds."""

    component_name: str = ""
    scrape_interval: float = 0.0
    scrape_timeout: float = 0.0
    profiling_config: ProfilingConfig | None = None
    targets: list[str] = field(default_factory=list)


_ADDRESS_WILDCARD = "0.0.0.0"


@dataclass
class Config:
    """The complete server configuration."""

    address: str = _opt("address", "address", str, default="")
    advertise_address: str = _opt("advertise-address", "advertise_address", str, default="")
    go: GoSettings = _opt("go", "go", GoSettings, default_factory=GoSettings)
    pd: PD = _opt("pd", "pd", PD, default_factory=PD)
    log: Log = _opt("log", "log", Log, default_factory=Log)
    storage: Storage = _opt("storage", "storage", Storage, default_factory=Storage)
    continue_profiling: ContinueProfilingConfig = _opt(
        None,
        "continuous_profiling",
        ContinueProfilingConfig,
        default_factory=ContinueProfilingConfig,
    )
    security: Security = _opt("security", "security", Security, default_factory=Security)
    tsdb: TSDB = _opt("tsdb", "tsdb", TSDB, default_factory=TSDB)
    docdb: BadgerConfig = _opt("docdb", "docdb", BadgerConfig, default_factory=BadgerConfig)

    def load(self, file_name: str | os.PathLike[str]) -> None:
        """Overlay the settings of a TOML file onto this config."""
        with open(file_name, "rb") as fh:
            try:
                data = tomllib.load(fh)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigError(str(exc)) from exc
        _apply(self, data, "toml")

    def to_dict(self) -> dict[str, Any]:
        """The JSON form of the config."""
        return _to_json(self)

    def get_http_scheme(self) -> str:
        """``https`` when TLS is configured, otherwise ``http``."""
        return "https" if self.security.get_tls_config() is not None else "http"

    def _trim_field_space(self) -> None:
        self.address = self.address.strip()
        self.advertise_address = self.advertise_address.strip()
        self.pd.endpoints = [addr.strip() for addr in self.pd.endpoints]

    def _set_default_advertise_address(self) -> None:
        if not self.advertise_address and self.address.startswith(_ADDRESS_WILDCARD):
            self.advertise_address = self.address.replace(_ADDRESS_WILDCARD, get_local_ip(), 1)
        if not self.advertise_address:
            self.advertise_address = self.address

    def _validate(self) -> None:
        validate_address(self.address, "address")
        validate_address(self.advertise_address, "advertise-address")
        if not self.address:
            raise ConfigError("unexpected empty address")
        self.pd._validate()
        self.log._validate()
        self.storage._validate()


def _build_default_config() -> Config:
    return Config(
        address="0.0.0.0:12020",
        pd=PD(endpoints=["127.0.0.1:2379"]),
        log=Log(path="", level=LEVEL_INFO),
        storage=Storage(path="data", sqlite_use_wal=True),
        continue_profiling=ContinueProfilingConfig(
            enable=False,
            profile_seconds=10,
            interval_seconds=60,
            timeout_seconds=120,
            data_retention_seconds=3 * 24 * 60 * 60,
        ),
        tsdb=TSDB(retention_period="1", search_max_unique_timeseries=300000),
        docdb=BadgerConfig(
            lsm_only=False,
            sync_writes=False,
            num_versions_to_keep=1,
            num_goroutines=8,
            mem_table_size=64 << 20,
            base_table_size=2 << 20,
            base_level_size=10 << 20,
            level_size_multiplier=10,
            max_levels=7,
            vlog_percentile=0.0,
            value_threshold=1 << 20,
            num_memtables=5,
            block_size=4 * 1024,
            bloom_false_positive=0.01,
            block_cache_size=256 << 20,
            index_cache_size=0,
            num_level_zero_tables=5,
            num_level_zero_tables_stall=15,
            value_log_file_size=(1 << 30) - 1,
            value_log_max_entries=1000000,
            num_compactors=4,
            zstd_compression_level=1,
        ),
    )


_DEFAULT_CONFIG = _build_default_config()

GetLatestConfig = Callable[[], Config]

_global_lock = threading.Lock()
_global_config = copy.deepcopy(_DEFAULT_CONFIG)
_subscribers_lock = threading.Lock()
_subscribers: list[queue.Queue[GetLatestConfig]] = []


def get_default_config() -> Config:
    """A fresh copy of the built-in defaults."""
    return copy.deepcopy(_DEFAULT_CONFIG)


def subscribe() -> queue.Queue[GetLatestConfig]:
    """A queue that receives a config getter every time the config changes.

    One getter is already waiting in the queue on return.
    """
    ch: queue.Queue[GetLatestConfig] = queue.Queue(maxsize=1)
    with _subscribers_lock:
        _subscribers.append(ch)
        ch.put_nowait(get_global_config)
    return ch


def _notify_config_change() -> None:
    with _subscribers_lock:
        for ch in _subscribers:
            try:
                ch.put_nowait(get_global_config)
            except queue.Full:
                pass


def get_global_config() -> Config:
    """A copy of the current global config."""
    with _global_lock:
        return copy.deepcopy(_global_config)


def store_global_config(config: Config) -> None:
    """Replace the global config and notify subscribers."""
    global _global_config
    with _global_lock:
        _global_config = copy.deepcopy(config)
    _notify_config_change()


def update_global_config(update: Callable[[Config], Config]) -> None:
    """Replace the global config with ``update(current)`` and notify subscribers."""
    global _global_config
    with _global_lock:
        _global_config = copy.deepcopy(update(copy.deepcopy(_global_config)))
    _notify_config_change()


def init_config(
    config_path: str | os.PathLike[str] | None,
    override: Callable[[Config], None] | None = None,
) -> Config:
    """Build, validate and publish the startup config."""
    config = get_default_config()
    if config_path:
        config.load(config_path)
    if override is not None:
        override(config)
    config._trim_field_space()
    config._set_default_advertise_address()
    config._validate()
    store_global_config(config)
    return config


_ATOI = re.compile(r"[+-]?[0-9]+")


def _split_host_port(address: str) -> tuple[str, str]:
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"address {address}: missing ']' in address")
        rest = address[end + 1 :]
        if not rest.startswith(":"):
            raise ValueError(f"address {address}: missing port in address")
        host, port = address[1:end], rest[1:]
        if ":" in port:
            raise ValueError(f"address {address}: too many colons in address")
        return host, port
    idx = address.rfind(":")
    if idx < 0:
        raise ValueError(f"address {address}: missing port in address")
    host, port = address[:idx], address[idx + 1 :]
    if ":" in host:
        raise ValueError(f"address {address}: too many colons in address")
    if "[" in host or "]" in host:
        raise ValueError(f"address {address}: unexpected bracket in address")
    return host, port


def validate_address(address: str, name: str) -> None:
    """Raise ConfigError unless ``address`` is ``host:port`` with a non-zero port."""
    if not address:
        raise ConfigError(f"unexpected empty {name}")
    try:
        _, port = _split_host_port(address)
        if not _ATOI.fullmatch(port):
            raise ValueError(f'strconv.Atoi: parsing "{port}": invalid syntax')
        if int(port) == 0:
            raise ValueError("port cannot be set to 0")
    except ValueError as exc:
        raise ConfigError(f"{name} {address} is invalid, err: {exc}") from exc


def reload_config(config_path: str | os.PathLike[str]) -> bool:
    """Re-read PD endpoints from ``config_path``; return whether they changed."""
    new_cfg = Config()
    new_cfg.load(config_path)
    if not new_cfg.pd.endpoints:
        raise ConfigError("unexpected empty PD endpoints")

    changed = False

    def update(cur: Config) -> Config:
        nonlocal changed
        if cur.pd.equal(new_cfg.pd):
            return cur
        cur.pd = new_cfg.pd
        changed = True
        logger.info("PD endpoints changed endpoints=%s", cur.pd.endpoints)
        return cur

    update_global_config(update)
    return changed


def install_reload_handler(config_path: str | os.PathLike[str] | None) -> bool:
    """Reload the config on SIGHUP; return whether a handler was installed."""
    if not config_path:
        logger.warning(
            "failed to reload config due to empty config path. "
            'Please specify the command line argument "--config <path>"'
        )
        return False
    sighup = getattr(signal, "SIGHUP", None)
    if sighup is None:
        logger.warning("SIGHUP is not available; config reloading is disabled")
        return False

    def handle(signum: int, frame: Any) -> None:
        logger.info("received SIGHUP and ready to reload config")
        try:
            reload_config(config_path)
        except (OSError, ConfigError) as exc:
            logger.warning("failed to reload config: %s", exc)

    signal.signal(sighup, handle)
    return True