"""Command line entry point of the monitoring server."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sqlite3
import sys
import threading
from collections.abc import Sequence

from .config import Config, ConfigError, init_config, install_reload_handler
from .docdb import SQLiteDB
from .persist import load_config_from_storage
from .printer import get_ngm_info, print_ngm_info
from .server import HTTPService

__all__ = ["parse_args", "override_config", "must_create_dirs", "main"]

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse the command line; options not given are None."""
    parser = argparse.ArgumentParser(prog="ng-monitoring-server", allow_abbrev=False)
    parser.add_argument(
        "-V", "--version", action="store_true", help="print version information and exit"
    )
    parser.add_argument(
        "--address", dest="address", help="TCP address to listen for http connections"
    )
    parser.add_argument(
        "--pd.endpoints",
        dest="pd_endpoints",
        action="append",
        help="Addresses of PD instances within the TiDB cluster. Multiple addresses are "
        "separated by commas, e.g. --pd.endpoints 10.0.0.1:2379,10.0.0.2:2379",
    )
    parser.add_argument("--log.path", dest="log_path", help="Log path of ng monitoring server")
    parser.add_argument(
        "--storage.path", dest="storage_path", help="Storage path of ng monitoring server"
    )
    parser.add_argument("--config", dest="config", help="config file path")
    parser.add_argument(
        "--advertise-address", dest="advertise_address", help="ngm server advertise IP:PORT"
    )
    parser.add_argument(
        "--retention-period",
        dest="retention_period",
        help="Data with timestamps outside the retentionPeriod is automatically deleted. "
        "The following optional suffixes are supported: h (hour), d (day), w (week), "
        "y (year). If suffix isn't set, then the duration is counted in months",
    )
    return parser.parse_args(argv)


def _split_endpoints(values: list[str]) -> list[str]:
    return [part for value in values if value for part in value.split(",")]


def override_config(config: Config, args: argparse.Namespace) -> None:
    """Overwrite ``config`` with every option given on the command line."""
    if args.address is not None:
        config.address = args.address
    if args.pd_endpoints is not None:
        config.pd.endpoints = _split_endpoints(args.pd_endpoints)
    if args.log_path is not None:
        config.log.path = args.log_path
    if args.storage_path is not None:
        config.storage.path = args.storage_path
    if args.advertise_address is not None:
        config.advertise_address = args.advertise_address
    if args.retention_period is not None:
        config.tsdb.retention_period = args.retention_period


def must_create_dirs(config: Config) -> None:
    """Create the log directory (if set) and the storage directory."""
    if config.log.path:
        os.makedirs(config.log.path, exist_ok=True)
    os.makedirs(config.storage.path, exist_ok=True)


def _wait_for_termination() -> str:
    stop = threading.Event()
    received: list[str] = []

    def handle(signum: int, frame: object) -> None:
        received.append(signal.Signals(signum).name)
        stop.set()

    previous = {sig: signal.signal(sig, handle) for sig in (signal.SIGTERM, signal.SIGINT)}
    try:
        while not stop.wait(1.0):
            pass
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)
    return received[0]


def main(argv: Sequence[str] | None = None) -> int:
    """Run the server until SIGTERM or SIGINT; return the exit status."""
    args = parse_args(argv)
    if args.version:
        print(get_ngm_info())
        return 0

    try:
        cfg = init_config(args.config, lambda c: override_config(c, args))
    except (OSError, ConfigError) as exc:
        print(f"Failed to initialize config, err: {exc}", file=sys.stderr)
        return 1

    try:
        must_create_dirs(cfg)
    except OSError as exc:
        print(f"failed to init log or storage path, err: {exc}", file=sys.stderr)
        return 1

    cfg.log.init_default_logger()
    print_ngm_info()
    logger.info("config %s", cfg.to_dict())

    if cfg.storage.docdb_backend not in ("", "sqlite"):
        logger.warning(
            "unsupported docdb backend %s, using sqlite", cfg.storage.docdb_backend
        )
    try:
        db = SQLiteDB(cfg.storage.path, cfg.storage.sqlite_use_wal)
    except (OSError, sqlite3.Error) as exc:
        print(f"Failed to create docdb err: {exc}", file=sys.stderr)
        return 1

    with db:
        try:
            load_config_from_storage(db)
        except (ConfigError, sqlite3.Error) as exc:
            print(f"Failed to load config from storage, err: {exc}", file=sys.stderr)
            return 1

        service = HTTPService(cfg, db)
        try:
            service.start()
        except (OSError, ValueError) as exc:
            logger.error("failed to listen address=%s err=%s", cfg.address, exc)
            return 1
        try:
            install_reload_handler(args.config)
            sig = _wait_for_termination()
            logger.info("received signal sig=%s", sig)
        finally:
            service.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())