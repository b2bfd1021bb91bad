"""Handlers for reading and modifying the configuration over HTTP."""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from .config import (
    Config,
    ConfigError,
    ContinueProfilingConfig,
    get_global_config,
    update_global_config,
)
from .docdb import DocDB
from .persist import CONTINUOUS_PROFILING_MODULE, save_config_into_storage

__all__ = ["handle_get_config", "handle_modify_config", "handle_post_config"]

logger = logging.getLogger(__name__)

_STATUS_OK = 200
_STATUS_SERVICE_UNAVAILABLE = 503


def _reject_constant(name: str) -> Any:
    raise ConfigError(f"invalid character in JSON: {name}")


_DECODER = json.JSONDecoder(parse_constant=_reject_constant)


def _decode_body(body: bytes | str) -> Any:
    """Decode the first JSON value of ``body``; an empty body raises ``EOF``."""
    if isinstance(body, (bytes, bytearray)):
        try:
            text = bytes(body).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ConfigError(str(exc)) from exc
    else:
        text = body
    text = text.lstrip()
    if not text:
        raise ConfigError("EOF")
    try:
        value, _ = _DECODER.raw_decode(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(str(exc)) from exc
    return value


def _same(old: Any, new: Any) -> bool:
    if isinstance(old, bool) or isinstance(new, bool):
        return type(old) is type(new) and old == new
    return old == new


def _normalize(value: Any) -> Any:
    """Write integral floats as integers, as JSON numbers carry no type."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    return value


def _modify_continue_profiling(request: dict[str, Any], db: DocDB) -> None:
    error: ConfigError | None = None

    def update(cur: Config) -> Config:
        nonlocal error
        current = cur.continue_profiling.to_dict()
        for key, new_value in request.items():
            if key not in current:
                error = ConfigError(f"unknown config `{key}`")
                return cur
            old_value = current[key]
            if _same(old_value, new_value):
                continue
            current[key] = new_value
            logger.info(
                "handle continuous profiling config modify name=%s old-value=%r new-value=%r",
                key,
                old_value,
                new_value,
            )
        data = json.dumps(_normalize(current), sort_keys=True, separators=(",", ":"))
        try:
            new_cfg = ContinueProfilingConfig.from_dict(json.loads(data))
        except ConfigError as exc:
            error = exc
            return cur
        if not new_cfg.valid():
            error = ConfigError(f"new config is invalid: {data}")
            return cur
        cur.continue_profiling = new_cfg
        return cur

    update_global_config(update)
    if error is not None:
        raise error
    save_config_into_storage(db)


def handle_get_config() -> tuple[int, dict[str, Any]]:
    """Return the status and JSON form of the current global config."""
    return _STATUS_OK, get_global_config().to_dict()


def handle_modify_config(body: bytes | str, db: DocDB) -> None:
    """Apply the modifications in a JSON request body and persist them.

    Raises ConfigError when the body cannot be decoded, names an unknown
    module or setting, or yields an invalid configuration.
    """
    request = _decode_body(body)
    if request is None:
        return
    if not isinstance(request, dict):
        raise ConfigError(
            f"cannot decode {type(request).__name__} into a config modification object"
        )
    for key, value in request.items():
        if key != CONTINUOUS_PROFILING_MODULE:
            raise ConfigError(f"config {key} not support modify or unknow")
        if not isinstance(value, dict):
            raise ConfigError(f"{key} config value is invalid: {value}")
        _modify_continue_profiling(value, db)


def handle_post_config(body: bytes | str, db: DocDB) -> tuple[int, dict[str, Any]]:
    """Modify the config and return the HTTP status and JSON reply."""
    try:
        handle_modify_config(body, db)
    except (ValueError, OSError, sqlite3.Error) as exc:
        return _STATUS_SERVICE_UNAVAILABLE, {"message": str(exc), "status": "error"}
    return _STATUS_OK, {"status": "ok"}