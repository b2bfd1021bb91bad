"""Persisting runtime-modifiable configuration in the document store."""

from __future__ import annotations

import json
import logging

from .config import (
    Config,
    ConfigError,
    ContinueProfilingConfig,
    get_global_config,
    update_global_config,
)
from .docdb import DocDB

__all__ = [
    "CONTINUOUS_PROFILING_MODULE",
    "load_config_from_storage",
    "save_config_into_storage",
]

logger = logging.getLogger(__name__)

CONTINUOUS_PROFILING_MODULE = "continuous_profiling"


def load_config_from_storage(db: DocDB) -> None:
    """Apply the module configurations stored in ``db`` to the global config.

    Invalid continuous profiling settings are skipped; undecodable ones and
    unknown modules raise ConfigError.
    """
    cfg_map = db.load_config()
    error: ConfigError | None = None

    def update(cur: Config) -> Config:
        nonlocal error
        for module, cfg_str in cfg_map.items():
            if module != CONTINUOUS_PROFILING_MODULE:
                error = ConfigError(
                    f"unknow module config in storage, module: {module}, config: {cfg_str}"
                )
                return cur
            try:
                new_cfg = ContinueProfilingConfig.from_dict(json.loads(cfg_str))
            except ValueError as exc:
                error = exc if isinstance(exc, ConfigError) else ConfigError(str(exc))
                return cur
            if new_cfg.valid():
                cur.continue_profiling = new_cfg
            else:
                logger.info("load invalid config module=%s module-config=%s", module, new_cfg)
            logger.info("load config from storage module=%s module-config=%s", module, cfg_str)
        return cur

    update_global_config(update)
    if error is not None:
        raise error


def save_config_into_storage(db: DocDB) -> None:
    """Store the current continuous profiling settings in ``db``."""
    cfg = get_global_config()
    data = json.dumps(cfg.continue_profiling.to_dict(), separators=(",", ":"))
    db.save_config({CONTINUOUS_PROFILING_MODULE: data})