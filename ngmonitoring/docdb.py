"""Document storage for configuration, SQL/plan metadata and profiling data."""

from __future__ import annotations

import abc
import logging
import os
import sqlite3
import threading
import time
from dataclasses import dataclass
from typing import Any

__all__ = [
    "SQLMeta",
    "PlanMeta",
    "ProfileTarget",
    "TargetInfo",
    "DocDB",
    "SQLiteDB",
]

logger = logging.getLogger(__name__)

_DB_FILE_NAME = "ng-sqlite.db"

_INIT_STATEMENTS = (
    "CREATE TABLE IF NOT EXISTS ng_monitoring_config (module TEXT primary key, config TEXT)",
    "CREATE TABLE IF NOT EXISTS sql_digest (digest VARCHAR(255) PRIMARY KEY, sql_text TEXT, "
    "is_internal BOOLEAN, created_at_ts INTEGER)",
    "CREATE TABLE IF NOT EXISTS plan_digest (digest VARCHAR(255) PRIMARY KEY, plan_text TEXT, "
    "encoded_plan TEXT, created_at_ts INTEGER)",
    "CREATE TABLE IF NOT EXISTS conprof_targets_meta (id INTEGER PRIMARY KEY, kind TEXT, "
    "component TEXT, address TEXT, last_scrape_ts INTEGER)",
    "CREATE INDEX IF NOT EXISTS idx_sql_digest_ts ON sql_digest (created_at_ts)",
    "CREATE INDEX IF NOT EXISTS idx_plan_digest_ts ON plan_digest (created_at_ts)",
)


@dataclass(frozen=True)
class SQLMeta:
    """A normalized SQL statement identified by its digest."""

    sql_digest: bytes
    normalized_sql: str
    is_internal_sql: bool = False


@dataclass(frozen=True)
class PlanMeta:
    """A normalized execution plan identified by its digest."""

    plan_digest: bytes
    normalized_plan: str
    encoded_normalized_plan: str = ""


@dataclass(frozen=True)
class ProfileTarget:
    """A component instance that is profiled."""

    kind: str
    component: str
    address: str


@dataclass(frozen=True)
class TargetInfo:
    """Storage identity and last scrape time of a profile target."""

    id: int
    last_scrape_ts: int


class DocDB(abc.ABC):
    """Interface of the document store."""

    @abc.abstractmethod
    def close(self) -> None: ...

    @abc.abstractmethod
    def save_config(self, cfg: dict[str, str]) -> None: ...

    @abc.abstractmethod
    def load_config(self) -> dict[str, str]: ...

    @abc.abstractmethod
    def write_sql_meta(self, meta: SQLMeta) -> None: ...

    @abc.abstractmethod
    def query_sql_meta(self, digest: str) -> str: ...

    @abc.abstractmethod
    def delete_sql_meta_before_ts(self, ts: int) -> None: ...

    @abc.abstractmethod
    def write_plan_meta(self, meta: PlanMeta) -> None: ...

    @abc.abstractmethod
    def query_plan_meta(self, digest: str) -> tuple[str, str]: ...

    @abc.abstractmethod
    def delete_plan_meta_before_ts(self, ts: int) -> None: ...

    @abc.abstractmethod
    def conprof_create_profile_tables(self, target_id: int) -> None: ...

    @abc.abstractmethod
    def conprof_delete_profile_tables(self, target_id: int) -> None: ...

    @abc.abstractmethod
    def conprof_create_target_info(self, target: ProfileTarget, info: TargetInfo) -> None: ...

    @abc.abstractmethod
    def conprof_update_target_info(self, info: TargetInfo) -> None: ...

    @abc.abstractmethod
    def conprof_query_target_info(self, target: ProfileTarget) -> list[TargetInfo]: ...

    @abc.abstractmethod
    def conprof_query_all_profile_targets(self) -> list[tuple[ProfileTarget, TargetInfo]]: ...

    @abc.abstractmethod
    def conprof_write_profile_data(self, target_id: int, ts: int, data: bytes) -> None: ...

    @abc.abstractmethod
    def conprof_query_profile_data(
        self, target_id: int, begin: int, end: int
    ) -> list[tuple[int, bytes]]: ...

    @abc.abstractmethod
    def conprof_delete_profile_data_before_ts(self, target_id: int, ts: int) -> None: ...

    @abc.abstractmethod
    def conprof_write_profile_meta(self, target_id: int, ts: int, error: str) -> None: ...

    @abc.abstractmethod
    def conprof_query_profile_meta(
        self, target_id: int, begin: int, end: int
    ) -> list[tuple[int, str]]: ...

    @abc.abstractmethod
    def conprof_delete_profile_meta_before_ts(self, target_id: int, ts: int) -> None: ...


def _data_table(target_id: int) -> str:
    return f"conprof_{int(target_id)}_data"


def _meta_table(target_id: int) -> str:
    return f"conprof_{int(target_id)}_meta"


class SQLiteDB(DocDB):
    """A DocDB backed by a SQLite file ``ng-sqlite.db`` inside ``path``."""

    def __init__(self, path: str | os.PathLike[str], use_wal: bool = True) -> None:
        self.path = os.path.join(os.fspath(path), _DB_FILE_NAME)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            self.path, check_same_thread=False, isolation_level=None
        )
        try:
            if use_wal:
                self._conn.execute("PRAGMA journal_mode=WAL")
            for stmt in _INIT_STATEMENTS:
                self._conn.execute(stmt)
        except sqlite3.Error:
            self._conn.close()
            raise

    def __enter__(self) -> SQLiteDB:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _exec(self, sql: str, params: tuple[Any, ...] = ()) -> None:
        with self._lock:
            self._conn.execute(sql, params)

    def _query(self, sql: str, params: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def close(self) -> None:
        """Close the underlying database connection."""
        with self._lock:
            self._conn.close()

    def save_config(self, cfg: dict[str, str]) -> None:
        """Replace all stored module configurations with ``cfg``."""
        self._exec("DELETE FROM ng_monitoring_config")
        for module, data in cfg.items():
            self._exec(
                "INSERT INTO ng_monitoring_config (module, config) VALUES (?, ?)",
                (module, data),
            )
            logger.info("save config into storage module=%s config=%s", module, data)

    def load_config(self) -> dict[str, str]:
        """Return the stored configuration of every module."""
        rows = self._query("SELECT module, config FROM ng_monitoring_config")
        return {module: config for module, config in rows}

    def write_sql_meta(self, meta: SQLMeta) -> None:
        """Insert or replace a SQL statement keyed by its hex digest."""
        self._exec(
            "INSERT OR REPLACE INTO sql_digest (digest, sql_text, is_internal, created_at_ts) "
            "VALUES (?, ?, ?, ?)",
            (meta.sql_digest.hex(), meta.normalized_sql, meta.is_internal_sql, int(time.time())),
        )

    def query_sql_meta(self, digest: str) -> str:
        """Return the SQL text for a hex digest, or "" if unknown."""
        rows = self._query("SELECT sql_text FROM sql_digest WHERE digest = ?", (digest,))
        return rows[0][0] if rows else ""

    def delete_sql_meta_before_ts(self, ts: int) -> None:
        """Delete SQL metadata created before ``ts``."""
        self._exec("DELETE FROM sql_digest WHERE created_at_ts < ?", (ts,))

    def write_plan_meta(self, meta: PlanMeta) -> None:
        """Insert or replace a plan keyed by its hex digest."""
        self._exec(
            "INSERT OR REPLACE INTO plan_digest (digest, plan_text, encoded_plan, created_at_ts) "
            "VALUES (?, ?, ?, ?)",
            (
                meta.plan_digest.hex(),
                meta.normalized_plan,
                meta.encoded_normalized_plan,
                int(time.time()),
            ),
        )

    def query_plan_meta(self, digest: str) -> tuple[str, str]:
        """Return ``(plan_text, encoded_plan)`` for a hex digest, or empty strings."""
        rows = self._query(
            "SELECT plan_text, encoded_plan FROM plan_digest WHERE digest = ?", (digest,)
        )
        if not rows:
            return "", ""
        plan_text, encoded_plan = rows[0]
        return plan_text, encoded_plan

    def delete_plan_meta_before_ts(self, ts: int) -> None:
        """Delete plan metadata created before ``ts``."""
        self._exec("DELETE FROM plan_digest WHERE created_at_ts < ?", (ts,))

    def conprof_create_profile_tables(self, target_id: int) -> None:
        """Create the data and meta tables of a profile target."""
        self._exec(
            f"CREATE TABLE IF NOT EXISTS {_data_table(target_id)} "
            "(ts INTEGER PRIMARY KEY, data BLOB)"
        )
        self._exec(
            f"CREATE TABLE IF NOT EXISTS {_meta_table(target_id)} "
            "(ts INTEGER PRIMARY KEY, error TEXT)"
        )

    def conprof_delete_profile_tables(self, target_id: int) -> None:
        """Remove a target's info row and drop its tables."""
        self._exec("DELETE FROM conprof_targets_meta WHERE id = ?", (int(target_id),))
        self._exec(f"DROP TABLE IF EXISTS {_data_table(target_id)}")
        self._exec(f"DROP TABLE IF EXISTS {_meta_table(target_id)}")

    def conprof_create_target_info(self, target: ProfileTarget, info: TargetInfo) -> None:
        """Record a new profile target."""
        self._exec(
            "INSERT INTO conprof_targets_meta (id, kind, component, address, last_scrape_ts) "
            "VALUES (?, ?, ?, ?, ?)",
            (info.id, target.kind, target.component, target.address, info.last_scrape_ts),
        )

    def conprof_update_target_info(self, info: TargetInfo) -> None:
        """Update the last scrape time of a target."""
        self._exec(
            "UPDATE conprof_targets_meta set last_scrape_ts = ? where id = ?",
            (info.last_scrape_ts, info.id),
        )

    def conprof_query_target_info(self, target: ProfileTarget) -> list[TargetInfo]:
        """Return the info rows stored for ``target``."""
        rows = self._query(
            "SELECT id, last_scrape_ts FROM conprof_targets_meta "
            "WHERE kind = ? AND component = ? AND address = ?",
            (target.kind, target.component, target.address),
        )
        return [TargetInfo(id=row_id, last_scrape_ts=ts) for row_id, ts in rows]

    def conprof_query_all_profile_targets(self) -> list[tuple[ProfileTarget, TargetInfo]]:
        """Return every known target together with its info."""
        rows = self._query(
            "SELECT id, kind, component, address, last_scrape_ts FROM conprof_targets_meta"
        )
        return [
            (ProfileTarget(kind, component, address), TargetInfo(row_id, ts))
            for row_id, kind, component, address, ts in rows
        ]

    def conprof_write_profile_data(self, target_id: int, ts: int, data: bytes) -> None:
        """Store one profile blob at ``ts``."""
        self._exec(
            f"INSERT INTO {_data_table(target_id)} (ts, data) VALUES (?, ?)",
            (ts, bytes(data)),
        )

    def conprof_query_profile_data(
        self, target_id: int, begin: int, end: int
    ) -> list[tuple[int, bytes]]:
        """Return ``(ts, data)`` with ``begin <= ts <= end``, newest first."""
        rows = self._query(
            f"SELECT ts, data FROM {_data_table(target_id)} "
            "WHERE ts >= ? and ts <= ? ORDER BY ts DESC",
            (begin, end),
        )
        return [(ts, bytes(data)) for ts, data in rows]

    def conprof_delete_profile_data_before_ts(self, target_id: int, ts: int) -> None:
        """Delete profile blobs with timestamps up to and including ``ts``."""
        self._exec(f"DELETE FROM {_data_table(target_id)} WHERE ts <= ?", (ts,))

    def conprof_write_profile_meta(self, target_id: int, ts: int, error: str) -> None:
        """Store the scrape error text recorded at ``ts``."""
        self._exec(
            f"INSERT INTO {_meta_table(target_id)} (ts, error) VALUES (?, ?)",
            (ts, error),
        )

    def conprof_query_profile_meta(
        self, target_id: int, begin: int, end: int
    ) -> list[tuple[int, str]]:
        """Return ``(ts, error)`` with ``begin <= ts <= end``, newest first."""
        rows = self._query(
            f"SELECT ts, error FROM {_meta_table(target_id)} "
            "WHERE ts >= ? and ts <= ? ORDER BY ts DESC",
            (begin, end),
        )
        return [(ts, error) for ts, error in rows]

    def conprof_delete_profile_meta_before_ts(self, target_id: int, ts: int) -> None:
        """Delete profile meta rows with timestamps up to and including ``ts``."""
        self._exec(f"DELETE FROM {_meta_table(target_id)} WHERE ts <= ?", (ts,))