# ngmonitoring

A small monitoring server core. It loads a TOML configuration, keeps
module settings, SQL/plan metadata and profiling data in a SQLite
document store, and serves an HTTP API for reading and changing the
configuration at run time.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Running the server

```
ng-monitoring-server --config ngm.toml
```

The server creates the log and storage directories, opens the SQLite
store `ng-sqlite.db` in the storage directory, applies settings saved
there, starts the HTTP service and runs until it receives `SIGTERM` or
`SIGINT`.

Command-line options override values from the configuration file:

| Option | Meaning |
| --- | --- |
| `-V`, `--version` | print version information and exit |
| `--address` | TCP address to listen for HTTP connections (default `0.0.0.0:12020`) |
| `--pd.endpoints` | comma-separated PD addresses, e.g. `10.0.0.1:2379,10.0.0.2:2379`; may be repeated |
| `--log.path` | directory for log files (stdout when empty) |
| `--storage.path` | directory for stored data (default `data`) |
| `--config` | path of the TOML configuration file |
| `--advertise-address` | address advertised to other servers; derived from `--address` when unset |
| `--retention-period` | retention setting kept in the configuration (`tsdb.retention-period`) |

When `--config` is given, sending `SIGHUP` to the process re-reads the
file and applies changed PD endpoints.

## Configuration file

```toml
address = "0.0.0.0:12020"

[pd]
endpoints = ["127.0.0.1:2379"]

[log]
path = ""
level = "INFO"        # DEBUG, INFO, WARN or ERROR

[storage]
path = "data"
sqlite-use-wal = true
```

The configuration is validated at start-up: the addresses must be
`host:port` with a non-zero port, at least one PD endpoint, a known log
level and a storage path are required.

## HTTP API

* `GET /health` returns `{"health":true}`.
* `GET /config` returns the current configuration as JSON.
* `POST /config` changes module settings, for example

  ```json
  {"continuous_profiling": {"enable": true, "profile_seconds": 6, "interval_seconds": 11}}
  ```

  Valid changes are saved in the document store and answered with
  `{"status":"ok"}`; an empty body, an unknown module or setting, or an
  invalid result is answered with status 503 and
  `{"message":"...","status":"error"}`.
* Any other path returns 404 with `404 page not found`.

Requests are logged to `service.log` in the log directory, or to stdout.

## Using the library

```python
import os

from ngmonitoring.config import get_default_config, store_global_config
from ngmonitoring.docdb import SQLiteDB
from ngmonitoring.persist import load_config_from_storage, save_config_into_storage

store_global_config(get_default_config())
os.makedirs("data", exist_ok=True)
with SQLiteDB("data", True) as db:
    load_config_from_storage(db)
    save_config_into_storage(db)
```

Modules:

* `ngmonitoring.config`: `Config` and its sections, `init_config`,
  `get_global_config`, `store_global_config`, `update_global_config`,
  `subscribe` (a queue receiving a config getter on every change),
  `validate_address`, `reload_config`, `install_reload_handler`.
* `ngmonitoring.docdb`: the `DocDB` interface and its `SQLiteDB`
  implementation, with `SQLMeta`, `PlanMeta`, `ProfileTarget` and
  `TargetInfo`.
* `ngmonitoring.docdb_log`: `DocDBLogger`, a leveled file logger writing
  `docdb.log`.
* `ngmonitoring.persist`: `load_config_from_storage`,
  `save_config_into_storage`.
* `ngmonitoring.config_service`: `handle_get_config`,
  `handle_post_config`, `handle_modify_config`.
* `ngmonitoring.server`: `make_wsgi_app(db)` and `HTTPService` with
  `start()`, `stop()` and `address()`.
* `ngmonitoring.retry`: `with_retry` and `with_retry_backoff` run a
  callable until it reports success, the retry limit is reached or a
  stop event is set.
* `ngmonitoring.limiter`: `RateLimit` bounds concurrency with tokens.
* `ngmonitoring.misc`: `go_with_recovery`, `get_local_ip`.
* `ngmonitoring.printer`: `get_ngm_info`, `print_ngm_info`.

## What this package does not do

* It stores no time series: the `tsdb` settings are loaded and shown but
  nothing reads them, and there are no metric write or query endpoints.
* It does not discover cluster topology, watch PD variables, collect
  Top SQL data or scrape profiles; the continuous profiling settings can
  be read, changed and saved, but no scraping runs.
* It exposes no `/metrics` or profiling endpoints.
* The only document store backend is SQLite; any other
  `storage.docdb-backend` value falls back to it.