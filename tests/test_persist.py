import json

import pytest

from ngmonitoring.config import (
    ConfigError,
    get_default_config,
    get_global_config,
    store_global_config,
    update_global_config,
)
from ngmonitoring.docdb import SQLiteDB
from ngmonitoring.persist import load_config_from_storage, save_config_into_storage


@pytest.fixture(autouse=True)
def reset_global():
    store_global_config(get_default_config())
    yield
    store_global_config(get_default_config())


@pytest.fixture
def db(tmp_path):
    with SQLiteDB(str(tmp_path), True) as database:
        yield database


def test_save_writes_compact_json(db):
    save_config_into_storage(db)
    stored = db.load_config()
    assert list(stored) == ["continuous_profiling"]
    assert stored["continuous_profiling"] == (
        '{"enable":false,"profile_seconds":10,"interval_seconds":60,'
        '"timeout_seconds":120,"data_retention_seconds":259200}'
    )


def test_save_then_load_round_trip(db):
    def update(cur):
        cur.continue_profiling.enable = True
        cur.continue_profiling.profile_seconds = 6
        cur.continue_profiling.interval_seconds = 11
        return cur

    update_global_config(update)
    expected = get_global_config().continue_profiling
    save_config_into_storage(db)
    store_global_config(get_default_config())
    load_config_from_storage(db)
    assert get_global_config().continue_profiling == expected


def test_load_from_empty_storage_keeps_defaults(db):
    load_config_from_storage(db)
    assert get_global_config() == get_default_config()


def test_load_skips_invalid_config(db):
    bad = get_default_config().continue_profiling.to_dict()
    bad["profile_seconds"] = 1000
    bad["interval_seconds"] = 11
    db.save_config({"continuous_profiling": json.dumps(bad)})
    load_config_from_storage(db)
    assert get_global_config().continue_profiling == get_default_config().continue_profiling


def test_load_unknown_module_raises(db):
    db.save_config({"foo": "bar"})
    with pytest.raises(ConfigError, match="unknow module config in storage, module: foo, config: bar"):
        load_config_from_storage(db)


def test_load_undecodable_config_raises(db):
    db.save_config({"continuous_profiling": "not json"})
    with pytest.raises(ConfigError):
        load_config_from_storage(db)
    assert get_global_config().continue_profiling == get_default_config().continue_profiling