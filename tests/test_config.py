import logging

import pytest

from ngmonitoring.config import (
    PD,
    Config,
    ConfigError,
    ContinueProfilingConfig,
    Log,
    Security,
    get_default_config,
    get_global_config,
    init_config,
    install_reload_handler,
    reload_config,
    store_global_config,
    subscribe,
    update_global_config,
    validate_address,
)


@pytest.fixture(autouse=True)
def reset_global():
    store_global_config(get_default_config())
    yield
    store_global_config(get_default_config())


def test_default_config_values():
    cfg = get_default_config()
    assert cfg.address == "0.0.0.0:12020"
    assert cfg.pd.endpoints == ["127.0.0.1:2379"]
    assert cfg.log.level == "INFO"
    assert cfg.storage.path == "data"
    assert cfg.storage.sqlite_use_wal is True
    assert cfg.continue_profiling == ContinueProfilingConfig(
        enable=False,
        profile_seconds=10,
        interval_seconds=60,
        timeout_seconds=120,
        data_retention_seconds=259200,
    )
    assert cfg.tsdb.retention_period == "1"
    assert cfg.tsdb.search_max_unique_timeseries == 300000
    assert cfg.docdb.value_log_max_entries == 1000000


def test_default_config_is_a_copy():
    cfg = get_default_config()
    cfg.pd.endpoints.append("x:1")
    cfg.address = "changed"
    fresh = get_default_config()
    assert fresh.pd.endpoints == ["127.0.0.1:2379"]
    assert fresh.address == "0.0.0.0:12020"


@pytest.mark.parametrize(
    "address, pattern",
    [
        ("", "unexpected empty address"),
        ("127.0.0.1", "missing port"),
        ("127.0.0.1:0", "port cannot be set to 0"),
        ("127.0.0.1:abc", "invalid syntax"),
        ("a:b:1", "too many colons"),
    ],
)
def test_validate_address_errors(address, pattern):
    with pytest.raises(ConfigError, match=pattern):
        validate_address(address, "address")


def test_init_config_from_file(tmp_path):
    path = tmp_path / "cfg.toml"
    path.write_text(
        'address = "127.0.0.1:9999"\n'
        "[pd]\n"
        'endpoints = [" 10.0.1.8:2379 "]\n'
        "[storage]\n"
        'path = "store"\n'
        "[docdb]\n"
        "num-compactors = 2\n"
    )
    cfg = init_config(str(path), lambda c: None)
    assert cfg.address == "127.0.0.1:9999"
    assert cfg.advertise_address == "127.0.0.1:9999"
    assert cfg.pd.endpoints == ["10.0.1.8:2379"]
    assert cfg.storage.path == "store"
    assert cfg.docdb.num_compactors == 2
    assert cfg.docdb.num_memtables == get_default_config().docdb.num_memtables
    assert get_global_config() == cfg


def test_init_config_override_is_trimmed():
    def override(c):
        c.address = " 127.0.0.1:1234 "

    cfg = init_config(None, override)
    assert cfg.address == "127.0.0.1:1234"
    assert cfg.advertise_address == "127.0.0.1:1234"


def test_init_config_derives_advertise_from_wildcard():
    cfg = init_config("", None)
    assert cfg.advertise_address.endswith(":12020")
    assert not cfg.advertise_address.startswith("0.0.0.0")


@pytest.mark.parametrize(
    "attr, value, pattern",
    [
        ("level", "TRACE", "log level should be"),
        ("endpoints", [], "unexpected empty pd endpoints"),
        ("storage", "", "unexpected empty storage path"),
        ("advertise", "bad", "advertise-address bad is invalid"),
    ],
)
def test_init_config_errors(attr, value, pattern):
    def override(c):
        if attr == "level":
            c.log.level = value
        elif attr == "endpoints":
            c.pd.endpoints = value
        elif attr == "storage":
            c.storage.path = value
        else:
            c.advertise_address = value

    with pytest.raises(ConfigError, match=pattern):
        init_config(None, override)


def test_load_type_mismatch(tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text("address = 1\n")
    with pytest.raises(ConfigError):
        Config().load(str(path))


def test_pd_equal_ignores_order():
    assert PD(["b:1", "a:1"]).equal(PD(["a:1", "b:1"]))
    assert not PD(["a:1"]).equal(PD(["a:1", "b:1"]))


@pytest.mark.parametrize(
    "cfg, expected",
    [
        (get_default_config().continue_profiling, True),
        (ContinueProfilingConfig(True, 1000, 11, 120, 259200), False),
        (ContinueProfilingConfig(True, 6, 11, 5, 259200), False),
        (ContinueProfilingConfig(True, 6, 11, 120, 0), False),
    ],
)
def test_continue_profiling_valid(cfg, expected):
    assert cfg.valid() is expected


def test_continue_profiling_dict_round_trip():
    cfg = ContinueProfilingConfig(True, 6, 11, 120, 259200)
    data = cfg.to_dict()
    assert list(data) == [
        "enable",
        "profile_seconds",
        "interval_seconds",
        "timeout_seconds",
        "data_retention_seconds",
    ]
    assert ContinueProfilingConfig.from_dict(data) == cfg


def test_continue_profiling_from_dict_partial_and_errors():
    partial = ContinueProfilingConfig.from_dict({"enable": True, "unknown": 1})
    assert partial.enable is True
    assert partial.valid() is False
    with pytest.raises(ConfigError):
        ContinueProfilingConfig.from_dict({"enable": "yes"})
    with pytest.raises(ConfigError):
        ContinueProfilingConfig.from_dict([])


def test_subscribe_receives_latest_config():
    sub = subscribe()
    getter = sub.get_nowait()
    assert getter().address == "0.0.0.0:12020"
    cfg = get_default_config()
    cfg.address = "127.0.0.1:1234"
    store_global_config(cfg)
    assert sub.get_nowait()().address == "127.0.0.1:1234"


def test_subscribe_never_blocks_on_full_queue():
    sub = subscribe()
    store_global_config(get_default_config())
    store_global_config(get_default_config())
    assert sub.qsize() == 1


def test_update_global_config():
    def update(cur):
        cur.continue_profiling.enable = True
        return cur

    update_global_config(update)
    assert get_global_config().continue_profiling.enable is True


def test_reload_config(tmp_path):
    update_global_config(lambda c: (setattr(c.continue_profiling, "enable", True), c)[1])
    path = tmp_path / "cfg.toml"
    path.write_text('[pd]\nendpoints = ["10.0.1.8:2379"]')
    assert reload_config(str(path)) is True
    cfg = get_global_config()
    assert cfg.pd.endpoints == ["10.0.1.8:2379"]
    assert cfg.continue_profiling.enable is True
    assert reload_config(str(path)) is False


def test_reload_config_empty_endpoints(tmp_path):
    path = tmp_path / "cfg.toml"
    path.write_text("")
    with pytest.raises(ConfigError, match="unexpected empty PD endpoints"):
        reload_config(str(path))
    assert get_global_config().pd.endpoints == ["127.0.0.1:2379"]


def test_install_reload_handler_needs_path():
    assert install_reload_handler("") is False


def test_http_scheme_and_tls(tmp_path):
    cfg = get_default_config()
    assert cfg.get_http_scheme() == "http"
    assert cfg.security.get_tls_config() is None
    sec = Security(
        ssl_ca=str(tmp_path / "ca.pem"),
        ssl_cert=str(tmp_path / "cert.pem"),
        ssl_key=str(tmp_path / "key.pem"),
    )
    with pytest.raises(ConfigError, match="Failed to load certificates"):
        sec.get_tls_config()
    assert sec.get_http_client_config()["tls_config"]["ca_file"] == sec.ssl_ca


def test_to_dict_uses_json_names():
    data = get_default_config().to_dict()
    assert data["continuous_profiling"]["profile_seconds"] == 10
    assert data["advertise_address"] == ""
    assert data["docdb"]["num_compactors"] == 4
    assert data["pd"]["endpoints"] == ["127.0.0.1:2379"]


def test_init_default_logger_writes_file(tmp_path):
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    try:
        Log(path=str(tmp_path), level="DEBUG").init_default_logger()
        logging.getLogger("ngm.test").debug("hello from test")
        for handler in root.handlers:
            handler.flush()
        assert "hello from test" in (tmp_path / "ng.log").read_text()
    finally:
        for handler in root.handlers[:]:
            if handler not in saved_handlers:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(saved_level)