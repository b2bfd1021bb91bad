import os

from ngmonitoring.cli import main, must_create_dirs, override_config, parse_args
from ngmonitoring.config import get_default_config


def test_unset_options_are_none():
    args = parse_args([])
    assert args.address is None
    assert args.pd_endpoints is None
    assert args.version is False


def test_override_config_applies_given_flags():
    args = parse_args(
        [
            "--address",
            "10.0.1.8:12020",
            "--pd.endpoints",
            "10.0.1.8:2379,10.0.1.9:2379",
            "--storage.path",
            "store",
            "--retention-period",
            "2",
        ]
    )
    cfg = get_default_config()
    default = get_default_config()
    override_config(cfg, args)
    assert cfg.address == "10.0.1.8:12020"
    assert cfg.pd.endpoints == ["10.0.1.8:2379", "10.0.1.9:2379"]
    assert cfg.storage.path == "store"
    assert cfg.tsdb.retention_period == "2"
    assert cfg.log.path == default.log.path
    assert cfg.advertise_address == default.advertise_address


def test_repeated_endpoints_accumulate():
    args = parse_args(["--pd.endpoints", "a:1", "--pd.endpoints", "b:2"])
    cfg = get_default_config()
    override_config(cfg, args)
    assert cfg.pd.endpoints == ["a:1", "b:2"]


def test_must_create_dirs(tmp_path):
    cfg = get_default_config()
    log_dir = tmp_path / "logs"
    storage_dir = tmp_path / "data" / "nested"
    cfg.log.path = str(log_dir)
    cfg.storage.path = str(storage_dir)

    assert not log_dir.exists()
    assert not storage_dir.exists()
    assert must_create_dirs(cfg) is None
    assert os.path.isdir(cfg.log.path)
    assert os.path.isdir(cfg.storage.path)

    marker = storage_dir / "keep.txt"
    marker.write_text("kept")
    assert must_create_dirs(cfg) is None
    assert marker.read_text() == "kept"


def test_version_flag(capsys):
    assert main(["-V"]) == 0
    out = capsys.readouterr().out
    assert "Git Commit Hash: None" in out


def test_empty_storage_path_fails(capsys):
    assert main(["--storage.path", ""]) == 1
    err = capsys.readouterr().err
    assert "unexpected empty storage path" in err


def test_missing_config_file_fails(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "missing.toml")]) == 1
    assert "Failed to initialize config" in capsys.readouterr().err