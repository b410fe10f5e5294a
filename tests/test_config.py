"""Tests for config defaults, TOML loading and environment overrides."""

import pytest

from shardsweep.config import DEFAULT_HOSTS, HarnessConfig, env_overrides, load_config
from shardsweep.errors import ConfigError
from shardsweep.models import TransferMethod


def test_defaults():
    config = HarnessConfig()

    assert config.hosts == DEFAULT_HOSTS
    assert config.collection == "benchmark"
    assert config.batch_size == 25
    assert config.point_count == 200
    assert config.update_retries == 100
    assert config.check_retries == 25
    assert config.transfer_methods == [TransferMethod.STREAM_RECORDS, TransferMethod.WAL_DELTA]
    assert config.effective_replication_factor == 3


def test_load_toml_table(tmp_path):
    path = tmp_path / "shardsweep.toml"
    path.write_text(
        '[shardsweep]\n'
        'hosts = ["http://10.0.0.1:6333", "http://10.0.0.2:6333"]\n'
        'batch_size = 50\n'
        'transfer_methods = ["snapshot"]\n'
    )

    config = load_config(path, environ={})

    assert config.hosts == ["http://10.0.0.1:6333", "http://10.0.0.2:6333"]
    assert config.batch_size == 50
    assert config.transfer_methods == [TransferMethod.SNAPSHOT]
    assert config.effective_replication_factor == 2


def test_load_toml_top_level_keys(tmp_path):
    path = tmp_path / "shardsweep.toml"
    path.write_text('point_count = 1000\ncross_check = true\n')

    config = load_config(path, environ={})

    assert config.point_count == 1000
    assert config.cross_check is True


def test_environment_wins_over_file(tmp_path):
    path = tmp_path / "shardsweep.toml"
    path.write_text('batch_size = 50\n')

    config = load_config(path, environ={
        "SHARDSWEEP_BATCH_SIZE": "10",
        "SHARDSWEEP_TRANSFERS": "false",
        "SHARDSWEEP_HOSTS": "http://a:6333, http://b:6333",
        "SHARDSWEEP_CHECK_RETRY_DELAY": "0.5",
        "SHARDSWEEP_SEED": "7",
    })

    assert config.batch_size == 10
    assert config.transfers is False
    assert config.hosts == ["http://a:6333", "http://b:6333"]
    assert config.check_retry_delay == 0.5
    assert config.seed == 7


def test_env_overrides_ignore_unrelated_variables():
    assert env_overrides({"PATH": "/usr/bin", "SHARDSWEEP_POINT_COUNT": "5"}) == {"point_count": 5}


@pytest.mark.parametrize("environ", [
    {"SHARDSWEEP_BATCH_SIZE": "many"},
    {"SHARDSWEEP_TRANSFERS": "maybe"},
    {"SHARDSWEEP_TRANSFER_METHODS": "teleport"},
    {"SHARDSWEEP_BATCH_SIZE": "0"},
    {"SHARDSWEEP_SEED": "abc"},
    {"SHARDSWEEP_MAX_ROUNDS": "ten"},
    {"SHARDSWEEP_REPLICATION_FACTOR": "2.5"},
])
def test_invalid_environment(environ):
    with pytest.raises(ConfigError):
        load_config(environ=environ)


def test_unknown_key(tmp_path):
    path = tmp_path / "shardsweep.toml"
    path.write_text('batch_sise = 50\n')

    with pytest.raises(ConfigError, match="batch_sise"):
        load_config(path, environ={})


def test_unreadable_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.toml", environ={})


def test_validation():
    with pytest.raises(ConfigError):
        HarnessConfig(hosts=[])
    with pytest.raises(ConfigError):
        HarnessConfig(scroll_reads=True, shuffle_points=True)
    with pytest.raises(ConfigError):
        HarnessConfig(transfer_methods=[])
    HarnessConfig(transfers=False, transfer_methods=[])


def test_replace_ignores_none():
    config = HarnessConfig(batch_size=30)

    updated = config.replace(batch_size=None, point_count=400)

    assert updated.batch_size == 30
    assert updated.point_count == 400
    assert config.point_count == 200
