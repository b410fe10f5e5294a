"""Tests for argument parsing and config resolution in the CLI."""

import pytest

from shardsweep.cli import EXIT_CONFIG, build_parser, config_from_args, main


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ("SHARDSWEEP_BATCH_SIZE", "SHARDSWEEP_HOSTS", "SHARDSWEEP_TRANSFERS"):
        monkeypatch.delenv(name, raising=False)


def test_scenario_flags():
    args = build_parser().parse_args([
        "counters", "--rounds", "5", "--sparse-checks", "--no-transfers",
        "--hosts", "http://x:6333,http://y:6333", "--seed", "3",
    ])

    config = config_from_args(args, environ={})

    assert args.command == "counters"
    assert config.max_rounds == 5
    assert config.always_check is False
    assert config.transfers is False
    assert config.hosts == ["http://x:6333", "http://y:6333"]
    assert config.seed == 3


def test_unset_flags_keep_file_and_defaults(tmp_path):
    path = tmp_path / "shardsweep.toml"
    path.write_text("batch_size = 40\ncross_check = true\n")

    args = build_parser().parse_args(["sweep", "--config", str(path)])
    config = config_from_args(args, environ={})

    assert config.batch_size == 40
    assert config.cross_check is True
    assert config.transfers is True
    assert config.max_rounds is None


def test_audit_arguments():
    args = build_parser().parse_args(["payloads", "--key", "timestamp", "--timeout", "60"])
    assert args.key == "timestamp"
    assert args.timeout == 60.0
    assert args.start == 0


def test_subcommand_required():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_invalid_config_exit_code():
    assert main(["sweep", "--batch-size", "0"]) == EXIT_CONFIG


def test_missing_config_file_exit_code(tmp_path):
    assert main(["sweep", "--config", str(tmp_path / "nope.toml")]) == EXIT_CONFIG


def test_bad_numeric_environment_exit_code(monkeypatch):
    monkeypatch.setenv("SHARDSWEEP_SEED", "abc")
    assert main(["sweep", "--rounds", "1"]) == EXIT_CONFIG
