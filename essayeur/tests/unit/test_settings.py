"""
Tests for configuration loading.
"""

import pytest
import yaml
from pydantic import ValidationError

from essayeur.config.settings import EssayeurConfig, NetworkConfig, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("ESSAYEUR_CONFIG", "ESSAYEUR_MAX_WORKERS", "ESSAYEUR_NETWORK"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_describe_a_standard_project(tmp_path):
    config = EssayeurConfig(working_directory=tmp_path)

    assert config.build_path == tmp_path.resolve() / ".test"
    assert config.contracts_path == tmp_path.resolve() / "contracts"
    assert config.test_path == tmp_path.resolve() / "test"
    assert config.network_config.url == "http://127.0.0.1:8545"
    assert config.from_address is None
    assert config.files == [] and not config.reset and not config.quiet


def test_wildcard_network_matches_anything():
    assert NetworkConfig().matches(1337)
    assert NetworkConfig(network_id=5777).matches("5777")
    assert not NetworkConfig(network_id="1").matches(5777)


def test_yaml_values_are_loaded(tmp_path):
    (tmp_path / "essayeur.yaml").write_text(
        yaml.safe_dump(
            {
                "contracts_directory": "src",
                "max_workers": 2,
                "networks": {"test": {"port": 9545, "network_id": 1337}},
                "node": {"command": ["anvil", "-p", "{port}"]},
            }
        )
    )

    config = load_config(working_directory=tmp_path)

    assert config.contracts_path == tmp_path.resolve() / "src"
    assert config.max_workers == 2
    assert config.network_config.port == 9545
    assert config.network_config.network_id == "1337"
    assert config.node.command == ["anvil", "-p", "{port}"]


def test_missing_yaml_falls_back_to_defaults(tmp_path):
    config = load_config(working_directory=tmp_path)

    assert config.working_directory == tmp_path.resolve()
    assert config.network == "test"


def test_explicit_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config("nope.yaml", working_directory=tmp_path)


def test_config_file_from_environment(tmp_path, monkeypatch):
    (tmp_path / "ci.yaml").write_text("max_workers: 8\n")
    monkeypatch.setenv("ESSAYEUR_CONFIG", "ci.yaml")

    assert load_config(working_directory=tmp_path).max_workers == 8


def test_environment_overrides_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("ESSAYEUR_MAX_WORKERS", "3")

    assert load_config(working_directory=tmp_path).max_workers == 3


def test_yaml_wins_over_environment(tmp_path, monkeypatch):
    (tmp_path / "essayeur.yaml").write_text("max_workers: 6\n")
    monkeypatch.setenv("ESSAYEUR_MAX_WORKERS", "3")

    assert load_config(working_directory=tmp_path).max_workers == 6


def test_invalid_log_level_rejected(tmp_path):
    with pytest.raises(ValidationError):
        EssayeurConfig(working_directory=tmp_path, log_level="verbose")


def test_log_level_is_normalized(tmp_path):
    assert EssayeurConfig(working_directory=tmp_path, log_level="DEBUG").log_level == "debug"


def test_unknown_network_raises(tmp_path):
    config = EssayeurConfig(working_directory=tmp_path, network="mainnet")

    with pytest.raises(ValueError, match="Unknown network 'mainnet'"):
        config.network_config


def test_overrides_return_copies(tmp_path):
    config = EssayeurConfig(working_directory=tmp_path)

    run_config = config.with_overrides(reset=True, quiet=True)
    sender = config.with_from_address("0xabc")

    assert run_config.reset and run_config.quiet
    assert not config.reset and not config.quiet
    assert sender.from_address == "0xabc"
    assert config.from_address is None
