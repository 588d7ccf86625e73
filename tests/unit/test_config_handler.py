from datetime import datetime

import pytest

from demo_trading_simulator.models import StrategyType
from demo_trading_simulator.simulation_engine.ConfigHandler import ConfigHandler

YAML_CONFIG = """
engine:
  initial_capital: ${SIM_CAPITAL:-50000}
  min_tick_interval_ms: 0
tick_source:
  source_type: synthetic
  seed: ${SIM_SEED}
sessions:
  - symbol: aapl
    start_date: "2024-01-02T09:30:00"
    end_date: "2024-01-05T16:00:00"
    strategy: breakout
"""


def test_yaml_with_env_substitution(tmp_path, monkeypatch):
    monkeypatch.setenv("SIM_SEED", "99")
    monkeypatch.delenv("SIM_CAPITAL", raising=False)
    path = tmp_path / "sim.yaml"
    path.write_text(YAML_CONFIG)

    config = ConfigHandler.load_app_config(str(path))

    assert config.engine.initial_capital == 50000
    assert config.tick_source.seed == 99
    assert config.sessions[0].symbol == "AAPL"
    assert config.sessions[0].strategy == StrategyType.BREAKOUT
    assert config.sessions[0].start_date == datetime(2024, 1, 2, 9, 30)


def test_missing_env_var_keeps_placeholder(monkeypatch):
    monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
    assert ConfigHandler._expand("x-${NOT_SET_ANYWHERE}") == "x-${NOT_SET_ANYWHERE}"


def test_json_and_toml(tmp_path):
    json_path = tmp_path / "sim.json"
    json_path.write_text('{"engine": {"history_window": 30}}')
    toml_path = tmp_path / "sim.toml"
    toml_path.write_text('[tick_source]\nsource_type = "synthetic"\ninterval_minutes = 15\n')

    assert ConfigHandler.load_app_config(str(json_path)).engine.history_window == 30
    assert ConfigHandler.load_app_config(str(toml_path)).tick_source.interval_minutes == 15


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert ConfigHandler.load_app_config(str(path)).sessions == []


@pytest.mark.parametrize("name, content", [
    ("bad.json", "{not json"),
    ("list.yaml", "- a\n- b\n"),
    ("sim.ini", "[engine]"),
])
def test_bad_files_raise_value_error(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content)
    with pytest.raises(ValueError):
        ConfigHandler.load_config(str(path))


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigHandler.load_config(str(tmp_path / "nope.yaml"))


def test_set_env_var_wins_over_default(monkeypatch):
    monkeypatch.setenv("SIM_SEED", "7")
    monkeypatch.delenv("SIM_CAPITAL", raising=False)
    assert ConfigHandler._expand({"seeds": ["${SIM_SEED:-1}", "${SIM_CAPITAL:-500}"]}) == {"seeds": ["7", "500"]}
