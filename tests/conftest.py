from datetime import datetime

import pytest

from demo_trading_simulator.models import EngineConfig
from demo_trading_simulator.simulation_engine.DataSource.InMemoryTickSource import InMemoryTickSource
from demo_trading_simulator.simulation_engine.SimulationManager import SimulationManager
from utils.testing_helpers import make_ticks as _make_ticks, wait_for


@pytest.fixture
def make_ticks():
    return _make_ticks


@pytest.fixture
def fast_engine_config():
    """Engine settings that replay without sleeping between ticks."""
    return EngineConfig(base_tick_interval_ms=0, min_tick_interval_ms=0)


@pytest.fixture
def session_config():
    return {
        "symbol": "TEST",
        "start_date": datetime(2024, 1, 1),
        "end_date": datetime(2024, 12, 31),
        "strategy": "momentum",
        "initial_capital": 100000.0,
    }


@pytest.fixture
def tick_source():
    return InMemoryTickSource()


@pytest.fixture
def manager(tick_source, fast_engine_config):
    return SimulationManager(tick_source, fast_engine_config)


def pytest_configure(config):
    config.addinivalue_line("markers", "e2e: mark test as end-to-end (slow)")


# Make helper functions available to tests via pytest namespace
pytest.wait_for = wait_for
