from collections import deque

import pytest

from demo_trading_simulator.models import StrategyType, TradeAction
from demo_trading_simulator.simulation_engine.DecisionEngine.Decision import Decision
from demo_trading_simulator.simulation_engine.DecisionEngine.DecisionEngine import DecisionEngine, build_strategy
from demo_trading_simulator.simulation_engine.DecisionEngine.strategies import (
    DECISION_SOURCE_ERROR,
    BreakoutStrategy,
    MeanReversionStrategy,
    MomentumStrategy,
    PositionSizer,
    Strategy,
)
from demo_trading_simulator.simulation_engine.portfolio import Portfolio


class RecordingStrategy(Strategy):
    strategy_type = StrategyType.MOMENTUM

    def __init__(self):
        self.seen = []

    def decide(self, market, portfolio):
        self.seen.append((market, portfolio))
        return Decision.hold("recorded", strategy=self.name)


class BrokenStrategy(Strategy):
    strategy_type = StrategyType.BREAKOUT

    def decide(self, market, portfolio):
        raise ZeroDivisionError("boom")


@pytest.mark.parametrize("strategy_type, expected", [
    (StrategyType.MOMENTUM, MomentumStrategy),
    (StrategyType.MEAN_REVERSION, MeanReversionStrategy),
    (StrategyType.BREAKOUT, BreakoutStrategy),
])
def test_build_strategy(strategy_type, expected):
    assert isinstance(build_strategy(strategy_type, PositionSizer()), expected)


def test_build_advisor_strategy_without_advisor_fails():
    with pytest.raises(ValueError):
        build_strategy(StrategyType.AI_DYNAMIC, PositionSizer())


@pytest.mark.asyncio
async def test_window_excludes_current_tick_and_is_bounded(make_ticks):
    ticks = make_ticks(range(100, 131))
    processed = deque(ticks[:30], maxlen=30)
    strategy = RecordingStrategy()
    engine = DecisionEngine(strategy, history_window=20)

    await engine.decide(ticks[30], processed, Portfolio(1000))

    market, _ = strategy.seen[0]
    assert market.recent_prices == list(range(110, 130))
    assert market.price == 130


@pytest.mark.asyncio
async def test_decision_is_stamped_with_tick(make_ticks):
    tick = make_ticks([42])[0]
    decision = await DecisionEngine(RecordingStrategy()).decide(tick, [], Portfolio(1000))
    assert decision.price == 42
    assert decision.timestamp == tick.timestamp


@pytest.mark.asyncio
async def test_strategy_sees_a_copy_of_the_position(make_ticks):
    portfolio = Portfolio(10000)
    tick = make_ticks([100])[0]
    portfolio.buy(tick.symbol, 5, 100, tick.timestamp)
    strategy = RecordingStrategy()

    await DecisionEngine(strategy).decide(tick, [], portfolio)

    _, context = strategy.seen[0]
    assert context.held_quantity == 5
    context.current_position.quantity = 999
    assert portfolio.get_position(tick.symbol).quantity == 5


@pytest.mark.asyncio
async def test_strategy_error_becomes_hold(make_ticks):
    tick = make_ticks([100])[0]
    decision = await DecisionEngine(BrokenStrategy()).decide(tick, [], Portfolio(1000))
    assert decision.action == TradeAction.HOLD
    assert decision.rationale == DECISION_SOURCE_ERROR
    assert decision.strategy == "breakout"
