import asyncio
import dataclasses
import logging
from typing import Optional, Sequence

from demo_trading_simulator.models import StrategyType, TickData
from demo_trading_simulator.simulation_engine.DecisionEngine.Decision import (
    Decision,
    MarketContext,
    PortfolioContext,
)
from demo_trading_simulator.simulation_engine.DecisionEngine.strategies import (
    DECISION_SOURCE_ERROR,
    BreakoutStrategy,
    ExternalAdvisorStrategy,
    MeanReversionStrategy,
    MomentumStrategy,
    PositionSizer,
    Strategy,
    TradingAdvisor,
)
from demo_trading_simulator.simulation_engine.portfolio import Portfolio

logger = logging.getLogger(__name__)


def build_strategy(
    strategy_type: StrategyType,
    sizer: PositionSizer,
    advisor: Optional[TradingAdvisor] = None,
) -> Strategy:
    if strategy_type == StrategyType.MOMENTUM:
        return MomentumStrategy(sizer)
    if strategy_type == StrategyType.MEAN_REVERSION:
        return MeanReversionStrategy(sizer)
    if strategy_type == StrategyType.BREAKOUT:
        return BreakoutStrategy(sizer)
    if strategy_type == StrategyType.AI_DYNAMIC:
        if advisor is None:
            raise ValueError("Strategy 'ai_dynamic' needs an external advisor")
        return ExternalAdvisorStrategy(advisor)
    raise ValueError(f"Unknown strategy {strategy_type}")


class DecisionEngine:
    """
    Builds the market and portfolio context for one tick and asks the session's
    strategy what to do.
    """

    def __init__(self, strategy: Strategy, history_window: int = 20):
        self.strategy = strategy
        self.history_window = history_window

    def market_context(self, tick: TickData, processed: Sequence[TickData]) -> MarketContext:
        recent = list(processed)[-self.history_window:] if self.history_window else []
        return MarketContext(symbol=tick.symbol, tick=tick, recent_ticks=recent)

    @staticmethod
    def portfolio_context(portfolio: Portfolio, symbol: str) -> PortfolioContext:
        position = portfolio.get_position(symbol)
        # a copy, so strategies cannot touch the ledger
        snapshot = dataclasses.replace(position) if position is not None else None
        return PortfolioContext(
            cash=portfolio.cash,
            total_value=portfolio.total_value,
            current_position=snapshot,
            exposure=portfolio.exposure(),
        )

    async def decide(self, tick: TickData, processed: Sequence[TickData], portfolio: Portfolio) -> Decision:
        market = self.market_context(tick, processed)
        context = self.portfolio_context(portfolio, tick.symbol)
        try:
            decision = self.strategy.decide(market, context)
            if asyncio.iscoroutine(decision):
                decision = await decision
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Strategy {self.strategy.name} failed on {tick.timestamp}: {e}", exc_info=True)
            decision = Decision.hold(DECISION_SOURCE_ERROR, strategy=self.strategy.name)
        return dataclasses.replace(decision, price=tick.price, timestamp=tick.timestamp)
