import asyncio
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import numpy as np

from demo_trading_simulator.models import StrategyType, TradeAction
from demo_trading_simulator.simulation_engine.DecisionEngine.Decision import (
    Decision,
    MarketContext,
    PortfolioContext,
)

logger = logging.getLogger(__name__)

MIN_HISTORY = 10
DECISION_SOURCE_ERROR = "decision source error"


@dataclass(frozen=True)
class PositionSizer:
    """Caps a BUY by available cash, by the per-trade risk budget and by a hard share limit."""
    risk_per_trade: float = 0.02
    max_position_size: int = 1000

    def size(self, portfolio: PortfolioContext, price: float) -> int:
        if price <= 0:
            return 0
        affordable = portfolio.cash / price
        risk_budget = self.risk_per_trade * portfolio.total_value / price
        return max(0, math.floor(min(affordable, risk_budget, self.max_position_size)))


class Strategy(ABC):
    """
    A decision source. Built-in strategies are pure functions of the context
    they are handed; they keep no state between ticks.
    """

    strategy_type: StrategyType

    @property
    def name(self) -> str:
        return self.strategy_type.value

    @abstractmethod
    def decide(self, market: MarketContext, portfolio: PortfolioContext) -> Decision:
        pass


class SignalStrategy(Strategy):
    """Turns a BUY/SELL/HOLD signal into a sized decision."""

    confidence: float = 0.5

    def __init__(self, sizer: PositionSizer):
        self.sizer = sizer

    @abstractmethod
    def signal(self, price: float, prices: np.ndarray) -> tuple[TradeAction, str]:
        """Return the action and its rationale for the current price given the last prices."""

    def decide(self, market: MarketContext, portfolio: PortfolioContext) -> Decision:
        history = market.recent_prices
        if len(history) < MIN_HISTORY:
            return Decision.hold("Insufficient data", strategy=self.name)

        prices = np.asarray(history[-MIN_HISTORY:], dtype=float)
        action, rationale = self.signal(market.price, prices)

        if action == TradeAction.BUY:
            quantity = self.sizer.size(portfolio, market.price)
            if quantity <= 0:
                return Decision.hold(f"{rationale}; position size is zero", strategy=self.name)
            return Decision(TradeAction.BUY, quantity, self.confidence, rationale, self.name)

        if action == TradeAction.SELL:
            if portfolio.held_quantity <= 0:
                return Decision.hold(f"{rationale}; no position to sell", strategy=self.name)
            return Decision(TradeAction.SELL, portfolio.held_quantity, self.confidence, rationale, self.name)

        return Decision.hold(rationale, strategy=self.name)


class MomentumStrategy(SignalStrategy):
    strategy_type = StrategyType.MOMENTUM
    confidence = 0.7

    def signal(self, price, prices):
        short_ma = prices[-5:].mean()
        long_ma = prices.mean()
        if price > short_ma and short_ma > long_ma * 1.01:
            return TradeAction.BUY, "Momentum signal: Price above moving averages"
        if price < short_ma and short_ma < long_ma * 0.99:
            return TradeAction.SELL, "Momentum signal: Price below moving averages"
        return TradeAction.HOLD, "No clear momentum signal"


class MeanReversionStrategy(SignalStrategy):
    strategy_type = StrategyType.MEAN_REVERSION
    confidence = 0.8

    def signal(self, price, prices):
        mean = prices.mean()
        std = prices.std()  # population std
        if price < mean - 2 * std:
            return TradeAction.BUY, "Mean reversion: Price significantly below mean"
        if price > mean + 2 * std:
            return TradeAction.SELL, "Mean reversion: Price significantly above mean"
        return TradeAction.HOLD, "Price within normal range"


class BreakoutStrategy(SignalStrategy):
    strategy_type = StrategyType.BREAKOUT
    confidence = 0.75

    def signal(self, price, prices):
        high = prices.max()
        low = prices.min()
        price_range = high - low
        if price > high + price_range * 0.02:
            return TradeAction.BUY, "Breakout: Price above recent high"
        if price < low - price_range * 0.02:
            return TradeAction.SELL, "Breakdown: Price below recent low"
        return TradeAction.HOLD, "No breakout detected"


class TradingAdvisor(Protocol):
    """An external decision source, e.g. an AI orchestrator. May be sync or async."""

    def generate_trading_decision(
        self, market_context: Mapping[str, Any], portfolio_context: Mapping[str, Any]
    ) -> Any:
        ...


class ExternalAdvisorStrategy(Strategy):
    """
    Delegates to an injected advisor. Whatever the advisor does, this never
    raises: failures and malformed answers become HOLD.
    """

    strategy_type = StrategyType.AI_DYNAMIC

    def __init__(self, advisor: TradingAdvisor):
        self.advisor = advisor

    async def decide(self, market: MarketContext, portfolio: PortfolioContext) -> Decision:
        try:
            response = self.advisor.generate_trading_decision(market.to_dict(), portfolio.to_dict())
            if asyncio.iscoroutine(response) or hasattr(response, "__await__"):
                response = await response
            return self._parse(response)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Error generating trading decision: {e}")
            return Decision.hold(DECISION_SOURCE_ERROR, strategy=self.name)

    def _parse(self, response: Any) -> Decision:
        if not isinstance(response, Mapping):
            raise ValueError(f"Advisor returned {type(response).__name__}, expected a mapping")

        action = TradeAction(str(response.get("action", "")).upper())
        quantity = float(response.get("quantity") or 0)
        if not math.isfinite(quantity) or quantity < 0:
            raise ValueError(f"Advisor returned invalid quantity {quantity}")

        confidence = response.get("confidence")
        confidence = 0.5 if confidence is None else min(1.0, max(0.0, float(confidence)))
        reasoning = str(response.get("reasoning") or "Strategy-based decision")

        if action != TradeAction.HOLD and quantity == 0:
            return Decision.hold(f"{reasoning}; zero quantity", strategy=self.name, confidence=confidence)
        return Decision(action, quantity if action != TradeAction.HOLD else 0, confidence, reasoning, self.name)
