from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from demo_trading_simulator.models import TickData, TradeAction
from demo_trading_simulator.simulation_engine.portfolio import Position


@dataclass(frozen=True)
class MarketContext:
    symbol: str
    tick: TickData
    recent_ticks: List[TickData] = field(default_factory=list)

    @property
    def price(self) -> float:
        return self.tick.price

    @property
    def volume(self) -> float:
        return self.tick.volume

    @property
    def timestamp(self) -> datetime:
        return self.tick.timestamp

    @property
    def recent_prices(self) -> List[float]:
        return [t.price for t in self.recent_ticks]

    def to_dict(self):
        return {
            "symbol": self.symbol,
            "price": self.price,
            "volume": self.volume,
            "timestamp": self.timestamp.isoformat(),
            "recent_data": [
                {"timestamp": t.timestamp.isoformat(), "price": t.price, "volume": t.volume}
                for t in self.recent_ticks
            ],
        }


@dataclass(frozen=True)
class PortfolioContext:
    cash: float
    total_value: float
    current_position: Optional[Position] = None
    exposure: float = 0.0

    @property
    def held_quantity(self) -> float:
        return self.current_position.quantity if self.current_position else 0.0

    def to_dict(self):
        position = None
        if self.current_position is not None:
            position = {
                "quantity": self.current_position.quantity,
                "average_price": self.current_position.average_price,
                "total_cost": self.current_position.total_cost,
                "current_price": self.current_position.current_price,
            }
        return {
            "cash": self.cash,
            "total_value": self.total_value,
            "current_position": position,
            "exposure": self.exposure,
        }


@dataclass(frozen=True)
class Decision:
    action: TradeAction
    quantity: float = 0
    confidence: float = 0.5
    rationale: str = ""
    strategy: str = ""
    price: Optional[float] = None
    timestamp: Optional[datetime] = None

    @classmethod
    def hold(cls, rationale: str, strategy: str = "", confidence: float = 0.5) -> "Decision":
        return cls(action=TradeAction.HOLD, quantity=0, confidence=confidence, rationale=rationale, strategy=strategy)

    def to_dict(self):
        return {
            "action": self.action.value,
            "quantity": self.quantity,
            "confidence": self.confidence,
            "rationale": self.rationale,
            "strategy": self.strategy,
            "price": self.price,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
