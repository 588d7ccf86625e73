import logging
import uuid
from dataclasses import dataclass, asdict, replace
from datetime import datetime
from typing import Dict, Optional

from demo_trading_simulator.models import TradeAction, TradeStatus
from demo_trading_simulator.simulation_engine.errors import InsufficientCash, InsufficientShares


logger = logging.getLogger(__name__)


@dataclass
class Position:
    quantity: float
    average_price: float
    total_cost: float
    current_price: float

    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price

    @property
    def unrealized_pnl(self) -> float:
        return self.market_value - self.total_cost


@dataclass(frozen=True)
class Trade:
    id: str
    timestamp: datetime
    symbol: str
    action: TradeAction
    quantity: float
    price: float
    status: TradeStatus
    reason: Optional[str] = None
    pnl: Optional[float] = None
    rationale: str = ""
    strategy: str = ""

    @property
    def value(self) -> float:
        return self.quantity * self.price

    @property
    def filled(self) -> bool:
        return self.status == TradeStatus.FILLED

    def to_dict(self):
        data = asdict(self)
        data["action"] = self.action.value
        data["status"] = self.status.value
        data["timestamp"] = self.timestamp.isoformat()
        data["value"] = self.value
        return data


class Portfolio:
    def __init__(self, initial_cash: float = 100000):
        """
        Long-only cash portfolio of one simulation session.

        Args:
            initial_cash: Starting cash balance
        """
        self.cash = initial_cash
        self.initial_cash = initial_cash
        self.positions: Dict[str, Position] = {}
        self.total_value = initial_cash

    def _buy(self, symbol: str, quantity: float, price: float):
        cost = quantity * price
        if self.cash < cost:
            raise InsufficientCash(f"Need {cost:.2f} to buy {quantity} {symbol}, have {self.cash:.2f}")

        self.cash -= cost
        held = self.positions.get(symbol)
        if held is None:
            self.positions[symbol] = Position(
                quantity=quantity, average_price=price, total_cost=cost, current_price=price
            )
        else:
            held.quantity += quantity
            held.total_cost += cost
            held.average_price = held.total_cost / held.quantity
            held.current_price = price

    def _sell(self, symbol: str, quantity: float, price: float) -> float:
        held = self.positions.get(symbol)
        if held is None or quantity > held.quantity:
            have = held.quantity if held else 0
            raise InsufficientShares(f"Cannot sell {quantity} {symbol}, holding {have}")

        sale_value = quantity * price
        cost_basis = (held.total_cost / held.quantity) * quantity
        pnl = sale_value - cost_basis
        self.cash += sale_value

        remaining = held.quantity - quantity
        if remaining > 0:
            held.quantity = remaining
            held.total_cost -= cost_basis
            held.average_price = held.total_cost / held.quantity
            held.current_price = price
        else:
            del self.positions[symbol]
        return pnl

    def execute(
        self,
        action: TradeAction,
        symbol: str,
        quantity: float,
        price: float,
        timestamp: datetime,
        rationale: str = "",
        strategy: str = "",
    ) -> Trade:
        """
        Apply a BUY or SELL at the given price and return the resulting trade record.

        Rejections (not enough cash or shares, nonsensical quantity or price)
        leave the portfolio untouched and come back as REJECTED trades.
        """
        reason = None
        pnl = None
        if action not in (TradeAction.BUY, TradeAction.SELL):
            reason = f"unsupported action {action}"
        elif quantity <= 0:
            reason = "invalid quantity"
        elif price <= 0:
            reason = "invalid price"
        else:
            try:
                if action == TradeAction.BUY:
                    self._buy(symbol, quantity, price)
                else:
                    pnl = self._sell(symbol, quantity, price)
            except (InsufficientCash, InsufficientShares) as e:
                logger.warning(f"{action.value} {quantity} {symbol} @ {price} rejected: {e}")
                reason = e.reason

        if reason is None:
            self._recalculate_total_value()
            if pnl is None:
                logger.info(f"BUY: {quantity} {symbol} @ ${price:.2f}")
            else:
                logger.info(f"SELL: {quantity} {symbol} @ ${price:.2f} (P&L: {pnl:+.2f})")

        return Trade(
            id=f"trade_{uuid.uuid4().hex[:12]}",
            timestamp=timestamp,
            symbol=symbol,
            action=action,
            quantity=quantity,
            price=price,
            status=TradeStatus.FILLED if reason is None else TradeStatus.REJECTED,
            reason=reason,
            pnl=pnl,
            rationale=rationale,
            strategy=strategy,
        )

    def checkpoint(self) -> tuple:
        """Capture cash, value and positions so a failed tick can be undone."""
        return self.cash, self.total_value, {s: replace(p) for s, p in self.positions.items()}

    def restore(self, state: tuple):
        self.cash, self.total_value, positions = state
        self.positions = {s: replace(p) for s, p in positions.items()}

    def buy(self, symbol: str, quantity: float, price: float, timestamp: datetime) -> Trade:
        return self.execute(TradeAction.BUY, symbol, quantity, price, timestamp)

    def sell(self, symbol: str, quantity: float, price: float, timestamp: datetime) -> Trade:
        return self.execute(TradeAction.SELL, symbol, quantity, price, timestamp)

    def mark_to_market(self, symbol: str, price: float) -> float:
        """Reprice the position in symbol (if any) and return the new total value."""
        held = self.positions.get(symbol)
        if held is not None:
            held.current_price = price
        return self._recalculate_total_value()

    def _recalculate_total_value(self) -> float:
        self.total_value = self.cash + self.positions_value()
        return self.total_value

    def positions_value(self) -> float:
        return sum(p.market_value for p in self.positions.values())

    def exposure(self) -> float:
        """Fraction of total value currently held in positions."""
        if self.total_value <= 0 or not self.positions:
            return 0.0
        return self.positions_value() / self.total_value

    def get_position(self, symbol: str) -> Optional[Position]:
        return self.positions.get(symbol)

    def calculate_total_return(self) -> float:
        """Total return in percent of the initial cash."""
        return (
            (self.total_value - self.initial_cash) / self.initial_cash * 100
            if self.initial_cash
            else 0.0
        )

    def to_dict(self):
        return {
            "cash": self.cash,
            "positions": {symbol: asdict(position) for symbol, position in self.positions.items()},
            "total_value": self.total_value,
            "initial_cash": self.initial_cash,
        }
