import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from demo_trading_simulator.models import TradeAction
from demo_trading_simulator.simulation_engine.portfolio import Trade

logger = logging.getLogger(__name__)


def max_drawdown(equity_curve: Sequence[float]) -> float:
    """Largest peak-to-trough fall of the curve, as a fraction of the peak."""
    equity = np.asarray(equity_curve, dtype=float)
    if equity.size == 0:
        return 0.0
    peaks = np.maximum.accumulate(equity)
    drawdowns = np.divide(peaks - equity, peaks, out=np.zeros_like(equity), where=peaks > 0)
    return float(drawdowns.max())


def closed_trade_pnl(trades: Sequence[Trade]) -> np.ndarray:
    """Realized P&L of the filled SELLs, in execution order."""
    return np.array(
        [t.pnl for t in trades if t.filled and t.action == TradeAction.SELL and t.pnl is not None],
        dtype=float,
    )


@dataclass
class PerformanceSnapshot:
    total_trades: int = 0
    winning_trades: int = 0
    total_pnl: float = 0.0
    realized_pnl: float = 0.0
    max_drawdown: float = 0.0
    average_return: float = 0.0
    std_dev_return: float = 0.0
    sharpe_ratio: float = 0.0
    ticks_processed: int = 0
    average_latency_ms: float = 0.0
    equity_curve: List[float] = field(default_factory=list)
    # set once the session completes
    win_rate: Optional[float] = None
    average_win: Optional[float] = None
    average_loss: Optional[float] = None
    profit_factor: Optional[float] = None

    def to_dict(self, include_curve: bool = True):
        data = {
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "total_pnl": self.total_pnl,
            "realized_pnl": self.realized_pnl,
            "max_drawdown": self.max_drawdown,
            "average_return": self.average_return,
            "std_dev_return": self.std_dev_return,
            "sharpe_ratio": self.sharpe_ratio,
            "ticks_processed": self.ticks_processed,
            "average_latency_ms": self.average_latency_ms,
            "win_rate": self.win_rate,
            "average_win": self.average_win,
            "average_loss": self.average_loss,
            "profit_factor": self.profit_factor,
        }
        if include_curve:
            data["equity_curve"] = list(self.equity_curve)
        return data


class PerformanceTracker:
    """
    Running statistics over the equity curve and trade log of one session.

    Per-step returns are r[i] = (v[i] - v[i-1]) / v[i-1]. Mean and variance are
    kept with Welford's update so each tick costs O(1). The sharpe-like ratio is
    mean/std of those returns: not annualized and without a risk-free rate.
    """

    def __init__(self, initial_capital: float):
        self.initial_capital = initial_capital
        self.snapshot = PerformanceSnapshot()
        self._peak: Optional[float] = None
        self._n_returns = 0
        self._mean = 0.0
        self._m2 = 0.0

    def record_value(self, value: float):
        curve = self.snapshot.equity_curve
        if curve and curve[-1] != 0:
            self._add_return((value - curve[-1]) / curve[-1])
        curve.append(value)

        if self._peak is None or value > self._peak:
            self._peak = value
        if self._peak > 0:
            drawdown = (self._peak - value) / self._peak
            if drawdown > self.snapshot.max_drawdown:
                self.snapshot.max_drawdown = drawdown

        self.snapshot.total_pnl = value - self.initial_capital

    def _add_return(self, r: float):
        self._n_returns += 1
        delta = r - self._mean
        self._mean += delta / self._n_returns
        self._m2 += delta * (r - self._mean)

        std = math.sqrt(max(self._m2 / self._n_returns, 0.0))
        self.snapshot.average_return = self._mean
        self.snapshot.std_dev_return = std
        self.snapshot.sharpe_ratio = self._mean / std if std > 0 else 0.0

    def record_trade(self, trade: Trade):
        if not trade.filled:
            return
        self.snapshot.total_trades += 1
        if trade.pnl is not None:
            self.snapshot.realized_pnl += trade.pnl
            if trade.pnl > 0:
                self.snapshot.winning_trades += 1

    def record_latency(self, latency_ms: float):
        self.snapshot.ticks_processed += 1
        if self.snapshot.ticks_processed == 1:
            self.snapshot.average_latency_ms = latency_ms
        else:
            self.snapshot.average_latency_ms = self.snapshot.average_latency_ms * 0.9 + latency_ms * 0.1

    def finalize(self, trades: Sequence[Trade]) -> PerformanceSnapshot:
        pnl = closed_trade_pnl(trades)
        wins = pnl[pnl > 0]
        losses = np.abs(pnl[pnl < 0])

        self.snapshot.win_rate = float(wins.size / pnl.size * 100) if pnl.size else 0.0
        self.snapshot.average_win = float(wins.mean()) if wins.size else 0.0
        self.snapshot.average_loss = float(losses.mean()) if losses.size else 0.0
        self.snapshot.profit_factor = (
            self.snapshot.average_win / self.snapshot.average_loss
            if self.snapshot.average_loss > 0
            else 0.0
        )
        # whole-curve figure; agrees with the per-tick running value
        self.snapshot.max_drawdown = max_drawdown(self.snapshot.equity_curve)
        logger.debug(
            f"Final metrics: win rate {self.snapshot.win_rate:.1f}%, "
            f"profit factor {self.snapshot.profit_factor:.2f}"
        )
        return self.snapshot
