import logging
import zlib
from datetime import datetime, time, timedelta
from typing import Iterator, List, Optional

import numpy as np

from demo_trading_simulator.models import TickData

logger = logging.getLogger(__name__)

SYMBOL_BASE_PRICES = {
    "AAPL": 150.0,
    "GOOGL": 2800.0,
    "MSFT": 380.0,
    "TSLA": 250.0,
    "NVDA": 480.0,
    "AMZN": 3200.0,
    "META": 320.0,
}

# per-bar volatility of a 5 minute bar
SYMBOL_VOLATILITIES = {
    "AAPL": 0.0002,
    "GOOGL": 0.0003,
    "MSFT": 0.00015,
    "TSLA": 0.0008,
    "NVDA": 0.0006,
    "AMZN": 0.0004,
    "META": 0.0005,
}

SYMBOL_BASE_VOLUMES = {
    "AAPL": 75_000_000,
    "GOOGL": 25_000_000,
    "MSFT": 40_000_000,
    "TSLA": 85_000_000,
    "NVDA": 55_000_000,
    "AMZN": 35_000_000,
    "META": 45_000_000,
}

DEFAULT_BASE_PRICE = 100.0
DEFAULT_VOLATILITY = 0.0003
DEFAULT_BASE_VOLUME = 30_000_000

MARKET_OPEN = time(9, 30)
MARKET_CLOSE = time(16, 0)


def trading_timestamps(start: datetime, end: datetime, interval_minutes: int = 5) -> Iterator[datetime]:
    """Yield bar timestamps inside regular trading hours on weekdays, bounds inclusive."""
    step = timedelta(minutes=interval_minutes)
    day = start.date()
    while day <= end.date():
        if day.weekday() < 5:
            ts = datetime.combine(day, MARKET_OPEN)
            close = datetime.combine(day, MARKET_CLOSE)
            while ts < close:
                if start <= ts <= end:
                    yield ts
                ts += step
        day += timedelta(days=1)


class IntradayGBMSimulator:
    """
    Stateful geometric random walk for one symbol, stepped one intraday bar at a time.
    Opening and closing hours are noisier and busier than midday.
    """

    def __init__(
        self,
        symbol: str,
        start_price: Optional[float] = None,
        volatility: Optional[float] = None,
        base_volume: Optional[float] = None,
        interval_minutes: int = 5,
        seed: Optional[int] = None,
    ):
        self.symbol = symbol.upper()
        self.start_price = start_price or SYMBOL_BASE_PRICES.get(self.symbol, DEFAULT_BASE_PRICE)
        self.volatility = volatility or SYMBOL_VOLATILITIES.get(self.symbol, DEFAULT_VOLATILITY)
        self.base_volume = base_volume or SYMBOL_BASE_VOLUMES.get(self.symbol, DEFAULT_BASE_VOLUME)
        self.interval_minutes = interval_minutes
        self.seed = seed
        self.reset()

    def reset(self) -> None:
        # per-instance RNG for determinism; the symbol keeps series of different tickers apart
        if self.seed is None:
            self._rng = np.random.default_rng()
        else:
            self._rng = np.random.default_rng([self.seed, zlib.crc32(self.symbol.encode())])
        self.current_price = self.start_price
        self.step_idx = 0

    @staticmethod
    def _volatility_multiplier(ts: datetime) -> float:
        if ts.hour == 9:
            return 2.0
        if ts.hour >= 15:
            return 1.5
        return 1.0

    @staticmethod
    def _volume_multiplier(ts: datetime) -> float:
        if ts.hour == 9:
            return 3.0
        if ts.hour >= 15:
            return 2.0
        if 11 <= ts.hour <= 14:
            return 0.5
        return 1.0

    def next_bar(self, ts: datetime) -> TickData:
        sigma = self.volatility * self._volatility_multiplier(ts)
        # scale a 5 minute volatility to the configured bar length
        sigma *= np.sqrt(self.interval_minutes / 5)
        last_price = self.current_price
        z = self._rng.normal()
        new_price = max(0.01, last_price * float(np.exp(-0.5 * sigma ** 2 + sigma * z)))
        self.current_price = new_price

        open_p = last_price
        high_p = max(open_p, new_price) * (1 + self._rng.uniform(0, 0.002))
        low_p = min(open_p, new_price) * (1 - self._rng.uniform(0, 0.002))
        bars_per_day = (6.5 * 60) / self.interval_minutes
        volume = (self.base_volume / bars_per_day) * self._volume_multiplier(ts) * (0.5 + self._rng.random())

        self.step_idx += 1
        return TickData(
            symbol=self.symbol,
            timestamp=ts,
            price=round(new_price, 2),
            volume=round(volume),
            open=round(open_p, 2),
            high=round(high_p, 2),
            low=round(low_p, 2),
            close=round(new_price, 2),
        )

    def generate(self, start: datetime, end: datetime) -> List[TickData]:
        bars = [self.next_bar(ts) for ts in trading_timestamps(start, end, self.interval_minutes)]
        logger.debug(f"Generated {len(bars)} bars for {self.symbol}")
        return bars
