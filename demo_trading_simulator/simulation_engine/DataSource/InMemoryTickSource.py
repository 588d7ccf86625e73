import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List

import pandas as pd

from demo_trading_simulator.models import TickData
from demo_trading_simulator.simulation_engine.DataSource.TickSourceInterface import (
    TickSourceInterface,
    filter_ticks,
)

logger = logging.getLogger(__name__)


class InMemoryTickSource(TickSourceInterface):
    """Serves pre-loaded ticks, e.g. a recorded price series or a CSV export."""

    REQUIRED_COLUMNS = {"symbol", "timestamp"}

    def __init__(self, ticks: Iterable[TickData] = ()):
        self._ticks: Dict[str, List[TickData]] = defaultdict(list)
        self.add_ticks(ticks)

    def add_ticks(self, ticks: Iterable[TickData]):
        touched = set()
        for tick in ticks:
            self._ticks[tick.symbol.upper()].append(tick)
            touched.add(tick.symbol.upper())
        for symbol in touched:
            self._ticks[symbol].sort(key=lambda tick: tick.timestamp)

    @property
    def symbols(self) -> List[str]:
        return sorted(self._ticks.keys())

    async def get_historical_data(
        self, symbol: str, start_date: datetime, end_date: datetime
    ) -> List[TickData]:
        ticks = filter_ticks(self._ticks.get(symbol.upper(), []), start_date, end_date)
        logger.debug(f"Serving {len(ticks)} ticks for {symbol} between {start_date} and {end_date}")
        return ticks

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> "InMemoryTickSource":
        """
        Build a source from a DataFrame with columns symbol, timestamp and price
        (or close); volume, open, high and low are optional.
        """
        missing = cls.REQUIRED_COLUMNS - set(df.columns)
        if missing:
            raise ValueError(f"Tick data is missing required columns: {sorted(missing)}")
        if "price" not in df.columns and "close" not in df.columns:
            raise ValueError("Tick data needs a 'price' or 'close' column")

        df = df.copy()
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
        optional = [c for c in ("price", "volume", "open", "high", "low", "close") if c in df.columns]

        ticks = []
        for row in df.to_dict(orient="records"):
            payload = {
                "symbol": str(row["symbol"]).upper(),
                "timestamp": row["timestamp"].to_pydatetime(),
            }
            for column in optional:
                value = row[column]
                if not pd.isna(value):
                    payload[column] = float(value)
            ticks.append(TickData(**payload))

        logger.info(f"Loaded {len(ticks)} ticks for {df['symbol'].nunique()} symbols")
        return cls(ticks)

    @classmethod
    def from_csv(cls, csv_path: str) -> "InMemoryTickSource":
        logger.info(f"Loading ticks from {csv_path}")
        return cls.from_dataframe(pd.read_csv(csv_path))
