import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from demo_trading_simulator.data_processing.simulation import IntradayGBMSimulator
from demo_trading_simulator.models import TickData, TickSourceConfig, to_naive_utc
from demo_trading_simulator.simulation_engine.DataSource.TickSourceInterface import TickSourceInterface

logger = logging.getLogger(__name__)


class SyntheticTickSource(TickSourceInterface):
    """
    Generates intraday bars on demand. With a seed, the same symbol and date
    range always produce the same series; generated series are cached.
    """

    def __init__(self, seed: Optional[int] = None, interval_minutes: int = 5):
        self.seed = seed
        self.interval_minutes = interval_minutes
        self._cache: Dict[Tuple[str, datetime, datetime], List[TickData]] = {}

    @classmethod
    def from_config(cls, config: TickSourceConfig) -> "SyntheticTickSource":
        return cls(seed=config.seed, interval_minutes=config.interval_minutes)

    async def get_historical_data(
        self, symbol: str, start_date: datetime, end_date: datetime
    ) -> List[TickData]:
        key = (symbol.upper(), to_naive_utc(start_date), to_naive_utc(end_date))
        if key not in self._cache:
            simulator = IntradayGBMSimulator(
                symbol=key[0], interval_minutes=self.interval_minutes, seed=self.seed
            )
            self._cache[key] = simulator.generate(key[1], key[2])
            logger.info(f"Generated {len(self._cache[key])} synthetic ticks for {key[0]}")
        return list(self._cache[key])
