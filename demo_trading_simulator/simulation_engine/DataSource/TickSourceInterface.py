from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List

from demo_trading_simulator.models import TickData, to_naive_utc


class TickSourceInterface(ABC):
    """
    Abstract base class for historical tick suppliers.

    The simulation engine only ever asks a tick source for one ordered, immutable
    sequence of ticks per session. Where the ticks come from (files, a cache,
    a generator) is up to the implementation.
    """

    @abstractmethod
    async def get_historical_data(
        self, symbol: str, start_date: datetime, end_date: datetime
    ) -> List[TickData]:
        """
        Fetch the ticks of one symbol between two dates.

        Args:
            symbol: Ticker symbol.
            start_date: First timestamp to include.
            end_date: Last timestamp to include.

        Returns:
            Ticks in ascending timestamp order, bounds inclusive. An empty list
            is a valid answer.
        """
        pass


def filter_ticks(ticks: Iterable[TickData], start_date: datetime, end_date: datetime) -> List[TickData]:
    """Return the ticks inside [start_date, end_date], sorted by timestamp."""
    start = to_naive_utc(start_date)
    end = to_naive_utc(end_date)
    selected = [tick for tick in ticks if start <= tick.timestamp <= end]
    selected.sort(key=lambda tick: tick.timestamp)
    return selected
