import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List

from demo_trading_simulator.models import RiskEventKind, RiskLimits
from demo_trading_simulator.simulation_engine.portfolio import Portfolio

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiskEvent:
    timestamp: datetime
    kind: RiskEventKind
    value: float
    limit: float

    def to_dict(self):
        return {
            "timestamp": self.timestamp.isoformat(),
            "type": self.kind.value,
            "value": self.value,
            "limit": self.limit,
        }


class RiskMonitor:
    """
    Flags limit breaches after each tick. Events are advisory: nothing here
    halts trading or liquidates positions.
    """

    def __init__(self, limits: RiskLimits = RiskLimits()):
        self.limits = limits

    def check(self, portfolio: Portfolio, initial_capital: float, timestamp: datetime) -> List[RiskEvent]:
        events: List[RiskEvent] = []

        drawdown = (initial_capital - portfolio.total_value) / initial_capital
        if drawdown > self.limits.max_drawdown:
            events.append(
                RiskEvent(timestamp, RiskEventKind.MAX_DRAWDOWN_EXCEEDED, drawdown, self.limits.max_drawdown)
            )
            logger.warning(f"Risk Alert: Max drawdown exceeded ({drawdown * 100:.2f}%)")

        exposure = portfolio.exposure()
        if exposure > self.limits.max_exposure:
            events.append(
                RiskEvent(timestamp, RiskEventKind.HIGH_RISK_UTILIZATION, exposure, self.limits.max_exposure)
            )
            logger.warning(f"Risk Alert: Exposure {exposure * 100:.2f}% above {self.limits.max_exposure * 100:.0f}%")

        return events
