import asyncio
import time
import uuid
from collections import deque
from datetime import datetime
from typing import Deque, Dict, List, Optional

from demo_trading_simulator.models import EngineConfig, SessionConfig, SessionStatus, TickData
from demo_trading_simulator.simulation_engine.DecisionEngine.Decision import Decision
from demo_trading_simulator.simulation_engine.DecisionEngine.DecisionEngine import DecisionEngine
from demo_trading_simulator.simulation_engine.PerformanceTracker import PerformanceTracker
from demo_trading_simulator.simulation_engine.RiskMonitor import RiskEvent
from demo_trading_simulator.simulation_engine.errors import InvalidStateTransition
from demo_trading_simulator.simulation_engine.portfolio import Portfolio, Trade

# operation -> statuses it may be applied from, and the status it leads to
TRANSITIONS: Dict[str, tuple[frozenset, SessionStatus]] = {
    "start": (frozenset({SessionStatus.CREATED, SessionStatus.PAUSED}), SessionStatus.RUNNING),
    "pause": (frozenset({SessionStatus.RUNNING}), SessionStatus.PAUSED),
    "resume": (frozenset({SessionStatus.PAUSED}), SessionStatus.RUNNING),
    "complete": (frozenset({SessionStatus.RUNNING, SessionStatus.PAUSED}), SessionStatus.COMPLETED),
}


def new_session_id() -> str:
    return f"demo_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class SimulationSession:
    """
    Encapsulates all the state for a single, isolated backtest simulation.

    Only the owning SessionManager and the session's own replay task write to it.
    """

    def __init__(self, config: SessionConfig, engine_config: EngineConfig, decision_engine: DecisionEngine):
        self.id = new_session_id()
        self.config = config
        self.engine_config = engine_config
        self.status = SessionStatus.CREATED
        self.current_time: datetime = config.start_date
        self.cursor = 0
        self.ticks: Optional[List[TickData]] = None
        self.processed_ticks: Deque[TickData] = deque(maxlen=engine_config.history_window)

        self.portfolio = Portfolio(initial_cash=self.initial_capital)
        self.decision_engine = decision_engine
        self.tracker = PerformanceTracker(self.initial_capital)
        self.trades: List[Trade] = []
        self.risk_events: List[RiskEvent] = []
        self.decisions: List[Decision] = []

        self.stop_requested = False
        self.task: Optional[asyncio.Task] = None
        self.created_at = time.time()
        self.started_at: Optional[float] = None
        self.ended_at: Optional[float] = None

    @property
    def initial_capital(self) -> float:
        return self.config.initial_capital or self.engine_config.initial_capital

    @property
    def tick_interval_seconds(self) -> float:
        interval_ms = max(
            self.engine_config.min_tick_interval_ms,
            self.engine_config.base_tick_interval_ms / self.config.speed,
        )
        return interval_ms / 1000.0

    @property
    def exhausted(self) -> bool:
        return self.ticks is not None and self.cursor >= len(self.ticks)

    @property
    def is_completed(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None:
            return None
        return (self.ended_at or time.time()) - self.started_at

    def ensure_can(self, operation: str):
        """Raise InvalidStateTransition unless operation is legal from the current status."""
        allowed, _ = TRANSITIONS[operation]
        if self.status not in allowed or (self.stop_requested and operation != "complete"):
            current = f"{self.status.value} (stop pending)" if self.stop_requested else self.status.value
            raise InvalidStateTransition(self.id, current, operation)

    def transition(self, operation: str):
        self.ensure_can(operation)
        self.status = TRANSITIONS[operation][1]

    def request_stop(self):
        if self.stop_requested:
            return
        if self.status not in TRANSITIONS["complete"][0]:
            raise InvalidStateTransition(self.id, self.status.value, "stop")
        self.stop_requested = True

    def summary(self):
        return {
            "id": self.id,
            "config": self.config.model_dump(mode="json"),
            "status": self.status.value,
            "current_time": self.current_time.isoformat(),
            "cursor": self.cursor,
            "total_ticks": len(self.ticks) if self.ticks is not None else None,
            "metrics": self.tracker.snapshot.to_dict(include_curve=False),
            "performance": {
                "start_time": self.started_at,
                "end_time": self.ended_at,
                "duration": self.duration,
                "ticks_processed": self.tracker.snapshot.ticks_processed,
                "average_latency_ms": self.tracker.snapshot.average_latency_ms,
            },
            "current_value": self.portfolio.total_value,
            "total_return": self.portfolio.calculate_total_return(),
            "trades": len(self.trades),
            "risk_events": len(self.risk_events),
        }
