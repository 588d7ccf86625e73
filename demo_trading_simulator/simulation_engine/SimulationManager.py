import asyncio
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from demo_trading_simulator.models import EngineConfig, SessionConfig, SessionStatus, StrategyType, TickData, TradeAction
from demo_trading_simulator.simulation_engine.DataSource.TickSourceInterface import TickSourceInterface
from demo_trading_simulator.simulation_engine.DecisionEngine.DecisionEngine import DecisionEngine, build_strategy
from demo_trading_simulator.simulation_engine.DecisionEngine.strategies import PositionSizer, TradingAdvisor
from demo_trading_simulator.simulation_engine.RiskMonitor import RiskMonitor
from demo_trading_simulator.simulation_engine.SessionEvents import (
    SESSION_COMPLETED,
    SESSION_PAUSED,
    SESSION_RESUMED,
    SESSION_STARTED,
    TICK_PROCESSED,
    TRADE_EXECUTED,
    SessionEvents,
)
from demo_trading_simulator.simulation_engine.SimulationSession import SimulationSession
from demo_trading_simulator.simulation_engine.errors import (
    InvalidSessionConfig,
    InvalidStateTransition,
    NoHistoricalData,
    SessionNotFound,
)

logger = logging.getLogger(__name__)

PAUSE_POLL_SECONDS = 0.01


class SimulationManager:
    """
    Owns the session registry and drives one replay task per running session.

    Control calls (pause, resume, stop) only flip session state; the replay task
    observes it at the next tick boundary, so a tick in flight always completes.
    """

    def __init__(
        self,
        tick_source: TickSourceInterface,
        engine_config: Optional[EngineConfig] = None,
        advisor: Optional[TradingAdvisor] = None,
        events: Optional[SessionEvents] = None,
    ):
        self.tick_source = tick_source
        self.engine_config = engine_config or EngineConfig()
        self.advisor = advisor
        self.events = events or SessionEvents()
        self.risk_monitor = RiskMonitor(self.engine_config.risk_limits)
        self._sessions: Dict[str, SimulationSession] = {}
        self._history: Dict[str, SimulationSession] = {}

    # -- lifecycle -----------------------------------------------------------

    def create_session(self, config: Union[SessionConfig, Mapping[str, Any]]) -> SimulationSession:
        """Validate the configuration and register a new CREATED session."""
        if not isinstance(config, SessionConfig):
            try:
                config = SessionConfig.model_validate(dict(config))
            except ValidationError as e:
                raise InvalidSessionConfig(f"Invalid session configuration: {e}") from e
        config = config.with_defaults(self.engine_config)

        if config.strategy == StrategyType.AI_DYNAMIC and self.advisor is None:
            raise InvalidSessionConfig("Strategy 'ai_dynamic' requires an external advisor")

        sizer = PositionSizer(
            risk_per_trade=config.risk_per_trade,
            max_position_size=self.engine_config.max_position_size,
        )
        strategy = build_strategy(config.strategy, sizer, self.advisor)
        decision_engine = DecisionEngine(strategy, history_window=self.engine_config.history_window)

        session = SimulationSession(config, self.engine_config, decision_engine)
        self._sessions[session.id] = session
        logger.info(
            f"Created demo session {session.id} for {config.symbol} "
            f"({config.start_date} to {config.end_date}, strategy {config.strategy.value})"
        )
        return session

    async def start_session(self, session_id: str) -> SimulationSession:
        """Start a CREATED session or restart the replay of a PAUSED one at its cursor."""
        session = self._get_active(session_id, "start")
        session.ensure_can("start")

        if session.ticks is None:
            ticks = await self.tick_source.get_historical_data(
                session.config.symbol, session.config.start_date, session.config.end_date
            )
            if not ticks:
                raise NoHistoricalData(session.config.symbol)
            session.ticks = list(ticks)
            logger.info(f"Loaded {len(session.ticks)} ticks for session {session_id}")

        resuming = session.status == SessionStatus.PAUSED
        session.transition("start")
        if session.started_at is None:
            session.started_at = time.time()
        if session.task is None or session.task.done():
            session.task = asyncio.create_task(self._run_replay_loop(session), name=f"replay-{session.id}")

        if resuming:
            logger.info(f"Resumed demo session {session_id} at tick {session.cursor}")
            await self.events.emit(SESSION_RESUMED, {"session_id": session_id})
        else:
            logger.info(f"Starting demo session {session_id} at tick {session.cursor}")
            await self.events.emit(SESSION_STARTED, {"session_id": session.id, "session": session.summary()})
        return session

    async def pause_session(self, session_id: str) -> SimulationSession:
        session = self._get_active(session_id, "pause")
        session.transition("pause")
        logger.info(f"Paused demo session {session_id}")
        await self.events.emit(SESSION_PAUSED, {"session_id": session_id})
        return session

    async def resume_session(self, session_id: str) -> SimulationSession:
        session = self._get_active(session_id, "resume")
        session.transition("resume")
        logger.info(f"Resumed demo session {session_id}")
        await self.events.emit(SESSION_RESUMED, {"session_id": session_id})
        return session

    async def stop_session(self, session_id: str) -> SimulationSession:
        """
        Request completion. Returns as soon as the request is recorded; the replay
        task finalizes the session on its next iteration.
        """
        session = self._get_active(session_id, "stop")
        session.request_stop()
        logger.info(f"Stop requested for demo session {session_id}")
        return session

    async def wait_for_completion(self, session_id: str, timeout: Optional[float] = None) -> SimulationSession:
        session = self.get_session(session_id)
        if session.task is not None and not session.is_completed:
            await asyncio.wait_for(asyncio.shield(session.task), timeout=timeout)
        return session

    async def shutdown(self):
        """Stop every active session and wait for the replay tasks to finish."""
        logger.info("Shutting down simulation manager")
        for session in list(self._sessions.values()):
            if session.status == SessionStatus.CREATED:
                continue
            session.request_stop()
        tasks = [s.task for s in self._sessions.values() if s.task is not None and not s.task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Simulation manager shutdown complete")

    # -- replay --------------------------------------------------------------

    async def _run_replay_loop(self, session: SimulationSession):
        interval = session.tick_interval_seconds
        try:
            while True:
                if session.stop_requested:
                    break
                if session.status == SessionStatus.PAUSED:
                    await asyncio.sleep(max(interval, PAUSE_POLL_SECONDS))
                    continue
                if session.exhausted:
                    break

                await self._process_tick(session, session.ticks[session.cursor])
                session.cursor += 1
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info(f"Replay of session {session.id} cancelled")
            raise
        except Exception as e:
            logger.error(f"Error in replay of session {session.id}: {e}", exc_info=True)
        finally:
            if not session.is_completed:
                await self._complete_session(session)

    async def _process_tick(self, session: SimulationSession, tick: TickData):
        """
        Run one tick through the pipeline. Either the whole tick lands in the
        session or none of it does: the ledger is rolled back if any step fails.
        """
        started = time.perf_counter()
        portfolio = session.portfolio
        checkpoint = portfolio.checkpoint()
        trade = None
        try:
            portfolio.mark_to_market(tick.symbol, tick.price)
            decision = await session.decision_engine.decide(tick, session.processed_ticks, portfolio)
            if decision.action != TradeAction.HOLD:
                trade = portfolio.execute(
                    decision.action,
                    tick.symbol,
                    decision.quantity,
                    tick.price,
                    tick.timestamp,
                    rationale=decision.rationale,
                    strategy=decision.strategy,
                )
            portfolio.mark_to_market(tick.symbol, tick.price)
            risk_events = self.risk_monitor.check(portfolio, session.initial_capital, tick.timestamp)
        except BaseException:
            portfolio.restore(checkpoint)
            raise

        session.current_time = tick.timestamp
        session.decisions.append(decision)
        if trade is not None:
            session.trades.append(trade)
            session.tracker.record_trade(trade)
        session.risk_events.extend(risk_events)
        session.tracker.record_value(portfolio.total_value)
        session.processed_ticks.append(tick)
        session.tracker.record_latency((time.perf_counter() - started) * 1000)

        if trade is not None:
            await self.events.emit(TRADE_EXECUTED, {"session_id": session.id, "trade": trade.to_dict()})
        await self.events.emit(
            TICK_PROCESSED,
            {
                "session_id": session.id,
                "tick": tick.model_dump(mode="json"),
                "portfolio": portfolio.to_dict(),
                "decision": decision.to_dict(),
                "metrics": session.tracker.snapshot.to_dict(include_curve=False),
            },
        )

    async def _complete_session(self, session: SimulationSession):
        session.transition("complete")
        session.ended_at = time.time()
        session.tracker.finalize(session.trades)

        self._sessions.pop(session.id, None)
        self._history[session.id] = session

        metrics = session.tracker.snapshot
        logger.info(
            f"Completed demo session {session.id}: {metrics.total_pnl:+.2f} "
            f"({session.portfolio.calculate_total_return():.2f}%) after {session.cursor} ticks"
        )
        await self.events.emit(SESSION_COMPLETED, {"session_id": session.id, "session": session.summary()})

    # -- read projections ----------------------------------------------------

    def _get_active(self, session_id: str, operation: str) -> SimulationSession:
        session = self._sessions.get(session_id)
        if session is not None:
            return session
        if session_id in self._history:
            # completed sessions exist but accept no control operations
            raise InvalidStateTransition(session_id, SessionStatus.COMPLETED.value, operation)
        raise SessionNotFound(session_id)

    def get_session(self, session_id: str) -> SimulationSession:
        session = self._sessions.get(session_id) or self._history.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def list_active(self) -> List[SimulationSession]:
        return list(self._sessions.values())

    def list_history(self) -> List[SimulationSession]:
        return list(self._history.values())

    def get_session_summary(self, session_id: str) -> Dict[str, Any]:
        return self.get_session(session_id).summary()

    def get_current_positions(self) -> List[Dict[str, Any]]:
        positions = []
        for session in self._sessions.values():
            if session.status != SessionStatus.RUNNING:
                continue
            for symbol, position in session.portfolio.positions.items():
                positions.append({
                    "session_id": session.id,
                    "symbol": symbol,
                    "quantity": position.quantity,
                    "avg_price": position.average_price,
                    "current_price": position.current_price,
                    "pnl": position.unrealized_pnl,
                    "change_percent": (
                        (position.current_price - position.average_price) / position.average_price * 100
                        if position.average_price
                        else 0.0
                    ),
                })
        return positions

    def get_status(self) -> Dict[str, Any]:
        return {
            "active_sessions": len(self._sessions),
            "completed_sessions": len(self._history),
            "supported_strategies": [
                s.value for s in StrategyType if s != StrategyType.AI_DYNAMIC or self.advisor is not None
            ],
            "supported_symbols": list(self.engine_config.symbols),
        }
