"""
Tests for SimulationManager: session lifecycle, the replay loop and the read projections.
"""
import asyncio
from datetime import datetime

import pytest

from demo_trading_simulator.models import EngineConfig, RiskEventKind, SessionStatus, TradeAction, TradeStatus
from demo_trading_simulator.simulation_engine.DataSource.SyntheticTickSource import SyntheticTickSource
from demo_trading_simulator.simulation_engine.SessionEvents import (
    SESSION_COMPLETED,
    SESSION_PAUSED,
    SESSION_RESUMED,
    SESSION_STARTED,
    TICK_PROCESSED,
    TRADE_EXECUTED,
)
from demo_trading_simulator.simulation_engine.SimulationManager import SimulationManager
from demo_trading_simulator.simulation_engine.errors import (
    InvalidSessionConfig,
    InvalidStateTransition,
    NoHistoricalData,
    SessionNotFound,
)

MOMENTUM_BUY_PRICES = [90] * 5 + [100] * 5 + [103]
BREAKOUT_ROUND_TRIP_PRICES = [100] * 10 + [105, 95]


def slow_manager(tick_source, interval_ms=20):
    return SimulationManager(tick_source, EngineConfig(base_tick_interval_ms=interval_ms, min_tick_interval_ms=0))


def trade_fields(trades):
    return [(t.action, t.quantity, t.price, t.timestamp, t.status, t.pnl) for t in trades]


async def run_to_completion(manager, session_config):
    session = manager.create_session(session_config)
    await manager.start_session(session.id)
    await manager.wait_for_completion(session.id, timeout=5)
    return session


class TestLifecycle:
    def test_create_session_registers_created_session(self, manager, session_config):
        session = manager.create_session(session_config)

        assert session.status == SessionStatus.CREATED
        assert session.id.startswith("demo_")
        assert session.portfolio.cash == 100000
        assert session.config.risk_per_trade == 0.02
        assert manager.list_active() == [session]

    def test_invalid_configuration_is_rejected(self, manager, session_config):
        bad = dict(session_config, start_date=datetime(2025, 1, 1))
        with pytest.raises(InvalidSessionConfig):
            manager.create_session(bad)
        with pytest.raises(InvalidSessionConfig):
            manager.create_session(dict(session_config, symbol="  "))
        assert manager.list_active() == []

    def test_advisor_strategy_needs_an_advisor(self, manager, session_config):
        with pytest.raises(InvalidSessionConfig):
            manager.create_session(dict(session_config, strategy="ai_dynamic"))

    @pytest.mark.asyncio
    async def test_unknown_session(self, manager):
        with pytest.raises(SessionNotFound):
            await manager.start_session("demo_0_missing")
        with pytest.raises(SessionNotFound):
            manager.get_session_summary("demo_0_missing")

    @pytest.mark.asyncio
    async def test_pause_before_start_is_rejected(self, manager, session_config):
        session = manager.create_session(session_config)
        with pytest.raises(InvalidStateTransition):
            await manager.pause_session(session.id)
        with pytest.raises(InvalidStateTransition):
            await manager.resume_session(session.id)
        with pytest.raises(InvalidStateTransition):
            await manager.stop_session(session.id)
        assert session.status == SessionStatus.CREATED

    @pytest.mark.asyncio
    async def test_no_ticks_leaves_session_created(self, manager, session_config):
        session = manager.create_session(session_config)
        with pytest.raises(NoHistoricalData):
            await manager.start_session(session.id)
        assert session.status == SessionStatus.CREATED
        assert session.task is None

    @pytest.mark.asyncio
    async def test_completed_session_cannot_be_controlled(self, manager, tick_source, make_ticks, session_config):
        tick_source.add_ticks(make_ticks([100, 101, 102]))
        session = await run_to_completion(manager, session_config)

        assert session.status == SessionStatus.COMPLETED
        for operation in (manager.start_session, manager.pause_session, manager.resume_session, manager.stop_session):
            with pytest.raises(InvalidStateTransition):
                await operation(session.id)
        assert manager.list_active() == []
        assert manager.list_history() == [session]

    @pytest.mark.asyncio
    async def test_stop_is_asynchronous(self, tick_source, make_ticks, session_config):
        tick_source.add_ticks(make_ticks([100] * 200))
        manager = slow_manager(tick_source, interval_ms=50)
        session = manager.create_session(session_config)
        await manager.start_session(session.id)
        await pytest.wait_for(lambda: session.cursor >= 1)

        await manager.stop_session(session.id)
        await manager.stop_session(session.id)

        assert session.stop_requested
        assert session.status == SessionStatus.RUNNING
        assert session in manager.list_active()
        with pytest.raises(InvalidStateTransition):
            await manager.pause_session(session.id)

        await manager.wait_for_completion(session.id, timeout=2)
        assert session.status == SessionStatus.COMPLETED
        assert session.cursor < 200
        assert manager.list_history() == [session]
        assert session.tracker.snapshot.win_rate is not None

    @pytest.mark.asyncio
    async def test_pause_and_resume_keep_the_cursor(self, tick_source, make_ticks, session_config):
        ticks = make_ticks([100 + i % 7 for i in range(40)])
        tick_source.add_ticks(ticks)
        manager = slow_manager(tick_source, interval_ms=10)
        seen = []
        manager.events.subscribe(lambda t, p: seen.append(p["tick"]["timestamp"]), [TICK_PROCESSED])
        control = []
        manager.events.subscribe(lambda t, p: control.append(t), [SESSION_PAUSED, SESSION_RESUMED])

        session = manager.create_session(session_config)
        await manager.start_session(session.id)
        await pytest.wait_for(lambda: session.cursor >= 3)
        await manager.pause_session(session.id)
        paused_at = session.cursor
        await asyncio.sleep(0.1)

        assert session.status == SessionStatus.PAUSED
        assert session.cursor == paused_at

        await manager.resume_session(session.id)
        with pytest.raises(InvalidStateTransition):
            await manager.resume_session(session.id)
        await manager.wait_for_completion(session.id, timeout=5)

        assert session.cursor == len(ticks)
        assert len(seen) == len(ticks)
        assert len(set(seen)) == len(ticks)
        assert control == [SESSION_PAUSED, SESSION_RESUMED]

    @pytest.mark.asyncio
    async def test_start_on_paused_session_resumes_it(self, tick_source, make_ticks, session_config):
        tick_source.add_ticks(make_ticks([100] * 30))
        manager = slow_manager(tick_source, interval_ms=10)
        lifecycle = []
        manager.events.subscribe(lambda t, p: lifecycle.append(t), [SESSION_STARTED, SESSION_PAUSED, SESSION_RESUMED])
        session = manager.create_session(session_config)
        await manager.start_session(session.id)
        await pytest.wait_for(lambda: session.cursor >= 2)
        await manager.pause_session(session.id)
        task = session.task

        await manager.start_session(session.id)

        assert session.status == SessionStatus.RUNNING
        assert session.task is task
        assert lifecycle == [SESSION_STARTED, SESSION_PAUSED, SESSION_RESUMED]
        await manager.wait_for_completion(session.id, timeout=5)
        assert session.tracker.snapshot.ticks_processed == 30

    @pytest.mark.asyncio
    async def test_stop_while_paused_completes(self, tick_source, make_ticks, session_config):
        tick_source.add_ticks(make_ticks([100] * 100))
        manager = slow_manager(tick_source, interval_ms=10)
        session = manager.create_session(session_config)
        await manager.start_session(session.id)
        await manager.pause_session(session.id)

        await manager.stop_session(session.id)
        await manager.wait_for_completion(session.id, timeout=2)

        assert session.status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_shutdown_stops_running_sessions(self, tick_source, make_ticks, session_config):
        tick_source.add_ticks(make_ticks([100] * 200))
        manager = slow_manager(tick_source, interval_ms=50)
        running = manager.create_session(session_config)
        idle = manager.create_session(session_config)
        await manager.start_session(running.id)

        await manager.shutdown()

        assert running.status == SessionStatus.COMPLETED
        assert idle.status == SessionStatus.CREATED
        assert manager.list_active() == [idle]


class TestReplay:
    @pytest.mark.asyncio
    async def test_momentum_buy_is_sized_by_risk(self, manager, tick_source, make_ticks, session_config):
        tick_source.add_ticks(make_ticks(MOMENTUM_BUY_PRICES))

        session = await run_to_completion(manager, session_config)

        assert len(session.trades) == 1
        trade = session.trades[0]
        assert trade.action == TradeAction.BUY
        assert trade.status == TradeStatus.FILLED
        assert trade.quantity == 19
        assert trade.price == 103
        assert trade.strategy == "momentum"
        assert session.portfolio.cash == pytest.approx(98043)
        assert [d.rationale for d in session.decisions[:10]] == ["Insufficient data"] * 10

    @pytest.mark.asyncio
    async def test_breakout_round_trip(self, manager, tick_source, make_ticks, session_config):
        tick_source.add_ticks(make_ticks(BREAKOUT_ROUND_TRIP_PRICES))

        session = await run_to_completion(manager, dict(session_config, strategy="breakout"))

        assert [(t.action, t.quantity, t.price) for t in session.trades] == [
            (TradeAction.BUY, 19, 105),
            (TradeAction.SELL, 19, 95),
        ]
        assert session.trades[1].pnl == pytest.approx(-190)
        assert session.portfolio.cash == pytest.approx(99810)
        assert session.portfolio.positions == {}

        metrics = session.tracker.snapshot
        assert metrics.total_trades == 2
        assert metrics.realized_pnl == pytest.approx(-190)
        assert metrics.win_rate == 0
        assert metrics.average_loss == pytest.approx(190)
        assert metrics.profit_factor == 0

        summary = manager.get_session_summary(session.id)
        assert summary["status"] == "COMPLETED"
        assert summary["cursor"] == summary["total_ticks"] == 12
        assert summary["trades"] == 2
        assert summary["total_return"] == pytest.approx(-0.19)
        assert summary["metrics"]["total_pnl"] == pytest.approx(-190)

    @pytest.mark.asyncio
    async def test_events_follow_the_pipeline(self, manager, tick_source, make_ticks, session_config):
        tick_source.add_ticks(make_ticks(BREAKOUT_ROUND_TRIP_PRICES))
        received = []

        async def on_event(event_type, payload):
            received.append((event_type, payload))

        manager.events.subscribe(on_event)
        await run_to_completion(manager, dict(session_config, strategy="breakout"))

        types = [t for t, _ in received]
        assert types[0] == SESSION_STARTED
        assert types[-1] == SESSION_COMPLETED
        assert types.count(TICK_PROCESSED) == 12
        assert types.count(TRADE_EXECUTED) == 2
        # a trade is announced before the tick it happened on
        assert types.index(TRADE_EXECUTED) == types.index(TICK_PROCESSED) + 10

        for event_type, payload in received:
            if event_type != TICK_PROCESSED:
                continue
            portfolio = payload["portfolio"]
            held = sum(p["quantity"] * p["current_price"] for p in portfolio["positions"].values())
            assert portfolio["cash"] >= 0
            assert portfolio["total_value"] == pytest.approx(portfolio["cash"] + held)
            assert payload["decision"]["price"] == payload["tick"]["price"]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_stop_replay(self, manager, tick_source, make_ticks, session_config):
        tick_source.add_ticks(make_ticks([100] * 5))

        def broken(event_type, payload):
            raise RuntimeError("subscriber bug")

        manager.events.subscribe(broken)
        session = await run_to_completion(manager, session_config)
        assert session.cursor == 5

    @pytest.mark.asyncio
    async def test_replay_is_deterministic(self, fast_engine_config, session_config):
        config = dict(
            session_config,
            symbol="TSLA",
            start_date=datetime(2024, 1, 2),
            end_date=datetime(2024, 1, 6),
            strategy="mean_reversion",
        )
        first = await run_to_completion(SimulationManager(SyntheticTickSource(seed=5), fast_engine_config), config)
        second = await run_to_completion(SimulationManager(SyntheticTickSource(seed=5), fast_engine_config), config)

        assert trade_fields(first.trades) == trade_fields(second.trades)
        assert first.tracker.snapshot.equity_curve == second.tracker.snapshot.equity_curve
        assert first.portfolio.to_dict() == second.portfolio.to_dict()

    @pytest.mark.asyncio
    async def test_session_portfolios_are_isolated(self, manager, tick_source, make_ticks, session_config):
        tick_source.add_ticks(make_ticks(MOMENTUM_BUY_PRICES))
        first = await run_to_completion(manager, session_config)
        second = await run_to_completion(manager, dict(session_config, initial_capital=50000))

        assert first.portfolio is not second.portfolio
        assert first.portfolio.cash == pytest.approx(98043)
        assert second.trades[0].quantity == 9

    @pytest.mark.asyncio
    async def test_risk_breach_is_logged_and_trading_continues(self, manager, tick_source, make_ticks, session_config):
        ticks = make_ticks([100] * 10 + [105, 50, 200])
        tick_source.add_ticks(ticks)

        session = await run_to_completion(
            manager, dict(session_config, strategy="breakout", risk_per_trade=1.0)
        )

        assert [(t.action, t.quantity, t.price) for t in session.trades] == [
            (TradeAction.BUY, 952, 105),
            (TradeAction.SELL, 952, 50),
            (TradeAction.BUY, 238, 200),
        ]
        drawdown_events = [e for e in session.risk_events if e.kind == RiskEventKind.MAX_DRAWDOWN_EXCEEDED]
        assert drawdown_events
        assert drawdown_events[0].timestamp == ticks[11].timestamp
        assert drawdown_events[0].value > 0.2
        assert session.trades[-1].timestamp > drawdown_events[0].timestamp
        assert manager.get_session_summary(session.id)["risk_events"] == len(session.risk_events)

    @pytest.mark.asyncio
    async def test_failed_tick_is_not_half_applied(self, manager, tick_source, make_ticks, session_config):
        tick_source.add_ticks(make_ticks(BREAKOUT_ROUND_TRIP_PRICES))
        real_check = manager.risk_monitor.check

        def check(portfolio, initial_capital, timestamp):
            if portfolio.positions:
                raise RuntimeError("risk service down")
            return real_check(portfolio, initial_capital, timestamp)

        manager.risk_monitor.check = check
        session = await run_to_completion(manager, dict(session_config, strategy="breakout"))

        # the BUY on the 11th tick was executed and then undone
        assert session.status == SessionStatus.COMPLETED
        assert session.cursor == 10
        assert session.trades == []
        assert len(session.decisions) == 10
        assert session.portfolio.cash == 100000
        assert session.portfolio.positions == {}
        assert len(session.tracker.snapshot.equity_curve) == 10
        assert session.current_time == make_ticks(BREAKOUT_ROUND_TRIP_PRICES)[9].timestamp


class FixedAdvisor:
    def __init__(self):
        self.calls = 0

    async def generate_trading_decision(self, market_context, portfolio_context):
        self.calls += 1
        if self.calls == 2:
            raise RuntimeError("advisor timeout")
        return {"action": "BUY", "quantity": 2, "confidence": 0.6, "reasoning": "always buy"}


@pytest.mark.asyncio
async def test_external_advisor_drives_trades(tick_source, fast_engine_config, make_ticks, session_config):
    tick_source.add_ticks(make_ticks([100, 101, 102]))
    advisor = FixedAdvisor()
    manager = SimulationManager(tick_source, fast_engine_config, advisor=advisor)

    session = await run_to_completion(manager, dict(session_config, strategy="ai_dynamic"))

    assert advisor.calls == 3
    assert [(t.quantity, t.price) for t in session.trades] == [(2, 100), (2, 102)]
    assert session.decisions[1].action == TradeAction.HOLD
    assert session.decisions[1].rationale == "decision source error"
    assert all(t.strategy == "ai_dynamic" for t in session.trades)
    assert "ai_dynamic" in manager.get_status()["supported_strategies"]


@pytest.mark.asyncio
async def test_status_and_positions(tick_source, make_ticks, session_config):
    tick_source.add_ticks(make_ticks(MOMENTUM_BUY_PRICES + [103] * 100))
    manager = slow_manager(tick_source, interval_ms=10)

    status = manager.get_status()
    assert status["active_sessions"] == 0
    assert "ai_dynamic" not in status["supported_strategies"]
    assert "AAPL" in status["supported_symbols"]

    session = manager.create_session(session_config)
    await manager.start_session(session.id)
    await pytest.wait_for(lambda: session.trades)

    positions = manager.get_current_positions()
    assert len(positions) == 1
    assert positions[0]["session_id"] == session.id
    assert positions[0]["symbol"] == "TEST"
    assert positions[0]["avg_price"] == pytest.approx(103)
    assert manager.get_status()["active_sessions"] == 1

    await manager.pause_session(session.id)
    assert manager.get_current_positions() == []

    await manager.stop_session(session.id)
    await manager.wait_for_completion(session.id, timeout=2)
    status = manager.get_status()
    assert status["active_sessions"] == 0
    assert status["completed_sessions"] == 1
