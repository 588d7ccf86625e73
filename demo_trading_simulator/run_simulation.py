import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Sequence

from demo_trading_simulator.config.logging_config import setup_logging
from demo_trading_simulator.config.sim_arg_parser import parse_arguments
from demo_trading_simulator.models import AppConfig, SessionConfig, TickSourceConfig
from demo_trading_simulator.simulation_engine.ConfigHandler import ConfigHandler
from demo_trading_simulator.simulation_engine.DataSource.InMemoryTickSource import InMemoryTickSource
from demo_trading_simulator.simulation_engine.DataSource.SyntheticTickSource import SyntheticTickSource
from demo_trading_simulator.simulation_engine.DataSource.TickSourceInterface import TickSourceInterface
from demo_trading_simulator.simulation_engine.SimulationManager import SimulationManager

logger = logging.getLogger(__name__)


def build_tick_source(config: TickSourceConfig) -> TickSourceInterface:
    if config.source_type == "csv":
        return InMemoryTickSource.from_csv(config.csv_path)
    return SyntheticTickSource.from_config(config)


def apply_overrides(app_config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Fold command-line options into the loaded configuration."""
    tick_source = app_config.tick_source
    if args.csv:
        tick_source = TickSourceConfig(source_type="csv", csv_path=args.csv)
    elif args.seed is not None:
        tick_source = tick_source.model_copy(update={"seed": args.seed})

    sessions = list(app_config.sessions)
    if args.symbol:
        if not (args.start_date and args.end_date):
            raise ValueError("--symbol needs --start-date and --end-date")
        sessions = [
            SessionConfig(
                symbol=args.symbol,
                start_date=args.start_date,
                end_date=args.end_date,
                strategy=args.strategy,
                speed=args.speed or 1.0,
                initial_capital=args.initial_capital,
            )
        ]
    return app_config.model_copy(update={"tick_source": tick_source, "sessions": sessions})


async def run_sessions(
    manager: SimulationManager, session_configs: Sequence[SessionConfig]
) -> List[Dict[str, Any]]:
    """Run the sessions concurrently and return their summaries in order."""
    sessions = [manager.create_session(config) for config in session_configs]
    for session in sessions:
        await manager.start_session(session.id)
    await asyncio.gather(*(manager.wait_for_completion(s.id) for s in sessions))
    return [manager.get_session_summary(s.id) for s in sessions]


async def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the backtest runner."""
    args = parse_arguments(argv)
    setup_logging(args.log_level)

    try:
        if args.config:
            logging.info(f"Loading configuration from {args.config}")
            app_config = ConfigHandler.load_app_config(args.config)
        else:
            app_config = AppConfig()
        app_config = apply_overrides(app_config, args)

        if not app_config.sessions:
            logging.error("Nothing to run: give --symbol/--start-date/--end-date or list sessions in the config")
            return 1

        manager = SimulationManager(build_tick_source(app_config.tick_source), app_config.engine)
        try:
            summaries = await run_sessions(manager, app_config.sessions)
        finally:
            await manager.shutdown()
    except Exception as e:
        logging.error(f"Error running simulation: {e}", exc_info=True)
        return 1

    print(json.dumps(summaries, indent=2, default=str))
    return 0


def cli():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logging.info("Simulation stopped by user.")


if __name__ == "__main__":
    cli()
