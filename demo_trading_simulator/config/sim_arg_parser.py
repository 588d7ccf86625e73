import argparse
from typing import Optional, Sequence

from demo_trading_simulator.models import StrategyType


def parse_arguments(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for the backtest runner."""
    parser = argparse.ArgumentParser(
        description="Replay historical prices through a trading strategy and report the results."
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (JSON, YAML or TOML)",
    )

    # Single session options; used when the config file lists no sessions
    parser.add_argument("--symbol", type=str, default=None, help="Ticker symbol to replay")
    parser.add_argument(
        "--strategy",
        type=str,
        choices=[s.value for s in StrategyType if s != StrategyType.AI_DYNAMIC],
        default=StrategyType.MOMENTUM.value,
        help="Built-in strategy to trade with (default: momentum)",
    )
    parser.add_argument("--start-date", type=str, default=None, help="First date to replay (ISO format)")
    parser.add_argument("--end-date", type=str, default=None, help="Last date to replay (ISO format)")
    parser.add_argument(
        "--speed",
        type=float,
        default=None,
        help="Playback speed factor; 10 replays ten times faster than the base tick interval",
    )
    parser.add_argument(
        "--initial-capital",
        type=float,
        default=None,
        help="Starting cash (default: engine configuration)",
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for the synthetic tick source (default: config or None)",
    )
    parser.add_argument(
        "--csv",
        type=str,
        default=None,
        help="Replay ticks from a CSV file instead of generating them",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Set the logging level (default: LOG_LEVEL env var or INFO)",
    )

    return parser.parse_args(argv)


# example
# python -m demo_trading_simulator.run_simulation --symbol AAPL --start-date 2024-01-02 --end-date 2024-01-05 --speed 1000
